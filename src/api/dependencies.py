"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.
"""

from fastapi import Depends, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from src.adapters.smtp.console import ConsoleEmailSender
from src.config.settings import get_settings
from src.domain.accounts import AccountService
from src.domain.approval import ApprovalService
from src.domain.otp import OtpService
from src.domain.ports import Account, Store

# Module-level singleton - ConsoleEmailSender is stateless
_email_sender = ConsoleEmailSender()


def get_store(request: Request) -> Store:
    """
    Get the store from app state.

    The store is created during app lifespan startup and stored in app.state.
    """
    return request.app.state.store


def get_email_sender() -> ConsoleEmailSender:
    """Get console email sender (singleton)."""
    return _email_sender


def get_otp_service(request: Request) -> OtpService:
    return OtpService(store=get_store(request), policy=get_settings().otp_policy())


def get_account_service(request: Request) -> AccountService:
    """
    Create account service with injected dependencies.

    Wires together the store, OTP service and email sender for the domain service.
    """
    return AccountService(
        store=get_store(request),
        otp_service=get_otp_service(request),
        email_sender=get_email_sender(),
        password_rounds=get_settings().bcrypt_cost,
    )


def get_approval_service(request: Request) -> ApprovalService:
    return ApprovalService(store=get_store(request), email_sender=get_email_sender())


# HTTP BASIC AUTH security scheme for OpenAPI documentation
http_basic = HTTPBasic()


def get_basic_auth_credentials(
    credentials: HTTPBasicCredentials = Depends(http_basic),
) -> tuple[str, str]:
    """
    Extract and normalize credentials from HTTP BASIC AUTH header.

    FastAPI's HTTPBasic automatically:
    - Returns 401 for missing Authorization header
    - Returns 401 for malformed base64 encoding
    - Parses base64(email:password) format

    Returns:
        Tuple of (normalized_email, password)
    """
    email = credentials.username.strip().lower()
    password = credentials.password
    return email, password


def get_current_account(
    credentials: tuple[str, str] = Depends(get_basic_auth_credentials),
    service: AccountService = Depends(get_account_service),
) -> Account:
    """
    Authenticate the caller on every request.

    InvalidCredentials and AccountBanned propagate to the error handler.
    """
    email, password = credentials
    return service.authenticate(email, password)
