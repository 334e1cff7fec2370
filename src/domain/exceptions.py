"""
Domain exceptions - Semantic error types for the account lifecycle.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
Every exception carries a user-safe message and a category that the
API layer maps to an HTTP status.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    RATE_LIMITED = "rate_limited"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    TRANSIENT = "transient"


class AccountError(Exception):
    """Base class for account lifecycle domain errors."""

    category = ErrorCategory.VALIDATION
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(AccountError):
    """Input is well-formed but violates a business rule."""

    default_message = "Invalid request"


class EmailAlreadyRegistered(AccountError):
    """Email already belongs to an account."""

    category = ErrorCategory.CONFLICT
    default_message = "Email is already registered"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__()


class AccountNotFound(AccountError):
    category = ErrorCategory.NOT_FOUND
    default_message = "Account not found"


class ProfileNotFound(AccountError):
    category = ErrorCategory.NOT_FOUND
    default_message = "Employer profile not found"


class InvalidState(AccountError):
    """Operation attempted from a status that forbids it."""

    category = ErrorCategory.INVALID_STATE
    default_message = "Operation not allowed in the current account state"


class NoPendingEdits(InvalidState):
    default_message = "No profile edits are awaiting approval"


class OtpError(AccountError):
    """Base class for OTP verification failures."""


class OtpNotFound(OtpError):
    category = ErrorCategory.NOT_FOUND
    default_message = "Verification code not found or already used"


class OtpExpired(OtpError):
    default_message = "Verification code has expired, please request a new one"


class OtpAttemptsExceeded(OtpError):
    category = ErrorCategory.ATTEMPTS_EXCEEDED
    default_message = "Too many incorrect attempts, please request a new code"


class OtpMismatch(OtpError):
    """Wrong code. Carries the number of guesses left on this code."""

    def __init__(self, remaining_attempts: int) -> None:
        self.remaining_attempts = remaining_attempts
        super().__init__(
            f"Incorrect verification code, {remaining_attempts} attempt(s) remaining"
        )


class RateLimited(AccountError):
    category = ErrorCategory.RATE_LIMITED
    default_message = "Too many verification codes requested, please try again later"


class InvalidCredentials(AccountError):
    """Unknown email or wrong password. Deliberately indistinguishable."""

    category = ErrorCategory.UNAUTHORIZED
    default_message = "Email or password is incorrect"


class PasswordResetFailed(AccountError):
    """Generic reset failure that does not reveal whether the email exists."""

    default_message = "Password reset failed, the code is invalid or has expired"


class Forbidden(AccountError):
    category = ErrorCategory.FORBIDDEN
    default_message = "You are not allowed to perform this action"


class AccountBanned(Forbidden):
    default_message = "Your account has been banned"


class SelfActionForbidden(Forbidden):
    default_message = "You cannot perform this action on your own account"


class TransientFailure(AccountError):
    """Storage or email I/O failure. Safe to retry."""

    category = ErrorCategory.TRANSIENT
    default_message = "Service temporarily unavailable, please retry"


class StorageUnavailable(TransientFailure):
    pass


class EmailDeliveryError(TransientFailure):
    default_message = "Email could not be delivered, please request a new code"
