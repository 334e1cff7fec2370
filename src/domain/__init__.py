"""
Domain layer - Pure business logic with zero framework imports.

This package contains the account lifecycle and OTP verification core of
the job board: the user-status state machine, one-time passcode issuance
and verification, and the employer approval workflow. It defines its own
port interfaces for infrastructure abstraction.
"""

from .accounts import AccountService, LoginResult, OtpDelivery, RegistrationResult
from .approval import ApprovalDecision, ApprovalService, ProposalResult, SubmissionResult
from .exceptions import AccountError, ErrorCategory
from .otp import IssuedOtp, OtpService
from .ports import (
    Account,
    EditableField,
    EmailSender,
    OtpPolicy,
    OtpPurpose,
    ProfileStatus,
    Store,
    UserRole,
    UserStatus,
    VerifyResult,
)

__all__ = [
    "Account",
    "AccountError",
    "AccountService",
    "ApprovalDecision",
    "ApprovalService",
    "EditableField",
    "EmailSender",
    "ErrorCategory",
    "IssuedOtp",
    "LoginResult",
    "OtpDelivery",
    "OtpPolicy",
    "OtpPurpose",
    "OtpService",
    "ProfileStatus",
    "ProposalResult",
    "RegistrationResult",
    "Store",
    "SubmissionResult",
    "UserRole",
    "UserStatus",
    "VerifyResult",
]
