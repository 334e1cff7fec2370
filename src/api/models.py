"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
"""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, EmailStr, Field

from src.domain.ports import (
    Account,
    ApprovalAction,
    ApprovalLog,
    ApprovalTarget,
    EditableField,
    EmployerProfile,
    ProfileStatus,
    UserRole,
    UserStatus,
)

Password = Annotated[str, Field(min_length=8, max_length=72, description="Password (8-72 characters)")]
OtpCode = Annotated[str, Field(pattern=r"^\d{4,10}$", description="Numeric verification code from email")]


class CandidateRegisterRequest(BaseModel):
    """Request model for candidate registration."""

    email: EmailStr
    password: Password
    full_name: str = Field(..., min_length=1, max_length=255)


class EmployerRegisterRequest(BaseModel):
    """Request model for employer registration."""

    email: EmailStr
    password: Password
    full_name: str = Field(..., min_length=1, max_length=255)
    company_name: str = Field(..., min_length=1, max_length=255)
    work_title: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=20)


class RegisterResponse(BaseModel):
    """Response model for successful registration."""

    account_id: str
    email: str
    status: UserStatus
    verification_sent: bool
    otp_expires_at: datetime | None = None


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: OtpCode


class EmailRequest(BaseModel):
    email: EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    # No length rules on login; any mismatch is just invalid credentials
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    account_id: str
    role: UserRole
    status: UserStatus
    redirect: str


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: OtpCode
    new_password: Password


class ChangeEmailRequest(BaseModel):
    new_email: EmailStr
    code: OtpCode


class OtpSentResponse(BaseModel):
    message: str
    expires_at: datetime
    ttl_minutes: int


class MessageResponse(BaseModel):
    message: str


class AccountResponse(BaseModel):
    """Public view of an account."""

    id: str
    email: str
    role: UserRole
    status: UserStatus
    is_verified: bool

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            role=account.role,
            status=account.status,
            is_verified=account.is_verified,
        )


class ProfileChangesRequest(BaseModel):
    """
    Employer profile fields to change.

    Omitted fields are left alone; an explicit null clears an optional field.
    """

    company_name: str | None = None
    logo_url: str | None = None
    website: str | None = None
    description: str | None = None
    work_title: str | None = None
    contact_phone: str | None = None

    def to_changes(self) -> dict[EditableField, str | None]:
        return {EditableField(name): value for name, value in self.model_dump(exclude_unset=True).items()}


class ProfileResponse(BaseModel):
    id: str
    account_id: str
    full_name: str
    company_name: str
    work_title: str | None
    description: str | None
    website: str | None
    logo_url: str | None
    contact_phone: str | None
    profile_status: ProfileStatus
    is_approved: bool
    account_status: UserStatus
    staged_fields: list[EditableField] = []

    @classmethod
    def from_profile(
        cls,
        profile: EmployerProfile,
        account_status: UserStatus,
        staged_fields: list[EditableField] | None = None,
    ) -> "ProfileResponse":
        return cls(
            id=profile.id,
            account_id=profile.account_id,
            full_name=profile.full_name,
            company_name=profile.company_name,
            work_title=profile.work_title,
            description=profile.description,
            website=profile.website,
            logo_url=profile.logo_url,
            contact_phone=profile.contact_phone,
            profile_status=profile.profile_status,
            is_approved=profile.is_approved,
            account_status=account_status,
            staged_fields=staged_fields or [],
        )


class ApproveRequest(BaseModel):
    note: str | None = Field(default=None, max_length=1000)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class ReviewTargetResponse(BaseModel):
    profile_id: str
    target: ApprovalTarget


class DecisionResponse(BaseModel):
    profile_id: str
    target: ApprovalTarget
    action: ApprovalAction
    account_status: UserStatus
    profile_status: ProfileStatus


class ApprovalLogResponse(BaseModel):
    id: str
    admin_id: str
    target_type: ApprovalTarget
    action: ApprovalAction
    reason: str | None
    created_at: datetime

    @classmethod
    def from_log(cls, entry: ApprovalLog) -> "ApprovalLogResponse":
        return cls(
            id=entry.id,
            admin_id=entry.admin_id,
            target_type=entry.target_type,
            action=entry.action,
            reason=entry.reason,
            created_at=entry.created_at,
        )


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
