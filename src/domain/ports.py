"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the records the domain works with and the interfaces
(ports) that the domain requires from infrastructure. Adapters implement
these protocols.
"""

import uuid
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol


class UserRole(str, Enum):
    """Account role, fixed at creation."""

    CANDIDATE = "CANDIDATE"
    EMPLOYER = "EMPLOYER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    """
    Account lifecycle states.

    Transitions:
    - PENDING_EMAIL_VERIFICATION -> ACTIVE (candidate/admin verifies email)
    - PENDING_EMAIL_VERIFICATION -> PENDING_PROFILE_COMPLETION (employer verifies email)
    - PENDING_PROFILE_COMPLETION -> PENDING_APPROVAL (employer submits complete profile)
    - PENDING_APPROVAL -> ACTIVE (admin approves)
    - PENDING_APPROVAL -> PENDING_PROFILE_COMPLETION (admin rejects)
    - any non-BANNED -> BANNED (admin ban)
    - BANNED -> ACTIVE (admin unban)

    No state is terminal: BANNED is reversible by an admin.
    """

    PENDING_EMAIL_VERIFICATION = "PENDING_EMAIL_VERIFICATION"
    PENDING_PROFILE_COMPLETION = "PENDING_PROFILE_COMPLETION"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    BANNED = "BANNED"


class OtpPurpose(str, Enum):
    """Reason an OTP was issued. Scopes uniqueness and TTL."""

    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"
    EMAIL_CHANGE = "EMAIL_CHANGE"


class ProfileStatus(str, Enum):
    """Employer profile state with respect to staged edits."""

    APPROVED = "APPROVED"
    PENDING_EDIT_APPROVAL = "PENDING_EDIT_APPROVAL"


class ApprovalAction(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalTarget(str, Enum):
    """Which approval workflow an admin decision applies to."""

    EMPLOYER_PROFILE = "EMPLOYER_PROFILE"
    EMPLOYER_PROFILE_EDIT = "EMPLOYER_PROFILE_EDIT"


class EditableField(str, Enum):
    """Employer profile fields an employer may change after registration."""

    COMPANY_NAME = "company_name"
    LOGO_URL = "logo_url"
    WEBSITE = "website"
    DESCRIPTION = "description"
    WORK_TITLE = "work_title"
    CONTACT_PHONE = "contact_phone"

    @property
    def is_sensitive(self) -> bool:
        """Sensitive fields need admin approval once a profile is live."""
        return self in _SENSITIVE_FIELDS


_SENSITIVE_FIELDS = frozenset(
    {EditableField.COMPANY_NAME, EditableField.LOGO_URL, EditableField.WEBSITE}
)


class VerifyResult(Enum):
    """
    Result of checking a submitted OTP against the active record.

    Used by OtpService.check() so callers can commit attempt counting
    before deciding which error to raise.
    """

    SUCCESS = "success"
    MISMATCH = "mismatch"
    EXPIRED = "expired"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    NOT_FOUND = "not_found"


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Opaque identifier for newly created records."""
    return uuid.uuid4().hex


def normalize_email(email: str) -> str:
    """
    Normalize email address for consistent storage and lookup.

    Applies: strip whitespace + lowercase
    """
    return email.strip().lower()


Clock = Callable[[], datetime]


@dataclass
class Account:
    email: str
    password_hash: str
    role: UserRole
    status: UserStatus = UserStatus.PENDING_EMAIL_VERIFICATION
    is_verified: bool = False
    email_verified_at: datetime | None = None
    last_login_at: datetime | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class OtpRecord:
    email: str
    purpose: OtpPurpose
    code_hash: str
    expires_at: datetime
    is_used: bool = False
    is_verified: bool = False
    attempt_count: int = 0
    verified_at: datetime | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return not self.is_used and not self.is_verified


@dataclass
class CandidateProfile:
    account_id: str
    full_name: str
    id: str = field(default_factory=new_id)


@dataclass
class EmployerProfile:
    account_id: str
    full_name: str
    company_name: str
    work_title: str | None = None
    description: str | None = None
    website: str | None = None
    logo_url: str | None = None
    contact_phone: str | None = None
    profile_status: ProfileStatus = ProfileStatus.APPROVED
    is_approved: bool = False
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class PendingEdit:
    profile_id: str
    field: EditableField
    old_value: str | None
    new_value: str | None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class ApprovalLog:
    admin_id: str
    target_type: ApprovalTarget
    target_id: str
    action: ApprovalAction
    reason: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class OtpPolicy:
    """OTP tuning knobs, built from Settings."""

    code_length: int = 6
    max_attempts: int = 5
    rate_limit: int = 5
    rate_window_minutes: int = 60
    ttl_minutes: dict[OtpPurpose, int] = field(
        default_factory=lambda: {
            OtpPurpose.EMAIL_VERIFICATION: 5,
            OtpPurpose.PASSWORD_RESET: 10,
            OtpPurpose.EMAIL_CHANGE: 5,
        }
    )
    hash_rounds: int = 10


class AccountRepository(Protocol):
    """Port interface for account persistence."""

    def add(self, account: Account) -> bool:
        """
        Insert a new account.

        Returns:
            True if inserted, False if the normalized email is already taken
        """
        ...

    def get(self, account_id: str, *, for_update: bool = False) -> Account | None: ...

    def get_by_email(self, email: str, *, for_update: bool = False) -> Account | None: ...

    def update(self, account: Account) -> None:
        """Persist everything except email and role."""
        ...

    def change_email(self, account_id: str, email: str) -> bool:
        """
        Move an account to a new normalized email.

        Returns:
            True if changed, False if another account holds the email
        """
        ...


class OtpRepository(Protocol):
    """Port interface for OTP record persistence. No business rules."""

    def lock_scope(self, email: str, purpose: OtpPurpose) -> None:
        """Serialize issuance for one (email, purpose) until the transaction ends."""
        ...

    def count_created_since(self, email: str, purpose: OtpPurpose, since: datetime) -> int: ...

    def invalidate_active(self, email: str, purpose: OtpPurpose) -> int:
        """Mark every active record for (email, purpose) as used. Returns rows touched."""
        ...

    def add(self, record: OtpRecord) -> None: ...

    def find_active(
        self, email: str, purpose: OtpPurpose, *, for_update: bool = False
    ) -> OtpRecord | None:
        """Most recently created record with is_used = is_verified = False."""
        ...

    def update(self, record: OtpRecord) -> None: ...

    def delete_expired(self, now: datetime) -> int: ...


class ProfileRepository(Protocol):
    """Port interface for candidate/employer profile persistence."""

    def add_candidate(self, profile: CandidateProfile) -> None: ...

    def get_candidate_by_account(self, account_id: str) -> CandidateProfile | None: ...

    def add_employer(self, profile: EmployerProfile) -> None: ...

    def get_employer(
        self, profile_id: str, *, for_update: bool = False
    ) -> EmployerProfile | None: ...

    def get_employer_by_account(
        self, account_id: str, *, for_update: bool = False
    ) -> EmployerProfile | None: ...

    def update_employer(self, profile: EmployerProfile) -> None: ...

    def list_pending_edits(self, profile_id: str) -> list[PendingEdit]:
        """Pending edits for a profile, oldest first."""
        ...

    def add_pending_edit(self, edit: PendingEdit) -> None: ...

    def delete_pending_edits(
        self, profile_id: str, fields: Iterable[EditableField] | None = None
    ) -> int:
        """Delete pending edits for a profile (all, or only the given fields)."""
        ...


class ApprovalLogRepository(Protocol):
    """Port interface for the admin decision audit trail."""

    def add(self, entry: ApprovalLog) -> None: ...

    def list_for_target(self, target_id: str) -> list[ApprovalLog]: ...


class Session(Protocol):
    """Repositories bound to one open transaction."""

    accounts: AccountRepository
    otps: OtpRepository
    profiles: ProfileRepository
    approval_logs: ApprovalLogRepository


class Store(Protocol):
    """
    Port interface for the transactional boundary.

    ``with store.transaction() as tx:`` commits when the block exits
    normally and rolls back every write when it raises. Storage failures
    surface as StorageUnavailable.
    """

    def transaction(self) -> AbstractContextManager[Session]: ...


class EmailSender(Protocol):
    """
    Port interface for email delivery.

    Every method may raise EmailDeliveryError independently of the
    verification logic.
    """

    def send_otp_email(
        self, email: str, code: str, purpose: OtpPurpose, ttl_minutes: int
    ) -> None: ...

    def send_welcome_email(self, email: str, full_name: str) -> None: ...

    def send_profile_decision_email(
        self,
        email: str,
        company_name: str,
        *,
        approved: bool,
        is_new_profile: bool,
        reason: str | None = None,
    ) -> None: ...
