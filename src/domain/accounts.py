"""
Account lifecycle domain service - the user-status state machine.

States (see UserStatus):
- PENDING_EMAIL_VERIFICATION: every new account, regardless of role
- PENDING_PROFILE_COMPLETION: employer has verified email, profile incomplete
- PENDING_APPROVAL: employer profile submitted, waiting for an admin
- ACTIVE: fully usable account
- BANNED: blocked by an admin, reversible via unban

Transitions owned here:
    register        -> PENDING_EMAIL_VERIFICATION
    verify_email    PENDING_EMAIL_VERIFICATION -> NEXT_STATUS_AFTER_EMAIL_VERIFICATION[role]
    change_email    status unchanged; address replaced and marked verified
    ban             any non-BANNED -> BANNED
    unban           BANNED -> ACTIVE

Employer profile submission and admin approval live in approval.py.
Login never changes status; it only reports where the client should go.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

import bcrypt

from .exceptions import (
    AccountBanned,
    AccountNotFound,
    EmailAlreadyRegistered,
    Forbidden,
    InvalidCredentials,
    InvalidState,
    PasswordResetFailed,
    RateLimited,
    SelfActionForbidden,
    TransientFailure,
    ValidationFailed,
)
from .otp import IssuedOtp, OtpService
from .ports import (
    Account,
    CandidateProfile,
    Clock,
    EmailSender,
    EmployerProfile,
    OtpPurpose,
    Session,
    Store,
    UserRole,
    UserStatus,
    normalize_email,
    utc_now,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt input limit

# Pre-computed bcrypt hash for timing oracle prevention.
# Checked when the email doesn't exist so login takes the same time either way.
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"dummy_password_for_timing_safety", bcrypt.gensalt(10)).decode()

NEXT_STATUS_AFTER_EMAIL_VERIFICATION: dict[UserRole, UserStatus] = {
    UserRole.CANDIDATE: UserStatus.ACTIVE,
    UserRole.EMPLOYER: UserStatus.PENDING_PROFILE_COMPLETION,
    UserRole.ADMIN: UserStatus.ACTIVE,
}

_STATUS_REDIRECTS: dict[UserStatus, str] = {
    UserStatus.PENDING_EMAIL_VERIFICATION: "/auth/verify-email",
    UserStatus.PENDING_PROFILE_COMPLETION: "/employer/complete-profile",
    UserStatus.PENDING_APPROVAL: "/employer/pending-approval",
}

_DASHBOARDS: dict[UserRole, str] = {
    UserRole.CANDIDATE: "/candidate/dashboard",
    UserRole.EMPLOYER: "/employer/dashboard",
    UserRole.ADMIN: "/admin/dashboard",
}

PASSWORD_RESET_REQUESTED = "If the email is registered, a verification code has been sent"
PASSWORD_RESET_COMPLETED = "Password has been reset, please log in with your new password"


def redirect_for(status: UserStatus, role: UserRole) -> str:
    """
    Client route for a logged-in account, derived only from (status, role).

    Raises:
        AccountBanned: banned accounts have nowhere to go
    """
    if status == UserStatus.BANNED:
        raise AccountBanned()
    if status == UserStatus.ACTIVE:
        return _DASHBOARDS[role]
    return _STATUS_REDIRECTS[status]


def require_active_admin(tx: Session, actor_id: str) -> Account:
    """Load the acting account and make sure it is an active admin."""
    actor = tx.accounts.get(actor_id)
    if actor is None or actor.role != UserRole.ADMIN or actor.status != UserStatus.ACTIVE:
        logger.warning("Rejected admin action by non-admin actor %s", actor_id)
        raise Forbidden()
    return actor


@dataclass(frozen=True)
class RegistrationResult:
    account: Account
    verification_sent: bool
    otp_expires_at: datetime | None = None


@dataclass(frozen=True)
class OtpDelivery:
    """What a caller may learn about a delivered code (never the code itself)."""

    expires_at: datetime
    ttl_minutes: int


@dataclass(frozen=True)
class LoginResult:
    account: Account
    redirect: str


@dataclass
class AccountService:
    """
    Domain service for the account lifecycle.

    Orchestrates registration, email verification, login gating,
    password reset, email change and admin ban/unban.
    """

    store: Store
    otp_service: OtpService
    email_sender: EmailSender
    password_rounds: int = 10
    clock: Clock = utc_now

    def register(
        self,
        role: UserRole,
        email: str,
        password: str,
        full_name: str,
        *,
        company_name: str | None = None,
        work_title: str | None = None,
        contact_phone: str | None = None,
    ) -> RegistrationResult:
        """
        Register a candidate or employer account.

        The account row and its profile shell are written in one
        transaction. Verification code issuance happens afterwards: if it
        fails the account remains and ``verification_sent`` is False so the
        caller can ask the user to request a new code.

        Raises:
            ValidationFailed: admin self-registration, blank name, weak password,
                employer without company name
            EmailAlreadyRegistered: normalized email already taken
            StorageUnavailable: storage failure; nothing was written
        """
        if role == UserRole.ADMIN:
            raise ValidationFailed("Administrator accounts cannot self-register")
        full_name = full_name.strip()
        if not full_name:
            raise ValidationFailed("Full name is required")
        if role == UserRole.EMPLOYER and not (company_name or "").strip():
            raise ValidationFailed("Company name is required")

        normalized_email = normalize_email(email)
        account = Account(
            email=normalized_email,
            password_hash=self._hash_password(password),
            role=role,
            created_at=self.clock(),
        )

        with self.store.transaction() as tx:
            if not tx.accounts.add(account):
                raise EmailAlreadyRegistered(normalized_email)
            if role == UserRole.CANDIDATE:
                tx.profiles.add_candidate(
                    CandidateProfile(account_id=account.id, full_name=full_name)
                )
            else:
                tx.profiles.add_employer(
                    EmployerProfile(
                        account_id=account.id,
                        full_name=full_name,
                        company_name=company_name.strip(),
                        work_title=work_title,
                        contact_phone=contact_phone,
                        created_at=account.created_at,
                        updated_at=account.created_at,
                    )
                )

        logger.info("Registered %s account %s", role.value, account.id)
        issued = self._deliver_verification_code(normalized_email)
        return RegistrationResult(
            account=account,
            verification_sent=issued is not None,
            otp_expires_at=issued.expires_at if issued else None,
        )

    def create_admin(self, email: str, password: str) -> Account:
        """Provision an active, verified admin account (operator tooling)."""
        now = self.clock()
        normalized_email = normalize_email(email)
        account = Account(
            email=normalized_email,
            password_hash=self._hash_password(password),
            role=UserRole.ADMIN,
            status=UserStatus.ACTIVE,
            is_verified=True,
            email_verified_at=now,
            created_at=now,
        )
        with self.store.transaction() as tx:
            if not tx.accounts.add(account):
                raise EmailAlreadyRegistered(normalized_email)
        logger.info("Created admin account %s", account.id)
        return account

    def verify_email(self, email: str, code: str) -> Account:
        """
        Verify the registration code and advance the account by role.

        The status guard runs before any OTP work so an already verified
        account cannot burn or replay codes. OTP consumption and the status
        change commit together; a wrong code still records the attempt.

        Raises:
            AccountNotFound: no account for email
            InvalidState: account is not waiting for email verification
            OtpError: code not found, expired, exhausted or wrong
        """
        normalized_email = normalize_email(email)
        with self.store.transaction() as tx:
            account = tx.accounts.get_by_email(normalized_email, for_update=True)
            if account is None:
                raise AccountNotFound()
            self._require_pending_verification(account)

            outcome = self.otp_service.check(
                tx, normalized_email, code, OtpPurpose.EMAIL_VERIFICATION
            )
            if outcome.ok:
                account.is_verified = True
                account.email_verified_at = self.clock()
                account.status = NEXT_STATUS_AFTER_EMAIL_VERIFICATION[account.role]
                tx.accounts.update(account)
        outcome.raise_for_failure()

        logger.info("Email verified for account %s, status now %s", account.id, account.status.value)
        self._send_welcome_email(account)
        return account

    def resend_otp(self, email: str) -> OtpDelivery:
        """
        Issue and deliver a new registration code.

        Raises:
            AccountNotFound: no account for email
            InvalidState: account is not waiting for email verification
            RateLimited: too many codes requested in the window
            EmailDeliveryError: code issued but not delivered
        """
        normalized_email = normalize_email(email)
        with self.store.transaction() as tx:
            # Row lock serializes with verify_email
            account = tx.accounts.get_by_email(normalized_email, for_update=True)
            if account is None:
                raise AccountNotFound()
            self._require_pending_verification(account)
            issued = self.otp_service.issue_in(tx, normalized_email, OtpPurpose.EMAIL_VERIFICATION)

        self.email_sender.send_otp_email(
            normalized_email, issued.code, OtpPurpose.EMAIL_VERIFICATION, issued.ttl_minutes
        )
        return OtpDelivery(expires_at=issued.expires_at, ttl_minutes=issued.ttl_minutes)

    def authenticate(self, email: str, password: str) -> Account:
        """
        Check credentials without touching login bookkeeping.

        Raises:
            InvalidCredentials: unknown email or wrong password
            AccountBanned: credentials valid but account is banned
        """
        normalized_email = normalize_email(email)
        with self.store.transaction() as tx:
            account = tx.accounts.get_by_email(normalized_email)
        self._check_credentials(account, password)
        return account

    def login(self, email: str, password: str) -> LoginResult:
        """
        Log in from any non-banned status and report the next client route.

        Raises:
            InvalidCredentials: unknown email or wrong password
            AccountBanned: account is banned
        """
        normalized_email = normalize_email(email)
        with self.store.transaction() as tx:
            account = tx.accounts.get_by_email(normalized_email, for_update=True)
            self._check_credentials(account, password)
            account.last_login_at = self.clock()
            tx.accounts.update(account)

        logger.info("Account %s logged in with status %s", account.id, account.status.value)
        return LoginResult(account=account, redirect=redirect_for(account.status, account.role))

    def request_password_reset(self, email: str) -> str:
        """
        Send a password reset code if the account exists.

        Always returns the same message so callers cannot probe for
        registered emails.
        """
        normalized_email = normalize_email(email)
        with self.store.transaction() as tx:
            account = tx.accounts.get_by_email(normalized_email)
        if account is None:
            # Same hashing work as a real issue so response time does not reveal the account
            self.otp_service.hash_decoy()
            logger.info("Password reset requested for unknown email")
            return PASSWORD_RESET_REQUESTED

        try:
            issued = self.otp_service.issue(normalized_email, OtpPurpose.PASSWORD_RESET)
            self.email_sender.send_otp_email(
                normalized_email, issued.code, OtpPurpose.PASSWORD_RESET, issued.ttl_minutes
            )
        except (RateLimited, TransientFailure) as exc:
            logger.warning("Password reset code for account %s not sent: %s", account.id, exc)
        return PASSWORD_RESET_REQUESTED

    def reset_password(self, email: str, code: str, new_password: str) -> str:
        """
        Replace the password after a valid reset code.

        Raises:
            ValidationFailed: new password does not meet requirements
            PasswordResetFailed: unknown email or any code failure (generic)
        """
        new_hash = self._hash_password(new_password)
        normalized_email = normalize_email(email)
        with self.store.transaction() as tx:
            account = tx.accounts.get_by_email(normalized_email, for_update=True)
            outcome = self.otp_service.check(
                tx, normalized_email, code, OtpPurpose.PASSWORD_RESET
            )
            if account is not None and outcome.ok:
                account.password_hash = new_hash
                tx.accounts.update(account)

        if account is None or not outcome.ok:
            logger.warning("Password reset failed (%s)", outcome.result.value)
            raise PasswordResetFailed()
        logger.info("Password reset for account %s", account.id)
        return PASSWORD_RESET_COMPLETED

    def request_email_change(self, account_id: str) -> OtpDelivery:
        """
        Send an email-change code to the account's current address.

        Raises:
            AccountNotFound: no such account
            AccountBanned: account is banned
            InvalidState: current address was never verified
            RateLimited: too many codes requested in the window
            EmailDeliveryError: code issued but not delivered
        """
        with self.store.transaction() as tx:
            account = tx.accounts.get(account_id, for_update=True)
            self._require_can_change_email(account)
            issued = self.otp_service.issue_in(tx, account.email, OtpPurpose.EMAIL_CHANGE)

        self.email_sender.send_otp_email(
            account.email, issued.code, OtpPurpose.EMAIL_CHANGE, issued.ttl_minutes
        )
        logger.info("Email change code sent for account %s", account_id)
        return OtpDelivery(expires_at=issued.expires_at, ttl_minutes=issued.ttl_minutes)

    def change_email(self, account_id: str, new_email: str, code: str) -> Account:
        """
        Move the account to a new address after a code sent to the old one.

        The new address counts as verified: the code proves control of the
        account, and the old address was verified before. Status is kept.
        The code is consumed in the same transaction as the address change;
        a wrong code still records the attempt.

        Raises:
            AccountNotFound: no such account
            AccountBanned: account is banned
            InvalidState: current address was never verified
            ValidationFailed: new address equals the current one
            EmailAlreadyRegistered: new address belongs to another account
            OtpError: code not found, expired, exhausted or wrong
        """
        normalized_email = normalize_email(new_email)
        with self.store.transaction() as tx:
            account = tx.accounts.get(account_id, for_update=True)
            self._require_can_change_email(account)
            if normalized_email == account.email:
                raise ValidationFailed("New email must differ from the current email")
            if tx.accounts.get_by_email(normalized_email) is not None:
                raise EmailAlreadyRegistered(normalized_email)

            old_email = account.email
            outcome = self.otp_service.check(tx, old_email, code, OtpPurpose.EMAIL_CHANGE)
            if outcome.ok:
                # The write re-checks uniqueness against concurrent claims
                if not tx.accounts.change_email(account.id, normalized_email):
                    raise EmailAlreadyRegistered(normalized_email)
                account.email = normalized_email
                account.is_verified = True
                account.email_verified_at = self.clock()
                tx.accounts.update(account)
        outcome.raise_for_failure()

        logger.info("Email changed for account %s", account.id)
        return account

    def ban(self, actor_id: str, account_id: str) -> Account:
        """
        Ban an account.

        Raises:
            Forbidden: actor is not an active admin
            SelfActionForbidden: actor targets their own account
            AccountNotFound: no such account
            InvalidState: account already banned
        """
        with self.store.transaction() as tx:
            require_active_admin(tx, actor_id)
            if actor_id == account_id:
                raise SelfActionForbidden()
            target = tx.accounts.get(account_id, for_update=True)
            if target is None:
                raise AccountNotFound()
            if target.status == UserStatus.BANNED:
                raise InvalidState("Account is already banned")
            previous = target.status
            target.status = UserStatus.BANNED
            tx.accounts.update(target)

        logger.info("Banned account %s (was %s) by admin %s", account_id, previous.value, actor_id)
        return target

    def unban(self, actor_id: str, account_id: str) -> Account:
        """
        Lift a ban; the account becomes ACTIVE.

        Raises:
            Forbidden: actor is not an active admin
            AccountNotFound: no such account
            InvalidState: account is not banned
        """
        with self.store.transaction() as tx:
            require_active_admin(tx, actor_id)
            target = tx.accounts.get(account_id, for_update=True)
            if target is None:
                raise AccountNotFound()
            if target.status != UserStatus.BANNED:
                raise InvalidState(
                    f"Only banned accounts can be unbanned (current status: {target.status.value})"
                )
            target.status = UserStatus.ACTIVE
            tx.accounts.update(target)

        logger.info("Unbanned account %s by admin %s", account_id, actor_id)
        return target

    def _require_pending_verification(self, account: Account) -> None:
        if account.is_verified or account.status != UserStatus.PENDING_EMAIL_VERIFICATION:
            logger.warning("Verification attempted for account %s in %s", account.id, account.status.value)
            raise InvalidState("Email is already verified or account is not awaiting verification")

    def _require_can_change_email(self, account: Account | None) -> None:
        if account is None:
            raise AccountNotFound()
        if account.status == UserStatus.BANNED:
            raise AccountBanned()
        if not account.is_verified:
            logger.warning("Email change attempted for unverified account %s", account.id)
            raise InvalidState("Verify the current email before changing it")

    def _check_credentials(self, account: Account | None, password: str) -> None:
        stored_hash = account.password_hash if account is not None else _DUMMY_PASSWORD_HASH
        # Always run bcrypt so unknown emails cost the same as wrong passwords
        password_valid = self._password_matches(password, stored_hash)
        if account is None or not password_valid:
            logger.warning("Failed login attempt")
            raise InvalidCredentials()
        if account.status == UserStatus.BANNED:
            logger.warning("Login refused for banned account %s", account.id)
            raise AccountBanned()

    def _deliver_verification_code(self, email: str) -> IssuedOtp | None:
        try:
            issued = self.otp_service.issue(email, OtpPurpose.EMAIL_VERIFICATION)
            self.email_sender.send_otp_email(
                email, issued.code, OtpPurpose.EMAIL_VERIFICATION, issued.ttl_minutes
            )
        except (RateLimited, TransientFailure) as exc:
            logger.warning("Verification code for %s not delivered: %s", email, exc)
            return None
        return issued

    def _send_welcome_email(self, account: Account) -> None:
        """Best effort: a failure here never undoes the verification."""
        try:
            self.email_sender.send_welcome_email(account.email, self._display_name(account))
        except Exception:
            logger.warning("Failed to send welcome email to account %s", account.id, exc_info=True)

    def _display_name(self, account: Account) -> str:
        with self.store.transaction() as tx:
            if account.role == UserRole.CANDIDATE:
                profile = tx.profiles.get_candidate_by_account(account.id)
            else:
                profile = tx.profiles.get_employer_by_account(account.id)
        return profile.full_name if profile is not None else "there"

    def _hash_password(self, password: str) -> str:
        """
        Hash password using bcrypt.

        Raises:
            ValidationFailed: shorter than MIN_PASSWORD_LENGTH characters or
                longer than bcrypt's 72-byte input
        """
        encoded = password.encode()
        if len(password) < MIN_PASSWORD_LENGTH or len(encoded) > MAX_PASSWORD_BYTES:
            raise ValidationFailed(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters "
                f"and at most {MAX_PASSWORD_BYTES} bytes"
            )
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.password_rounds)).decode()

    def _password_matches(self, password: str, password_hash: str) -> bool:
        encoded = password.encode()
        matches = bcrypt.checkpw(encoded[:MAX_PASSWORD_BYTES], password_hash.encode())
        return matches and len(encoded) <= MAX_PASSWORD_BYTES
