"""
OTP domain service - issuance and verification of one-time passcodes.

Rules enforced here, on top of a data-only OtpRepository:

- Only the bcrypt hash of a code is persisted; the plaintext is returned
  once to the caller for out-of-band delivery.
- At most one active record exists per (email, purpose). Issuing a new code
  invalidates the previous one inside the same transaction.
- At most ``rate_limit`` codes per (email, purpose) per trailing window.
- A code dies after ``max_attempts`` wrong guesses, after ``expires_at``,
  or after one successful verification.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import bcrypt

from .exceptions import OtpAttemptsExceeded, OtpExpired, OtpMismatch, OtpNotFound, RateLimited
from .ports import (
    Clock,
    OtpPolicy,
    OtpPurpose,
    OtpRecord,
    Session,
    Store,
    VerifyResult,
    normalize_email,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedOtp:
    """Plaintext code handed back to the caller for delivery. Never persisted."""

    code: str
    expires_at: datetime
    ttl_minutes: int


@dataclass(frozen=True)
class OtpCheck:
    result: VerifyResult
    remaining_attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.result == VerifyResult.SUCCESS

    def raise_for_failure(self) -> None:
        """Raise the typed error matching a failed check."""
        if self.result == VerifyResult.NOT_FOUND:
            raise OtpNotFound()
        if self.result == VerifyResult.EXPIRED:
            raise OtpExpired()
        if self.result == VerifyResult.ATTEMPTS_EXCEEDED:
            raise OtpAttemptsExceeded()
        if self.result == VerifyResult.MISMATCH:
            raise OtpMismatch(self.remaining_attempts)


@dataclass
class OtpService:
    """
    Domain service for one-time passcodes.

    The public methods open their own transaction. ``check()`` runs inside
    a caller's transaction so that OTP consumption and the state change it
    unlocks commit together.
    """

    store: Store
    policy: OtpPolicy = field(default_factory=OtpPolicy)
    clock: Clock = utc_now

    def ttl_minutes(self, purpose: OtpPurpose) -> int:
        return self.policy.ttl_minutes[purpose]

    def issue(self, email: str, purpose: OtpPurpose) -> IssuedOtp:
        """
        Issue a fresh code for (email, purpose).

        Does not check whether an account exists; callers decide what to
        reveal.

        Raises:
            RateLimited: ``rate_limit`` codes already issued in the window
        """
        email = normalize_email(email)
        with self.store.transaction() as tx:
            return self.issue_in(tx, email, purpose)

    def issue_in(self, tx: Session, email: str, purpose: OtpPurpose) -> IssuedOtp:
        """Issue a code inside an already open transaction."""
        email = normalize_email(email)
        now = self.clock()

        # Serializes concurrent issuers so invalidate + insert is observed atomically
        tx.otps.lock_scope(email, purpose)

        window_start = now - timedelta(minutes=self.policy.rate_window_minutes)
        recent = tx.otps.count_created_since(email, purpose, window_start)
        if recent >= self.policy.rate_limit:
            logger.warning("OTP rate limit hit for %s (%s)", email, purpose.value)
            raise RateLimited()

        invalidated = tx.otps.invalidate_active(email, purpose)
        if invalidated:
            logger.info("Invalidated %d active OTP(s) for %s (%s)", invalidated, email, purpose.value)

        code = self._generate_code()
        ttl = self.ttl_minutes(purpose)
        record = OtpRecord(
            email=email,
            purpose=purpose,
            code_hash=self._hash_code(code),
            expires_at=now + timedelta(minutes=ttl),
            created_at=now,
        )
        tx.otps.add(record)

        logger.info("Issued OTP for %s (%s), valid %d min", email, purpose.value, ttl)
        return IssuedOtp(code=code, expires_at=record.expires_at, ttl_minutes=ttl)

    def verify(self, email: str, code: str, purpose: OtpPurpose) -> None:
        """
        Verify and consume a code.

        Raises:
            OtpNotFound: no active code (never issued, superseded, or used)
            OtpExpired: past expires_at
            OtpAttemptsExceeded: wrong-guess ceiling already reached
            OtpMismatch: wrong code; attempt recorded
        """
        with self.store.transaction() as tx:
            outcome = self.check(tx, email, code, purpose)
        # Raised after commit so a mismatch still counts as an attempt
        outcome.raise_for_failure()

    def check(self, tx: Session, email: str, code: str, purpose: OtpPurpose) -> OtpCheck:
        """
        Check a code inside the caller's transaction without raising.

        Attempt counting and consumption are written through ``tx``; the
        caller decides when to raise via ``OtpCheck.raise_for_failure()``.
        """
        email = normalize_email(email)
        now = self.clock()
        record = tx.otps.find_active(email, purpose, for_update=True)

        if record is None:
            return OtpCheck(VerifyResult.NOT_FOUND)
        if now > record.expires_at:
            return OtpCheck(VerifyResult.EXPIRED)
        if record.attempt_count >= self.policy.max_attempts:
            return OtpCheck(VerifyResult.ATTEMPTS_EXCEEDED)

        if not self._code_matches(code, record.code_hash):
            record.attempt_count += 1
            tx.otps.update(record)
            remaining = self.policy.max_attempts - record.attempt_count
            logger.warning(
                "OTP mismatch for %s (%s), %d attempt(s) left", email, purpose.value, remaining
            )
            return OtpCheck(VerifyResult.MISMATCH, remaining_attempts=remaining)

        record.is_verified = True
        record.is_used = True
        record.verified_at = now
        tx.otps.update(record)
        logger.info("OTP verified for %s (%s)", email, purpose.value)
        return OtpCheck(VerifyResult.SUCCESS)

    def has_valid_otp(self, email: str, purpose: OtpPurpose) -> bool:
        """True iff an active, unexpired code exists for (email, purpose)."""
        email = normalize_email(email)
        with self.store.transaction() as tx:
            record = tx.otps.find_active(email, purpose)
        return record is not None and self.clock() <= record.expires_at

    def hash_decoy(self) -> None:
        """Spend the hashing cost of issue() without storing anything."""
        self._hash_code(self._generate_code())

    def cleanup_expired(self) -> int:
        """
        Delete records past their expiry.

        Advisory only: verify() rejects expired codes whether or not this
        has run.
        """
        with self.store.transaction() as tx:
            deleted = tx.otps.delete_expired(self.clock())
        if deleted:
            logger.info("Deleted %d expired OTP record(s)", deleted)
        return deleted

    def _generate_code(self) -> str:
        """
        Generate cryptographically secure numeric code.

        Returns string to preserve leading zeros.
        """
        return "".join(secrets.choice("0123456789") for _ in range(self.policy.code_length))

    def _hash_code(self, code: str) -> str:
        return bcrypt.hashpw(code.encode(), bcrypt.gensalt(rounds=self.policy.hash_rounds)).decode()

    def _code_matches(self, code: str, code_hash: str) -> bool:
        candidate = code.strip().encode()
        if len(candidate) > 72:  # bcrypt input limit
            return False
        # bcrypt comparison is constant-time
        return bcrypt.checkpw(candidate, code_hash.encode())
