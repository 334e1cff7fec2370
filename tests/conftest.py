"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock and the in-memory store
- Domain services wired with cheap bcrypt costs
- Account factories for each lifecycle stage
- PostgreSQL pool and cleanup (skipped when the database is unreachable)
"""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import psycopg
import pytest
from psycopg_pool import ConnectionPool

from src.adapters.repository.memory import MemoryStore
from src.adapters.repository.postgres import PostgresStore, run_migrations
from src.adapters.smtp.console import ConsoleEmailSender
from src.config.settings import get_settings
from src.domain.accounts import AccountService
from src.domain.approval import ApprovalService
from src.domain.otp import OtpService
from src.domain.ports import Account, EditableField, EmployerProfile, OtpPolicy, Store, UserRole

PASSWORD = "correct-horse-42"

COMPLETE_PROFILE = {
    EditableField.COMPANY_NAME: "Acme Hiring",
    EditableField.DESCRIPTION: "We build anvils.",
    EditableField.LOGO_URL: "https://cdn.example.com/acme.png",
}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> OtpPolicy:
    """Default policy with the cheapest bcrypt cost."""
    return OtpPolicy(hash_rounds=4)


@pytest.fixture
def store() -> Store:
    return MemoryStore()


@pytest.fixture
def email_sender() -> MagicMock:
    return MagicMock(spec=ConsoleEmailSender)


@pytest.fixture
def otp_service(store: Store, policy: OtpPolicy, clock: FakeClock) -> OtpService:
    return OtpService(store=store, policy=policy, clock=clock)


@pytest.fixture
def account_service(
    store: Store, otp_service: OtpService, email_sender: MagicMock, clock: FakeClock
) -> AccountService:
    return AccountService(
        store=store,
        otp_service=otp_service,
        email_sender=email_sender,
        password_rounds=4,
        clock=clock,
    )


@pytest.fixture
def approval_service(store: Store, email_sender: MagicMock, clock: FakeClock) -> ApprovalService:
    return ApprovalService(store=store, email_sender=email_sender, clock=clock)


@pytest.fixture
def last_code(email_sender: MagicMock) -> Callable[[], str]:
    """Plaintext code from the most recent send_otp_email call."""
    return lambda: email_sender.send_otp_email.call_args.args[1]


@pytest.fixture
def admin(account_service: AccountService) -> Account:
    return account_service.create_admin("admin@example.com", PASSWORD)


@pytest.fixture
def make_candidate(
    account_service: AccountService, last_code: Callable[[], str]
) -> Callable[..., Account]:
    """Register a candidate and verify the email."""

    def _make(email: str = "candidate@example.com") -> Account:
        account_service.register(UserRole.CANDIDATE, email, PASSWORD, "Casey Candidate")
        return account_service.verify_email(email, last_code())

    return _make


@pytest.fixture
def make_employer(
    account_service: AccountService,
    approval_service: ApprovalService,
    last_code: Callable[[], str],
    admin: Account,
) -> Callable[..., Account]:
    """
    Register an employer and walk it to the requested stage.

    Stages: "unverified", "verified", "submitted", "active".
    """

    def _make(email: str = "employer@example.com", stage: str = "active") -> Account:
        result = account_service.register(
            UserRole.EMPLOYER, email, PASSWORD, "Erin Employer", company_name="Acme"
        )
        account = result.account
        if stage == "unverified":
            return account
        account = account_service.verify_email(email, last_code())
        if stage == "verified":
            return account
        approval_service.submit_profile(account.id, COMPLETE_PROFILE)
        if stage == "active":
            with approval_service.store.transaction() as tx:
                profile = tx.profiles.get_employer_by_account(account.id)
            approval_service.approve(admin.id, profile.id)
        with approval_service.store.transaction() as tx:
            return tx.accounts.get(account.id)

    return _make


@pytest.fixture
def load_profile(store: Store) -> Callable[[str], EmployerProfile]:
    """Read an employer profile by account id in its own transaction."""

    def _load(account_id: str) -> EmployerProfile:
        with store.transaction() as tx:
            return tx.profiles.get_employer_by_account(account_id)

    return _load


@pytest.fixture
def load_account(store: Store) -> Callable[[str], Account]:
    def _load(account_id: str) -> Account:
        with store.transaction() as tx:
            return tx.accounts.get(account_id)

    return _load


@pytest.fixture(scope="session")
def postgres_pool() -> Generator[ConnectionPool, None, None]:
    """Migrated connection pool; skips the test when PostgreSQL is unreachable."""
    settings = get_settings()
    try:
        with psycopg.connect(settings.database_url, connect_timeout=2):
            pass
    except psycopg.OperationalError:
        pytest.skip("PostgreSQL is not reachable")

    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=True)
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def postgres_store(postgres_pool: ConnectionPool) -> PostgresStore:
    """Store over emptied tables."""
    with postgres_pool.connection() as conn:
        conn.execute(
            "TRUNCATE approval_logs, employer_pending_edits, employer_profiles, "
            "candidate_profiles, otp_records, accounts"
        )
    return PostgresStore(postgres_pool)
