"""
PostgreSQL repository adapter - Implements the Store protocol.

This module provides the PostgreSQL implementation of the domain's
persistence ports using psycopg3 with raw SQL.

Concurrency Design:
------------------
1. **One connection per transaction**: ``PostgresStore.transaction()`` checks
   a connection out of the pool, opens a transaction block and binds every
   repository of the session to it. Leaving the block commits; an
   exception rolls everything back.

2. **Row locks**: ``for_update=True`` lookups use ``SELECT ... FOR UPDATE`` so
   concurrent admin decisions on one account serialize instead of losing
   updates.

3. **OTP scope lock**: ``lock_scope`` takes ``pg_advisory_xact_lock`` on the
   (purpose, email) pair so two concurrent issuers cannot both invalidate
   and insert. The partial unique index ``otp_records_one_active`` backs the
   single-active-code invariant.

4. **Failure mapping**: every ``psycopg.Error`` leaving a transaction is
   logged and re-raised as the domain's StorageUnavailable.

5. **Email changes**: ``change_email`` runs in a savepoint so a UNIQUE
   violation from a concurrent claim is reported as False and the rest of
   the transaction stays usable.
"""

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from src.domain.exceptions import StorageUnavailable
from src.domain.ports import (
    Account,
    ApprovalAction,
    ApprovalLog,
    ApprovalTarget,
    CandidateProfile,
    EditableField,
    EmployerProfile,
    OtpPurpose,
    OtpRecord,
    PendingEdit,
    ProfileStatus,
    UserRole,
    UserStatus,
)

logger = logging.getLogger(__name__)

_LOCK = " FOR UPDATE"


def _account(row: dict[str, Any]) -> Account:
    return Account(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        role=UserRole(row["role"]),
        status=UserStatus(row["status"]),
        is_verified=row["is_verified"],
        email_verified_at=row["email_verified_at"],
        last_login_at=row["last_login_at"],
        created_at=row["created_at"],
    )


def _otp(row: dict[str, Any]) -> OtpRecord:
    return OtpRecord(
        id=row["id"],
        email=row["email"],
        purpose=OtpPurpose(row["purpose"]),
        code_hash=row["code_hash"],
        expires_at=row["expires_at"],
        is_used=row["is_used"],
        is_verified=row["is_verified"],
        attempt_count=row["attempt_count"],
        verified_at=row["verified_at"],
        created_at=row["created_at"],
    )


def _employer(row: dict[str, Any]) -> EmployerProfile:
    return EmployerProfile(
        id=row["id"],
        account_id=row["account_id"],
        full_name=row["full_name"],
        company_name=row["company_name"],
        work_title=row["work_title"],
        description=row["description"],
        website=row["website"],
        logo_url=row["logo_url"],
        contact_phone=row["contact_phone"],
        profile_status=ProfileStatus(row["profile_status"]),
        is_approved=row["is_approved"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _pending_edit(row: dict[str, Any]) -> PendingEdit:
    return PendingEdit(
        id=row["id"],
        profile_id=row["profile_id"],
        field=EditableField(row["field_name"]),
        old_value=row["old_value"],
        new_value=row["new_value"],
        created_at=row["created_at"],
    )


def _approval_log(row: dict[str, Any]) -> ApprovalLog:
    return ApprovalLog(
        id=row["id"],
        admin_id=row["admin_id"],
        target_type=ApprovalTarget(row["target_type"]),
        target_id=row["target_id"],
        action=ApprovalAction(row["action"]),
        reason=row["reason"],
        created_at=row["created_at"],
    )


class _Repository:
    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _fetchone(self, sql: str, params: tuple) -> dict[str, Any] | None:
        with self._conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, params)
            return cursor.fetchone()

    def _fetchall(self, sql: str, params: tuple) -> list[dict[str, Any]]:
        with self._conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, params)
            return cursor.fetchall()

    def _execute(self, sql: str, params: tuple) -> int:
        with self._conn.cursor() as cursor:
            cursor.execute(sql, params)
            return cursor.rowcount


class PostgresAccountRepository(_Repository):
    """Implements AccountRepository protocol via psycopg3."""

    def add(self, account: Account) -> bool:
        """
        Insert unless the email is taken.

        The UNIQUE constraint on email makes concurrent registrations of one
        address resolve to exactly one winner.
        """
        sql = """
            INSERT INTO accounts (id, email, password_hash, role, status, is_verified,
                                  email_verified_at, last_login_at, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (email) DO NOTHING
        """
        rowcount = self._execute(
            sql,
            (
                account.id,
                account.email,
                account.password_hash,
                account.role.value,
                account.status.value,
                account.is_verified,
                account.email_verified_at,
                account.last_login_at,
                account.created_at,
            ),
        )
        return rowcount == 1

    def get(self, account_id: str, *, for_update: bool = False) -> Account | None:
        sql = "SELECT * FROM accounts WHERE id = %s" + (_LOCK if for_update else "")
        row = self._fetchone(sql, (account_id,))
        return _account(row) if row else None

    def get_by_email(self, email: str, *, for_update: bool = False) -> Account | None:
        sql = "SELECT * FROM accounts WHERE email = %s" + (_LOCK if for_update else "")
        row = self._fetchone(sql, (email,))
        return _account(row) if row else None

    def update(self, account: Account) -> None:
        # email changes go through change_email; role never changes
        sql = """
            UPDATE accounts
            SET password_hash = %s, status = %s, is_verified = %s,
                email_verified_at = %s, last_login_at = %s
            WHERE id = %s
        """
        self._execute(
            sql,
            (
                account.password_hash,
                account.status.value,
                account.is_verified,
                account.email_verified_at,
                account.last_login_at,
                account.id,
            ),
        )

    def change_email(self, account_id: str, email: str) -> bool:
        """
        Point the account at a new email.

        Runs in a savepoint: a UNIQUE violation from a concurrent claim of
        the same address is reported as False without aborting the caller's
        transaction.
        """
        sql = "UPDATE accounts SET email = %s WHERE id = %s"
        try:
            with self._conn.transaction():
                rowcount = self._execute(sql, (email, account_id))
        except psycopg.errors.UniqueViolation:
            logger.info("Email change for account %s lost to an existing address", account_id)
            return False
        return rowcount == 1


class PostgresOtpRepository(_Repository):
    """Implements OtpRepository protocol via psycopg3."""

    def lock_scope(self, email: str, purpose: OtpPurpose) -> None:
        self._execute(
            "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))",
            (f"otp:{purpose.value}:{email}",),
        )

    def count_created_since(self, email: str, purpose: OtpPurpose, since: datetime) -> int:
        sql = """
            SELECT COUNT(*) AS recent FROM otp_records
            WHERE email = %s AND purpose = %s AND created_at >= %s
        """
        row = self._fetchone(sql, (email, purpose.value, since))
        return row["recent"] if row else 0

    def invalidate_active(self, email: str, purpose: OtpPurpose) -> int:
        sql = """
            UPDATE otp_records SET is_used = TRUE
            WHERE email = %s AND purpose = %s AND NOT is_used AND NOT is_verified
        """
        return self._execute(sql, (email, purpose.value))

    def add(self, record: OtpRecord) -> None:
        sql = """
            INSERT INTO otp_records (id, email, purpose, code_hash, expires_at, is_used,
                                     is_verified, attempt_count, verified_at, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        self._execute(
            sql,
            (
                record.id,
                record.email,
                record.purpose.value,
                record.code_hash,
                record.expires_at,
                record.is_used,
                record.is_verified,
                record.attempt_count,
                record.verified_at,
                record.created_at,
            ),
        )

    def find_active(
        self, email: str, purpose: OtpPurpose, *, for_update: bool = False
    ) -> OtpRecord | None:
        sql = """
            SELECT * FROM otp_records
            WHERE email = %s AND purpose = %s AND NOT is_used AND NOT is_verified
            ORDER BY created_at DESC
            LIMIT 1
        """ + (_LOCK if for_update else "")
        row = self._fetchone(sql, (email, purpose.value))
        return _otp(row) if row else None

    def update(self, record: OtpRecord) -> None:
        sql = """
            UPDATE otp_records
            SET is_used = %s, is_verified = %s, attempt_count = %s, verified_at = %s
            WHERE id = %s
        """
        self._execute(
            sql,
            (record.is_used, record.is_verified, record.attempt_count, record.verified_at, record.id),
        )

    def delete_expired(self, now: datetime) -> int:
        return self._execute("DELETE FROM otp_records WHERE expires_at < %s", (now,))


class PostgresProfileRepository(_Repository):
    """Implements ProfileRepository protocol via psycopg3."""

    def add_candidate(self, profile: CandidateProfile) -> None:
        self._execute(
            "INSERT INTO candidate_profiles (id, account_id, full_name) VALUES (%s, %s, %s)",
            (profile.id, profile.account_id, profile.full_name),
        )

    def get_candidate_by_account(self, account_id: str) -> CandidateProfile | None:
        row = self._fetchone("SELECT * FROM candidate_profiles WHERE account_id = %s", (account_id,))
        if row is None:
            return None
        return CandidateProfile(id=row["id"], account_id=row["account_id"], full_name=row["full_name"])

    def add_employer(self, profile: EmployerProfile) -> None:
        sql = """
            INSERT INTO employer_profiles (id, account_id, full_name, company_name, work_title,
                                           description, website, logo_url, contact_phone,
                                           profile_status, is_approved, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        self._execute(
            sql,
            (
                profile.id,
                profile.account_id,
                profile.full_name,
                profile.company_name,
                profile.work_title,
                profile.description,
                profile.website,
                profile.logo_url,
                profile.contact_phone,
                profile.profile_status.value,
                profile.is_approved,
                profile.created_at,
                profile.updated_at,
            ),
        )

    def get_employer(
        self, profile_id: str, *, for_update: bool = False
    ) -> EmployerProfile | None:
        sql = "SELECT * FROM employer_profiles WHERE id = %s" + (_LOCK if for_update else "")
        row = self._fetchone(sql, (profile_id,))
        return _employer(row) if row else None

    def get_employer_by_account(
        self, account_id: str, *, for_update: bool = False
    ) -> EmployerProfile | None:
        sql = "SELECT * FROM employer_profiles WHERE account_id = %s" + (_LOCK if for_update else "")
        row = self._fetchone(sql, (account_id,))
        return _employer(row) if row else None

    def update_employer(self, profile: EmployerProfile) -> None:
        sql = """
            UPDATE employer_profiles
            SET full_name = %s, company_name = %s, work_title = %s, description = %s,
                website = %s, logo_url = %s, contact_phone = %s, profile_status = %s,
                is_approved = %s, updated_at = %s
            WHERE id = %s
        """
        self._execute(
            sql,
            (
                profile.full_name,
                profile.company_name,
                profile.work_title,
                profile.description,
                profile.website,
                profile.logo_url,
                profile.contact_phone,
                profile.profile_status.value,
                profile.is_approved,
                profile.updated_at,
                profile.id,
            ),
        )

    def list_pending_edits(self, profile_id: str) -> list[PendingEdit]:
        rows = self._fetchall(
            "SELECT * FROM employer_pending_edits WHERE profile_id = %s ORDER BY created_at, id",
            (profile_id,),
        )
        return [_pending_edit(row) for row in rows]

    def add_pending_edit(self, edit: PendingEdit) -> None:
        sql = """
            INSERT INTO employer_pending_edits (id, profile_id, field_name, old_value,
                                                new_value, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
        """
        self._execute(
            sql,
            (edit.id, edit.profile_id, edit.field.value, edit.old_value, edit.new_value, edit.created_at),
        )

    def delete_pending_edits(
        self, profile_id: str, fields: Iterable[EditableField] | None = None
    ) -> int:
        if fields is None:
            return self._execute(
                "DELETE FROM employer_pending_edits WHERE profile_id = %s", (profile_id,)
            )
        return self._execute(
            "DELETE FROM employer_pending_edits WHERE profile_id = %s AND field_name = ANY(%s)",
            (profile_id, [f.value for f in fields]),
        )


class PostgresApprovalLogRepository(_Repository):
    """Implements ApprovalLogRepository protocol via psycopg3."""

    def add(self, entry: ApprovalLog) -> None:
        sql = """
            INSERT INTO approval_logs (id, admin_id, target_type, target_id, action, reason, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
        """
        self._execute(
            sql,
            (
                entry.id,
                entry.admin_id,
                entry.target_type.value,
                entry.target_id,
                entry.action.value,
                entry.reason,
                entry.created_at,
            ),
        )

    def list_for_target(self, target_id: str) -> list[ApprovalLog]:
        rows = self._fetchall(
            "SELECT * FROM approval_logs WHERE target_id = %s ORDER BY created_at, id",
            (target_id,),
        )
        return [_approval_log(row) for row in rows]


class PostgresSession:
    """Repositories bound to one connection inside one transaction."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.accounts = PostgresAccountRepository(conn)
        self.otps = PostgresOtpRepository(conn)
        self.profiles = PostgresProfileRepository(conn)
        self.approval_logs = PostgresApprovalLogRepository(conn)


class PostgresStore:
    """
    Implements Store protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize store with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    @contextmanager
    def transaction(self) -> Iterator[PostgresSession]:
        try:
            with self._pool.connection() as conn, conn.transaction():
                yield PostgresSession(conn)
        except psycopg.Error as e:
            logger.error(f"Database transaction failed: {e.__class__.__name__}")
            raise StorageUnavailable() from e


MIGRATIONS_DIR = Path(__file__).resolve().parents[3] / "migrations"

# Arbitrary advisory lock key shared by every process applying migrations
_MIGRATION_LOCK_KEY = 7_204_311


def run_migrations(pool: ConnectionPool, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """
    Apply every SQL file in migrations_dir, in filename order.

    All files run on one connection inside one transaction, so a failing
    file leaves the schema exactly as it was. An advisory lock keeps two
    processes starting at once from applying the same files concurrently.
    Files must be idempotent (IF NOT EXISTS and friends); every file runs
    on every startup.

    Returns:
        Names of the files applied

    Raises:
        RuntimeError: a file failed; nothing was applied
    """
    sql_files = sorted(migrations_dir.glob("*.sql"))
    if not sql_files:
        logger.warning("No migration files found in %s", migrations_dir)
        return []

    logger.info("Running %d migration(s) from %s", len(sql_files), migrations_dir)
    current = None
    try:
        with pool.connection() as conn, conn.transaction():
            conn.execute("SELECT pg_advisory_xact_lock(%s)", (_MIGRATION_LOCK_KEY,))
            for current in sql_files:
                logger.info("Executing migration: %s", current.name)
                conn.execute(current.read_text())
    except (psycopg.Error, OSError) as e:
        name = current.name if current else migrations_dir.name
        logger.error("Migration failed: %s - %s", name, e)
        raise RuntimeError(f"Database migration failed: {name}") from e

    logger.info("Migrations complete")
    return [sql_file.name for sql_file in sql_files]
