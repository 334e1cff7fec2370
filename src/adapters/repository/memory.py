"""
In-memory repository adapter - Implements the Store protocol in process.

Used by the unit and adversarial test suites and for running the API
without PostgreSQL. Transactions are serialized by one re-entrant lock
(which stands in for row locks) and roll back by restoring a snapshot of
every table. Records are copied on the way in and out so callers never
hold references into the store.
"""

import copy
import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime

from src.domain.ports import (
    Account,
    ApprovalLog,
    CandidateProfile,
    EditableField,
    EmployerProfile,
    OtpPurpose,
    OtpRecord,
    PendingEdit,
)

logger = logging.getLogger(__name__)


@dataclass
class _Tables:
    accounts: dict[str, Account] = field(default_factory=dict)
    otps: dict[str, OtpRecord] = field(default_factory=dict)
    candidates: dict[str, CandidateProfile] = field(default_factory=dict)
    employers: dict[str, EmployerProfile] = field(default_factory=dict)
    pending_edits: dict[str, PendingEdit] = field(default_factory=dict)
    approval_logs: list[ApprovalLog] = field(default_factory=list)


class MemoryAccountRepository:
    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def add(self, account: Account) -> bool:
        if any(a.email == account.email for a in self._tables.accounts.values()):
            return False
        self._tables.accounts[account.id] = replace(account)
        return True

    def get(self, account_id: str, *, for_update: bool = False) -> Account | None:
        account = self._tables.accounts.get(account_id)
        return replace(account) if account else None

    def get_by_email(self, email: str, *, for_update: bool = False) -> Account | None:
        for account in self._tables.accounts.values():
            if account.email == email:
                return replace(account)
        return None

    def update(self, account: Account) -> None:
        stored = self._tables.accounts[account.id]
        self._tables.accounts[account.id] = replace(account, email=stored.email, role=stored.role)

    def change_email(self, account_id: str, email: str) -> bool:
        if any(a.email == email for a in self._tables.accounts.values()):
            return False
        self._tables.accounts[account_id].email = email
        return True


class MemoryOtpRepository:
    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def lock_scope(self, email: str, purpose: OtpPurpose) -> None:
        # The store lock already serializes every transaction
        pass

    def _scope(self, email: str, purpose: OtpPurpose) -> list[OtpRecord]:
        return [r for r in self._tables.otps.values() if r.email == email and r.purpose == purpose]

    def count_created_since(self, email: str, purpose: OtpPurpose, since: datetime) -> int:
        return sum(1 for r in self._scope(email, purpose) if r.created_at >= since)

    def invalidate_active(self, email: str, purpose: OtpPurpose) -> int:
        active = [r for r in self._scope(email, purpose) if r.is_active]
        for record in active:
            record.is_used = True
        return len(active)

    def add(self, record: OtpRecord) -> None:
        self._tables.otps[record.id] = replace(record)

    def find_active(
        self, email: str, purpose: OtpPurpose, *, for_update: bool = False
    ) -> OtpRecord | None:
        active = [r for r in self._scope(email, purpose) if r.is_active]
        if not active:
            return None
        return replace(max(active, key=lambda r: r.created_at))

    def update(self, record: OtpRecord) -> None:
        self._tables.otps[record.id] = replace(record)

    def delete_expired(self, now: datetime) -> int:
        expired = [r.id for r in self._tables.otps.values() if r.expires_at < now]
        for record_id in expired:
            del self._tables.otps[record_id]
        return len(expired)

    def all(self) -> list[OtpRecord]:
        """Every stored record, for inspection in tests."""
        return [replace(r) for r in self._tables.otps.values()]


class MemoryProfileRepository:
    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def add_candidate(self, profile: CandidateProfile) -> None:
        self._tables.candidates[profile.id] = replace(profile)

    def get_candidate_by_account(self, account_id: str) -> CandidateProfile | None:
        for profile in self._tables.candidates.values():
            if profile.account_id == account_id:
                return replace(profile)
        return None

    def add_employer(self, profile: EmployerProfile) -> None:
        self._tables.employers[profile.id] = replace(profile)

    def get_employer(
        self, profile_id: str, *, for_update: bool = False
    ) -> EmployerProfile | None:
        profile = self._tables.employers.get(profile_id)
        return replace(profile) if profile else None

    def get_employer_by_account(
        self, account_id: str, *, for_update: bool = False
    ) -> EmployerProfile | None:
        for profile in self._tables.employers.values():
            if profile.account_id == account_id:
                return replace(profile)
        return None

    def update_employer(self, profile: EmployerProfile) -> None:
        self._tables.employers[profile.id] = replace(profile)

    def list_pending_edits(self, profile_id: str) -> list[PendingEdit]:
        edits = [e for e in self._tables.pending_edits.values() if e.profile_id == profile_id]
        return [replace(e) for e in sorted(edits, key=lambda e: e.created_at)]

    def add_pending_edit(self, edit: PendingEdit) -> None:
        self._tables.pending_edits[edit.id] = replace(edit)

    def delete_pending_edits(
        self, profile_id: str, fields: Iterable[EditableField] | None = None
    ) -> int:
        wanted = set(fields) if fields is not None else None
        doomed = [
            e.id
            for e in self._tables.pending_edits.values()
            if e.profile_id == profile_id and (wanted is None or e.field in wanted)
        ]
        for edit_id in doomed:
            del self._tables.pending_edits[edit_id]
        return len(doomed)


class MemoryApprovalLogRepository:
    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def add(self, entry: ApprovalLog) -> None:
        self._tables.approval_logs.append(replace(entry))

    def list_for_target(self, target_id: str) -> list[ApprovalLog]:
        return [replace(e) for e in self._tables.approval_logs if e.target_id == target_id]


class MemorySession:
    """Repositories over the live tables of an open transaction."""

    def __init__(self, tables: _Tables) -> None:
        self.accounts = MemoryAccountRepository(tables)
        self.otps = MemoryOtpRepository(tables)
        self.profiles = MemoryProfileRepository(tables)
        self.approval_logs = MemoryApprovalLogRepository(tables)


class MemoryStore:
    """
    Implements Store protocol in process memory.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self) -> None:
        self._tables = _Tables()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[MemorySession]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield MemorySession(self._tables)
            except BaseException:
                self._tables = snapshot
                raise
