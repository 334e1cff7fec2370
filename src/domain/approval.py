"""
Employer approval domain service.

Two admin workflows share one entry point per decision:

- New profile (ApprovalTarget.EMPLOYER_PROFILE): account is PENDING_APPROVAL.
    approve -> account ACTIVE, profile approved
    reject  -> account PENDING_PROFILE_COMPLETION (employer fixes and resubmits)
- Pending edits (ApprovalTarget.EMPLOYER_PROFILE_EDIT): profile is
  PENDING_EDIT_APPROVAL with staged sensitive-field changes.
    approve -> every staged value applied, edits deleted, profile APPROVED
    reject  -> edits deleted unapplied, profile APPROVED

Each decision runs in one transaction with the account and profile rows
locked (account first, then profile), writes an ApprovalLog entry and is
all-or-nothing. An employer awaiting both workflows at once is rejected as
ambiguous.

Field writes go through an explicit table of apply functions, one per
EditableField.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace

from .accounts import require_active_admin
from .exceptions import (
    AccountNotFound,
    Forbidden,
    InvalidState,
    NoPendingEdits,
    ProfileNotFound,
    ValidationFailed,
)
from .ports import (
    Account,
    ApprovalAction,
    ApprovalLog,
    ApprovalTarget,
    Clock,
    EditableField,
    EmailSender,
    EmployerProfile,
    PendingEdit,
    ProfileStatus,
    Session,
    Store,
    UserRole,
    UserStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 255
MAX_PHONE_LENGTH = 20


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _checked_text(value: str | None, label: str) -> str | None:
    value = _clean(value)
    if value is not None and len(value) > MAX_TEXT_LENGTH:
        raise ValidationFailed(f"{label} must be at most {MAX_TEXT_LENGTH} characters")
    return value


def _checked_url(value: str | None, label: str) -> str | None:
    value = _checked_text(value, label)
    if value is not None and not value.startswith(("http://", "https://")):
        raise ValidationFailed(f"{label} must be an http(s) URL")
    return value


def _apply_company_name(profile: EmployerProfile, value: str | None) -> None:
    name = _checked_text(value, "Company name")
    if name is None:
        raise ValidationFailed("Company name cannot be empty")
    profile.company_name = name


def _apply_logo_url(profile: EmployerProfile, value: str | None) -> None:
    profile.logo_url = _checked_url(value, "Logo URL")


def _apply_website(profile: EmployerProfile, value: str | None) -> None:
    profile.website = _checked_url(value, "Website")


def _apply_description(profile: EmployerProfile, value: str | None) -> None:
    # Free text, no length cap
    profile.description = _clean(value)


def _apply_work_title(profile: EmployerProfile, value: str | None) -> None:
    profile.work_title = _checked_text(value, "Work title")


def _apply_contact_phone(profile: EmployerProfile, value: str | None) -> None:
    phone = _clean(value)
    if phone is not None:
        digits = phone.replace(" ", "").replace("-", "").removeprefix("+")
        if not digits.isdigit() or len(phone) > MAX_PHONE_LENGTH:
            raise ValidationFailed("Contact phone must be a phone number")
    profile.contact_phone = phone


FIELD_APPLIERS: dict[EditableField, Callable[[EmployerProfile, str | None], None]] = {
    EditableField.COMPANY_NAME: _apply_company_name,
    EditableField.LOGO_URL: _apply_logo_url,
    EditableField.WEBSITE: _apply_website,
    EditableField.DESCRIPTION: _apply_description,
    EditableField.WORK_TITLE: _apply_work_title,
    EditableField.CONTACT_PHONE: _apply_contact_phone,
}

FIELD_READERS: dict[EditableField, Callable[[EmployerProfile], str | None]] = {
    EditableField.COMPANY_NAME: lambda p: p.company_name,
    EditableField.LOGO_URL: lambda p: p.logo_url,
    EditableField.WEBSITE: lambda p: p.website,
    EditableField.DESCRIPTION: lambda p: p.description,
    EditableField.WORK_TITLE: lambda p: p.work_title,
    EditableField.CONTACT_PHONE: lambda p: p.contact_phone,
}

# A submitted profile must have these before an admin reviews it
REQUIRED_FOR_SUBMISSION = (
    EditableField.COMPANY_NAME,
    EditableField.DESCRIPTION,
    EditableField.LOGO_URL,
)


def apply_field(profile: EmployerProfile, field: EditableField, value: str | None) -> None:
    FIELD_APPLIERS[field](profile, value)


def read_field(profile: EmployerProfile, field: EditableField) -> str | None:
    return FIELD_READERS[field](profile)


def is_profile_complete(profile: EmployerProfile) -> bool:
    return all(read_field(profile, f) for f in REQUIRED_FOR_SUBMISSION)


def resolve_target(
    account: Account, profile: EmployerProfile, edits: list[PendingEdit]
) -> ApprovalTarget:
    """
    Decide which approval workflow a decision applies to.

    Raises:
        InvalidState: employer awaits both workflows, or neither
    """
    awaiting_new = account.status == UserStatus.PENDING_APPROVAL
    awaiting_edit = profile.profile_status == ProfileStatus.PENDING_EDIT_APPROVAL or bool(edits)

    if awaiting_new and awaiting_edit:
        raise InvalidState("Employer has both a new profile and edits awaiting approval")
    if awaiting_new:
        return ApprovalTarget.EMPLOYER_PROFILE
    if awaiting_edit:
        if account.status != UserStatus.ACTIVE:
            raise InvalidState("Profile edits can only be reviewed for active employers")
        return ApprovalTarget.EMPLOYER_PROFILE_EDIT
    raise InvalidState("Employer is not awaiting approval")


@dataclass(frozen=True)
class SubmissionResult:
    profile: EmployerProfile
    account_status: UserStatus


@dataclass(frozen=True)
class ProposalResult:
    profile: EmployerProfile
    staged: list[PendingEdit]


@dataclass(frozen=True)
class ApprovalDecision:
    target: ApprovalTarget
    action: ApprovalAction
    profile: EmployerProfile
    account_status: UserStatus


@dataclass
class ApprovalService:
    """Domain service for employer profile submission and admin review."""

    store: Store
    email_sender: EmailSender
    clock: Clock = utc_now

    def submit_profile(
        self, account_id: str, changes: Mapping[EditableField, str | None]
    ) -> SubmissionResult:
        """
        Fill in the profile of a newly verified employer.

        Changes apply directly. Once every required field is present the
        account moves to PENDING_APPROVAL.

        Raises:
            Forbidden: account is not an employer
            InvalidState: account is not awaiting profile completion
            ValidationFailed: a value is rejected; nothing is written
        """
        with self.store.transaction() as tx:
            account, profile = self._load_own_profile(tx, account_id)
            if account.status != UserStatus.PENDING_PROFILE_COMPLETION:
                raise InvalidState("Profile can only be submitted while awaiting completion")

            for field, value in changes.items():
                apply_field(profile, field, value)
            profile.updated_at = self.clock()
            tx.profiles.update_employer(profile)

            if is_profile_complete(profile):
                account.status = UserStatus.PENDING_APPROVAL
                tx.accounts.update(account)

        if account.status == UserStatus.PENDING_APPROVAL:
            logger.info("Employer %s submitted profile %s for approval", account_id, profile.id)
        return SubmissionResult(profile=profile, account_status=account.status)

    def propose_edits(
        self, account_id: str, changes: Mapping[EditableField, str | None]
    ) -> ProposalResult:
        """
        Edit a live employer profile.

        Sensitive fields are staged as pending edits (replacing an older
        staged value for the same field); other fields apply immediately.
        Setting a sensitive field back to its live value withdraws the
        staged edit. The profile is PENDING_EDIT_APPROVAL exactly while
        edits remain staged.

        Raises:
            Forbidden: account is not an employer
            InvalidState: account is not ACTIVE
            ValidationFailed: a value is rejected; nothing is written
        """
        with self.store.transaction() as tx:
            account, profile = self._load_own_profile(tx, account_id)
            if account.status != UserStatus.ACTIVE:
                raise InvalidState("Only active employers can edit their profile")

            staged: list[PendingEdit] = []
            for field, value in changes.items():
                if not field.is_sensitive:
                    apply_field(profile, field, value)
                    continue
                # Validate and normalize on a scratch copy; the live profile is untouched
                scratch = replace(profile)
                apply_field(scratch, field, value)
                new_value = read_field(scratch, field)
                current = read_field(profile, field)
                # Any older staged value for the field is superseded, including by a revert
                withdrawn = tx.profiles.delete_pending_edits(profile.id, [field])
                if new_value == current:
                    if withdrawn:
                        logger.info("Withdrew staged %s edit on profile %s", field.value, profile.id)
                    continue
                edit = PendingEdit(
                    profile_id=profile.id,
                    field=field,
                    old_value=current,
                    new_value=new_value,
                    created_at=self.clock(),
                )
                tx.profiles.add_pending_edit(edit)
                staged.append(edit)

            if tx.profiles.list_pending_edits(profile.id):
                profile.profile_status = ProfileStatus.PENDING_EDIT_APPROVAL
            else:
                profile.profile_status = ProfileStatus.APPROVED
            profile.updated_at = self.clock()
            tx.profiles.update_employer(profile)

        if staged:
            logger.info(
                "Staged %d edit(s) on profile %s: %s",
                len(staged),
                profile.id,
                ", ".join(e.field.value for e in staged),
            )
        return ProposalResult(profile=profile, staged=staged)

    def pending_review(self, profile_id: str) -> ApprovalTarget:
        """Which workflow an admin decision on this profile would target."""
        with self.store.transaction() as tx:
            profile = tx.profiles.get_employer(profile_id)
            if profile is None:
                raise ProfileNotFound()
            account = tx.accounts.get(profile.account_id)
            if account is None:
                raise AccountNotFound()
            edits = tx.profiles.list_pending_edits(profile.id)
            return resolve_target(account, profile, edits)

    def approve(self, admin_id: str, profile_id: str, note: str | None = None) -> ApprovalDecision:
        """
        Approve a new employer profile or its pending edits.

        Raises:
            Forbidden: admin_id is not an active admin
            ProfileNotFound: no such profile
            InvalidState: not awaiting approval, or ambiguous target
            NoPendingEdits: edit approval with nothing staged
            ValidationFailed: a staged value no longer applies; nothing is written
        """
        note = _clean(note)
        with self.store.transaction() as tx:
            require_active_admin(tx, admin_id)
            account, profile = self._lock_for_review(tx, profile_id)
            edits = tx.profiles.list_pending_edits(profile.id)
            target = resolve_target(account, profile, edits)

            if target == ApprovalTarget.EMPLOYER_PROFILE:
                account.status = UserStatus.ACTIVE
                profile.is_approved = True
                profile.profile_status = ProfileStatus.APPROVED
            else:
                if not edits:
                    raise NoPendingEdits()
                for edit in edits:
                    apply_field(profile, edit.field, edit.new_value)
                tx.profiles.delete_pending_edits(profile.id)
                profile.profile_status = ProfileStatus.APPROVED

            self._record(tx, admin_id, account, profile, target, ApprovalAction.APPROVED, note)

        logger.info("Approved %s for profile %s by admin %s", target.value, profile.id, admin_id)
        self._notify(account, profile, target, approved=True, reason=note)
        return ApprovalDecision(target, ApprovalAction.APPROVED, profile, account.status)

    def reject(self, admin_id: str, profile_id: str, reason: str) -> ApprovalDecision:
        """
        Reject a new employer profile or discard its pending edits.

        Raises:
            ValidationFailed: reason is blank
            Forbidden: admin_id is not an active admin
            ProfileNotFound: no such profile
            InvalidState: not awaiting approval, or ambiguous target
            NoPendingEdits: edit rejection with nothing staged
        """
        reason = _clean(reason)
        if reason is None:
            raise ValidationFailed("A rejection reason is required")

        with self.store.transaction() as tx:
            require_active_admin(tx, admin_id)
            account, profile = self._lock_for_review(tx, profile_id)
            edits = tx.profiles.list_pending_edits(profile.id)
            target = resolve_target(account, profile, edits)

            if target == ApprovalTarget.EMPLOYER_PROFILE:
                account.status = UserStatus.PENDING_PROFILE_COMPLETION
            else:
                if not edits:
                    raise NoPendingEdits()
                tx.profiles.delete_pending_edits(profile.id)
                profile.profile_status = ProfileStatus.APPROVED

            self._record(tx, admin_id, account, profile, target, ApprovalAction.REJECTED, reason)

        logger.info("Rejected %s for profile %s by admin %s", target.value, profile.id, admin_id)
        self._notify(account, profile, target, approved=False, reason=reason)
        return ApprovalDecision(target, ApprovalAction.REJECTED, profile, account.status)

    def history(self, profile_id: str) -> list[ApprovalLog]:
        """Admin decisions recorded for a profile, oldest first."""
        with self.store.transaction() as tx:
            return tx.approval_logs.list_for_target(profile_id)

    def _load_own_profile(self, tx: Session, account_id: str) -> tuple[Account, EmployerProfile]:
        account = tx.accounts.get(account_id, for_update=True)
        if account is None:
            raise AccountNotFound()
        if account.role != UserRole.EMPLOYER:
            raise Forbidden("Only employers have a company profile")
        profile = tx.profiles.get_employer_by_account(account_id, for_update=True)
        if profile is None:
            raise ProfileNotFound()
        return account, profile

    def _lock_for_review(self, tx: Session, profile_id: str) -> tuple[Account, EmployerProfile]:
        # Lock order is account then profile, matching the employer-side operations
        unlocked = tx.profiles.get_employer(profile_id)
        if unlocked is None:
            raise ProfileNotFound()
        account = tx.accounts.get(unlocked.account_id, for_update=True)
        if account is None:
            raise AccountNotFound()
        profile = tx.profiles.get_employer(profile_id, for_update=True)
        if profile is None:
            raise ProfileNotFound()
        return account, profile

    def _record(
        self,
        tx: Session,
        admin_id: str,
        account: Account,
        profile: EmployerProfile,
        target: ApprovalTarget,
        action: ApprovalAction,
        reason: str | None,
    ) -> None:
        now = self.clock()
        profile.updated_at = now
        tx.profiles.update_employer(profile)
        tx.accounts.update(account)
        tx.approval_logs.add(
            ApprovalLog(
                admin_id=admin_id,
                target_type=target,
                target_id=profile.id,
                action=action,
                reason=reason,
                created_at=now,
            )
        )

    def _notify(
        self,
        account: Account,
        profile: EmployerProfile,
        target: ApprovalTarget,
        *,
        approved: bool,
        reason: str | None,
    ) -> None:
        """Best effort: the decision is already committed."""
        try:
            self.email_sender.send_profile_decision_email(
                account.email,
                profile.company_name,
                approved=approved,
                is_new_profile=target == ApprovalTarget.EMPLOYER_PROFILE,
                reason=reason,
            )
        except Exception:
            logger.warning("Failed to send decision email for profile %s", profile.id, exc_info=True)
