"""
API v1 routes.

Defines REST endpoints for account registration, email verification,
login, password reset, email change, employer profiles and admin
moderation.

Domain errors propagate to the handler in src/api/errors.py.
"""

from fastapi import APIRouter, Depends, status

from src.api.dependencies import get_account_service, get_approval_service, get_current_account
from src.api.models import (
    AccountResponse,
    ApprovalLogResponse,
    ApproveRequest,
    CandidateRegisterRequest,
    ChangeEmailRequest,
    DecisionResponse,
    EmailRequest,
    EmployerRegisterRequest,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OtpSentResponse,
    ProfileChangesRequest,
    ProfileResponse,
    RegisterResponse,
    RejectRequest,
    ResetPasswordRequest,
    ReviewTargetResponse,
    VerifyEmailRequest,
)
from src.domain.accounts import AccountService, RegistrationResult
from src.domain.approval import ApprovalDecision, ApprovalService
from src.domain.exceptions import Forbidden
from src.domain.ports import Account, UserRole, UserStatus

router = APIRouter(tags=["v1"])

AUTH_ERRORS = {
    401: {"model": ErrorResponse, "description": "Invalid credentials"},
    403: {"model": ErrorResponse, "description": "Not allowed for this account"},
}


def _registered(result: RegistrationResult) -> RegisterResponse:
    return RegisterResponse(
        account_id=result.account.id,
        email=result.account.email,
        status=result.account.status,
        verification_sent=result.verification_sent,
        otp_expires_at=result.otp_expires_at,
    )


def _decided(profile_id: str, decision: ApprovalDecision) -> DecisionResponse:
    return DecisionResponse(
        profile_id=profile_id,
        target=decision.target,
        action=decision.action,
        account_status=decision.account_status,
        profile_status=decision.profile.profile_status,
    )


@router.post(
    "/auth/register/candidate",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Email already registered"}},
    summary="Register a candidate",
    description="Create a candidate account. A verification code is sent to the email.",
)
async def register_candidate(
    request_data: CandidateRegisterRequest,
    service: AccountService = Depends(get_account_service),
) -> RegisterResponse:
    result = service.register(
        UserRole.CANDIDATE, request_data.email, request_data.password, request_data.full_name
    )
    return _registered(result)


@router.post(
    "/auth/register/employer",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Email already registered"}},
    summary="Register an employer",
    description="Create an employer account and an empty company profile. "
    "A verification code is sent to the email.",
)
async def register_employer(
    request_data: EmployerRegisterRequest,
    service: AccountService = Depends(get_account_service),
) -> RegisterResponse:
    result = service.register(
        UserRole.EMPLOYER,
        request_data.email,
        request_data.password,
        request_data.full_name,
        company_name=request_data.company_name,
        work_title=request_data.work_title,
        contact_phone=request_data.contact_phone,
    )
    return _registered(result)


@router.post(
    "/auth/verify-email",
    response_model=AccountResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Wrong or expired code"},
        404: {"model": ErrorResponse, "description": "Unknown email or no active code"},
        409: {"model": ErrorResponse, "description": "Email already verified"},
        429: {"model": ErrorResponse, "description": "Too many wrong attempts"},
    },
    summary="Verify email with code",
)
async def verify_email(
    request_data: VerifyEmailRequest,
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    account = service.verify_email(request_data.email, request_data.code)
    return AccountResponse.from_account(account)


@router.post(
    "/auth/resend-otp",
    response_model=OtpSentResponse,
    responses={
        409: {"model": ErrorResponse, "description": "Email already verified"},
        429: {"model": ErrorResponse, "description": "Too many codes requested"},
        503: {"model": ErrorResponse, "description": "Email could not be delivered"},
    },
    summary="Send a new verification code",
)
async def resend_otp(
    request_data: EmailRequest,
    service: AccountService = Depends(get_account_service),
) -> OtpSentResponse:
    delivery = service.resend_otp(request_data.email)
    return OtpSentResponse(
        message="Verification code sent",
        expires_at=delivery.expires_at,
        ttl_minutes=delivery.ttl_minutes,
    )


@router.post(
    "/auth/login",
    response_model=LoginResponse,
    responses=AUTH_ERRORS,
    summary="Log in",
    description="Check credentials and report where the client should go next.",
)
async def login(
    request_data: LoginRequest,
    service: AccountService = Depends(get_account_service),
) -> LoginResponse:
    result = service.login(request_data.email, request_data.password)
    return LoginResponse(
        account_id=result.account.id,
        role=result.account.role,
        status=result.account.status,
        redirect=result.redirect,
    )


@router.post(
    "/auth/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset code",
    description="Always answers with the same message whether or not the email is registered.",
)
async def forgot_password(
    request_data: EmailRequest,
    service: AccountService = Depends(get_account_service),
) -> MessageResponse:
    return MessageResponse(message=service.request_password_reset(request_data.email))


@router.post(
    "/auth/reset-password",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid or expired code"}},
    summary="Reset password with code",
)
async def reset_password(
    request_data: ResetPasswordRequest,
    service: AccountService = Depends(get_account_service),
) -> MessageResponse:
    message = service.reset_password(
        request_data.email, request_data.code, request_data.new_password
    )
    return MessageResponse(message=message)


@router.post(
    "/account/email/change-code",
    response_model=OtpSentResponse,
    responses={
        **AUTH_ERRORS,
        409: {"model": ErrorResponse, "description": "Current email not verified"},
        429: {"model": ErrorResponse, "description": "Too many codes requested"},
        503: {"model": ErrorResponse, "description": "Email could not be delivered"},
    },
    summary="Request an email change code",
    description="Send a code to the current email address; it authorizes moving to a new one.",
)
async def request_email_change(
    account: Account = Depends(get_current_account),
    service: AccountService = Depends(get_account_service),
) -> OtpSentResponse:
    delivery = service.request_email_change(account.id)
    return OtpSentResponse(
        message="Email change code sent to the current address",
        expires_at=delivery.expires_at,
        ttl_minutes=delivery.ttl_minutes,
    )


@router.put(
    "/account/email",
    response_model=AccountResponse,
    responses={
        **AUTH_ERRORS,
        400: {"model": ErrorResponse, "description": "Wrong or expired code"},
        409: {"model": ErrorResponse, "description": "Email already registered"},
        429: {"model": ErrorResponse, "description": "Too many wrong attempts"},
    },
    summary="Change email with code",
)
async def change_email(
    request_data: ChangeEmailRequest,
    account: Account = Depends(get_current_account),
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    updated = service.change_email(account.id, request_data.new_email, request_data.code)
    return AccountResponse.from_account(updated)


@router.put(
    "/employer/profile",
    response_model=ProfileResponse,
    responses=AUTH_ERRORS,
    summary="Complete the company profile",
    description="Fill in the company profile after email verification. "
    "Once complete, the profile is submitted for admin approval.",
)
async def submit_profile(
    request_data: ProfileChangesRequest,
    account: Account = Depends(get_current_account),
    service: ApprovalService = Depends(get_approval_service),
) -> ProfileResponse:
    result = service.submit_profile(account.id, request_data.to_changes())
    return ProfileResponse.from_profile(result.profile, result.account_status)


@router.patch(
    "/employer/profile",
    response_model=ProfileResponse,
    responses=AUTH_ERRORS,
    summary="Edit the company profile",
    description="Company name, logo and website changes wait for admin approval; "
    "other fields change immediately.",
)
async def propose_edits(
    request_data: ProfileChangesRequest,
    account: Account = Depends(get_current_account),
    service: ApprovalService = Depends(get_approval_service),
) -> ProfileResponse:
    result = service.propose_edits(account.id, request_data.to_changes())
    return ProfileResponse.from_profile(
        result.profile, account.status, [edit.field for edit in result.staged]
    )


@router.get(
    "/admin/employer-profiles/{profile_id}/review",
    response_model=ReviewTargetResponse,
    responses=AUTH_ERRORS,
    summary="Show what an approval decision would apply to",
)
async def pending_review(
    profile_id: str,
    account: Account = Depends(get_current_account),
    service: ApprovalService = Depends(get_approval_service),
) -> ReviewTargetResponse:
    _require_admin(account)
    return ReviewTargetResponse(profile_id=profile_id, target=service.pending_review(profile_id))


@router.post(
    "/admin/employer-profiles/{profile_id}/approve",
    response_model=DecisionResponse,
    responses=AUTH_ERRORS,
    summary="Approve a new profile or its pending edits",
)
async def approve_profile(
    profile_id: str,
    request_data: ApproveRequest,
    account: Account = Depends(get_current_account),
    service: ApprovalService = Depends(get_approval_service),
) -> DecisionResponse:
    decision = service.approve(account.id, profile_id, request_data.note)
    return _decided(profile_id, decision)


@router.post(
    "/admin/employer-profiles/{profile_id}/reject",
    response_model=DecisionResponse,
    responses=AUTH_ERRORS,
    summary="Reject a new profile or discard its pending edits",
)
async def reject_profile(
    profile_id: str,
    request_data: RejectRequest,
    account: Account = Depends(get_current_account),
    service: ApprovalService = Depends(get_approval_service),
) -> DecisionResponse:
    decision = service.reject(account.id, profile_id, request_data.reason)
    return _decided(profile_id, decision)


@router.get(
    "/admin/employer-profiles/{profile_id}/history",
    response_model=list[ApprovalLogResponse],
    responses=AUTH_ERRORS,
    summary="List admin decisions on a profile",
)
async def approval_history(
    profile_id: str,
    account: Account = Depends(get_current_account),
    service: ApprovalService = Depends(get_approval_service),
) -> list[ApprovalLogResponse]:
    _require_admin(account)
    return [ApprovalLogResponse.from_log(entry) for entry in service.history(profile_id)]


@router.post(
    "/admin/accounts/{account_id}/ban",
    response_model=AccountResponse,
    responses=AUTH_ERRORS,
    summary="Ban an account",
)
async def ban_account(
    account_id: str,
    account: Account = Depends(get_current_account),
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    return AccountResponse.from_account(service.ban(account.id, account_id))


@router.post(
    "/admin/accounts/{account_id}/unban",
    response_model=AccountResponse,
    responses=AUTH_ERRORS,
    summary="Lift a ban",
)
async def unban_account(
    account_id: str,
    account: Account = Depends(get_current_account),
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    return AccountResponse.from_account(service.unban(account.id, account_id))


def _require_admin(account: Account) -> None:
    # Read-only admin views; the services check admin rights on every write
    if account.role != UserRole.ADMIN or account.status != UserStatus.ACTIVE:
        raise Forbidden()
