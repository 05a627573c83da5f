"""
Authentication API endpoints.

Provides:
- Login (session token + reconciled access state)
- Current member (/me)
- Activation: set the password from an activation link
- Password strength feedback for the set-password form
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
import logging

from core.auth import get_current_profile, get_portal
from core.config import settings
from core.exceptions import (
    ForbiddenError,
    IdentityError,
    PasswordPolicyError,
    UnauthorizedError,
    ValidationError,
)
from core.password_policy import get_password_requirements_text, password_checks, password_strength
from schemas import (
    AccessResponse,
    ActivationRequest,
    LoginRequest,
    MeResponse,
    PasswordStrengthResponse,
    ProfileResponse,
    TokenResponse,
)
from services.invite_service import build_activation_link, verify_activation_token
from services.membership.access_control import MESSAGES, AccessReason, evaluate_access
from services.membership.models import AccessStateKind, Profile
from services.membership.portal import PortalClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


class PasswordCheckRequest(BaseModel):
    password: str


def access_response(portal: PortalClient) -> AccessResponse:
    state = portal.state
    decision = None
    if state.kind is AccessStateKind.AUTHENTICATED and state.profile is not None:
        decision = evaluate_access(state.profile)
    return AccessResponse(
        state=state.kind.value,
        enterable=bool(decision and decision.enterable),
        reason=decision.reason.value if decision else state.reason,
        message=portal.message,
        screen=portal.screen.value,
    )


@router.post("/login", response_model=TokenResponse)
async def login(credentials: LoginRequest, portal: PortalClient = Depends(get_portal)):
    """
    Sign in with email and password.

    Failed sign-ins explain pending or not-yet-activated memberships.
    Disabled accounts are signed out again immediately and refused.
    """
    try:
        state = await portal.login(credentials.email, credentials.password)
    except IdentityError as e:
        logger.info(f"Login failed for {credentials.email}: {e.message}")
        raise UnauthorizedError(e.message)

    if state.kind is AccessStateKind.REJECTED:
        raise ForbiddenError(MESSAGES[AccessReason.ACCOUNT_DISABLED], error_code="ACCOUNT_DISABLED")

    session = await portal.gateway.get_current_session()
    if state.kind is not AccessStateKind.AUTHENTICATED or session is None:
        raise UnauthorizedError("Sign-in could not be completed")

    return TokenResponse(
        access_token=session.access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        profile=ProfileResponse.from_profile(state.profile),
        access=access_response(portal),
    )


@router.get("/me", response_model=MeResponse)
async def me(
    current_profile: Profile = Depends(get_current_profile),
    portal: PortalClient = Depends(get_portal),
):
    return MeResponse(
        profile=ProfileResponse.from_profile(current_profile),
        access=access_response(portal),
    )


@router.post("/activate", response_model=ProfileResponse)
async def activate(request: ActivationRequest, portal: PortalClient = Depends(get_portal)):
    """
    Complete activation from the emailed link.

    The token must have been issued for this email. The new password must
    satisfy the password policy.
    """
    if request.password_confirm is not None and request.password_confirm != request.password:
        raise ValidationError("Passwords do not match", field="password_confirm")
    if verify_activation_token(request.token, request.email) is None:
        raise UnauthorizedError("Invalid or expired activation link")

    portal.handle_location(build_activation_link(request.email, token=request.token))
    try:
        profile = await portal.set_password(request.password)
    except PasswordPolicyError as e:
        raise ValidationError(e.message, field="password")

    logger.info(f"Account activated for {profile.email}")
    return ProfileResponse.from_profile(profile)


@router.post("/password-strength", response_model=PasswordStrengthResponse)
async def check_password_strength(request: PasswordCheckRequest):
    score, label = password_strength(request.password)
    return PasswordStrengthResponse(
        score=score,
        label=label,
        checks=password_checks(request.password),
        requirements=get_password_requirements_text(),
    )
