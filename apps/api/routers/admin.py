"""
Admin API Router

Membership administration: review requests, approve, disable/re-enable,
change roles, copy invite links. Active administrators only.
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import List
import logging

from core.auth import get_portal, require_admin
from core.database import get_db
from schemas import ActivationLinkResponse, ProfileListingResponse, ProfileResponse, RoleUpdate
from services.admin_audit import list_audit_events, record_admin_audit_event
from services.membership.approval_workflow import ProfileListing
from services.membership.models import Profile
from services.membership.portal import PortalClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


def _listing_response(listing: ProfileListing) -> ProfileListingResponse:
    def convert(profiles: List[Profile]) -> List[ProfileResponse]:
        return [ProfileResponse.from_profile(p) for p in profiles]

    return ProfileListingResponse(
        profiles=convert(listing.profiles),
        counts=listing.counts(),
        pending=convert(listing.pending),
        approved=convert(listing.approved),
        active=convert(listing.active),
        inactive=convert(listing.inactive),
    )


@router.get("/profiles", response_model=ProfileListingResponse)
async def list_profiles(
    refresh: bool = Query(default=False),
    current_user: Profile = Depends(require_admin),
    portal: PortalClient = Depends(get_portal),
):
    """All profiles, pending requests first."""
    listing = await portal.list_profiles(refresh=refresh)
    return _listing_response(listing)


@router.post("/profiles/{email}/approve", response_model=ProfileResponse)
async def approve_profile(
    email: str,
    http_request: Request,
    current_user: Profile = Depends(require_admin),
    portal: PortalClient = Depends(get_portal),
    db: Session = Depends(get_db),
):
    """
    Approve a pending membership request and mail the activation link.

    Approving a profile that is no longer pending changes nothing.
    """
    before = await portal.store.find_by_email(email)
    profile = await portal.approve(email)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="profile.approve",
        target_email=profile.email,
        payload={
            "before": before.status.value if before else None,
            "after": profile.status.value,
        },
    )
    return ProfileResponse.from_profile(profile)


@router.post("/profiles/{email}/toggle-status", response_model=ProfileResponse)
async def toggle_profile_status(
    email: str,
    http_request: Request,
    current_user: Profile = Depends(require_admin),
    portal: PortalClient = Depends(get_portal),
    db: Session = Depends(get_db),
):
    """Disable an active account, or re-enable a disabled one. Not allowed on yourself."""
    profile = await portal.toggle_status(email)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="profile.toggle_status",
        target_email=profile.email,
        payload={"after": profile.status.value},
    )
    return ProfileResponse.from_profile(profile)


@router.post("/profiles/{email}/role", response_model=ProfileResponse)
async def update_profile_role(
    email: str,
    request: RoleUpdate,
    http_request: Request,
    current_user: Profile = Depends(require_admin),
    portal: PortalClient = Depends(get_portal),
    db: Session = Depends(get_db),
):
    """Change a member's role. Not allowed on yourself."""
    profile = await portal.update_role(email, request.role)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="profile.role.set",
        target_email=profile.email,
        payload={"role": profile.role.value},
    )
    return ProfileResponse.from_profile(profile)


@router.get("/profiles/{email}/activation-link", response_model=ActivationLinkResponse)
async def get_activation_link(
    email: str,
    current_user: Profile = Depends(require_admin),
    portal: PortalClient = Depends(get_portal),
):
    """The invite link to copy and send by other means."""
    link = await portal.activation_link(email)
    return ActivationLinkResponse(email=email.strip().lower(), activation_url=link)


@router.get("/profiles/{email}/audit")
def get_profile_audit(
    email: str,
    limit: int = Query(default=50, ge=1, le=500),
    current_user: Profile = Depends(require_admin),
    db: Session = Depends(get_db),
):
    events = list_audit_events(db, email, limit=limit)
    return [
        {
            "created_at": ev.created_at.isoformat() if ev.created_at else None,
            "actor_email": ev.actor_email,
            "action": ev.action,
            "target_email": ev.target_email,
            "payload": ev.payload,
        }
        for ev in events
    ]
