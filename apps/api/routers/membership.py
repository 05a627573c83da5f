"""
Membership requests.

Public endpoint behind the landing page's "become a member" form.
"""
from fastapi import APIRouter, Depends, status
import logging

from core.auth import get_portal
from core.exceptions import ConflictError, DuplicateRequest
from schemas import MembershipRequestCreate, ProfileResponse
from services.membership.portal import PortalClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/membership", tags=["membership"])


@router.post("/requests", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def request_membership(
    request: MembershipRequestCreate,
    portal: PortalClient = Depends(get_portal),
):
    """Record a PENDING coach profile for review by an administrator."""
    try:
        profile = await portal.request_membership(request.email, request.name)
    except DuplicateRequest as e:
        raise ConflictError(e.message, error_code="DUPLICATE_REQUEST")
    return ProfileResponse.from_profile(profile)
