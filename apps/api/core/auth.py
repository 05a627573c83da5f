"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- The shared profile store, credential directory and provisioning claims
- A per-request PortalClient reconciled from the bearer token
- The current member profile, and the administrator gate
"""
import asyncio
from typing import AsyncIterator, Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.exceptions import ForbiddenError, UnauthorizedError
from services.local_identity import CredentialDirectory, LocalIdentityGateway
from services.membership.access_control import MESSAGES, AccessReason
from services.membership.models import AccessStateKind, Profile, ProfileStatus
from services.membership.portal import PortalClient
from services.membership.profile_resolver import ProfileResolver, ProvisioningClaims
from services.membership.profile_store import ProfileStore, SqlProfileStore

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)

_profile_store: Optional[ProfileStore] = None
_credential_directory: Optional[CredentialDirectory] = None
_provisioning_claims = ProvisioningClaims()


def get_provisioning_claims() -> ProvisioningClaims:
    """Process-wide, so concurrent first sign-ins in separate requests cannot both become ADMIN."""
    return _provisioning_claims


def get_profile_store() -> ProfileStore:
    global _profile_store
    if _profile_store is None:
        _profile_store = SqlProfileStore()
    return _profile_store


def get_credential_directory() -> CredentialDirectory:
    global _credential_directory
    if _credential_directory is None:
        _credential_directory = CredentialDirectory()
    return _credential_directory


async def get_portal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    directory: CredentialDirectory = Depends(get_credential_directory),
    store: ProfileStore = Depends(get_profile_store),
    claims: ProvisioningClaims = Depends(get_provisioning_claims),
) -> AsyncIterator[PortalClient]:
    """
    A client root for this request, already reconciled.

    Anonymous requests get an UNAUTHENTICATED client; a bearer token that
    does not validate is rejected outright.
    """
    session = None
    if credentials:
        session = await asyncio.to_thread(directory.session_from_token, credentials.credentials)
        if session is None:
            raise UnauthorizedError("Invalid authentication credentials")

    resolver = ProfileResolver(store, claims=claims)
    portal = PortalClient(LocalIdentityGateway(directory, session=session), store, resolver=resolver)
    await portal.start()
    try:
        yield portal
    finally:
        await portal.stop()


def get_current_profile(portal: PortalClient = Depends(get_portal)) -> Profile:
    """
    The signed-in member's profile.

    Disabled accounts are refused on every authenticated endpoint, including
    /v1/auth/me.
    """
    state = portal.state
    if state.kind is AccessStateKind.REJECTED:
        raise ForbiddenError(MESSAGES[AccessReason.ACCOUNT_DISABLED], error_code="ACCOUNT_DISABLED")
    if state.kind is not AccessStateKind.AUTHENTICATED or state.profile is None:
        raise UnauthorizedError("Not authenticated")
    return state.profile


def require_admin(current_profile: Profile = Depends(get_current_profile)) -> Profile:
    """Require an ACTIVE administrator."""
    if not current_profile.is_admin or current_profile.status is not ProfileStatus.ACTIVE:
        raise ForbiddenError("Administrator rights required")
    return current_profile
