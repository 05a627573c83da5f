"""
Approval Workflow

Membership lifecycle transitions:

    request_membership   -> PENDING (COACH)
    approve              PENDING -> APPROVED, mails the activation link
    complete_activation  APPROVED (or PENDING) -> ACTIVE, sets the password
    toggle_status        ACTIVE <-> INACTIVE
    update_role          any role change

Administrator operations take the acting profile as ``actor`` and refuse to
touch the actor's own row. Every successful write refreshes the cached
listing and announces ``profile.updated``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from core import events
from core.exceptions import (
    AuthorizationError,
    DisabledAccountError,
    DuplicateRequest,
    InvalidTransition,
    ProfileNotFound,
    SelfModificationError,
    TransientStoreError,
    UniqueViolation,
)
from services import invite_service
from services.membership.identity_gateway import IdentityGateway
from services.membership.models import (
    Profile,
    ProfileRef,
    ProfileStatus,
    Role,
    default_display_name,
    normalize_email,
)
from services.membership.profile_store import ProfileStore

logger = logging.getLogger(__name__)

_TOGGLE = {
    ProfileStatus.ACTIVE: ProfileStatus.INACTIVE,
    ProfileStatus.INACTIVE: ProfileStatus.ACTIVE,
}


@dataclass
class ProfileListing:
    profiles: List[Profile] = field(default_factory=list)

    def with_status(self, status: ProfileStatus) -> List[Profile]:
        return [p for p in self.profiles if p.status is status]

    @property
    def pending(self) -> List[Profile]:
        return self.with_status(ProfileStatus.PENDING)

    @property
    def approved(self) -> List[Profile]:
        return self.with_status(ProfileStatus.APPROVED)

    @property
    def active(self) -> List[Profile]:
        return self.with_status(ProfileStatus.ACTIVE)

    @property
    def inactive(self) -> List[Profile]:
        return self.with_status(ProfileStatus.INACTIVE)

    def counts(self) -> Dict[str, int]:
        return {status.value: len(self.with_status(status)) for status in ProfileStatus}


class ProfileDirectory:
    """Cached administrator listing of all profiles."""

    def __init__(self, store: ProfileStore):
        self._store = store
        self._listing: Optional[ProfileListing] = None

    @property
    def cached(self) -> Optional[ProfileListing]:
        return self._listing

    async def listing(self) -> ProfileListing:
        if self._listing is None:
            return await self.refresh()
        return self._listing

    async def refresh(self) -> ProfileListing:
        self._listing = ProfileListing(await self._store.list_profiles())
        return self._listing

    def invalidate(self) -> None:
        self._listing = None


class ApprovalWorkflow:

    def __init__(
        self,
        store: ProfileStore,
        gateway: IdentityGateway,
        *,
        directory: Optional[ProfileDirectory] = None,
        link_builder: Optional[Callable[[str], str]] = None,
    ):
        self._store = store
        self._gateway = gateway
        self.directory = directory or ProfileDirectory(store)
        self._link_builder = link_builder or invite_service.build_activation_link

    # --- visitor operations ---------------------------------------------

    async def request_membership(self, email: str, name: Optional[str] = None) -> Profile:
        email = normalize_email(email)
        if not email:
            raise ValueError("email is required")
        request = Profile(
            email=email,
            name=default_display_name(email, name),
            role=Role.COACH,
            status=ProfileStatus.PENDING,
        )
        try:
            created = await self._store.insert(request)
        except UniqueViolation as e:
            raise DuplicateRequest() from e

        logger.info(f"Membership requested by {email}")
        await self._after_write(created, events.EVENT_PROFILE_CREATED)
        return created

    async def complete_activation(self, email: str, new_password: str) -> Profile:
        """Give the member a credential with ``new_password`` and mark the profile ACTIVE."""
        email = normalize_email(email)
        profile = await self._store.find_by_email(email)
        if profile is None:
            raise ProfileNotFound(email)
        if profile.status is ProfileStatus.INACTIVE:
            raise DisabledAccountError()

        session = await self._gateway.get_current_session()
        if session is not None and normalize_email(session.identity.email) == email:
            await self._gateway.update_password(new_password)
            identity = session.identity
        else:
            identity = await self._gateway.sign_up(email, new_password, display_name=profile.name)

        patch = {"status": ProfileStatus.ACTIVE}
        if identity.id and identity.id != profile.id:
            patch["id"] = identity.id
        updated = await self._update(ProfileRef.by_email(email), patch)

        logger.info(f"Activation completed for {email} (was {profile.status.value})")
        await self._after_write(updated)
        return updated

    # --- administrator operations ---------------------------------------

    async def approve(self, ref: ProfileRef, *, actor: Profile) -> Profile:
        self._authorize(actor)
        profile = await self._load(ref)
        if profile.status is not ProfileStatus.PENDING:
            logger.info(f"Approve ignored for {profile.email}: status is {profile.status.value}")
            return profile

        updated = await self._update(ProfileRef.of(profile), {"status": ProfileStatus.APPROVED})
        logger.info(f"{actor.email} approved {updated.email}")
        await self._after_write(updated)

        # Status stays APPROVED if the mail fails; the invite link can still be copied.
        await self._gateway.send_password_reset_email(updated.email, self._link_builder(updated.email))
        return updated

    async def toggle_status(self, ref: ProfileRef, *, actor: Profile) -> Profile:
        self._authorize(actor)
        self._refuse_self(ref, actor)
        profile = await self._load(ref)
        self._refuse_self(ProfileRef.of(profile), actor)

        target = _TOGGLE.get(profile.status)
        if target is None:
            raise InvalidTransition(f"Cannot toggle a {profile.status.value} profile")

        updated = await self._update(ProfileRef.of(profile), {"status": target})
        logger.info(f"{actor.email} set {updated.email} to {target.value}")
        await self._after_write(updated)
        return updated

    async def update_role(self, ref: ProfileRef, role: Role, *, actor: Profile) -> Profile:
        self._authorize(actor)
        self._refuse_self(ref, actor)
        profile = await self._load(ref)
        self._refuse_self(ProfileRef.of(profile), actor)

        updated = await self._update(ProfileRef.of(profile), {"role": Role(role)})
        logger.info(f"{actor.email} changed role of {updated.email} to {updated.role.value}")
        await self._after_write(updated)
        return updated

    async def activation_link(self, ref: ProfileRef, *, actor: Profile) -> str:
        self._authorize(actor)
        profile = await self._load(ref)
        return self._link_builder(profile.email)

    async def list_profiles(self, *, actor: Profile, refresh: bool = False) -> ProfileListing:
        self._authorize(actor)
        if refresh:
            return await self.directory.refresh()
        return await self.directory.listing()

    # --- helpers ---------------------------------------------------------

    @staticmethod
    def _authorize(actor: Optional[Profile]) -> None:
        if actor is None or not actor.is_admin or actor.status is not ProfileStatus.ACTIVE:
            raise AuthorizationError()

    @staticmethod
    def _refuse_self(ref: ProfileRef, actor: Profile) -> None:
        if ref.matches(actor):
            raise SelfModificationError()

    async def _load(self, ref: ProfileRef) -> Profile:
        profile = await self._store.find(ref)
        if profile is None:
            raise ProfileNotFound(str(ref))
        return profile

    async def _update(self, ref: ProfileRef, patch: Dict) -> Profile:
        updated = await self._store.update(ref, patch)
        if updated is None:
            raise ProfileNotFound(str(ref))
        return updated

    async def _after_write(self, profile: Profile, event_name: str = events.EVENT_PROFILE_UPDATED) -> None:
        try:
            await self.directory.refresh()
        except TransientStoreError as e:
            logger.warning(f"Profile listing refresh failed: {e}")
            self.directory.invalidate()
        events.emit(
            event_name,
            email=profile.email,
            role=profile.role.value,
            status=profile.status.value,
        )
