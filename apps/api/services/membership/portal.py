"""
Client application root.

One ``PortalClient`` per visitor: it owns the session reconciler (the only
writer of the AccessState) and wires the resolver, access controller,
approval workflow and view router around it. Everything else only asks the
reconciler to re-check; nothing here sets the state directly.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from core import events
from core.config import settings
from core.exceptions import IdentityError, PasswordPolicyError, PortalError
from core.password_policy import validate_password
from services.membership.access_control import MESSAGES, AccessController, AccessReason
from services.membership.approval_workflow import ApprovalWorkflow, ProfileDirectory, ProfileListing
from services.membership.identity_gateway import IdentityGateway
from services.membership.models import (
    AccessState,
    AccessStateKind,
    Profile,
    ProfileRef,
    ProfileStatus,
    Role,
    normalize_email,
)
from services.membership.profile_resolver import ProfileResolver
from services.membership.profile_store import ProfileStore
from services.membership.session_reconciler import SessionReconciler
from services.membership.view_router import Screen, message_for, parse_activation_link, route

logger = logging.getLogger(__name__)

DEMO_PROFILES = {
    Role.ADMIN: Profile(
        id="demo-admin", email="admin@demo.be", name="Demo Admin",
        role=Role.ADMIN, status=ProfileStatus.ACTIVE,
    ),
    Role.COACH: Profile(
        id="demo-coach", email="coach@demo.be", name="Demo Coach",
        role=Role.COACH, status=ProfileStatus.ACTIVE,
    ),
}

_FAILED_LOGIN_MESSAGES = {
    ProfileStatus.PENDING: MESSAGES[AccessReason.AWAITING_REVIEW],
    ProfileStatus.APPROVED: MESSAGES[AccessReason.ACTIVATION_REQUIRED],
}


class PortalClient:

    def __init__(
        self,
        gateway: IdentityGateway,
        store: ProfileStore,
        *,
        resolver: Optional[ProfileResolver] = None,
        failsafe_timeout_s: Optional[float] = None,
        demo_enabled: Optional[bool] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.resolver = resolver or ProfileResolver(store)
        self.access = AccessController(gateway)
        self.reconciler = SessionReconciler(
            gateway, self.resolver, access=self.access, failsafe_timeout_s=failsafe_timeout_s,
        )
        self.directory = ProfileDirectory(store)
        self.workflow = ApprovalWorkflow(store, gateway, directory=self.directory)
        self.demo_enabled = settings.DEMO_LOGIN_ENABLED if demo_enabled is None else demo_enabled

        self.requested_screen: Optional[Screen] = None
        self.activation_email: Optional[str] = None
        self.activation_token: Optional[str] = None
        self._unsubscribe_events: Optional[Callable[[], None]] = None

    # --- state -----------------------------------------------------------

    @property
    def state(self) -> AccessState:
        return self.reconciler.state

    @property
    def screen(self) -> Screen:
        return route(self.state, self.requested_screen, self.activation_email)

    @property
    def message(self) -> Optional[str]:
        return message_for(self.state)

    def subscribe(self, listener: Callable[[AccessState], None]) -> Callable[[], None]:
        return self.reconciler.subscribe(listener)

    # --- lifecycle -------------------------------------------------------

    async def start(self, location: Optional[str] = None) -> AccessState:
        if location:
            self.handle_location(location)
        self._unsubscribe_events = events.subscribe(events.EVENT_PROFILE_UPDATED, self._on_profile_updated)
        return await self.reconciler.start()

    async def stop(self) -> None:
        if self._unsubscribe_events is not None:
            self._unsubscribe_events()
            self._unsubscribe_events = None
        await self.reconciler.stop()
        await self.resolver.drain()

    async def settle(self) -> AccessState:
        state = await self.reconciler.settle()
        await self.resolver.drain()
        return state

    def handle_location(self, location: str) -> str:
        """Pick up a pending activation from the address; returns the address to show instead."""
        link = parse_activation_link(location)
        if link.email:
            self.activation_email = link.email
            self.activation_token = link.token
            logger.info(f"Activation link opened for {link.email}")
        return link.clean_url

    def navigate(self, screen: Screen) -> Screen:
        self.requested_screen = screen
        return self.screen

    # --- visitor actions -------------------------------------------------

    async def login(self, email: str, password: str) -> AccessState:
        """
        Sign in; the resulting session notification drives reconciliation.

        Failures raise IdentityError with a message that reflects the
        membership status when one is known; the AccessState is unchanged.
        """
        try:
            await self.gateway.sign_in_with_password(email, password)
        except IdentityError as e:
            raise IdentityError(await self._failed_login_message(email, e)) from e
        return await self.reconciler.settle()

    async def logout(self) -> AccessState:
        await self.gateway.sign_out()
        await self.reconciler.settle()
        self.requested_screen = None
        return self.reconciler.acknowledge_rejection()

    async def request_membership(self, email: str, name: Optional[str] = None) -> Profile:
        return await self.workflow.request_membership(email, name)

    async def set_password(self, password: str) -> Profile:
        """Finish the pending activation with ``password``."""
        if not self.activation_email:
            raise IdentityError("There is no pending activation")
        ok, errors = validate_password(password)
        if not ok:
            raise PasswordPolicyError(errors)

        if self.activation_token:
            # Existing credential (password reset): the update needs its session
            await self.gateway.exchange_recovery_token(self.activation_token)
        profile = await self.workflow.complete_activation(self.activation_email, password)
        self.cancel_activation()
        return profile

    def cancel_activation(self) -> None:
        self.activation_email = None
        self.activation_token = None

    def enter_demo(self, role: Role) -> AccessState:
        if not self.demo_enabled:
            raise IdentityError("Demo login is disabled")
        return self.reconciler.assume(DEMO_PROFILES[Role(role)])

    def dismiss(self) -> AccessState:
        """Acknowledge the disabled-account message."""
        return self.reconciler.acknowledge_rejection()

    # --- administrator actions -------------------------------------------

    async def list_profiles(self, refresh: bool = False) -> ProfileListing:
        return await self.workflow.list_profiles(actor=self._actor(), refresh=refresh)

    async def approve(self, email: str) -> Profile:
        return await self.workflow.approve(ProfileRef.by_email(email), actor=self._actor())

    async def toggle_status(self, email: str) -> Profile:
        return await self.workflow.toggle_status(ProfileRef.by_email(email), actor=self._actor())

    async def update_role(self, email: str, role: Role) -> Profile:
        return await self.workflow.update_role(ProfileRef.by_email(email), role, actor=self._actor())

    async def activation_link(self, email: str) -> str:
        return await self.workflow.activation_link(ProfileRef.by_email(email), actor=self._actor())

    # --- internals -------------------------------------------------------

    def _actor(self) -> Optional[Profile]:
        state = self.state
        if state.kind is AccessStateKind.AUTHENTICATED:
            return state.profile
        return None

    async def _failed_login_message(self, email: str, error: IdentityError) -> str:
        try:
            profile = await self.store.find_by_email(email)
        except PortalError as e:
            logger.warning(f"Could not look up profile after failed login: {e}")
            return error.message
        if profile is None:
            return error.message
        return _FAILED_LOGIN_MESSAGES.get(profile.status, error.message)

    def _on_profile_updated(self, email: Optional[str] = None, **_kwargs) -> None:
        current = self.state.profile
        if current is not None and normalize_email(current.email) == normalize_email(email):
            logger.debug("Signed-in profile changed; requesting reconciliation")
            self.reconciler.request_refresh()
