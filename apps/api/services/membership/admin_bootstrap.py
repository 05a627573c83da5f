"""
Admin Bootstrap

Makes sure an administrator exists. Runs at startup, independent of any
visitor, with its own identity gateway so the operator credentials never
become a visitor's session. Safe to run repeatedly: once any ADMIN profile
exists it does nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from core.config import settings
from core.exceptions import BootstrapError, IdentityError, TransientStoreError, UniqueViolation
from services.membership.identity_gateway import IdentityGateway
from services.membership.models import Identity, Profile, ProfileStatus, Role, normalize_email
from services.membership.profile_store import CONFLICT_EMAIL, CONFLICT_ID, ProfileStore

logger = logging.getLogger(__name__)


class AdminBootstrap:

    def __init__(
        self,
        store: ProfileStore,
        gateway: IdentityGateway,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
        name: Optional[str] = None,
    ):
        self._store = store
        self._gateway = gateway
        self._email = normalize_email(email if email is not None else settings.ADMIN_EMAIL)
        self._password = password if password is not None else settings.ADMIN_PASSWORD
        self._name = name or settings.ADMIN_NAME
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self._email and self._password)

    async def run(self) -> Optional[Profile]:
        """Startup entry point: failures are logged, never raised."""
        try:
            return await self.ensure_admin()
        except BootstrapError as e:
            logger.error(f"Admin bootstrap did not run: {e.message}")
            return None

    async def ensure_admin(self) -> Optional[Profile]:
        """Create the administrator if none exists. Returns it, or None when nothing was done."""
        async with self._lock:
            try:
                admins = await self._store.count(role=Role.ADMIN)
            except TransientStoreError as e:
                raise BootstrapError(f"Could not check for administrators: {e.message}") from e

            if admins > 0:
                logger.debug("Administrator present; bootstrap not needed")
                return None
            if not self.configured:
                logger.warning("No administrator exists and ADMIN_EMAIL/ADMIN_PASSWORD are not set; skipping bootstrap")
                return None

            logger.info(f"No administrator found, bootstrapping {self._email}")
            identity = await self._authenticate()
            try:
                profile = Profile(
                    id=identity.id,
                    email=self._email,
                    name=self._name,
                    role=Role.ADMIN,
                    status=ProfileStatus.ACTIVE,
                )
                await self._persist(profile)
            finally:
                await self._release_session()

            logger.info(f"Administrator {self._email} bootstrapped")
            return profile

    async def _authenticate(self) -> Identity:
        try:
            session = await self._gateway.sign_in_with_password(self._email, self._password)
            return session.identity
        except IdentityError as sign_in_error:
            logger.info(f"Administrator sign-in failed ({sign_in_error.message}); signing up instead")
        except TransientStoreError as e:
            raise BootstrapError(f"Could not sign in {self._email}: {e.message}") from e

        try:
            return await self._gateway.sign_up(self._email, self._password, display_name=self._name)
        except (IdentityError, TransientStoreError) as e:
            raise BootstrapError(f"Could not sign in or sign up {self._email}: {e.message}") from e

    async def _persist(self, profile: Profile) -> None:
        try:
            await self._store.upsert(profile, CONFLICT_ID)
            return
        except UniqueViolation:
            # A row for this email exists without the identity id (e.g. an earlier membership request)
            logger.info(f"Profile for {profile.email} exists under another key; upserting by email")
        except TransientStoreError as e:
            raise BootstrapError(f"Could not store administrator profile: {e.message}") from e

        try:
            await self._store.upsert(profile, CONFLICT_EMAIL)
        except (UniqueViolation, TransientStoreError) as e:
            raise BootstrapError(f"Could not store administrator profile: {e.message}") from e

    async def _release_session(self) -> None:
        try:
            if await self._gateway.get_current_session() is not None:
                await self._gateway.sign_out()
        except Exception as e:
            logger.warning(f"Could not sign out bootstrap session: {e}")
