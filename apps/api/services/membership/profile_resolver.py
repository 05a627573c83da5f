"""
Profile Resolver

Turns an authenticated identity into a Profile and never raises to the
caller:

1. Read the profile by identity id, then by email for rows created before
   the identity existed (membership requests).
2. Nothing stored: synthesize one. The very first profile in the store is an
   ACTIVE administrator, every later one a PENDING coach. The write happens
   in the background; the caller gets the synthesized profile immediately.
3. Read failed (unreachable store, timeout, recursive policy error): return a
   fallback built from identity claims alone, COACH/ACTIVE, and try to heal
   the store in the background.

One deadline covers the whole resolution (read, then count), so the fallback
arrives before the client's startup failsafe fires.

The first-administrator decision is claimed through ``ProvisioningClaims``
until its write lands. Resolvers that share one claims object (every request
of the HTTP process) cannot both provision an administrator from the same
empty store.

The fallback lets an already-authenticated member in rather than leaving the
client stuck, at the cost of trusting identity claims until the store
answers again. It never grants ADMIN.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Optional, Set

from core.config import settings
from core.exceptions import TransientStoreError
from services.membership.models import (
    Identity,
    Profile,
    ProfileRef,
    ProfileStatus,
    Role,
    default_display_name,
    normalize_email,
)
from services.membership.profile_store import CONFLICT_ID, ProfileStore

logger = logging.getLogger(__name__)

FALLBACK_ROLE = Role.COACH
FALLBACK_STATUS = ProfileStatus.ACTIVE


def synthesize_profile(identity: Identity, first: bool) -> Profile:
    return Profile(
        id=identity.id,
        email=normalize_email(identity.email),
        name=default_display_name(identity.email, identity.display_name),
        role=Role.ADMIN if first else Role.COACH,
        status=ProfileStatus.ACTIVE if first else ProfileStatus.PENDING,
    )


def fallback_profile(identity: Identity) -> Profile:
    return Profile(
        id=identity.id,
        email=normalize_email(identity.email),
        name=default_display_name(identity.email, identity.display_name),
        role=FALLBACK_ROLE,
        status=FALLBACK_STATUS,
    )


class ProvisioningClaims:
    """Who is being provisioned as the first administrator, until that write lands."""

    def __init__(self):
        self._lock = threading.Lock()
        self._first_admin: Optional[str] = None

    def claim_first(self, identity_id: str) -> bool:
        with self._lock:
            if self._first_admin is None:
                self._first_admin = identity_id
            return self._first_admin == identity_id

    def release(self, identity_id: str) -> None:
        with self._lock:
            if self._first_admin == identity_id:
                self._first_admin = None

    @property
    def holder(self) -> Optional[str]:
        return self._first_admin


class ProfileResolver:

    def __init__(
        self,
        store: ProfileStore,
        *,
        fetch_timeout_s: Optional[float] = None,
        claims: Optional[ProvisioningClaims] = None,
    ):
        self._store = store
        self._timeout = fetch_timeout_s if fetch_timeout_s is not None else settings.PROFILE_FETCH_TIMEOUT_S
        self._claims = claims or ProvisioningClaims()
        self._background: Set[asyncio.Task] = set()

    async def resolve(self, identity: Identity) -> Profile:
        try:
            return await asyncio.wait_for(self._resolve(identity), timeout=self._timeout)
        except asyncio.TimeoutError:
            error = TransientStoreError(f"Profile resolution timed out after {self._timeout}s")
            return self._fall_back(identity, error)

    async def _resolve(self, identity: Identity) -> Profile:
        try:
            profile = await self._lookup(identity)
        except Exception as e:
            return self._fall_back(identity, e)

        if profile is not None:
            if not profile.id:
                # Membership request row: link it to the identity that just signed in
                profile = profile.with_changes(id=identity.id)
                self._spawn(self._link(profile), "link identity to profile")
            return profile

        try:
            return await self._provision(identity)
        except Exception as e:
            return self._fall_back(identity, e)

    async def drain(self) -> None:
        """Wait for background writes (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @property
    def pending_writes(self) -> int:
        return len(self._background)

    async def _timed(self, awaitable: Awaitable, what: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise TransientStoreError(f"Profile store {what} timed out after {self._timeout}s") from e

    async def _lookup(self, identity: Identity) -> Optional[Profile]:
        profile = await self._store.find_by_id(identity.id)
        if profile is None and identity.email:
            profile = await self._store.find_by_email(identity.email)
        return profile

    async def _read(self, identity: Identity) -> Optional[Profile]:
        return await self._timed(self._lookup(identity), "read")

    def _is_first(self, identity: Identity, total: int) -> bool:
        return total == 0 and self._claims.claim_first(identity.id)

    async def _provision(self, identity: Identity) -> Profile:
        total = await self._store.count()
        profile = synthesize_profile(identity, first=self._is_first(identity, total))
        logger.info(
            "Provisioning profile",
            extra={"extra_fields": {"email": profile.email, "role": profile.role.value, "status": profile.status.value}},
        )
        self._spawn(self._persist(profile), "persist provisioned profile")
        return profile

    async def _persist(self, profile: Profile) -> None:
        try:
            await self._store.upsert(profile, CONFLICT_ID)
        finally:
            self._claims.release(profile.id)

    def _fall_back(self, identity: Identity, error: Exception) -> Profile:
        if isinstance(error, TransientStoreError):
            logger.warning(f"Profile store unavailable, using fallback profile: {error}")
        else:
            logger.exception("Unexpected profile resolution failure, using fallback profile")
        self._spawn(self._heal(identity), "heal profile store")
        return fallback_profile(identity)

    async def _link(self, profile: Profile) -> None:
        await self._store.update(ProfileRef.by_email(profile.email), {"id": profile.id})

    async def _heal(self, identity: Identity) -> None:
        # The fallback itself is never written: the store gets what provisioning would have produced.
        if await self._read(identity) is not None:
            return
        total = await self._timed(self._store.count(), "count")
        await self._persist(synthesize_profile(identity, first=self._is_first(identity, total)))

    def _spawn(self, awaitable: Awaitable, what: str) -> None:
        async def runner() -> None:
            try:
                await awaitable
            except Exception as e:
                # Retried on the next reconciliation of this identity.
                logger.warning(f"Background profile write failed ({what}): {e}")

        task = asyncio.ensure_future(runner())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
