"""
Session Reconciler

Owns the single AccessState of a running client and derives it from the
identity provider's signals: the one-shot startup probe, the change
notification stream, and explicit refresh requests.

Ordering: every trigger takes a new reconciliation token at the moment it
happens. A result may only be committed while its token is still the latest
one, so the visible state always follows the most recently triggered event,
whatever order the underlying I/O completes in. Stale results are dropped.

Re-entrancy: profile resolution is shared per identity. A trigger that
arrives while a resolution for the same identity is in flight joins it
instead of starting a second fetch (and a second create-if-absent write);
the joined result is committed under the newer token.

Startup: the probe races a failsafe timer. If the timer wins, the client
leaves CHECKING as UNAUTHENTICATED and the probe's late result is ignored.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from core.config import settings
from services.membership.access_control import AccessController
from services.membership.identity_gateway import IdentityGateway
from services.membership.models import (
    AccessState,
    AccessStateKind,
    Identity,
    Profile,
    Session,
    SessionEvent,
)
from services.membership.profile_resolver import ProfileResolver

logger = logging.getLogger(__name__)

StateListener = Callable[[AccessState], None]

REASON_PROBE_TIMEOUT = "session check timed out"
REASON_PROBE_FAILED = "session check failed"
REASON_RESOLUTION_FAILED = "profile resolution failed"


class SessionReconciler:

    def __init__(
        self,
        gateway: IdentityGateway,
        resolver: ProfileResolver,
        *,
        access: Optional[AccessController] = None,
        failsafe_timeout_s: Optional[float] = None,
    ):
        self._gateway = gateway
        self._resolver = resolver
        self._access = access or AccessController(gateway)
        self._failsafe_timeout_s = (
            failsafe_timeout_s if failsafe_timeout_s is not None else settings.SESSION_FAILSAFE_TIMEOUT_S
        )
        self._state = AccessState.uninitialized()
        self._token = 0
        self._listeners: List[StateListener] = []
        self._inflight: Dict[str, asyncio.Future] = {}
        self._resolving: Optional[Identity] = None
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    # --- observation -----------------------------------------------------

    @property
    def state(self) -> AccessState:
        return self._state

    @property
    def token(self) -> int:
        return self._token

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- lifecycle -------------------------------------------------------

    async def start(self) -> AccessState:
        """Subscribe to change notifications and run the startup probe against the failsafe."""
        if self._unsubscribe is not None:
            raise RuntimeError("SessionReconciler already started")

        token = self._advance("startup")
        self._commit(token, AccessState.checking())
        self._unsubscribe = self._gateway.on_session_change(self._on_session_change)

        probe = self._spawn(self._probe(token))
        done, _pending = await asyncio.wait({probe}, timeout=self._failsafe_timeout_s)
        if not done and self._token == token:
            logger.warning(
                "Startup session probe exceeded failsafe; leaving loading state",
                extra={"extra_fields": {"timeout_s": self._failsafe_timeout_s}},
            )
            # The probe keeps running; advancing the token turns its result into a no-op.
            self._commit(self._advance("failsafe"), AccessState.unauthenticated(REASON_PROBE_TIMEOUT))
        return self._state

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def settle(self) -> AccessState:
        """Wait until no reconciliation work is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return self._state

    # --- triggers --------------------------------------------------------

    async def refresh(self) -> AccessState:
        """Re-derive the state from the current session (after login, workflow changes, ...)."""
        token = self._advance("refresh")
        try:
            session = await self._gateway.get_current_session()
        except Exception as e:
            logger.warning(f"Session lookup failed during refresh: {e}")
            await self._recover(token)
            return self._state
        await self._apply_session(token, session)
        return self._state

    async def _recover(self, token: int) -> None:
        # This token superseded any reconciliation still running, so it has to settle the state itself.
        pending = self._resolving
        if pending is not None:
            await self._reconcile(token, pending)
        elif self._state.kind in (AccessStateKind.UNINITIALIZED, AccessStateKind.CHECKING):
            self._commit(token, AccessState.unauthenticated(REASON_PROBE_FAILED))

    def request_refresh(self) -> None:
        """Fire-and-forget variant of ``refresh`` for synchronous callers."""
        self._spawn(self.refresh())

    def assume(self, profile: Profile) -> AccessState:
        """Commit a locally constructed profile (demo accounts) as the newest event."""
        self._resolving = None
        self._commit(self._advance("assume"), AccessState.authenticated(profile))
        return self._state

    def acknowledge_rejection(self) -> AccessState:
        """Leave REJECTED once the member has seen the message."""
        if self._state.kind is AccessStateKind.REJECTED:
            self._commit(self._advance("acknowledge"), AccessState.unauthenticated())
        return self._state

    def _on_session_change(self, event: SessionEvent, session: Optional[Session]) -> None:
        # Token is taken now, in notification order, not when the task gets scheduled.
        token = self._advance(event.value)
        if session is None:
            self._signed_out(token)
        else:
            self._resolving = session.identity
            self._spawn(self._reconcile(token, session.identity))

    # --- reconciliation --------------------------------------------------

    async def _probe(self, token: int) -> None:
        try:
            session = await self._gateway.get_current_session()
        except Exception as e:
            logger.warning(f"Startup session probe failed: {e}")
            self._commit(token, AccessState.unauthenticated(REASON_PROBE_FAILED))
            return
        await self._apply_session(token, session)

    async def _apply_session(self, token: int, session: Optional[Session]) -> None:
        if session is None:
            self._signed_out(token)
        else:
            await self._reconcile(token, session.identity)

    def _signed_out(self, token: int) -> None:
        self._resolving = None
        if self._state.kind is AccessStateKind.REJECTED:
            # Forced sign-out of a disabled account: keep the explanation visible.
            self._commit(token, self._state)
        else:
            self._commit(token, AccessState.unauthenticated())

    async def _reconcile(self, token: int, identity: Identity) -> None:
        current = self._state
        already_in = (
            current.kind is AccessStateKind.AUTHENTICATED
            and current.profile is not None
            and current.profile.id == identity.id
        )
        if not already_in:
            self._commit(token, AccessState.checking())
        if self._is_current(token):
            self._resolving = identity

        try:
            profile = await self._resolve_shared(identity)
        except Exception:
            logger.exception("Profile resolution raised; treating visitor as signed out")
            if self._commit(token, AccessState.unauthenticated(REASON_RESOLUTION_FAILED)):
                self._resolving = None
            return

        if not self._is_current(token):
            logger.debug(
                "Discarding superseded reconciliation",
                extra={"extra_fields": {"token": token, "latest": self._token, "email": identity.email}},
            )
            return

        self._resolving = None
        decision = self._access.evaluate(profile)
        if decision.force_sign_out:
            self._commit(token, AccessState.rejected(decision.reason.value, profile))
            try:
                await self._access.enforce(profile, decision)
            except Exception as e:
                logger.warning(f"Forced sign-out failed: {e}")
            return

        self._commit(token, AccessState.authenticated(profile))

    async def _resolve_shared(self, identity: Identity) -> Profile:
        future = self._inflight.get(identity.id)
        if future is None:
            future = asyncio.ensure_future(self._resolver.resolve(identity))
            self._inflight[identity.id] = future
            future.add_done_callback(lambda f, key=identity.id: self._forget(key, f))
        else:
            logger.debug(
                "Joining in-flight profile resolution",
                extra={"extra_fields": {"email": identity.email}},
            )
        # Shielded: one waiter being cancelled must not cancel the shared fetch.
        return await asyncio.shield(future)

    def _forget(self, key: str, future: asyncio.Future) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]

    # --- token discipline ------------------------------------------------

    def _advance(self, trigger: str) -> int:
        self._token += 1
        logger.debug(
            "Reconciliation triggered",
            extra={"extra_fields": {"token": self._token, "trigger": trigger}},
        )
        return self._token

    def _is_current(self, token: int) -> bool:
        return token == self._token

    def _commit(self, token: int, state: AccessState) -> bool:
        if not self._is_current(token):
            return False
        if state == self._state:
            return True
        previous = self._state
        self._state = state
        logger.info(
            f"Access state {previous.kind.value} -> {state.kind.value}",
            extra={"extra_fields": {
                "token": token,
                "reason": state.reason,
                "email": state.profile.email if state.profile else None,
            }},
        )
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Access state listener failed")
        return True

    def _spawn(self, coro) -> asyncio.Task:
        async def guarded() -> None:
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Reconciliation task failed")

        task = asyncio.ensure_future(guarded())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
