"""
Session reconciliation: ordering, re-entrancy, failsafe and forced sign-out.

Store reads are given per-identity delays so that later events can finish
before earlier ones; the visible state must still follow the last event.
"""
import asyncio

import pytest

from core.exceptions import RecursivePolicyError
from services.membership.models import (
    AccessState,
    AccessStateKind,
    Identity,
    Profile,
    ProfileStatus,
    Role,
    Session,
    SessionEvent,
)
from services.membership.profile_resolver import ProfileResolver
from services.membership.session_reconciler import REASON_PROBE_FAILED, REASON_PROBE_TIMEOUT, SessionReconciler
from tests.membership_fakes import FakeIdentityGateway, FakeProfileStore


SLOW = Identity(id="slow", email="slow@x.com")
FAST = Identity(id="fast", email="fast@x.com")


def _member(identity: Identity, status=ProfileStatus.ACTIVE, role=Role.COACH) -> Profile:
    return Profile(id=identity.id, email=identity.email, name=identity.email.split("@")[0], role=role, status=status)


def _reconciler(gateway, store, failsafe=1.0):
    resolver = ProfileResolver(store, fetch_timeout_s=1.0)
    return SessionReconciler(gateway, resolver, failsafe_timeout_s=failsafe)


@pytest.mark.asyncio
async def test_startup_without_session_is_unauthenticated():
    gateway = FakeIdentityGateway()
    reconciler = _reconciler(gateway, FakeProfileStore())

    assert reconciler.state.kind is AccessStateKind.UNINITIALIZED
    state = await reconciler.start()

    assert state.kind is AccessStateKind.UNAUTHENTICATED
    await reconciler.stop()


@pytest.mark.asyncio
async def test_startup_with_session_authenticates_stored_profile():
    gateway = FakeIdentityGateway(session=Session(access_token="t", identity=FAST))
    store = FakeProfileStore(_member(FAST))
    reconciler = _reconciler(gateway, store)

    seen = []
    reconciler.subscribe(lambda s: seen.append(s.kind))
    state = await reconciler.start()

    assert state.kind is AccessStateKind.AUTHENTICATED
    assert state.profile.email == "fast@x.com"
    assert seen == [AccessStateKind.CHECKING, AccessStateKind.AUTHENTICATED]
    await reconciler.stop()


@pytest.mark.asyncio
async def test_failsafe_leaves_checking_when_probe_hangs():
    gateway = FakeIdentityGateway()
    gateway.hang_session = True
    reconciler = _reconciler(gateway, FakeProfileStore(), failsafe=0.05)

    state = await asyncio.wait_for(reconciler.start(), timeout=2)

    assert state.kind is AccessStateKind.UNAUTHENTICATED
    assert state.reason == REASON_PROBE_TIMEOUT
    await reconciler.stop()


@pytest.mark.asyncio
async def test_late_probe_result_is_discarded_after_failsafe():
    gateway = FakeIdentityGateway(session=Session(access_token="t", identity=FAST))
    gateway.session_delay = 0.2
    reconciler = _reconciler(gateway, FakeProfileStore(_member(FAST)), failsafe=0.05)

    await reconciler.start()
    await asyncio.sleep(0.3)
    await reconciler.settle()

    assert reconciler.state.kind is AccessStateKind.UNAUTHENTICATED
    await reconciler.stop()


@pytest.mark.asyncio
async def test_event_after_failsafe_still_reconciles():
    gateway = FakeIdentityGateway()
    gateway.session_delay = 0.2
    reconciler = _reconciler(gateway, FakeProfileStore(_member(FAST)), failsafe=0.05)

    await reconciler.start()
    gateway.sign_in_as(FAST)
    await reconciler.settle()

    assert reconciler.state.kind is AccessStateKind.AUTHENTICATED
    await reconciler.stop()


SEQUENCES = [
    # (events in trigger order, expected final kind, expected email)
    ([("in", SLOW), ("in", FAST)], AccessStateKind.AUTHENTICATED, "fast@x.com"),
    ([("in", FAST), ("in", SLOW)], AccessStateKind.AUTHENTICATED, "slow@x.com"),
    ([("in", SLOW), ("out", None)], AccessStateKind.UNAUTHENTICATED, None),
    ([("out", None), ("in", SLOW)], AccessStateKind.AUTHENTICATED, "slow@x.com"),
    ([("in", SLOW), ("out", None), ("in", FAST)], AccessStateKind.AUTHENTICATED, "fast@x.com"),
    ([("in", FAST), ("in", SLOW), ("out", None)], AccessStateKind.UNAUTHENTICATED, None),
    ([("in", SLOW), ("in", FAST), ("in", SLOW)], AccessStateKind.AUTHENTICATED, "slow@x.com"),
]


@pytest.mark.asyncio
@pytest.mark.parametrize("events,expected_kind,expected_email", SEQUENCES)
async def test_last_triggered_event_wins_regardless_of_completion_order(events, expected_kind, expected_email):
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(SLOW), _member(FAST))
    store.read_delays = {"slow": 0.08, "fast": 0.01}
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    for kind, identity in events:
        if kind == "in":
            gateway.sign_in_as(identity)
        else:
            gateway.session = None
            gateway.emit(SessionEvent.SIGNED_OUT, None)
        await asyncio.sleep(0)

    await reconciler.settle()

    assert reconciler.state.kind is expected_kind
    email = reconciler.state.profile.email if reconciler.state.profile else None
    assert email == expected_email
    await reconciler.stop()


@pytest.mark.asyncio
async def test_overlapping_events_for_same_identity_share_one_fetch():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(SLOW))
    store.read_delays = {"slow": 0.05}
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    gateway.sign_in_as(SLOW)
    gateway.sign_in_as(SLOW, SessionEvent.TOKEN_REFRESHED)
    await reconciler.settle()

    assert store.calls["find_by_id"] == 1
    assert reconciler.state.kind is AccessStateKind.AUTHENTICATED


@pytest.mark.asyncio
async def test_overlapping_first_sign_in_provisions_only_once():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(Profile(id="a", email="admin@x.com", name="Admin", role=Role.ADMIN, status=ProfileStatus.ACTIVE))
    store.read_delays = {"new": 0.05}
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    newcomer = Identity(id="new", email="new@x.com")
    gateway.sign_in_as(newcomer)
    gateway.sign_in_as(newcomer, SessionEvent.USER_UPDATED)
    await reconciler.settle()
    await reconciler._resolver.drain()

    assert store.calls["upsert"] == 1
    assert reconciler.state.profile.status is ProfileStatus.PENDING


@pytest.mark.asyncio
async def test_inactive_profile_is_rejected_and_signed_out():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(FAST, status=ProfileStatus.INACTIVE))
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    gateway.sign_in_as(FAST)
    await reconciler.settle()

    assert reconciler.state.kind is AccessStateKind.REJECTED
    assert reconciler.state.reason == "account disabled"
    assert gateway.sign_out_calls == 1
    assert gateway.session is None

    state = reconciler.acknowledge_rejection()
    assert state.kind is AccessStateKind.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_pending_profile_is_authenticated_but_not_signed_out():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(FAST, status=ProfileStatus.PENDING))
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    gateway.sign_in_as(FAST)
    await reconciler.settle()

    assert reconciler.state.kind is AccessStateKind.AUTHENTICATED
    assert reconciler.state.profile.status is ProfileStatus.PENDING
    assert gateway.sign_out_calls == 0


@pytest.mark.asyncio
async def test_policy_error_never_leaves_state_checking():
    bea = Identity(id="b-1", email="b@x.com")
    gateway = FakeIdentityGateway(session=Session(access_token="t", identity=bea))
    store = FakeProfileStore()
    store.read_error = RecursivePolicyError("infinite recursion detected in policy for relation \"profiles\"")
    reconciler = _reconciler(gateway, store)

    state = await reconciler.start()
    await reconciler.settle()

    assert state.kind is AccessStateKind.AUTHENTICATED
    assert state.profile.email == "b@x.com"
    assert state.profile.role is Role.COACH
    assert state.profile.status is ProfileStatus.ACTIVE
    await reconciler.stop()


@pytest.mark.asyncio
async def test_refresh_picks_up_status_change():
    gateway = FakeIdentityGateway(session=Session(access_token="t", identity=FAST))
    store = FakeProfileStore(_member(FAST, status=ProfileStatus.APPROVED))
    reconciler = _reconciler(gateway, store)
    await reconciler.start()
    assert reconciler.state.profile.status is ProfileStatus.APPROVED

    store.rows["fast@x.com"] = _member(FAST, status=ProfileStatus.ACTIVE)
    state = await reconciler.refresh()

    assert state.profile.status is ProfileStatus.ACTIVE
    await reconciler.stop()


@pytest.mark.asyncio
async def test_signed_out_during_resolution_wins():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(SLOW))
    store.read_delays = {"slow": 0.05}
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    gateway.sign_in_as(SLOW)
    await asyncio.sleep(0.01)
    assert reconciler.state.kind is AccessStateKind.CHECKING
    await gateway.sign_out()
    await reconciler.settle()

    assert reconciler.state.kind is AccessStateKind.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_assume_commits_local_profile_as_newest_event():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(SLOW))
    store.read_delays = {"slow": 0.05}
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    gateway.sign_in_as(SLOW)
    demo = Profile(id="demo-coach", email="coach@demo.be", name="Demo Coach", role=Role.COACH, status=ProfileStatus.ACTIVE)
    reconciler.assume(demo)
    await reconciler.settle()

    assert reconciler.state == AccessState.authenticated(demo)


@pytest.mark.asyncio
async def test_start_twice_is_refused():
    reconciler = _reconciler(FakeIdentityGateway(), FakeProfileStore())
    await reconciler.start()

    with pytest.raises(RuntimeError):
        await reconciler.start()
    await reconciler.stop()


@pytest.mark.asyncio
async def test_startup_probe_error_settles_unauthenticated():
    gateway = FakeIdentityGateway()
    gateway.session_error = RuntimeError("identity provider unreachable")
    reconciler = _reconciler(gateway, FakeProfileStore())

    state = await reconciler.start()

    assert state.kind is AccessStateKind.UNAUTHENTICATED
    assert state.reason == REASON_PROBE_FAILED
    await reconciler.stop()


@pytest.mark.asyncio
async def test_failed_refresh_during_sign_in_still_settles():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(SLOW))
    store.read_delays = {"slow": 0.05}
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    gateway.sign_in_as(SLOW)
    await asyncio.sleep(0.01)
    assert reconciler.state.kind is AccessStateKind.CHECKING

    gateway.session_error = RuntimeError("session lookup failed")
    await reconciler.refresh()
    await asyncio.wait_for(reconciler.settle(), timeout=2)

    assert reconciler.state.kind is AccessStateKind.AUTHENTICATED
    assert reconciler.state.profile.email == "slow@x.com"
    await reconciler.stop()


@pytest.mark.asyncio
async def test_failed_refresh_right_after_event_still_settles():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(FAST))
    reconciler = _reconciler(gateway, store)
    await reconciler.start()

    # No yield between the event and the refresh: its reconciliation has not started yet
    gateway.sign_in_as(FAST)
    gateway.session_error = RuntimeError("session lookup failed")
    await reconciler.refresh()
    await reconciler.settle()

    assert reconciler.state.kind is AccessStateKind.AUTHENTICATED
    assert reconciler.state.profile.email == "fast@x.com"
    await reconciler.stop()


@pytest.mark.asyncio
async def test_failed_refresh_keeps_settled_state():
    gateway = FakeIdentityGateway()
    store = FakeProfileStore(_member(FAST))
    reconciler = _reconciler(gateway, store)
    await reconciler.start()
    gateway.sign_in_as(FAST)
    await reconciler.settle()
    reads = store.calls["find_by_id"]

    gateway.session_error = RuntimeError("session lookup failed")
    state = await reconciler.refresh()

    assert state.kind is AccessStateKind.AUTHENTICATED
    assert state.profile.email == "fast@x.com"
    assert store.calls["find_by_id"] == reads
    await reconciler.stop()


@pytest.mark.asyncio
async def test_failed_refresh_during_startup_probe_settles():
    gateway = FakeIdentityGateway(session=Session(access_token="t", identity=FAST))
    gateway.session_delay = 0.05
    reconciler = _reconciler(gateway, FakeProfileStore(_member(FAST)))

    starting = asyncio.ensure_future(reconciler.start())
    await asyncio.sleep(0.01)
    gateway.session_error = RuntimeError("session lookup failed")
    await reconciler.refresh()
    await asyncio.wait_for(starting, timeout=2)
    await reconciler.settle()

    assert reconciler.state.kind is AccessStateKind.UNAUTHENTICATED
    assert reconciler.state.reason == REASON_PROBE_FAILED
    await reconciler.stop()


@pytest.mark.asyncio
async def test_slow_store_falls_back_before_failsafe():
    # Each call is under the deadline on its own; together they are not.
    admin = Profile(id="a", email="admin@x.com", name="Admin", role=Role.ADMIN, status=ProfileStatus.ACTIVE)
    store = FakeProfileStore(admin)
    store.read_delays = {"fast": 0.2}
    store.count_delay = 0.2
    gateway = FakeIdentityGateway(session=Session(access_token="t", identity=FAST))
    resolver = ProfileResolver(store, fetch_timeout_s=0.3)
    reconciler = SessionReconciler(gateway, resolver, failsafe_timeout_s=0.5)

    state = await asyncio.wait_for(reconciler.start(), timeout=2)

    assert state.kind is AccessStateKind.AUTHENTICATED
    assert state.profile.email == "fast@x.com"
    assert (state.profile.role, state.profile.status) == (Role.COACH, ProfileStatus.ACTIVE)
    await reconciler.stop()
    await asyncio.wait_for(resolver.drain(), timeout=2)
