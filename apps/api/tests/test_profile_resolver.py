"""
Profile resolution: lookup, first-user provisioning and the fallback path.
"""
import asyncio

import pytest
from pydantic import ValidationError

from core.config import Settings
from core.exceptions import RecursivePolicyError, TransientStoreError
from services.membership.models import Identity, Profile, ProfileStatus, Role
from services.membership.profile_resolver import (
    ProfileResolver,
    ProvisioningClaims,
    fallback_profile,
    synthesize_profile,
)
from tests.membership_fakes import FakeProfileStore


def _resolver(store, timeout=1.0):
    return ProfileResolver(store, fetch_timeout_s=timeout)


@pytest.mark.asyncio
async def test_first_identity_is_admin_and_second_is_pending_coach():
    store = FakeProfileStore()
    resolver = _resolver(store)

    first = await resolver.resolve(Identity(id="u1", email="first@x.com"))
    await resolver.drain()
    second = await resolver.resolve(Identity(id="u2", email="b@x.com", display_name="Bea"))
    await resolver.drain()

    assert (first.role, first.status) == (Role.ADMIN, ProfileStatus.ACTIVE)
    assert (second.role, second.status) == (Role.COACH, ProfileStatus.PENDING)
    assert second.name == "Bea"
    assert store.get("first@x.com").role is Role.ADMIN
    assert store.get("b@x.com").status is ProfileStatus.PENDING
    assert len(store.rows) == 2


@pytest.mark.asyncio
async def test_name_defaults_to_email_local_part():
    store = FakeProfileStore(Profile(email="admin@x.com", name="Admin", role=Role.ADMIN, status=ProfileStatus.ACTIVE, id="a"))
    resolver = _resolver(store)

    profile = await resolver.resolve(Identity(id="u9", email="Carl.Coach@X.com"))

    assert profile.name == "Carl.Coach"
    assert profile.email == "carl.coach@x.com"


@pytest.mark.asyncio
async def test_existing_profile_is_returned_unchanged():
    stored = Profile(id="u1", email="a@x.com", name="Ann", role=Role.COACH, status=ProfileStatus.INACTIVE)
    store = FakeProfileStore(stored)
    resolver = _resolver(store)

    profile = await resolver.resolve(Identity(id="u1", email="a@x.com"))

    assert profile == stored
    assert resolver.pending_writes == 0
    assert store.calls["upsert"] == 0


@pytest.mark.asyncio
async def test_request_row_without_identity_is_found_by_email_and_linked():
    store = FakeProfileStore(Profile(email="a@x.com", name="Ann", role=Role.COACH, status=ProfileStatus.APPROVED))
    resolver = _resolver(store)

    profile = await resolver.resolve(Identity(id="ann-1", email="a@x.com"))
    await resolver.drain()

    assert profile.id == "ann-1"
    assert profile.status is ProfileStatus.APPROVED
    assert store.get("a@x.com").id == "ann-1"


@pytest.mark.asyncio
async def test_policy_error_yields_least_privilege_fallback():
    store = FakeProfileStore()
    store.read_error = RecursivePolicyError("infinite recursion detected in policy for relation \"profiles\"")
    resolver = _resolver(store)

    profile = await resolver.resolve(Identity(id="b-1", email="b@x.com"))

    assert profile.email == "b@x.com"
    assert (profile.role, profile.status) == (Role.COACH, ProfileStatus.ACTIVE)
    await resolver.drain()
    # Heal could not read either: nothing written, in particular not the fallback
    assert store.rows == {}


@pytest.mark.asyncio
async def test_fallback_never_grants_admin_even_on_empty_store():
    store = FakeProfileStore()
    store.read_error = TransientStoreError("connection refused")
    resolver = _resolver(store)

    profile = await resolver.resolve(Identity(id="x", email="x@x.com"))
    await resolver.drain()

    assert profile.role is Role.COACH


@pytest.mark.asyncio
async def test_heal_persists_provisioned_profile_once_store_recovers():
    admin = Profile(id="a", email="admin@x.com", name="Admin", role=Role.ADMIN, status=ProfileStatus.ACTIVE)
    store = FakeProfileStore(admin)
    store.read_error = TransientStoreError("connection reset")
    resolver = _resolver(store)

    profile = await resolver.resolve(Identity(id="b-1", email="b@x.com"))
    store.read_error = None
    await resolver.drain()

    assert profile.status is ProfileStatus.ACTIVE
    healed = store.get("b@x.com")
    assert healed is not None
    assert (healed.role, healed.status) == (Role.COACH, ProfileStatus.PENDING)


@pytest.mark.asyncio
async def test_slow_read_times_out_into_fallback():
    store = FakeProfileStore()
    store.hang_reads = True
    resolver = _resolver(store, timeout=0.05)

    profile = await asyncio.wait_for(resolver.resolve(Identity(id="s", email="slow@x.com")), timeout=2)

    assert (profile.role, profile.status) == (Role.COACH, ProfileStatus.ACTIVE)
    store.hang_reads = False
    await asyncio.wait_for(resolver.drain(), timeout=2)


@pytest.mark.asyncio
async def test_failed_provisioning_write_does_not_reach_caller():
    store = FakeProfileStore()
    store.write_error = TransientStoreError("read-only transaction")
    resolver = _resolver(store)

    profile = await resolver.resolve(Identity(id="u1", email="first@x.com"))
    await resolver.drain()

    assert (profile.role, profile.status) == (Role.ADMIN, ProfileStatus.ACTIVE)
    assert store.rows == {}


def test_synthesized_and_fallback_profiles_use_identity_claims():
    identity = Identity(id="u1", email="Ann@X.com", display_name="  Ann  ")

    assert synthesize_profile(identity, first=False).name == "Ann"
    assert synthesize_profile(identity, first=True).role is Role.ADMIN
    fallback = fallback_profile(identity)
    assert fallback.id == "u1"
    assert fallback.email == "ann@x.com"


@pytest.mark.asyncio
async def test_deadline_covers_read_and_count_together():
    store = FakeProfileStore(Profile(id="a", email="admin@x.com", name="Admin", role=Role.ADMIN, status=ProfileStatus.ACTIVE))
    store.read_delays = {"n": 0.06}
    store.count_delay = 0.06
    resolver = _resolver(store, timeout=0.1)

    profile = await resolver.resolve(Identity(id="n", email="new@x.com"))

    assert (profile.role, profile.status) == (Role.COACH, ProfileStatus.ACTIVE)
    await asyncio.wait_for(resolver.drain(), timeout=2)
    # Heal still writes what provisioning would have produced
    assert store.get("new@x.com").status is ProfileStatus.PENDING


@pytest.mark.asyncio
async def test_concurrent_first_sign_ins_provision_one_admin():
    store = FakeProfileStore()
    store.count_delay = 0.02
    claims = ProvisioningClaims()
    first = ProfileResolver(store, fetch_timeout_s=1.0, claims=claims)
    second = ProfileResolver(store, fetch_timeout_s=1.0, claims=claims)

    profiles = await asyncio.gather(
        first.resolve(Identity(id="u1", email="one@x.com")),
        second.resolve(Identity(id="u2", email="two@x.com")),
    )
    await first.drain()
    await second.drain()

    assert sorted(p.role.value for p in profiles) == ["ADMIN", "COACH"]
    assert len([p for p in store.rows.values() if p.role is Role.ADMIN]) == 1
    assert claims.holder is None


@pytest.mark.asyncio
async def test_failed_admin_write_releases_claim():
    store = FakeProfileStore()
    store.write_error = TransientStoreError("read-only transaction")
    claims = ProvisioningClaims()
    resolver = ProfileResolver(store, fetch_timeout_s=1.0, claims=claims)

    await resolver.resolve(Identity(id="u1", email="first@x.com"))
    await resolver.drain()
    store.write_error = None
    retrying = ProfileResolver(store, fetch_timeout_s=1.0, claims=claims)
    retry = await retrying.resolve(Identity(id="u2", email="b@x.com"))
    await retrying.drain()

    assert retry.role is Role.ADMIN


def test_fetch_deadline_must_fit_inside_failsafe():
    with pytest.raises(ValidationError):
        Settings(SECRET_KEY="k" * 40, PROFILE_FETCH_TIMEOUT_S=5.0, SESSION_FAILSAFE_TIMEOUT_S=5.0)

    ok = Settings(SECRET_KEY="k" * 40, PROFILE_FETCH_TIMEOUT_S=1.0, SESSION_FAILSAFE_TIMEOUT_S=2.0)
    assert ok.PROFILE_FETCH_TIMEOUT_S < ok.SESSION_FAILSAFE_TIMEOUT_S
