"""
Screen selection and activation link parsing.
"""
import pytest

from services.membership.models import AccessState, Profile, ProfileStatus, Role
from services.membership.view_router import Screen, message_for, parse_activation_link, route


def _state(status=ProfileStatus.ACTIVE, role=Role.COACH) -> AccessState:
    return AccessState.authenticated(Profile(id="u1", email="a@x.com", name="Ann", role=role, status=status))


@pytest.mark.parametrize("state,expected", [
    (AccessState.uninitialized(), Screen.LOADING),
    (AccessState.checking(), Screen.LOADING),
    (AccessState.unauthenticated(), Screen.LANDING),
    (AccessState.rejected("account disabled"), Screen.ACCOUNT_DISABLED),
    (_state(ProfileStatus.PENDING), Screen.AWAITING_REVIEW),
    (_state(ProfileStatus.APPROVED), Screen.ACTIVATION_REQUIRED),
    (_state(ProfileStatus.INACTIVE), Screen.ACCOUNT_DISABLED),
    (_state(ProfileStatus.ACTIVE), Screen.DASHBOARD),
])
def test_default_screen_per_state(state, expected):
    assert route(state) is expected


def test_pending_activation_wins_over_any_state():
    assert route(AccessState.checking(), activation_email="a@x.com") is Screen.SET_PASSWORD
    assert route(_state(), Screen.BLOG, activation_email="a@x.com") is Screen.SET_PASSWORD


def test_member_screens_are_open_to_active_coaches():
    for screen in (Screen.EXERCISES, Screen.BLOG, Screen.PODCASTS):
        assert route(_state(), screen) is screen


def test_admin_screen_requires_admin_role():
    assert route(_state(), Screen.ADMIN_USERS) is Screen.DASHBOARD
    assert route(_state(role=Role.ADMIN), Screen.ADMIN_USERS) is Screen.ADMIN_USERS


def test_requested_screen_ignored_while_blocked():
    assert route(_state(ProfileStatus.PENDING), Screen.BLOG) is Screen.AWAITING_REVIEW
    assert route(AccessState.unauthenticated(), Screen.DASHBOARD) is Screen.LANDING


def test_messages():
    assert message_for(_state()) is None
    assert message_for(AccessState.unauthenticated()) is None
    assert "disabled" in message_for(AccessState.rejected("account disabled"))
    assert "awaiting review" in message_for(_state(ProfileStatus.PENDING))


def test_parse_activation_link_extracts_email_and_cleans_url():
    link = parse_activation_link("http://portal.test/?activate=A@X.com&tab=blog")

    assert link.email == "a@x.com"
    assert link.token is None
    assert link.clean_url == "http://portal.test/?tab=blog"


def test_parse_activation_link_strips_token_too():
    link = parse_activation_link("http://portal.test/?activate=a%40x.com&token=abc")

    assert link.email == "a@x.com"
    assert link.token == "abc"
    assert link.clean_url == "http://portal.test/"


def test_parse_plain_address_has_no_activation():
    link = parse_activation_link("http://portal.test/blog?page=2")

    assert link.email is None
    assert link.clean_url == "http://portal.test/blog?page=2"


def test_parse_uses_custom_parameter_name():
    link = parse_activation_link("http://portal.test/?invite=b@x.com", param="invite")

    assert link.email == "b@x.com"
