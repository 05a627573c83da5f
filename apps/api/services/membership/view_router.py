"""
View Router

Maps the reconciler's AccessState (plus a pending activation email and the
screen the member asked for) to the screen to render. Read-only: it never
changes the state, it only asks the reconciler for a refresh through the
client root.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from core.config import settings
from services.membership.access_control import AccessReason, MESSAGES, evaluate_access
from services.membership.models import AccessState, AccessStateKind, normalize_email


class Screen(str, Enum):
    LOADING = "LOADING"
    LANDING = "LANDING"
    DASHBOARD = "DASHBOARD"
    EXERCISES = "EXERCISES"
    BLOG = "BLOG"
    PODCASTS = "PODCASTS"
    ADMIN_USERS = "ADMIN_USERS"
    SET_PASSWORD = "SET_PASSWORD"
    AWAITING_REVIEW = "AWAITING_REVIEW"
    ACTIVATION_REQUIRED = "ACTIVATION_REQUIRED"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"


MEMBER_SCREENS = frozenset({Screen.DASHBOARD, Screen.EXERCISES, Screen.BLOG, Screen.PODCASTS})
ADMIN_SCREENS = frozenset({Screen.ADMIN_USERS})

_BLOCKED_SCREENS = {
    AccessReason.ACCOUNT_DISABLED: Screen.ACCOUNT_DISABLED,
    AccessReason.AWAITING_REVIEW: Screen.AWAITING_REVIEW,
    AccessReason.ACTIVATION_REQUIRED: Screen.ACTIVATION_REQUIRED,
}

# Appended to activation links by the identity provider; stripped together with the email.
TOKEN_QUERY_PARAM = "token"


def route(
    state: AccessState,
    requested: Optional[Screen] = None,
    activation_email: Optional[str] = None,
) -> Screen:
    # A pending activation wins over any session state.
    if activation_email:
        return Screen.SET_PASSWORD

    if state.kind in (AccessStateKind.UNINITIALIZED, AccessStateKind.CHECKING):
        return Screen.LOADING
    if state.kind is AccessStateKind.REJECTED:
        return Screen.ACCOUNT_DISABLED
    if state.kind is AccessStateKind.UNAUTHENTICATED or state.profile is None:
        return Screen.LANDING

    decision = evaluate_access(state.profile)
    if not decision.enterable:
        return _BLOCKED_SCREENS[decision.reason]

    if requested in MEMBER_SCREENS:
        return requested
    if requested in ADMIN_SCREENS and state.profile.is_admin:
        return requested
    return Screen.DASHBOARD


def message_for(state: AccessState) -> Optional[str]:
    """User-facing explanation for a non-enterable state, if any."""
    if state.kind is AccessStateKind.REJECTED:
        return MESSAGES[AccessReason.ACCOUNT_DISABLED]
    if state.kind is AccessStateKind.AUTHENTICATED and state.profile is not None:
        decision = evaluate_access(state.profile)
        return decision.message or None
    return None


@dataclass(frozen=True)
class ActivationLink:
    email: Optional[str]
    token: Optional[str]
    clean_url: str


def parse_activation_link(url: str, param: Optional[str] = None) -> ActivationLink:
    """
    Pull the pending-activation email (and token, if any) out of an address.

    ``clean_url`` is the same address without those parameters, ready to
    replace the visible one so a reload does not re-enter activation.
    """
    param = param or settings.ACTIVATION_QUERY_PARAM
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)

    email = None
    token = None
    kept = []
    for key, value in query:
        if key == param:
            email = normalize_email(value) or None
        elif key == TOKEN_QUERY_PARAM:
            token = value or None
        else:
            kept.append((key, value))

    clean_url = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))
    return ActivationLink(email=email, token=token, clean_url=clean_url)
