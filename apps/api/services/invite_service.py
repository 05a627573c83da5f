"""
Activation invites.

An approved member receives a link back to the web app carrying their email
in the activation query parameter (and, when issued by the identity
provider, a signed activation token). Administrators can also copy the bare
link from the user list.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

from core.config import settings
from core.security import PURPOSE_ACTIVATION, create_activation_token, decode_token
from services.membership.models import normalize_email


def build_activation_link(email: str, token: Optional[str] = None, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.WEB_APP_BASE_URL).rstrip("/")
    params = {settings.ACTIVATION_QUERY_PARAM: normalize_email(email)}
    if token:
        params["token"] = token
    return f"{base}/?{urlencode(params, safe='@')}"


def append_token(link: str, token: str) -> str:
    separator = "&" if "?" in link else "?"
    return f"{link}{separator}{urlencode({'token': token})}"


def issue_activation_token(email: str) -> str:
    return create_activation_token(
        normalize_email(email),
        expires_delta=timedelta(minutes=settings.ACTIVATION_TOKEN_TTL_MINUTES),
    )


def verify_activation_token(token: Optional[str], email: Optional[str] = None) -> Optional[str]:
    """
    Return the email a valid activation token was issued for.

    When ``email`` is given the token must have been issued for that address.
    """
    if not token:
        return None
    payload = decode_token(token, PURPOSE_ACTIVATION)
    if not payload:
        return None
    subject = normalize_email(payload.get("sub"))
    if not subject:
        return None
    if email is not None and subject != normalize_email(email):
        return None
    return subject
