"""
Value types shared by the membership services.

Profiles travel between the store, the resolver and the reconciler as frozen
dataclasses; the ORM rows in ``models.py`` never leave the store adapter.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    ADMIN = "ADMIN"
    COACH = "COACH"


class ProfileStatus(str, Enum):
    """Lifecycle: PENDING -> APPROVED -> ACTIVE <-> INACTIVE."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


# Listing order used by the administrator overview.
STATUS_ORDER = {
    ProfileStatus.PENDING: 0,
    ProfileStatus.APPROVED: 1,
    ProfileStatus.ACTIVE: 2,
    ProfileStatus.INACTIVE: 3,
}


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def default_display_name(email: str, display_name: Optional[str] = None) -> str:
    """Display-name claim if present, else the local part of the email."""
    if display_name and display_name.strip():
        return display_name.strip()
    return (email or "").split("@")[0]


@dataclass(frozen=True)
class Profile:
    email: str
    name: str
    role: Role
    status: ProfileStatus
    id: Optional[str] = None  # identity id once linked

    def with_changes(self, **changes: Any) -> "Profile":
        return replace(self, **changes)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ProfileRef:
    """Points at one profile row, by identity id or by email."""
    id: Optional[str] = None
    email: Optional[str] = None

    def __post_init__(self):
        if not self.id and not self.email:
            raise ValueError("ProfileRef needs an id or an email")

    @classmethod
    def by_id(cls, identity_id: str) -> "ProfileRef":
        return cls(id=identity_id)

    @classmethod
    def by_email(cls, email: str) -> "ProfileRef":
        return cls(email=normalize_email(email))

    @classmethod
    def of(cls, profile: Profile) -> "ProfileRef":
        # Email is always present; pending rows have no identity id yet.
        return cls(email=normalize_email(profile.email))

    def matches(self, profile: Optional[Profile]) -> bool:
        if profile is None:
            return False
        if self.id and profile.id:
            return self.id == profile.id
        if self.email:
            return normalize_email(self.email) == normalize_email(profile.email)
        return False

    def __str__(self) -> str:
        return self.email or self.id or ""


@dataclass(frozen=True)
class Identity:
    """A credential known to the identity provider (read-only here)."""
    id: str
    email: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class Session:
    access_token: str
    identity: Identity
    expires_at: Optional[datetime] = None


class SessionEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


class AccessStateKind(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    CHECKING = "CHECKING"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class AccessState:
    """What the client currently believes about the visitor. Never persisted."""
    kind: AccessStateKind
    profile: Optional[Profile] = None
    reason: Optional[str] = None

    @classmethod
    def uninitialized(cls) -> "AccessState":
        return cls(AccessStateKind.UNINITIALIZED)

    @classmethod
    def checking(cls) -> "AccessState":
        return cls(AccessStateKind.CHECKING)

    @classmethod
    def unauthenticated(cls, reason: Optional[str] = None) -> "AccessState":
        return cls(AccessStateKind.UNAUTHENTICATED, reason=reason)

    @classmethod
    def authenticated(cls, profile: Profile) -> "AccessState":
        return cls(AccessStateKind.AUTHENTICATED, profile=profile)

    @classmethod
    def rejected(cls, reason: str, profile: Optional[Profile] = None) -> "AccessState":
        return cls(AccessStateKind.REJECTED, profile=profile, reason=reason)

    @property
    def is_settled(self) -> bool:
        return self.kind not in (AccessStateKind.UNINITIALIZED, AccessStateKind.CHECKING)
