# Coach Membership
#
# Session/profile reconciliation and the membership lifecycle.
#
# Architecture:
# - Identity gateway contract (credentials live with the identity provider)
# - Profile store contract + SQLAlchemy store (role/status live here)
# - Resolver: identity -> profile, never raises, least-privilege fallback
# - Reconciler: single owner of the AccessState, token-ordered commits
# - Access controller + view router: read-only decisions on that state
# - Approval workflow + admin bootstrap: the writes

from .models import (
    AccessState,
    AccessStateKind,
    Identity,
    Profile,
    ProfileRef,
    ProfileStatus,
    Role,
    Session,
    SessionEvent,
)
from .identity_gateway import IdentityGateway
from .profile_store import ProfileStore, SqlProfileStore, CONFLICT_ID, CONFLICT_EMAIL
from .profile_resolver import ProfileResolver
from .access_control import AccessController, AccessDecision, AccessReason, evaluate_access
from .session_reconciler import SessionReconciler
from .view_router import Screen, route, parse_activation_link
from .approval_workflow import ApprovalWorkflow, ProfileDirectory, ProfileListing
from .admin_bootstrap import AdminBootstrap
from .portal import PortalClient

__all__ = [
    # Domain types
    'AccessState',
    'AccessStateKind',
    'Identity',
    'Profile',
    'ProfileRef',
    'ProfileStatus',
    'Role',
    'Session',
    'SessionEvent',

    # Contracts and adapters
    'IdentityGateway',
    'ProfileStore',
    'SqlProfileStore',
    'CONFLICT_ID',
    'CONFLICT_EMAIL',

    # Reconciliation
    'ProfileResolver',
    'SessionReconciler',
    'AccessController',
    'AccessDecision',
    'AccessReason',
    'evaluate_access',

    # Routing
    'Screen',
    'route',
    'parse_activation_link',

    # Lifecycle
    'ApprovalWorkflow',
    'ProfileDirectory',
    'ProfileListing',
    'AdminBootstrap',

    # Client root
    'PortalClient',
]
