from __future__ import annotations

from typing import Any, Dict, List, Optional

import logging
from fastapi import Request
from sqlalchemy.orm import Session

from core.database import session_guard
from models import ProfileAuditEvent
from services.membership.models import Profile, normalize_email

logger = logging.getLogger(__name__)


def record_admin_audit_event(
    db: Session,
    *,
    request: Optional[Request],
    actor: Profile,
    action: str,
    target_email: str,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Best-effort append-only audit logging for admin actions on profiles.

    Safety:
    - Never throws (does not block primary operation).
    - Payload must be bounded and must not contain secrets.
    """
    try:
        _record(db, request=request, actor=actor, action=action, target_email=target_email, payload=payload)
    except Exception as e:
        # Never block admin operations on audit logging, but do emit a server log.
        db.rollback()
        logger.exception("Admin audit logging failed: %s", str(e))


def _record(db, *, request, actor, action, target_email, payload) -> None:
    with session_guard(db.get_bind()):
        ip_address = None
        user_agent = None
        if request is not None:
            ip_address = request.client.host if request.client else None
            user_agent = request.headers.get("user-agent")

        ev = ProfileAuditEvent(
            actor_email=normalize_email(actor.email),
            action=action,
            target_email=normalize_email(target_email),
            ip_address=ip_address,
            user_agent=user_agent,
            payload=payload or {},
        )
        db.add(ev)
        db.commit()


def list_audit_events(db: Session, target_email: str, limit: int = 50) -> List[ProfileAuditEvent]:
    with session_guard(db.get_bind()):
        return (
            db.query(ProfileAuditEvent)
            .filter(ProfileAuditEvent.target_email == normalize_email(target_email))
            .order_by(ProfileAuditEvent.id.desc())
            .limit(limit)
            .all()
        )
