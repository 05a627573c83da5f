from sqlalchemy import Column, Integer, DateTime, Text, String, Index, JSON, CheckConstraint
from sqlalchemy.sql import func
from core.database import Base
import uuid


class Profile(Base):
    """
    Durable authorization record for a member.

    ``identity_id`` links the row to a credential once the member has one; it
    is null for membership requests created before any identity exists, so
    rows carry their own surrogate key.
    """
    __tablename__ = "profile"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    identity_id = Column(String(64), unique=True, nullable=True)
    email = Column(Text, unique=True, nullable=False)
    name = Column(Text, nullable=False, default="")
    role = Column(String(16), nullable=False, default="COACH")  # 'ADMIN' | 'COACH'
    status = Column(String(16), nullable=False, default="PENDING")  # 'PENDING' | 'APPROVED' | 'ACTIVE' | 'INACTIVE'
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('ADMIN', 'COACH')", name="ck_profile_role"),
        CheckConstraint("status IN ('PENDING', 'APPROVED', 'ACTIVE', 'INACTIVE')", name="ck_profile_status"),
        Index("ix_profile_role_status", "role", "status"),
    )


class Credential(Base):
    """Password identity owned by the local identity provider."""
    __tablename__ = "credential"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    display_name = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    password_changed_at = Column(DateTime(timezone=True), nullable=True)


class ProfileAuditEvent(Base):
    """Append-only log of administrator actions on profiles."""
    __tablename__ = "profile_audit_event"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    actor_email = Column(Text, nullable=False)
    action = Column(Text, nullable=False)  # e.g. 'profile.approve', 'profile.toggle_status'
    target_email = Column(Text, nullable=False)
    ip_address = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_profile_audit_event_target_email", "target_email"),
    )
