"""
Profile store: contract plus the SQLAlchemy-backed implementation.

The ORM is synchronous, so each operation runs in a worker thread and the
event loop only suspends while the database works. Driver failures are
translated into the domain error taxonomy:

- IntegrityError                        -> UniqueViolation
- "infinite recursion" in the message   -> RecursivePolicyError
- any other SQLAlchemyError             -> TransientStoreError
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DbSession, sessionmaker

from core.database import SessionLocal, session_guard
from core.exceptions import RecursivePolicyError, TransientStoreError, UniqueViolation
from models import Profile as ProfileRow
from services.membership.models import (
    STATUS_ORDER,
    Profile,
    ProfileRef,
    ProfileStatus,
    Role,
    normalize_email,
)

logger = logging.getLogger(__name__)

CONFLICT_ID = "id"
CONFLICT_EMAIL = "email"

PATCHABLE_FIELDS = {"id", "name", "role", "status"}


class ProfileStore(ABC):

    @abstractmethod
    async def find_by_id(self, identity_id: str) -> Optional[Profile]:
        ...

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[Profile]:
        ...

    @abstractmethod
    async def insert(self, profile: Profile) -> Profile:
        """Raises UniqueViolation when the email (or id) is taken."""

    @abstractmethod
    async def upsert(self, profile: Profile, conflict_key: str = CONFLICT_ID) -> None:
        """Insert, or overwrite the row matching ``conflict_key``. Safe to retry."""

    @abstractmethod
    async def update(self, ref: ProfileRef, patch: Dict[str, Any]) -> Optional[Profile]:
        """Apply ``patch``; returns the updated profile, or None if no row matched."""

    @abstractmethod
    async def count(self, role: Optional[Role] = None) -> int:
        ...

    @abstractmethod
    async def list_profiles(self) -> List[Profile]:
        """All profiles ordered by status (pending first), then email."""

    async def find(self, ref: ProfileRef) -> Optional[Profile]:
        if ref.id:
            return await self.find_by_id(ref.id)
        return await self.find_by_email(ref.email)


def _to_profile(row: ProfileRow) -> Profile:
    return Profile(
        id=row.identity_id,
        email=row.email,
        name=row.name or "",
        role=Role(row.role),
        status=ProfileStatus(row.status),
    )


def _apply(row: ProfileRow, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        if key == "id":
            row.identity_id = value
        elif key in ("role", "status"):
            setattr(row, key, value.value if hasattr(value, "value") else str(value))
        elif key == "name":
            row.name = value or ""
        elif key == "email":
            row.email = normalize_email(value)


def _translate(exc: SQLAlchemyError) -> Exception:
    if isinstance(exc, IntegrityError):
        return UniqueViolation()
    text = str(getattr(exc, "orig", None) or exc)
    if "infinite recursion" in text.lower():
        return RecursivePolicyError(text)
    return TransientStoreError(text)


class SqlProfileStore(ProfileStore):
    """ProfileStore over the ``profile`` table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        if session_factory is None:
            session_factory = SessionLocal
        self._session_factory = session_factory
        self._guard = session_guard(session_factory.kw.get("bind"))

    async def _run(self, operation: Callable[[DbSession], Any]) -> Any:
        return await asyncio.to_thread(self._run_sync, operation)

    def _run_sync(self, operation: Callable[[DbSession], Any]) -> Any:
        with self._guard:
            return self._transaction(operation)

    def _transaction(self, operation: Callable[[DbSession], Any]) -> Any:
        db = self._session_factory()
        try:
            result = operation(db)
            db.commit()
            return result
        except SQLAlchemyError as e:
            db.rollback()
            raise _translate(e) from e
        finally:
            db.close()

    @staticmethod
    def _row_for(db: DbSession, ref: ProfileRef) -> Optional[ProfileRow]:
        query = db.query(ProfileRow)
        if ref.id:
            return query.filter(ProfileRow.identity_id == ref.id).first()
        return query.filter(ProfileRow.email == normalize_email(ref.email)).first()

    async def find_by_id(self, identity_id: str) -> Optional[Profile]:
        def op(db: DbSession) -> Optional[Profile]:
            row = self._row_for(db, ProfileRef.by_id(identity_id))
            return _to_profile(row) if row else None
        return await self._run(op)

    async def find_by_email(self, email: str) -> Optional[Profile]:
        def op(db: DbSession) -> Optional[Profile]:
            row = self._row_for(db, ProfileRef.by_email(email))
            return _to_profile(row) if row else None
        return await self._run(op)

    async def insert(self, profile: Profile) -> Profile:
        def op(db: DbSession) -> Profile:
            row = ProfileRow(email=normalize_email(profile.email))
            _apply(row, {"id": profile.id, "name": profile.name, "role": profile.role, "status": profile.status})
            db.add(row)
            db.flush()
            return _to_profile(row)
        return await self._run(op)

    async def upsert(self, profile: Profile, conflict_key: str = CONFLICT_ID) -> None:
        if conflict_key not in (CONFLICT_ID, CONFLICT_EMAIL):
            raise ValueError(f"Unsupported conflict key: {conflict_key}")
        if conflict_key == CONFLICT_ID and not profile.id:
            conflict_key = CONFLICT_EMAIL

        def op(db: DbSession) -> None:
            if conflict_key == CONFLICT_ID:
                row = self._row_for(db, ProfileRef.by_id(profile.id))
            else:
                row = self._row_for(db, ProfileRef.by_email(profile.email))
            if row is None:
                row = ProfileRow(email=normalize_email(profile.email))
                db.add(row)
            values = {"name": profile.name, "role": profile.role, "status": profile.status, "email": profile.email}
            if profile.id:
                values["id"] = profile.id
            _apply(row, values)
            db.flush()
        await self._run(op)

    async def update(self, ref: ProfileRef, patch: Dict[str, Any]) -> Optional[Profile]:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch profile fields: {sorted(unknown)}")

        def op(db: DbSession) -> Optional[Profile]:
            row = self._row_for(db, ref)
            if row is None:
                return None
            _apply(row, patch)
            db.flush()
            return _to_profile(row)
        return await self._run(op)

    async def count(self, role: Optional[Role] = None) -> int:
        def op(db: DbSession) -> int:
            query = db.query(func.count(ProfileRow.pk))
            if role is not None:
                query = query.filter(ProfileRow.role == role.value)
            return int(query.scalar() or 0)
        return await self._run(op)

    async def list_profiles(self) -> List[Profile]:
        def op(db: DbSession) -> List[Profile]:
            return [_to_profile(row) for row in db.query(ProfileRow).all()]
        profiles = await self._run(op)
        return sorted(profiles, key=lambda p: (STATUS_ORDER[p.status], p.email))
