"""
Local identity provider.

``CredentialDirectory`` owns the ``credential`` table: bcrypt hashes, signed
session tokens, lockout after repeated failures, and the activation mail.
It is synchronous like the rest of the ORM code.

``LocalIdentityGateway`` is the per-client view of it: it holds the current
session, runs directory calls off the event loop and tells its listeners
whenever the session changes.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.account_security import is_account_locked, record_login_attempt
from core.database import SessionLocal, session_guard
from core.exceptions import IdentityError, TransientStoreError
from core.security import create_access_token, decode_access_token, get_password_hash, verify_password
from models import Credential
from services.email_service import EmailService
from services.invite_service import append_token, issue_activation_token, verify_activation_token
from services.membership.identity_gateway import IdentityGateway, SessionListener
from services.membership.models import Identity, Session, SessionEvent, normalize_email

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def _identity(row: Credential) -> Identity:
    return Identity(id=row.id, email=row.email, display_name=row.display_name)


class CredentialDirectory:

    def __init__(self, session_factory: Optional[sessionmaker] = None, email_service: Optional[EmailService] = None):
        self._session_factory = session_factory or SessionLocal
        self._guard = session_guard(self._session_factory.kw.get("bind"))
        self._email = email_service or EmailService()

    def _lookup(self, email: str) -> Optional[Credential]:
        with self._guard:
            db = self._session_factory()
            try:
                return db.query(Credential).filter(Credential.email == normalize_email(email)).first()
            except SQLAlchemyError as e:
                raise TransientStoreError(str(e)) from e
            finally:
                db.close()

    def authenticate(self, email: str, password: str) -> Identity:
        email = normalize_email(email)
        locked, seconds = is_account_locked(email)
        if locked:
            minutes = max(1, (seconds or 0) // 60)
            raise IdentityError(f"Too many failed attempts. Try again in {minutes} minutes.")

        row = self._lookup(email)
        if row is None or not verify_password(password, row.password_hash):
            record_login_attempt(email, success=False)
            raise IdentityError(INVALID_CREDENTIALS)

        record_login_attempt(email, success=True)
        return _identity(row)

    def register(self, email: str, password: str, display_name: Optional[str] = None) -> Identity:
        email = normalize_email(email)
        if not email or not password:
            raise IdentityError("Email and password are required")

        with self._guard:
            db = self._session_factory()
            try:
                row = Credential(
                    email=email,
                    password_hash=get_password_hash(password),
                    display_name=display_name,
                    password_changed_at=datetime.now(timezone.utc),
                )
                db.add(row)
                db.commit()
                logger.info(f"Registered credential for {email}")
                return _identity(row)
            except IntegrityError as e:
                db.rollback()
                raise IdentityError("User already registered") from e
            except SQLAlchemyError as e:
                db.rollback()
                raise TransientStoreError(str(e)) from e
            finally:
                db.close()

    def set_password(self, identity_id: str, password: str) -> None:
        if not password:
            raise IdentityError("Password is required")

        with self._guard:
            db = self._session_factory()
            try:
                row = db.query(Credential).filter(Credential.id == identity_id).first()
                if row is None:
                    raise IdentityError("Unknown identity")
                row.password_hash = get_password_hash(password)
                row.password_changed_at = datetime.now(timezone.utc)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise TransientStoreError(str(e)) from e
            finally:
                db.close()

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        with self._guard:
            db = self._session_factory()
            try:
                row = db.query(Credential).filter(Credential.id == identity_id).first()
                return _identity(row) if row else None
            finally:
                db.close()

    def find_identity(self, email: str) -> Optional[Identity]:
        row = self._lookup(email)
        return _identity(row) if row else None

    def issue_session(self, identity: Identity) -> Session:
        token = create_access_token({"sub": identity.id, "email": identity.email})
        payload = decode_access_token(token) or {}
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc) if "exp" in payload else None
        return Session(access_token=token, identity=identity, expires_at=expires_at)

    def session_from_token(self, token: str) -> Optional[Session]:
        """Validate a bearer token and return its session if the identity still exists."""
        payload = decode_access_token(token)
        if not payload or not payload.get("sub"):
            return None
        identity = self.get_identity(payload["sub"])
        if identity is None:
            return None
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc) if "exp" in payload else None
        return Session(access_token=token, identity=identity, expires_at=expires_at)

    def send_recovery_email(self, email: str, redirect_to: str) -> None:
        """Mail a set-password link; the identity may not exist yet (first activation)."""
        email = normalize_email(email)
        link = append_token(redirect_to, issue_activation_token(email))
        row = self._lookup(email)
        name = row.display_name if row else None
        if not self._email.send_activation_invite(email, link, name=name):
            raise IdentityError(f"Could not send the activation email to {email}")

    def session_from_recovery_token(self, token: str) -> Optional[Session]:
        email = verify_activation_token(token)
        if email is None:
            return None
        identity = self.find_identity(email)
        if identity is None:
            return None
        return self.issue_session(identity)


class LocalIdentityGateway(IdentityGateway):
    """One client's session against the credential directory."""

    def __init__(self, directory: Optional[CredentialDirectory] = None, session: Optional[Session] = None):
        self._directory = directory or CredentialDirectory()
        self._session = session
        self._listeners: List[SessionListener] = []

    async def get_current_session(self) -> Optional[Session]:
        session = self._session
        if session is not None and session.expires_at is not None and session.expires_at <= datetime.now(timezone.utc):
            self._session = None
            self._notify(SessionEvent.SIGNED_OUT, None)
            return None
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        identity = await asyncio.to_thread(self._directory.authenticate, email, password)
        self._session = self._directory.issue_session(identity)
        self._notify(SessionEvent.SIGNED_IN, self._session)
        return self._session

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Identity:
        return await asyncio.to_thread(self._directory.register, email, password, display_name)

    async def update_password(self, password: str) -> None:
        if self._session is None:
            raise IdentityError("Sign in before changing the password")
        await asyncio.to_thread(self._directory.set_password, self._session.identity.id, password)
        self._notify(SessionEvent.USER_UPDATED, self._session)

    async def sign_out(self) -> None:
        self._session = None
        self._notify(SessionEvent.SIGNED_OUT, None)

    async def send_password_reset_email(self, email: str, redirect_to: str) -> None:
        await asyncio.to_thread(self._directory.send_recovery_email, email, redirect_to)

    async def exchange_recovery_token(self, token: str) -> Optional[Session]:
        session = await asyncio.to_thread(self._directory.session_from_recovery_token, token)
        if session is not None:
            self._session = session
            self._notify(SessionEvent.PASSWORD_RECOVERY, session)
        return session

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: SessionEvent, session: Optional[Session]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception(f"Session listener failed for {event.value}")
