"""
Contract for the external identity provider.

Every method is a coroutine because every call crosses the network.
Change listeners are plain callables invoked with ``(event, session)``;
they must return quickly and schedule any async work themselves.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional

from services.membership.models import Identity, Session, SessionEvent

SessionListener = Callable[[SessionEvent, Optional[Session]], None]


class IdentityGateway(ABC):

    @abstractmethod
    async def get_current_session(self) -> Optional[Session]:
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """Raises IdentityError on bad credentials or lockout."""

    @abstractmethod
    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Identity:
        """Raises IdentityError when the email is already registered."""

    @abstractmethod
    async def update_password(self, password: str) -> None:
        """Change the password of the signed-in identity. Raises IdentityError."""

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    @abstractmethod
    async def send_password_reset_email(self, email: str, redirect_to: str) -> None:
        """Dispatch the reset / invitation mail. Raises IdentityError on failure."""

    @abstractmethod
    async def exchange_recovery_token(self, token: str) -> Optional[Session]:
        """Turn the activation reference from a reset mail into a session, if the identity exists."""

    @abstractmethod
    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener; returns the unsubscribe handle."""
