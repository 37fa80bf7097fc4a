import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from supabase import AsyncClient

from vaultchat.core.store import ListenerRegistration
from vaultchat.models.user_models import Principal

logger = logging.getLogger(__name__)

SessionCallback = Callable[[Optional[Principal]], None]

NAME_CLAIMS = ("display_name", "full_name", "name")


def principal_from_user(user_id, email=None, metadata: Optional[dict] = None) -> Principal:
    metadata = metadata or {}
    display_name = next((metadata[k] for k in NAME_CLAIMS if metadata.get(k)), None)
    return Principal(id=str(user_id), display_name=display_name, email=email)


def principal_from_claims(claims: dict) -> Principal:
    """Build the principal from a verified Supabase access token payload."""
    return principal_from_user(
        claims["sub"], claims.get("email"), claims.get("user_metadata")
    )


class AuthProvider(ABC):
    """Read side of the authentication provider."""

    def __init__(self):
        self._listeners: list[SessionCallback] = []

    @abstractmethod
    def current_principal(self) -> Optional[Principal]: ...

    def on_session_change(self, callback: SessionCallback) -> ListenerRegistration:
        self._listeners.append(callback)
        return ListenerRegistration(lambda: self._listeners.remove(callback))

    def _emit(self, principal: Optional[Principal]):
        for callback in list(self._listeners):
            try:
                callback(principal)
            except Exception:
                logger.exception("session_listener_failed")


class StaticSession(AuthProvider):
    """Session held in memory, e.g. built from a request's access token."""

    def __init__(self, principal: Optional[Principal] = None):
        super().__init__()
        self._principal = principal

    def current_principal(self) -> Optional[Principal]:
        return self._principal

    def sign_in(self, principal: Principal):
        self._principal = principal
        self._emit(principal)

    def sign_out(self):
        self._principal = None
        self._emit(None)


class SupabaseSession(AuthProvider):
    """Mirrors the Supabase auth client's session so reads never block."""

    def __init__(self, client: AsyncClient):
        super().__init__()
        self.client = client
        self._principal: Optional[Principal] = None
        self._subscription = None

    async def start(self):
        session = await self.client.auth.get_session()
        self._apply(session)
        self._subscription = self.client.auth.on_auth_state_change(self._on_auth_event)

    def stop(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def current_principal(self) -> Optional[Principal]:
        return self._principal

    def _on_auth_event(self, event, session):
        logger.info(f"auth_state_change event={event}")
        self._apply(session)

    def _apply(self, session):
        previous = self._principal
        if session and session.user:
            user = session.user
            self._principal = principal_from_user(user.id, user.email, user.user_metadata)
        else:
            self._principal = None

        if previous != self._principal:
            self._emit(self._principal)
