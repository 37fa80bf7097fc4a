import logging
from typing import Optional

from vaultchat.auth.session import AuthProvider
from vaultchat.core.exceptions import NotAuthenticated
from vaultchat.core.store import DocumentStore
from vaultchat.models.user_models import UNKNOWN_USER, Principal, email_local_part
from vaultchat.utils import paths

logger = logging.getLogger(__name__)


class IdentityAccessor:
    def __init__(self, store: DocumentStore, auth: AuthProvider):
        self.store = store
        self.auth = auth

    def current_principal(self) -> Optional[Principal]:
        return self.auth.current_principal()

    def current_principal_id(self) -> Optional[str]:
        principal = self.auth.current_principal()
        return principal.id if principal and principal.id else None

    def require_principal(self) -> Principal:
        principal = self.auth.current_principal()
        if principal is None or not principal.id:
            raise NotAuthenticated("You must be signed in.")
        return principal

    def require_principal_id(self) -> str:
        return self.require_principal().id

    async def resolve_display_name(self, user_id: str) -> str:
        """
        Display name stored in the directory for `user_id`.

        Missing record or missing `name` gives "Unknown User"; an empty `name`
        falls back to the local part of the stored email.
        """
        document = await self.store.get(paths.user_doc(user_id))
        if not document.exists:
            return UNKNOWN_USER

        name = document.get("name")
        if not isinstance(name, str):
            return UNKNOWN_USER
        if not name:
            return email_local_part(document.get("email")) or UNKNOWN_USER
        return name
