import uuid
import logging
from datetime import datetime
from typing import Callable, Optional

from vaultchat.auth.identity import IdentityAccessor
from vaultchat.auth.session import AuthProvider
from vaultchat.chat.channel import MessageChannel
from vaultchat.chat.registry import ChatRegistry
from vaultchat.core.store import DocumentStore
from vaultchat.core.subscriptions import Subscription, SubscriptionRegistry
from vaultchat.directory.service import UserDirectory
from vaultchat.models.chat_models import ChatSummary, Conversation, Message
from vaultchat.models.user_models import UserProfile
from vaultchat.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4()).upper()


class ChatService:
    """
    Chat coordination for one signed-in caller.

    Wires the identity accessor, user directory, chat registry and message
    channel to the injected store and auth provider. The subscriptions it
    hands out are tracked here; `close()` releases all of them.
    """

    def __init__(
        self,
        store: DocumentStore,
        auth: AuthProvider,
        *,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_id,
    ):
        self.store = store
        self.auth = auth
        self.subscriptions = SubscriptionRegistry()

        self.identity = IdentityAccessor(store, auth)
        self.directory = UserDirectory(store, self.identity, clock)
        self.registry = ChatRegistry(store, self.identity, self.subscriptions, clock, id_factory)
        self.channel = MessageChannel(store, self.identity, self.subscriptions, clock, id_factory)

        self._session_listener = auth.on_session_change(self._on_session_change)

    # Identity
    def current_principal_id(self) -> Optional[str]:
        return self.identity.current_principal_id()

    async def resolve_display_name(self, user_id: str) -> str:
        return await self.identity.resolve_display_name(user_id)

    # Directory
    async def search_users(self, query: str) -> list[UserProfile]:
        return await self.directory.search(query)

    async def get_profile(self, user_id: str) -> UserProfile:
        return await self.directory.get_profile(user_id)

    async def ensure_directory_entry(self) -> bool:
        return await self.directory.ensure_directory_entry()

    # Registry
    async def find_or_create_chat(self, with_id: str, with_name: str) -> str:
        return await self.registry.find_or_create(with_id, with_name)

    async def get_conversation(self, chat_id: str) -> Conversation:
        return await self.registry.get_conversation(chat_id)

    async def list_chats(self) -> list[ChatSummary]:
        return await self.registry.list_chats()

    def watch_chats(self, callback=None) -> Subscription:
        return self.registry.watch_chats(callback)

    # Messages
    async def subscribe_messages(self, chat_id: str, callback=None) -> Subscription:
        return await self.channel.subscribe(chat_id, callback)

    async def fetch_messages(self, chat_id: str) -> list[Message]:
        return await self.channel.fetch_messages(chat_id)

    async def mark_as_read(self, chat_id: str):
        await self.channel.mark_as_read(chat_id)

    async def send_message(self, chat_id: str, receiver_id: str, content: str) -> Message:
        return await self.channel.send(chat_id, receiver_id, content)

    async def settle(self):
        """Wait for pending read receipts."""
        await self.channel.settle()

    async def close(self):
        self.subscriptions.close_all()
        self._session_listener.remove()
        await self.settle()
        logger.info("chat_service_closed")

    def _on_session_change(self, principal):
        # Subscriptions are bound to the user that opened them
        if len(self.subscriptions):
            logger.info(f"session_changed user_id={principal.id if principal else None}")
            self.subscriptions.close_all()
