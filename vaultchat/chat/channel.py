import asyncio
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from vaultchat.auth.identity import IdentityAccessor
from vaultchat.chat.registry import load_conversation, require_id
from vaultchat.core.exceptions import ChatError, InvalidArgument, PartialWriteFailure
from vaultchat.core.store import DocumentSnapshot, DocumentStore
from vaultchat.core.subscriptions import Subscription, SubscriptionRegistry
from vaultchat.models.chat_models import ChatReference, Message
from vaultchat.utils import paths
from vaultchat.utils.timestamps import format_timestamp

logger = logging.getLogger(__name__)

MESSAGES_KEY = "messages"


def parse_messages(chat_id: str, documents: list[DocumentSnapshot]) -> list[Message]:
    messages = []
    for document in documents:
        try:
            message = Message.model_validate(document.data)
        except ValidationError:
            logger.warning(f"message_malformed path={document.path}")
            continue
        if message.chat_id is None:
            message.chat_id = chat_id
        messages.append(message)
    return messages


class MessageChannel:
    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityAccessor,
        subscriptions: SubscriptionRegistry,
        clock,
        id_factory,
    ):
        self.store = store
        self.identity = identity
        self.subscriptions = subscriptions
        self.clock = clock
        self.id_factory = id_factory
        self._pending: set[asyncio.Task] = set()

    def _history(self, chat_id: str):
        return self.store.collection(paths.chat_messages(chat_id)).order_by("timestamp")

    async def subscribe(
        self, chat_id: str, callback: Optional[Callable[[list[Message]], None]] = None
    ) -> Subscription:
        """
        Live message list of a conversation, oldest first.

        Only participants can follow a conversation, and only one at a time:
        subscribing closes the previous message subscription. Every snapshot
        also marks the conversation as read for the signed-in user.
        """
        user_id = self.identity.require_principal_id()
        await load_conversation(self.store, chat_id, user_id)
        subscription = self.subscriptions.replace(Subscription(MESSAGES_KEY, callback))

        def on_messages(documents: list[DocumentSnapshot]):
            # a fetch in flight can still land after close()
            if subscription.closed:
                return
            subscription.publish(parse_messages(chat_id, documents))
            self._mark_as_read_later(chat_id)

        subscription.attach(
            self.store.listen_query(
                self._history(chat_id),
                on_messages,
                on_error=lambda e: logger.warning(f"message_listener_failed chat_id={chat_id} error={e}"),
            )
        )
        logger.info(f"messages_subscribed chat_id={chat_id} user_id={user_id}")
        return subscription

    async def fetch_messages(self, chat_id: str) -> list[Message]:
        user_id = self.identity.require_principal_id()
        await load_conversation(self.store, chat_id, user_id)
        documents = await self.store.query(self._history(chat_id))
        messages = parse_messages(chat_id, documents)
        await self._mark_as_read_quietly(chat_id)
        return messages

    async def mark_as_read(self, chat_id: str):
        user_id = self.identity.require_principal_id()
        require_id(chat_id, "conversation id")
        await self.store.update(paths.user_chat_ref(user_id, chat_id), {"unreadCount": 0})
        logger.debug(f"messages_marked_read chat_id={chat_id} user_id={user_id}")

    async def send(self, chat_id: str, receiver_id: str, content: str) -> Message:
        """
        Append a message to a conversation.

        The sender must be a participant and `receiver_id` the other one.
        The message, the conversation's last-message fields and the sender's
        reference go out in one batch. The receiver's unread count needs a
        read first: a missing reference is created with an unread count of 1
        before the batch is committed, an existing one gets `previous + 1`
        folded into the batch. Concurrent senders can lose an increment.
        If the batch fails after the receiver's reference was written, the
        send fails with `PartialWriteFailure` and nothing is rolled back.
        """
        sender_id = self.identity.require_principal_id()
        if not content or not content.strip():
            raise InvalidArgument("Message content must not be empty.")
        if receiver_id == sender_id:
            raise InvalidArgument("You cannot send a message to yourself.")
        require_id(receiver_id, "receiver id")

        conversation = await load_conversation(self.store, chat_id, sender_id)
        if conversation.counterpart_id(sender_id) != receiver_id:
            raise InvalidArgument("The receiver is not part of this conversation.")

        sender_name = await self.identity.resolve_display_name(sender_id)
        message = Message(
            id=self.id_factory(),
            chat_id=chat_id,
            sender_id=sender_id,
            sender_name=sender_name,
            receiver_id=receiver_id,
            content=content,
            timestamp=self.clock(),
        )
        timestamp = format_timestamp(message.timestamp)
        last_message = {"lastMessage": content, "lastMessageTimestamp": timestamp}

        batch = self.store.batch()
        batch.set(paths.message_doc(chat_id, message.id), message.to_document())
        batch.update(paths.chat_doc(chat_id), last_message)
        batch.update(paths.user_chat_ref(sender_id, chat_id), last_message)

        receiver_path = paths.user_chat_ref(receiver_id, chat_id)
        receiver_reference = await self.store.get(receiver_path)

        if receiver_reference.exists:
            unread = receiver_reference.get("unreadCount", 0)
            unread = unread if isinstance(unread, int) and unread >= 0 else 0
            batch.update(receiver_path, {**last_message, "unreadCount": unread + 1})
            await batch.commit()
        else:
            reference = ChatReference(
                chat_id=chat_id,
                other_user_id=sender_id,
                other_user_name=sender_name,
                last_message=content,
                last_message_timestamp=message.timestamp,
                unread_count=1,
            )
            await self.store.set(receiver_path, reference.to_document())
            logger.info(f"receiver_reference_created chat_id={chat_id} receiver_id={receiver_id}")
            try:
                await batch.commit()
            except ChatError as e:
                logger.error(f"message_send_partial chat_id={chat_id} message_id={message.id} error={e.message}")
                raise PartialWriteFailure(
                    "Message could not be sent, but the receiver's chat entry was already updated."
                ) from e

        logger.info(f"message_sent chat_id={chat_id} message_id={message.id} sender_id={sender_id}")
        return message

    async def settle(self):
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _mark_as_read_later(self, chat_id: str):
        task = asyncio.get_running_loop().create_task(self._mark_as_read_quietly(chat_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _mark_as_read_quietly(self, chat_id: str):
        try:
            await self.mark_as_read(chat_id)
        except ChatError as e:
            logger.warning(f"mark_as_read_failed chat_id={chat_id} error={e.message}")
