import logging
from typing import Callable, Optional

from pydantic import ValidationError

from vaultchat.auth.identity import IdentityAccessor
from vaultchat.core.exceptions import InvalidArgument, NotFound
from vaultchat.core.store import DocumentSnapshot, DocumentStore
from vaultchat.core.subscriptions import Subscription, SubscriptionRegistry
from vaultchat.models.chat_models import ChatReference, ChatSummary, Conversation
from vaultchat.utils import paths
from vaultchat.utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

CHAT_LIST_KEY = "chats"


def _is_placeholder(document: DocumentSnapshot) -> bool:
    return document.get("placeholder") is True or document.id == paths.PLACEHOLDER_ID


def parse_references(documents: list[DocumentSnapshot]) -> list[ChatReference]:
    """Chat references from a namespace listing, minus the placeholder and malformed records."""
    references = []
    for document in documents:
        if _is_placeholder(document):
            continue
        try:
            references.append(ChatReference.model_validate(document.data))
        except ValidationError:
            logger.warning(f"chat_reference_malformed path={document.path}")
    return references


def require_id(value, what: str) -> str:
    if not paths.is_valid_id(value):
        raise InvalidArgument(f"Invalid {what}.")
    return value


async def load_conversation(store: DocumentStore, chat_id: str, user_id: str) -> Conversation:
    """
    Conversation `chat_id` as seen by `user_id`.

    Raises `NotFound` both when it does not exist and when `user_id` is not
    one of its participants.
    """
    require_id(chat_id, "conversation id")
    document = await store.get(paths.chat_doc(chat_id))
    if not document.exists:
        raise NotFound("Conversation not found.")

    conversation = Conversation.model_validate(document.data)
    conversation.id = chat_id
    # Not a participant: answer as if it did not exist
    if user_id not in conversation.participants:
        raise NotFound("Conversation not found.")
    return conversation


class ChatRegistry:
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

    async def find_or_create(self, with_id: str, with_name: str) -> str:
        """
        Id of the 1:1 conversation between the signed-in user and `with_id`.

        An existing chat reference for the pair short-circuits. Otherwise the
        conversation and both users' references are written in one batch.
        Two users starting a chat with each other at the same moment can
        still end up with two conversations.
        """
        current_id = self.identity.require_principal_id()
        if with_id == current_id:
            raise InvalidArgument("You cannot start a chat with yourself.")
        require_id(with_id, "user id")

        existing = await self.store.query(
            self.store.collection(paths.user_chats(current_id)).where("otherUserId", "==", with_id)
        )
        for document in existing:
            chat_id = document.get("chatId")
            if isinstance(chat_id, str) and chat_id:
                logger.info(f"chat_exists chat_id={chat_id} user_id={current_id} other_id={with_id}")
                return chat_id

        current_name = await self.identity.resolve_display_name(current_id)
        chat_id = self.id_factory()
        now = self.clock()

        conversation = Conversation(
            participants=[current_id, with_id],
            participant_names={current_id: current_name, with_id: with_name},
            last_message="",
            last_message_timestamp=now,
            created_at=now,
        )
        own_reference = ChatReference(
            chat_id=chat_id,
            other_user_id=with_id,
            other_user_name=with_name,
            last_message_timestamp=now,
        )
        their_reference = ChatReference(
            chat_id=chat_id,
            other_user_id=current_id,
            other_user_name=current_name,
            last_message_timestamp=now,
        )

        batch = self.store.batch()
        batch.set(paths.chat_doc(chat_id), conversation.to_document())
        batch.set(paths.user_chat_ref(current_id, chat_id), own_reference.to_document())
        batch.set(paths.user_chat_ref(with_id, chat_id), their_reference.to_document())
        await batch.commit()

        logger.info(f"chat_created chat_id={chat_id} user_id={current_id} other_id={with_id}")
        return chat_id

    async def get_conversation(self, chat_id: str) -> Conversation:
        current_id = self.identity.require_principal_id()
        return await load_conversation(self.store, chat_id, current_id)

    async def list_chats(self) -> list[ChatSummary]:
        current_id = self.identity.require_principal_id()
        documents = await self.store.query(self.store.collection(paths.user_chats(current_id)))

        summaries = [ChatSummary.from_reference(current_id, ref) for ref in parse_references(documents)]
        summaries.sort(key=lambda chat: chat.last_message_timestamp, reverse=True)
        return summaries

    def watch_chats(self, callback: Optional[Callable[[list[ChatSummary]], None]] = None) -> Subscription:
        """
        Live chat list of the signed-in user, newest activity first.

        The reference namespace is watched as a whole, and each referenced
        conversation gets its own listener so last-message fields written by
        the other participant show up too. Opening it again replaces the
        previous subscription.
        """
        current_id = self.identity.require_principal_id()
        subscription = self.subscriptions.replace(Subscription(CHAT_LIST_KEY, callback))
        chats: dict[str, ChatSummary] = {}
        # last-message fields as last seen on the conversation documents
        conversation_fields: dict[str, dict] = {}

        def publish():
            ordered = sorted(chats.values(), key=lambda chat: chat.last_message_timestamp, reverse=True)
            subscription.publish(ordered)

        def refreshed(summary: ChatSummary) -> ChatSummary:
            fields = conversation_fields.get(summary.id)
            if not fields or fields["last_message_timestamp"] < summary.last_message_timestamp:
                return summary
            return summary.model_copy(update=fields)

        def on_conversation(chat_id: str):
            def handle(document: DocumentSnapshot):
                last_message = document.get("lastMessage")
                timestamp = document.get("lastMessageTimestamp")
                if not isinstance(last_message, str) or timestamp is None:
                    return
                try:
                    timestamp = parse_timestamp(timestamp)
                except ValueError:
                    logger.warning(f"chat_timestamp_malformed chat_id={chat_id}")
                    return

                conversation_fields[chat_id] = {
                    "last_message": last_message,
                    "last_message_timestamp": timestamp,
                }
                summary = chats.get(chat_id)
                if summary is None:
                    return
                updated = refreshed(summary)
                if updated != summary:
                    chats[chat_id] = updated
                    publish()

            return handle

        def on_references(documents: list[DocumentSnapshot]):
            references = parse_references(documents)
            chats.clear()
            for ref in references:
                chats[ref.chat_id] = refreshed(ChatSummary.from_reference(current_id, ref))
            for stale in set(conversation_fields) - set(chats):
                del conversation_fields[stale]

            for stale in subscription.child_keys() - set(chats):
                subscription.drop_child(stale)

            publish()

            for chat_id in chats:
                if not subscription.has_child(chat_id):
                    subscription.attach_child(
                        chat_id,
                        self.store.listen_document(
                            paths.chat_doc(chat_id),
                            on_conversation(chat_id),
                            on_error=lambda e, chat_id=chat_id: logger.warning(
                                f"chat_listener_failed chat_id={chat_id} error={e}"
                            ),
                        ),
                    )

        subscription.attach(
            self.store.listen_query(
                self.store.collection(paths.user_chats(current_id)),
                on_references,
                on_error=lambda e: logger.warning(f"chat_list_listener_failed user_id={current_id} error={e}"),
            )
        )
        logger.info(f"chat_list_subscribed user_id={current_id}")
        return subscription
