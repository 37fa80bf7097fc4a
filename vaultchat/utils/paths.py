"""
Document paths used by the chat core.

    users/{uid}                              directory entry
    users/{uid}/chats/{chat_id}              chat reference
    chats/{chat_id}                          conversation
    chats/{chat_id}/messages/{message_id}    message
"""

USERS = "users"
CHATS = "chats"
MESSAGES = "messages"
PLACEHOLDER_ID = "placeholder"


def user_doc(uid: str) -> str:
    return f"{USERS}/{uid}"


def user_chats(uid: str) -> str:
    return f"{USERS}/{uid}/{CHATS}"


def user_chat_ref(uid: str, chat_id: str) -> str:
    return f"{user_chats(uid)}/{chat_id}"


def chat_doc(chat_id: str) -> str:
    return f"{CHATS}/{chat_id}"


def chat_messages(chat_id: str) -> str:
    return f"{CHATS}/{chat_id}/{MESSAGES}"


def message_doc(chat_id: str, message_id: str) -> str:
    return f"{chat_messages(chat_id)}/{message_id}"


def is_valid_id(value) -> bool:
    """A single path segment: non-empty and free of separators."""
    return isinstance(value, str) and bool(value) and "/" not in value


def split(path: str) -> tuple[str, str]:
    """Split a document path into (collection path, document id)."""
    collection, _, doc_id = path.rpartition("/")
    if not collection or not doc_id:
        raise ValueError(f"Not a document path: {path!r}")
    return collection, doc_id
