from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from vaultchat.models.user_models import UNKNOWN_USER, StoredModel, Timestamp
from vaultchat.utils.timestamps import utcnow


class Message(StoredModel):
    id: str
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    sender_id: str = Field(alias="senderId")
    sender_name: str = Field(alias="senderName")
    receiver_id: str = Field(alias="receiverId")
    content: str
    timestamp: Timestamp

    @field_validator("content")
    @classmethod
    def validate_content(cls, content: str) -> str:
        if not content.strip():
            raise ValueError("Message content must not be blank.")
        return content


class Conversation(StoredModel):
    id: str = Field(default="", exclude=True)
    participants: List[str]
    participant_names: Dict[str, str] = Field(default_factory=dict, alias="participantNames")
    last_message: str = Field(default="", alias="lastMessage")
    last_message_timestamp: Timestamp = Field(default_factory=utcnow, alias="lastMessageTimestamp")
    created_at: Optional[Timestamp] = Field(default=None, alias="createdAt")

    @field_validator("participants")
    @classmethod
    def validate_participants(cls, participants: List[str]) -> List[str]:
        if len(participants) != 2 or participants[0] == participants[1]:
            raise ValueError("A conversation has exactly two distinct participants.")
        return participants

    def counterpart_id(self, current_user_id: str) -> str:
        for participant in self.participants:
            if participant != current_user_id:
                return participant
        return ""

    def counterpart_name(self, current_user_id: str) -> str:
        other = self.counterpart_id(current_user_id)
        return self.participant_names.get(other, UNKNOWN_USER)


class ChatReference(StoredModel):
    chat_id: str = Field(alias="chatId")
    other_user_id: str = Field(alias="otherUserId")
    other_user_name: str = Field(alias="otherUserName")
    last_message: str = Field(default="", alias="lastMessage")
    last_message_timestamp: Timestamp = Field(default_factory=utcnow, alias="lastMessageTimestamp")
    unread_count: int = Field(default=0, ge=0, alias="unreadCount")


class ChatSummary(BaseModel):
    """One row of a principal's chat list."""

    id: str
    participants: List[str]
    participant_names: Dict[str, str]
    last_message: str = ""
    last_message_timestamp: Timestamp
    unread_count: int = 0

    @classmethod
    def from_reference(cls, current_user_id: str, ref: ChatReference) -> "ChatSummary":
        return cls(
            id=ref.chat_id,
            participants=[current_user_id, ref.other_user_id],
            participant_names={current_user_id: "You", ref.other_user_id: ref.other_user_name},
            last_message=ref.last_message,
            last_message_timestamp=ref.last_message_timestamp,
            unread_count=ref.unread_count,
        )

    def counterpart_id(self, current_user_id: str) -> str:
        return next((p for p in self.participants if p != current_user_id), "")

    def counterpart_name(self, current_user_id: str) -> str:
        return self.participant_names.get(self.counterpart_id(current_user_id), UNKNOWN_USER)
