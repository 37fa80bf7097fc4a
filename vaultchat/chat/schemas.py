from pydantic import BaseModel
from datetime import datetime
from typing import List, Dict, Optional


# Direct conversations
class CreateDirectConversationModel(BaseModel):
    receiver_id: str
    receiver_name: Optional[str] = None


class CreateDirectConversationResponseModel(BaseModel):
    conversation_id: str


# Get conversations
class ChatSummaryData(BaseModel):
    id: str
    participants: List[str]
    participant_names: Dict[str, str]
    last_message: str
    last_message_timestamp: datetime
    unread_count: int


class GetConversationsResponseModel(BaseModel):
    conversations: List[ChatSummaryData]


class ConversationData(BaseModel):
    id: str
    participants: List[str]
    participant_names: Dict[str, str]
    last_message: str
    last_message_timestamp: datetime
    created_at: Optional[datetime] = None


class GetConversationResponseModel(BaseModel):
    conversation: ConversationData


# Messages
class SendMessageModel(BaseModel):
    conversation_id: str
    receiver_id: str
    content: str


class MessageData(BaseModel):
    id: str
    chat_id: Optional[str] = None
    sender_id: str
    sender_name: str
    receiver_id: str
    content: str
    timestamp: datetime


class SendMessageResponseModel(BaseModel):
    message: MessageData


class GetMessagesResponseModel(BaseModel):
    messages: List[MessageData]
