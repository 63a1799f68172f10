from pydantic import BaseModel, Field, field_validator
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union


# Conversations
class LastMessageSummary(BaseModel):
    text: str
    at: datetime


class DirectConversation(BaseModel):
    kind: Literal["direct"] = "direct"
    id: str
    last_message_summary: Optional[LastMessageSummary] = None


class ChannelConversation(BaseModel):
    kind: Literal["channel"] = "channel"
    id: str
    title: str
    owner_id: str
    description: Optional[str] = None
    last_message_summary: Optional[LastMessageSummary] = None


Conversation = Annotated[
    Union[DirectConversation, ChannelConversation], Field(discriminator="kind")
]


def summary_from_row(row: dict) -> Optional[LastMessageSummary]:
    if not row.get("last_message") or not row.get("last_message_at"):
        return None
    return LastMessageSummary(text=row["last_message"], at=row["last_message_at"])


# Messages
class Message(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    sender_name: Optional[str] = None
    content: str
    created_at: datetime
    # optimistic entry still waiting for the server row
    pending: bool = False

    @field_validator("created_at")
    @classmethod
    def ensure_timezone(cls, created_at: datetime) -> datetime:
        if created_at.tzinfo is None:
            return created_at.replace(tzinfo=timezone.utc)
        return created_at


class SendMessageModel(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def validate_content(cls, content: str) -> str:
        content = content.strip()
        if not content:
            raise ValueError("Message cannot be empty.")
        return content


class SendMessageResponseModel(BaseModel):
    message: Message


class GetMessagesResponseModel(BaseModel):
    messages: List[Message]


# Direct conversations
class ProfileSummary(BaseModel):
    id: str
    username: str
    avatar_url: Optional[str] = None


class CreateDirectConversationModel(BaseModel):
    user_id: str


class CreateDirectConversationResponseModel(BaseModel):
    conversation_id: str


class ChatSummary(BaseModel):
    conversation: DirectConversation
    partner: Optional[ProfileSummary] = None


class GetChatsResponseModel(BaseModel):
    chats: List[ChatSummary]


class GetChatResponseModel(BaseModel):
    conversation_id: str
    partner: ProfileSummary


# WebSocket frames
class ClientFrame(BaseModel):
    type: Literal["send"]
    content: str
