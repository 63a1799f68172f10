from pydantic import BaseModel, field_validator
from datetime import datetime
from typing import List, Optional

from community_chat.chat.schemas import ChannelConversation


TITLE_MAX_LENGTH = 100


# Create / edit
class CreateChannelModel(BaseModel):
    title: str
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, title: str) -> str:
        title = title.strip()
        if not title:
            raise ValueError("Title is required.")

        if len(title) > TITLE_MAX_LENGTH:
            raise ValueError(
                f"Title must be at most {TITLE_MAX_LENGTH} characters (got {len(title)})."
            )

        return title

    @field_validator("description")
    @classmethod
    def validate_description(cls, description: Optional[str]) -> Optional[str]:
        if description is None:
            return None
        return description.strip() or None


class UpdateChannelModel(CreateChannelModel):
    pass


# Listings
class ChannelSummary(BaseModel):
    channel: ChannelConversation
    owner_username: Optional[str] = None
    participant_count: int = 0
    created_at: Optional[datetime] = None


class GetChannelsResponseModel(BaseModel):
    channels: List[ChannelSummary]


class ChannelParticipant(BaseModel):
    id: str
    username: str
    prefecture: Optional[str] = None
    occupation: Optional[str] = None


class ChannelDetailResponseModel(BaseModel):
    channel: ChannelConversation
    owner_username: Optional[str] = None
    created_at: Optional[datetime] = None
    participants: List[ChannelParticipant]
    is_member: bool
    is_owner: bool


class UserChannelsResponseModel(BaseModel):
    owned: List[ChannelSummary]
    joined: List[ChannelSummary]


class MembershipResponseModel(BaseModel):
    channel_id: str
    is_member: bool


class DeleteChannelResponseModel(BaseModel):
    channel_deleted: bool
