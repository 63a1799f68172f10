import logging

from fastapi import APIRouter, Depends, WebSocket

from community_chat.chat.feed import MessageFeed
from community_chat.chat.live import run_chat_session
from community_chat.chat.participation import ParticipationGate
from community_chat.chat.schemas import (
    ChannelConversation,
    GetMessagesResponseModel,
    SendMessageModel,
    SendMessageResponseModel,
)
from community_chat.core.config import Settings
from community_chat.core.data_access import DataAccess
from community_chat.core.dependencies import (
    get_channel_service,
    get_current_user_id,
    get_data_access,
    get_gate,
    get_settings,
    get_websocket_user_id,
)
from community_chat.core.exceptions import ChannelNotFound, NotAMember

from .schemas import (
    ChannelDetailResponseModel,
    CreateChannelModel,
    DeleteChannelResponseModel,
    GetChannelsResponseModel,
    MembershipResponseModel,
    UpdateChannelModel,
)
from .service import ChannelService


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=GetChannelsResponseModel, status_code=200)
async def list_channels(
    user_id: str = Depends(get_current_user_id),
    channels: ChannelService = Depends(get_channel_service),
):
    """
    Every channel, newest first, with owner username and participant count.
    """
    return {"channels": await channels.list_channels()}


@router.post("", response_model=ChannelConversation, status_code=201)
async def create_channel(
    data: CreateChannelModel,
    user_id: str = Depends(get_current_user_id),
    channels: ChannelService = Depends(get_channel_service),
):
    """
    Create a channel owned by the authenticated user.

    The owner is enrolled as the first participant.

    **Input**
    - `title`: 1-100 characters after trimming
    - `description`: optional

    **Errors**
    - 422: Missing or too long title
    - 500: Error creating channel
    """
    return await channels.create_channel(user_id, data.title, data.description)


@router.get("/{channel_id}", response_model=ChannelDetailResponseModel, status_code=200)
async def get_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    channels: ChannelService = Depends(get_channel_service),
):
    """
    Channel detail with its participants.

    `is_member` tells the client whether to offer the chat view (members) or
    the join button (everyone else). `is_owner` unlocks edit and delete.

    **Errors**
    - 404: Channel not found
    """
    return await channels.channel_detail(channel_id, viewer_id=user_id)


@router.patch("/{channel_id}", response_model=ChannelConversation, status_code=200)
async def update_channel(
    channel_id: str,
    data: UpdateChannelModel,
    user_id: str = Depends(get_current_user_id),
    channels: ChannelService = Depends(get_channel_service),
):
    """
    Edit a channel's title and description. Owner only.

    **Errors**
    - 400: Nothing changed
    - 403: Not the owner
    - 404: Channel not found
    """
    return await channels.update_channel(
        channel_id, user_id, data.title, data.description
    )


@router.delete(
    "/{channel_id}", response_model=DeleteChannelResponseModel, status_code=200
)
async def delete_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    channels: ChannelService = Depends(get_channel_service),
):
    """
    Delete a channel together with its memberships and messages. Owner only.

    **Errors**
    - 403: Not the owner
    - 404: Channel not found
    """
    await channels.delete_channel(channel_id, user_id)
    return {"channel_deleted": True}


@router.post(
    "/{channel_id}/membership", response_model=MembershipResponseModel, status_code=200
)
async def join_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    channels: ChannelService = Depends(get_channel_service),
    gate: ParticipationGate = Depends(get_gate),
):
    """
    Join a channel. Joining a channel you are already in changes nothing.

    **Errors**
    - 404: Channel not found
    - 500: Error joining channel
    """
    await channels.get_channel(channel_id)
    await gate.join(channel_id, user_id)
    return {"channel_id": channel_id, "is_member": True}


@router.delete(
    "/{channel_id}/membership", response_model=MembershipResponseModel, status_code=200
)
async def leave_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    gate: ParticipationGate = Depends(get_gate),
):
    """
    Leave a channel. Leaving a channel you are not in changes nothing.

    **Errors**
    - 500: Error leaving channel
    """
    await gate.leave(channel_id, user_id)
    return {"channel_id": channel_id, "is_member": False}


@router.get(
    "/{channel_id}/messages", response_model=GetMessagesResponseModel, status_code=200
)
async def get_channel_messages(
    channel_id: str,
    user_id: str = Depends(get_current_user_id),
    gate: ParticipationGate = Depends(get_gate),
    data: DataAccess = Depends(get_data_access),
):
    """
    Message history of a channel, oldest first. Members only.

    **Errors**
    - 403: Not a member
    - 500: Error loading messages
    """
    await gate.require_member(channel_id, user_id)

    feed = MessageFeed(data, channel_id, kind="channel")
    return {"messages": await feed.load_history()}


@router.post(
    "/{channel_id}/messages", response_model=SendMessageResponseModel, status_code=201
)
async def send_channel_message(
    channel_id: str,
    body: SendMessageModel,
    user_id: str = Depends(get_current_user_id),
    gate: ParticipationGate = Depends(get_gate),
    data: DataAccess = Depends(get_data_access),
):
    """
    Post a message into a channel. Members only.

    **Errors**
    - 403: Not a member
    - 422: Empty message
    - 500: Error sending message
    """
    await gate.require_member(channel_id, user_id)

    feed = MessageFeed(data, channel_id, kind="channel")
    message = await feed.send(user_id, body.content)
    return {"message": message}


@router.websocket("/{channel_id}/chat")
async def channel_chat_view(
    websocket: WebSocket,
    channel_id: str,
    user_id: str = Depends(get_websocket_user_id),
    channels: ChannelService = Depends(get_channel_service),
    gate: ParticipationGate = Depends(get_gate),
    data: DataAccess = Depends(get_data_access),
    settings: Settings = Depends(get_settings),
):
    """Live channel chat for members; see `community_chat.chat.live`."""
    try:
        await channels.get_channel(channel_id)
        await gate.require_member(channel_id, user_id)
    except (ChannelNotFound, NotAMember) as e:
        await websocket.close(code=1008, reason=e.notice)
        return

    feed = MessageFeed(
        data, channel_id, kind="channel", dedup_window=settings.dedup_window
    )
    await run_chat_session(websocket, feed, user_id)
