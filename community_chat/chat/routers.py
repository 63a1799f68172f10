import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket

from community_chat.core.config import Settings
from community_chat.core.data_access import DataAccess
from community_chat.core.dependencies import (
    get_current_user_id,
    get_data_access,
    get_gate,
    get_resolver,
    get_settings,
    get_websocket_user_id,
)
from community_chat.core.exceptions import NotAMember

from .feed import MessageFeed
from .live import run_chat_session
from .participation import ParticipationGate
from .resolver import ConversationResolver
from .schemas import (
    CreateDirectConversationModel,
    CreateDirectConversationResponseModel,
    GetChatResponseModel,
    GetChatsResponseModel,
    GetMessagesResponseModel,
    SendMessageModel,
    SendMessageResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/direct",
    response_model=CreateDirectConversationResponseModel,
    status_code=200,
)
async def get_or_create_direct_conversation(
    data: CreateDirectConversationModel,
    user_id: str = Depends(get_current_user_id),
    resolver: ConversationResolver = Depends(get_resolver),
):
    """
    Get or create a direct (1-on-1) conversation with another user.

    Used when a user clicks "Message" on someone's profile. If the two users
    already share a direct conversation it is returned, otherwise one is
    created with both users as participants.

    **Input**
    - `user_id`: id of the user to chat with

    **Returns**
    - `conversation_id`: id of the direct conversation

    **Errors**
    - 400: Trying to chat with yourself
    - 401: Unauthorized
    - 500: Error starting chat
    """
    if data.user_id == user_id:
        raise HTTPException(status_code=400, detail="You cannot start a chat with yourself.")

    conversation_id = await resolver.resolve_direct_conversation(user_id, data.user_id)
    return {"conversation_id": conversation_id}


@router.get("", response_model=GetChatsResponseModel, status_code=200)
async def get_chats(
    user_id: str = Depends(get_current_user_id),
    resolver: ConversationResolver = Depends(get_resolver),
):
    """
    Inbox: every direct conversation of the authenticated user.

    Each entry carries the other participant's profile and the last message
    summary. Conversations with the most recent activity come first; ones
    without any message come last.
    """
    return {"chats": await resolver.list_direct_conversations(user_id)}


@router.get("/{conversation_id}", response_model=GetChatResponseModel, status_code=200)
async def get_chat(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    resolver: ConversationResolver = Depends(get_resolver),
):
    """
    The other participant of a direct conversation.

    **Errors**
    - 404: The conversation does not exist or the user is not part of it
    """
    partner = await resolver.get_partner(conversation_id, user_id)
    return {"conversation_id": conversation_id, "partner": partner}


@router.get(
    "/{conversation_id}/messages",
    response_model=GetMessagesResponseModel,
    status_code=200,
)
async def get_messages(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    gate: ParticipationGate = Depends(get_gate),
    data: DataAccess = Depends(get_data_access),
):
    """
    Full message history of a direct conversation, oldest first.

    **Errors**
    - 403: The user is not a participant
    - 500: Error loading messages
    """
    await gate.require_direct_participant(conversation_id, user_id)

    feed = MessageFeed(data, conversation_id, kind="direct")
    return {"messages": await feed.load_history()}


@router.post(
    "/{conversation_id}/messages",
    response_model=SendMessageResponseModel,
    status_code=201,
)
async def send_message(
    conversation_id: str,
    body: SendMessageModel,
    user_id: str = Depends(get_current_user_id),
    gate: ParticipationGate = Depends(get_gate),
    data: DataAccess = Depends(get_data_access),
):
    """
    Send a message to a direct conversation the user takes part in.

    **Input**
    - `content`: Message text (trimmed, must not be empty)

    **Returns**
    - The stored message

    **Errors**
    - 403: The user is not a participant
    - 422: Empty message
    - 500: Error sending message
    """
    await gate.require_direct_participant(conversation_id, user_id)

    feed = MessageFeed(data, conversation_id, kind="direct")
    message = await feed.send(user_id, body.content)
    return {"message": message}


@router.websocket("/{conversation_id}")
async def direct_chat_view(
    websocket: WebSocket,
    conversation_id: str,
    user_id: str = Depends(get_websocket_user_id),
    gate: ParticipationGate = Depends(get_gate),
    data: DataAccess = Depends(get_data_access),
    settings: Settings = Depends(get_settings),
):
    """Live direct chat; see `community_chat.chat.live` for the frame format."""
    try:
        await gate.require_direct_participant(conversation_id, user_id)
    except NotAMember:
        await websocket.close(code=1008, reason="Not a participant")
        return

    feed = MessageFeed(
        data, conversation_id, kind="direct", dedup_window=settings.dedup_window
    )
    await run_chat_session(websocket, feed, user_id)
