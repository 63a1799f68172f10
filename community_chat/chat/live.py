"""
WebSocket chat view.

Frames sent to the client:
- `{"type": "history", "messages": [...]}` once, right after connecting
- `{"type": "message", "message": {...}}` for each message added to the feed
  (the user's own optimistic entries arrive with `pending: true`)
- `{"type": "confirmed", "provisional_id": str, "message": {...}}` when an
  optimistic entry has been stored
- `{"type": "error", "message": str, "draft": str | null, "provisional_id": ...}`

Frames read from the client: `{"type": "send", "content": str}`. Anything else
is answered with an `Unsupported frame` error.

If the history or the live subscription cannot be set up, the view still
opens: an error frame follows the (empty) history and sending keeps working.
"""

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from community_chat.core.exceptions import FeedUnavailable, InvalidMessage, SendFailed

from .feed import MessageFeed
from .schemas import ClientFrame, Message


logger = logging.getLogger(__name__)


def _message_frame(message: Message) -> dict:
    return {"type": "message", "message": message.model_dump(mode="json")}


def _error_frame(notice: str, draft=None, provisional_id=None) -> dict:
    return {
        "type": "error",
        "message": notice,
        "draft": draft,
        "provisional_id": provisional_id,
    }


async def _forward_updates(websocket: WebSocket, feed: MessageFeed) -> None:
    async for message in feed.updates():
        await websocket.send_json(_message_frame(message))


async def _handle_send(
    websocket: WebSocket, feed: MessageFeed, user_id: str, content: str
) -> None:
    try:
        pending = feed.stage(user_id, content)
    except InvalidMessage as e:
        await websocket.send_json(_error_frame(e.notice, draft=content))
        return

    await websocket.send_json(_message_frame(pending))

    try:
        message = await feed.commit(pending)
    except SendFailed as e:
        await websocket.send_json(
            _error_frame(e.notice, draft=e.draft, provisional_id=pending.id)
        )
        return

    await websocket.send_json(
        {
            "type": "confirmed",
            "provisional_id": pending.id,
            "message": message.model_dump(mode="json"),
        }
    )


async def _receive_frames(websocket: WebSocket, feed: MessageFeed, user_id: str) -> None:
    while True:
        raw = await websocket.receive_text()
        try:
            frame = ClientFrame.model_validate_json(raw)
        except ValidationError:
            await websocket.send_json(_error_frame("Unsupported frame"))
            continue

        await _handle_send(websocket, feed, user_id, frame.content)


async def _start_feed(websocket: WebSocket, feed: MessageFeed) -> None:
    """
    Subscribe, load the history and send it.

    A failed step leaves an empty (or live-only) feed plus an error frame;
    the view keeps running either way.
    """
    notice = None
    try:
        await feed.subscribe()
    except FeedUnavailable as e:
        notice = e.notice

    try:
        await feed.load_history()
    except FeedUnavailable as e:
        notice = e.notice

    await websocket.send_json(
        {
            "type": "history",
            "messages": [m.model_dump(mode="json") for m in feed.messages],
        }
    )
    if notice is not None:
        await websocket.send_json(_error_frame(notice))


async def _stop(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.wait(tasks)


async def run_chat_session(websocket: WebSocket, feed: MessageFeed, user_id: str) -> None:
    """
    Serve one open chat view until the client goes away.

    Client frames and live updates run as two tasks; the session ends when
    either of them stops, and the feed is released on every exit path.
    """
    await websocket.accept()

    tasks: list[asyncio.Task] = []
    try:
        await _start_feed(websocket, feed)

        tasks.append(asyncio.create_task(_receive_frames(websocket, feed, user_id)))
        if feed.is_open:
            tasks.append(asyncio.create_task(_forward_updates(websocket, feed)))

        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is None or isinstance(error, WebSocketDisconnect):
                continue
            logger.error(
                f"chat_view_failed conversation={feed.conversation_id} user={user_id} error={error!r}"
            )
            raise error

        logger.info(
            f"chat_view_closed conversation={feed.conversation_id} user={user_id}"
        )

    except WebSocketDisconnect:
        logger.info(
            f"chat_view_disconnected conversation={feed.conversation_id} user={user_id}"
        )

    finally:
        try:
            await _stop(tasks)
        finally:
            await feed.close()
