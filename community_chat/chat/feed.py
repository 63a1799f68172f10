"""
Live message feed for one conversation.

`MessageFeed` loads the history of a direct chat or a channel, keeps a
realtime subscription to new message rows, and merges three sources into
one ordered list: the initial load, live insert events, and the user's
own optimistic sends. Every server row goes through `_reconcile`, which
is where duplicates are dropped:

1. a row whose id was already applied is ignored;
2. a row that matches a pending optimistic entry (same sender, same
   content) confirms that entry instead of adding a new one;
3. a row that matches an already rendered message from the same sender
   with the same content, created within `dedup_window`, is ignored;
4. anything else is appended.

The list is re-sorted by `(created_at, id)` after every change.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Optional

from community_chat.channels.models import CHANNEL_TABLES
from community_chat.core.data_access import DataAccess, Order, Subscription, eq
from community_chat.core.exceptions import (
    BackendError,
    FeedUnavailable,
    InvalidMessage,
    SendFailed,
)
from community_chat.utils.get_username import get_profiles

from .models import DIRECT_TABLES
from .schemas import Message


logger = logging.getLogger(__name__)

DEFAULT_DEDUP_WINDOW = timedelta(seconds=3)
MESSAGE_COLUMNS = "id, sender_id, content, created_at"
TABLES = {
    "direct": DIRECT_TABLES,
    "channel": CHANNEL_TABLES,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageFeed:
    def __init__(
        self,
        data: DataAccess,
        conversation_id: str,
        kind: str = "direct",
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.data = data
        self.conversation_id = str(conversation_id)
        self.kind = kind
        self.tables = TABLES[kind]
        self.dedup_window = dedup_window
        self._clock = clock

        self._messages: list[Message] = []
        self._applied_ids: set[str] = set()
        self._names: dict[str, Optional[str]] = {}
        self._subscription: Optional[Subscription] = None

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def is_open(self) -> bool:
        return self._subscription is not None

    async def __aenter__(self) -> "MessageFeed":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> tuple[list[Message], Subscription]:
        """
        Subscribe to new rows, then load the history.

        Subscribing first means nothing inserted during the load is missed;
        rows seen by both paths are dropped by id.
        """
        if self._subscription is not None:
            return self.messages, self._subscription

        await self.subscribe()
        try:
            await self.load_history()
        except FeedUnavailable:
            await self._release()
            raise

        logger.info(
            f"feed_opened kind={self.kind} conversation={self.conversation_id} "
            f"messages={len(self._messages)}"
        )
        return self.messages, self._subscription

    async def subscribe(self) -> Subscription:
        """Start receiving live inserts without loading the history."""
        if self._subscription is not None:
            return self._subscription

        t = self.tables
        try:
            self._subscription = await self.data.subscribe_insert(
                t.messages, eq(t.key, self.conversation_id)
            )
        except BackendError as e:
            logger.error(
                f"feed_subscribe_failed kind={self.kind} conversation={self.conversation_id} error={e}"
            )
            raise FeedUnavailable() from e
        return self._subscription

    async def load_history(self) -> list[Message]:
        """Fetch stored messages oldest first, with sender names."""
        t = self.tables
        try:
            rows = await self.data.query(
                t.messages,
                [eq(t.key, self.conversation_id)],
                order=[Order("created_at"), Order("id")],
                columns=MESSAGE_COLUMNS,
            )
            await self._load_names(row["sender_id"] for row in rows)
        except BackendError as e:
            logger.error(
                f"feed_load_failed kind={self.kind} conversation={self.conversation_id} error={e}"
            )
            raise FeedUnavailable() from e

        # stored rows are distinct messages; only the id check applies
        for row in rows:
            if str(row["id"]) not in self._applied_ids:
                self._insert(self._to_message(row))
        return self.messages

    async def close(self) -> None:
        if self._subscription is None:
            return
        await self._release()
        logger.info(f"feed_closed kind={self.kind} conversation={self.conversation_id}")

    async def _release(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            await self.data.unsubscribe(subscription)
        except BackendError as e:
            # the subscription is closed locally either way
            logger.warning(
                f"feed_unsubscribe_failed conversation={self.conversation_id} error={e}"
            )

    def updates(self) -> AsyncIterator[Message]:
        """Iterate over the messages that live events add to the feed."""
        if self._subscription is None:
            raise RuntimeError("Feed is not open.")
        return self._follow(self._subscription)

    async def _follow(self, subscription: Subscription) -> AsyncIterator[Message]:
        async for row in subscription:
            message = await self.apply_event(row)
            if message is not None:
                yield message

    async def apply_event(self, row: dict) -> Optional[Message]:
        """Merge one live insert event; returns the message if it was added."""
        if str(row.get(self.tables.key)) != self.conversation_id:
            return None
        if not str(row.get("content") or "").strip():
            return None

        try:
            await self._load_names([row["sender_id"]])
        except BackendError as e:
            logger.warning(
                f"sender_lookup_failed sender={row.get('sender_id')} error={e}"
            )

        message, added = self._reconcile(row)
        return message if added else None

    def stage(self, sender_id: str, text: str) -> Message:
        """Append an optimistic entry for text the user just submitted."""
        content = (text or "").strip()
        if not content:
            raise InvalidMessage()

        pending = Message(
            id=f"local-{uuid.uuid4().hex}",
            conversation_id=self.conversation_id,
            sender_id=str(sender_id),
            sender_name=self._names.get(str(sender_id)),
            content=content,
            created_at=self._clock(),
            pending=True,
        )
        self._messages.append(pending)
        self._sort()
        return pending

    async def commit(self, pending: Message) -> Message:
        """
        Write a staged message and swap the optimistic entry for the stored row.

        On failure the optimistic entry is dropped and `SendFailed` carries
        the text back to the caller.
        """
        t = self.tables
        try:
            created = await self.data.insert(
                t.messages,
                [
                    {
                        t.key: self.conversation_id,
                        "sender_id": pending.sender_id,
                        "content": pending.content,
                    }
                ],
            )
            if not created:
                raise BackendError("insert", t.messages)
            await self._load_names([pending.sender_id])
        except BackendError as e:
            logger.error(
                f"send_failed conversation={self.conversation_id} sender={pending.sender_id} error={e}"
            )
            self._drop(pending.id)
            raise SendFailed(draft=pending.content) from e

        message, _ = self._reconcile(created[0], provisional_id=pending.id)
        await self._touch_summary(message)
        return message

    async def send(self, sender_id: str, text: str) -> Message:
        return await self.commit(self.stage(sender_id, text))

    async def _touch_summary(self, message: Message) -> None:
        try:
            await self.data.update(
                self.tables.conversations,
                {
                    "last_message": message.content,
                    "last_message_at": message.created_at.isoformat(),
                },
                [eq("id", self.conversation_id)],
            )
        except BackendError as e:
            # message is already stored; only the inbox ordering is stale
            logger.warning(
                f"last_message_update_failed conversation={self.conversation_id} error={e}"
            )

    async def _load_names(self, sender_ids) -> None:
        missing = {str(i) for i in sender_ids} - self._names.keys()
        if not missing:
            return
        profiles = await get_profiles(self.data, missing, columns="id, username")
        for sender_id in missing:
            profile = profiles.get(sender_id)
            self._names[sender_id] = profile["username"] if profile else None

    def _to_message(self, row: dict) -> Message:
        sender_id = str(row["sender_id"])
        return Message(
            id=str(row["id"]),
            conversation_id=self.conversation_id,
            sender_id=sender_id,
            sender_name=self._names.get(sender_id),
            content=row["content"],
            created_at=row.get("created_at") or self._clock(),
        )

    def _reconcile(
        self, row: dict, provisional_id: Optional[str] = None
    ) -> tuple[Message, bool]:
        """Merge a server row; returns the rendered message and whether it is new."""
        message = self._to_message(row)

        if message.id in self._applied_ids:
            if provisional_id is not None:
                self._drop(provisional_id)
            return self._find(message.id) or message, False

        pending = self._find(provisional_id) if provisional_id else None
        if pending is None:
            pending = self._match(message, pending=True)
        if pending is not None:
            self._drop(pending.id)
            self._insert(message)
            return message, False

        duplicate = self._match(message, pending=False)
        if duplicate is not None:
            logger.debug(
                f"duplicate_message_dropped id={message.id} same_as={duplicate.id}"
            )
            return duplicate, False

        self._insert(message)
        return message, True

    def _match(self, message: Message, pending: bool) -> Optional[Message]:
        for existing in self._messages:
            if existing.pending != pending:
                continue
            if (existing.sender_id, existing.content, existing.conversation_id) != (
                message.sender_id,
                message.content,
                message.conversation_id,
            ):
                continue
            if pending or abs(existing.created_at - message.created_at) <= self.dedup_window:
                return existing
        return None

    def _find(self, message_id: Optional[str]) -> Optional[Message]:
        for existing in self._messages:
            if existing.id == message_id:
                return existing
        return None

    def _insert(self, message: Message) -> None:
        self._applied_ids.add(message.id)
        self._messages.append(message)
        self._sort()

    def _drop(self, message_id: str) -> None:
        self._messages = [m for m in self._messages if m.id != message_id]

    def _sort(self) -> None:
        self._messages.sort(key=lambda m: (m.created_at, m.id))
