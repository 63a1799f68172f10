import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from community_chat.chat.participation import ParticipationGate
from community_chat.chat.schemas import ChannelConversation, summary_from_row
from community_chat.core.data_access import DataAccess, Order, eq, in_
from community_chat.core.exceptions import (
    BackendError,
    ChannelNotFound,
    ChannelPermissionDenied,
    ChatError,
    NoChanges,
)
from community_chat.utils.get_username import get_profiles, get_username

from .models import CHANNEL_TABLES
from .schemas import ChannelDetailResponseModel, ChannelParticipant, ChannelSummary


logger = logging.getLogger(__name__)

CHANNEL_COLUMNS = (
    "id, title, description, owner_id, last_message, last_message_at, created_at"
)


def _to_conversation(row: dict) -> ChannelConversation:
    return ChannelConversation(
        id=str(row["id"]),
        title=row["title"],
        owner_id=str(row["owner_id"]),
        description=row.get("description"),
        last_message_summary=summary_from_row(row),
    )


class ChannelService:
    def __init__(self, data: DataAccess, gate: Optional[ParticipationGate] = None):
        self.data = data
        self.gate = gate or ParticipationGate(data)
        self.tables = CHANNEL_TABLES

    async def create_channel(
        self, owner_id: str, title: str, description: Optional[str] = None
    ) -> ChannelConversation:
        """Create a channel and enroll its owner as the first participant."""
        try:
            created = await self.data.insert(
                self.tables.conversations,
                [
                    {
                        "title": title,
                        "description": description,
                        "owner_id": str(owner_id),
                    }
                ],
            )
        except BackendError as e:
            logger.error(f"channel_create_failed owner={owner_id} error={e}")
            raise ChatError("Error creating channel") from e

        channel = _to_conversation(created[0])
        await self.gate.join(channel.id, owner_id)

        logger.info(f"channel_created id={channel.id} owner={owner_id}")
        return channel

    async def get_channel_row(self, channel_id: str) -> dict:
        rows = await self.data.query(
            self.tables.conversations,
            [eq("id", str(channel_id))],
            columns=CHANNEL_COLUMNS,
            limit=1,
        )
        if not rows:
            raise ChannelNotFound()
        return rows[0]

    async def get_channel(self, channel_id: str) -> ChannelConversation:
        return _to_conversation(await self.get_channel_row(channel_id))

    async def list_channels(self) -> list[ChannelSummary]:
        """All channels, newest first."""
        rows = await self.data.query(
            self.tables.conversations,
            columns=CHANNEL_COLUMNS,
            order=[Order("created_at", desc=True)],
        )
        return await self._summaries(rows)

    async def list_participants(self, channel_id: str) -> list[ChannelParticipant]:
        t = self.tables
        rows = await self.data.query(
            t.participants,
            [eq(t.key, str(channel_id))],
            columns="user_id",
            order=[Order("created_at")],
        )
        user_ids = [str(row["user_id"]) for row in rows]
        profiles = await get_profiles(
            self.data, user_ids, columns="id, username, prefecture, occupation"
        )
        return [
            ChannelParticipant(**profiles[user_id])
            for user_id in user_ids
            if user_id in profiles
        ]

    async def channel_detail(
        self, channel_id: str, viewer_id: Optional[str] = None
    ) -> ChannelDetailResponseModel:
        row = await self.get_channel_row(channel_id)
        channel = _to_conversation(row)

        owner_username = await get_username(self.data, channel.owner_id)
        participants = await self.list_participants(channel.id)
        is_member = False
        if viewer_id is not None:
            is_member = await self.gate.check_membership(channel.id, viewer_id)

        return ChannelDetailResponseModel(
            channel=channel,
            owner_username=owner_username,
            created_at=row.get("created_at"),
            participants=participants,
            is_member=is_member,
            is_owner=viewer_id is not None and str(viewer_id) == channel.owner_id,
        )

    async def _owned_channel(self, channel_id: str, user_id: str) -> ChannelConversation:
        channel = await self.get_channel(channel_id)
        if channel.owner_id != str(user_id):
            raise ChannelPermissionDenied()
        return channel

    async def update_channel(
        self,
        channel_id: str,
        owner_id: str,
        title: str,
        description: Optional[str] = None,
    ) -> ChannelConversation:
        channel = await self._owned_channel(channel_id, owner_id)
        if title == channel.title and description == channel.description:
            raise NoChanges()

        try:
            updated = await self.data.update(
                self.tables.conversations,
                {
                    "title": title,
                    "description": description,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
                [eq("id", channel.id), eq("owner_id", str(owner_id))],
            )
        except BackendError as e:
            logger.error(f"channel_update_failed id={channel_id} error={e}")
            raise ChatError("Error updating channel") from e

        logger.info(f"channel_updated id={channel.id}")
        if updated:
            return _to_conversation(updated[0])
        return channel.model_copy(update={"title": title, "description": description})

    async def delete_channel(self, channel_id: str, owner_id: str) -> None:
        """Owner-only; participants and messages go with the channel."""
        channel = await self._owned_channel(channel_id, owner_id)
        try:
            await self.data.delete(
                self.tables.conversations,
                [eq("id", channel.id), eq("owner_id", str(owner_id))],
            )
        except BackendError as e:
            logger.error(f"channel_delete_failed id={channel_id} error={e}")
            raise ChatError("Error deleting channel") from e

        logger.info(f"channel_deleted id={channel.id} owner={owner_id}")

    async def user_channels(
        self, user_id: str
    ) -> tuple[list[ChannelSummary], list[ChannelSummary]]:
        """Channels the user owns, and the other channels they joined."""
        t = self.tables
        user_id = str(user_id)

        owned_rows = await self.data.query(
            t.conversations,
            [eq("owner_id", user_id)],
            columns=CHANNEL_COLUMNS,
            order=[Order("created_at", desc=True)],
        )
        owned_ids = {str(row["id"]) for row in owned_rows}

        memberships = await self.data.query(
            t.participants, [eq("user_id", user_id)], columns=t.key
        )
        joined_ids = [
            str(row[t.key]) for row in memberships if str(row[t.key]) not in owned_ids
        ]
        joined_rows = []
        if joined_ids:
            joined_rows = await self.data.query(
                t.conversations,
                [in_("id", joined_ids)],
                columns=CHANNEL_COLUMNS,
                order=[Order("created_at", desc=True)],
            )

        return await self._summaries(owned_rows), await self._summaries(joined_rows)

    async def _summaries(self, rows: list[dict]) -> list[ChannelSummary]:
        if not rows:
            return []
        t = self.tables

        channel_ids = [str(row["id"]) for row in rows]
        memberships = await self.data.query(
            t.participants, [in_(t.key, channel_ids)], columns=t.key
        )
        counts = Counter(str(row[t.key]) for row in memberships)
        owners = await get_profiles(
            self.data, [row["owner_id"] for row in rows], columns="id, username"
        )

        return [
            ChannelSummary(
                channel=_to_conversation(row),
                owner_username=owners.get(str(row["owner_id"]), {}).get("username"),
                participant_count=counts[str(row["id"])],
                created_at=row.get("created_at"),
            )
            for row in rows
        ]
