import logging

from community_chat.channels.models import CHANNEL_TABLES
from community_chat.core.data_access import DataAccess, eq
from community_chat.core.exceptions import (
    BackendError,
    MembershipChangeFailed,
    NotAMember,
)

from .models import DIRECT_TABLES


logger = logging.getLogger(__name__)


class ParticipationGate:
    """
    Channel membership checks and join/leave transitions.

    Channel membership is an explicit participant row. Direct conversations
    have implicit, permanent membership; the gate only checks the row to
    authorize the chat view.
    """

    def __init__(self, data: DataAccess):
        self.data = data

    async def check_membership(self, channel_id: str, user_id: str) -> bool:
        t = CHANNEL_TABLES
        count = await self.data.count(
            t.participants, [eq(t.key, str(channel_id)), eq("user_id", str(user_id))]
        )
        return count > 0

    async def join(self, channel_id: str, user_id: str) -> None:
        """Add the user to the channel. Joining twice is a no-op."""
        t = CHANNEL_TABLES
        try:
            if await self.check_membership(channel_id, user_id):
                return
            await self.data.insert(
                t.participants, [{t.key: str(channel_id), "user_id": str(user_id)}]
            )
        except BackendError as e:
            logger.error(f"join_failed channel={channel_id} user={user_id} error={e}")
            raise MembershipChangeFailed("Error joining channel") from e

        logger.info(f"channel_joined channel={channel_id} user={user_id}")

    async def leave(self, channel_id: str, user_id: str) -> None:
        """Remove the user from the channel. Leaving as a non-member is a no-op."""
        t = CHANNEL_TABLES
        try:
            await self.data.delete(
                t.participants,
                [eq(t.key, str(channel_id)), eq("user_id", str(user_id))],
            )
        except BackendError as e:
            logger.error(f"leave_failed channel={channel_id} user={user_id} error={e}")
            raise MembershipChangeFailed("Error leaving channel") from e

        logger.info(f"channel_left channel={channel_id} user={user_id}")

    async def require_member(self, channel_id: str, user_id: str) -> None:
        if not await self.check_membership(channel_id, user_id):
            raise NotAMember("You are not a member of this channel")

    async def require_direct_participant(
        self, conversation_id: str, user_id: str
    ) -> None:
        t = DIRECT_TABLES
        count = await self.data.count(
            t.participants,
            [eq(t.key, str(conversation_id)), eq("user_id", str(user_id))],
        )
        if count == 0:
            raise NotAMember()
