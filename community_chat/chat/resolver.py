import logging

from community_chat.core.data_access import DataAccess, Order, eq, in_, neq
from community_chat.core.exceptions import (
    BackendError,
    ConversationNotFound,
    ResolutionFailed,
)
from community_chat.utils.get_username import get_profiles

from .models import DIRECT_TABLES
from .schemas import ChatSummary, DirectConversation, ProfileSummary, summary_from_row


logger = logging.getLogger(__name__)


class ConversationResolver:
    """Finds or creates the direct conversation two users share."""

    def __init__(self, data: DataAccess):
        self.data = data
        self.tables = DIRECT_TABLES

    async def resolve_direct_conversation(
        self, current_user_id: str, other_user_id: str
    ) -> str:
        """
        Return the id of the direct conversation between the two users.

        **Process**
        1. Collect every conversation the current user takes part in.
        2. Within that set, look for one the other user also takes part in.
        3. If none exists, create the conversation and add both users as
           participants in a single insert.

        A failed participant insert leaves the new conversation row behind;
        nobody can reach it, so it is not cleaned up.

        **Errors**
        - `ResolutionFailed`: a backend call failed, or the users are the same.
        """
        current_user_id, other_user_id = str(current_user_id), str(other_user_id)
        if current_user_id == other_user_id:
            raise ResolutionFailed("You cannot start a chat with yourself.")

        try:
            conversation_id = await self._find_shared(current_user_id, other_user_id)
            if conversation_id is not None:
                return conversation_id

            return await self._create(current_user_id, other_user_id)

        except BackendError as e:
            logger.error(
                f"resolve_direct_failed user={current_user_id} other={other_user_id} error={e}"
            )
            raise ResolutionFailed() from e

    async def _find_shared(self, current_user_id: str, other_user_id: str):
        t = self.tables

        mine = await self.data.query(
            t.participants, [eq("user_id", current_user_id)], columns=t.key
        )
        conversation_ids = [row[t.key] for row in mine]
        if not conversation_ids:
            return None

        shared = await self.data.query(
            t.participants,
            [eq("user_id", other_user_id), in_(t.key, conversation_ids)],
            columns=t.key,
            order=[Order("created_at")],
        )
        if not shared:
            return None

        if len(shared) > 1:
            # two first contacts raced; the oldest one wins
            logger.warning(
                f"duplicate_direct_conversations users={current_user_id},{other_user_id} "
                f"count={len(shared)}"
            )
        return str(shared[0][t.key])

    async def _create(self, current_user_id: str, other_user_id: str) -> str:
        t = self.tables

        created = await self.data.insert(t.conversations, [{}])
        conversation_id = str(created[0]["id"])

        await self.data.insert(
            t.participants,
            [
                {t.key: conversation_id, "user_id": current_user_id},
                {t.key: conversation_id, "user_id": other_user_id},
            ],
        )

        logger.info(
            f"direct_conversation_created id={conversation_id} "
            f"users={current_user_id},{other_user_id}"
        )
        return conversation_id

    async def get_partner(self, conversation_id: str, user_id: str) -> ProfileSummary:
        """The other participant of a direct conversation the user is part of."""
        t = self.tables

        rows = await self.data.query(
            t.participants, [eq(t.key, str(conversation_id))], columns="user_id"
        )
        user_ids = [str(row["user_id"]) for row in rows]
        if str(user_id) not in user_ids:
            raise ConversationNotFound()

        other_ids = [uid for uid in user_ids if uid != str(user_id)]
        if not other_ids:
            raise ConversationNotFound()

        profiles = await get_profiles(self.data, other_ids)
        profile = profiles.get(other_ids[0])
        if profile is None:
            raise ConversationNotFound("Participant could not be found.")
        return ProfileSummary(**profile)

    async def list_direct_conversations(self, user_id: str) -> list[ChatSummary]:
        """Inbox: the user's direct conversations, most recent activity first."""
        t = self.tables
        user_id = str(user_id)

        mine = await self.data.query(
            t.participants, [eq("user_id", user_id)], columns=t.key
        )
        conversation_ids = [str(row[t.key]) for row in mine]
        if not conversation_ids:
            return []

        conversations = await self.data.query(
            t.conversations,
            [in_("id", conversation_ids)],
            columns="id, last_message, last_message_at",
        )
        partners = await self.data.query(
            t.participants,
            [in_(t.key, conversation_ids), neq("user_id", user_id)],
            columns=f"{t.key}, user_id",
        )
        partner_of = {str(row[t.key]): str(row["user_id"]) for row in partners}
        profiles = await get_profiles(self.data, partner_of.values())

        chats = []
        for row in conversations:
            conversation = DirectConversation(
                id=str(row["id"]), last_message_summary=summary_from_row(row)
            )
            profile = profiles.get(partner_of.get(conversation.id, ""))
            chats.append(
                ChatSummary(
                    conversation=conversation,
                    partner=ProfileSummary(**profile) if profile else None,
                )
            )

        def activity(chat: ChatSummary):
            summary = chat.conversation.last_message_summary
            return (summary is not None, summary.at.timestamp() if summary else 0.0)

        return sorted(chats, key=activity, reverse=True)
