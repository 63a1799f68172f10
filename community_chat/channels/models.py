from community_chat.chat.models import ConversationTables


CHANNEL_TABLES = ConversationTables(
    "channels", "channel_participants", "channel_messages", "channel_id"
)


channels_sql = """
CREATE TABLE channels (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    title VARCHAR(100) NOT NULL CHECK (length(btrim(title)) > 0),
    description TEXT,
    owner_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    last_message TEXT,
    last_message_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT now(),
    updated_at TIMESTAMPTZ DEFAULT now()
);
"""

channel_participants_sql = """
CREATE TABLE channel_participants (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    channel_id UUID NOT NULL REFERENCES channels(id) ON DELETE CASCADE,
    user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    created_at TIMESTAMPTZ DEFAULT now(),

    -- a user holds at most one membership row per channel
    CONSTRAINT unique_channel_member UNIQUE (channel_id, user_id)
);
"""

channel_messages_sql = """
CREATE TABLE channel_messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    channel_id UUID NOT NULL REFERENCES channels(id) ON DELETE CASCADE,
    sender_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    content TEXT NOT NULL CHECK (length(btrim(content)) > 0),
    created_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX channel_messages_channel_created_idx
    ON channel_messages (channel_id, created_at);

ALTER PUBLICATION supabase_realtime ADD TABLE channel_messages;
"""
