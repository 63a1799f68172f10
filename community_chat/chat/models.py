from typing import NamedTuple


class ConversationTables(NamedTuple):
    conversations: str
    participants: str
    messages: str
    key: str  # conversation id column on participants / messages


DIRECT_TABLES = ConversationTables("chats", "chat_participants", "messages", "chat_id")

chats_sql = """
CREATE TABLE chats (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    last_message TEXT,
    last_message_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT now()
);
"""

chat_participants_sql = """
CREATE TABLE chat_participants (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    chat_id UUID NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    created_at TIMESTAMPTZ DEFAULT now(),
    UNIQUE (chat_id, user_id)
);
"""

messages_sql = """
CREATE TABLE messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    chat_id UUID NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    sender_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    content TEXT NOT NULL CHECK (length(btrim(content)) > 0),
    created_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX messages_chat_created_idx ON messages (chat_id, created_at);

-- realtime inserts for the live chat view
ALTER PUBLICATION supabase_realtime ADD TABLE messages;
"""
