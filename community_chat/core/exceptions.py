"""
Error taxonomy for the conversation layer.

Every error carries a short `notice` that is safe to show to the user
(toast / HTTP detail / WebSocket error frame) and the HTTP status the
routers answer with. The underlying failure only goes to the log.
"""


class ChatError(Exception):
    notice = "Something went wrong."
    status_code = 500

    def __init__(self, notice: str | None = None):
        if notice is not None:
            self.notice = notice
        super().__init__(self.notice)


class BackendError(ChatError):
    """Generic failure reported by the hosted backend."""

    notice = "Server/Database error."

    def __init__(self, operation: str, table: str, cause: Exception | None = None):
        self.operation = operation
        self.table = table
        self.cause = cause
        super().__init__()

    def __str__(self) -> str:
        return f"{self.operation} on {self.table} failed: {self.cause!r}"


class ResolutionFailed(ChatError):
    notice = "Error starting chat"


class FeedUnavailable(ChatError):
    notice = "Error loading messages"


class SendFailed(ChatError):
    notice = "Error sending message"

    def __init__(self, draft: str, notice: str | None = None):
        # text to put back into the input field
        self.draft = draft
        super().__init__(notice)


class MembershipChangeFailed(ChatError):
    notice = "Error updating channel membership"


class InvalidMessage(ChatError):
    notice = "Message cannot be empty."
    status_code = 422


class ConversationNotFound(ChatError):
    notice = "Conversation not found"
    status_code = 404


class ChannelNotFound(ChatError):
    notice = "Channel not found"
    status_code = 404


class NotAMember(ChatError):
    notice = "You are not a member of this conversation"
    status_code = 403


class ChannelPermissionDenied(ChatError):
    notice = "Only the channel owner can do that"
    status_code = 403


class NoChanges(ChatError):
    notice = "No changes to save"
    status_code = 400
