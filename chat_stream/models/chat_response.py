"""Response models for the chat API."""

from pydantic import BaseModel, Field

from .chat_message import ChatMessage
from .enums import HistoryStatus, MessageStatus


class ChatResponse(BaseModel):
    """Represents the outcome of a submitted question.

    ``messages`` is the authoritative display list once the exchange has
    settled.  ``conversation_id`` is ``None`` when no conversation could
    be created (for example a persisted-mode request that failed before
    the backend assigned an identifier).
    """

    conversation_id: str | None = None
    title: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)


class ErrorMessage(BaseModel):
    """Title and subtitle of an error dialog raised by the session."""

    title: str
    subtitle: str


class SessionState(BaseModel):
    """Snapshot of the chat session's UI-facing flags."""

    status: MessageStatus
    is_loading: bool
    show_loading_message: bool
    show_auth_message: bool
    clearing_chat: bool
    history_status: HistoryStatus | None = None
    current_conversation_id: str | None = None
    error_message: ErrorMessage | None = None
