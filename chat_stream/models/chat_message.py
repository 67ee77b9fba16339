"""Models representing chat messages and the citations they carry."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import Feedback, MessageRole


class ChatMessage(BaseModel):
    """Represents a single message in a conversation.

    Messages streamed by the backend arrive without an identifier or a
    timestamp; the client stamps them with the id of the record they came
    in and the time they were received.  ``date`` is an ISO 8601 string
    (UTC).  An assistant message may carry a ``context`` payload, from
    which a tool message is derived.  The content of a tool message is a
    JSON document holding the citations used to ground the answer.
    """

    id: str | None = None
    role: MessageRole
    content: str = ""
    date: str | None = None
    context: str | None = None
    feedback: Feedback | None = None

    model_config = ConfigDict(extra="ignore")


class Citation(BaseModel):
    """A source document referenced by an answer."""

    content: str = ""
    id: str | None = None
    title: str | None = None
    filepath: str | None = None
    url: str | None = None
    metadata: str | None = None
    chunk_id: str | None = None
    reindex_id: str | None = None

    model_config = ConfigDict(extra="ignore")


class ToolMessageContent(BaseModel):
    """Decoded payload of a ``tool`` message."""

    citations: list[Citation] = Field(default_factory=list)
    intent: Any = None
