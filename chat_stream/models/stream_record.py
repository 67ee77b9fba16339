"""Wire-level records decoded from the backend's newline-delimited stream."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .chat_message import ChatMessage


class BackendErrorDetail(BaseModel):
    """Structured form of a backend error: ``{"message": "..."}``."""

    message: str | None = None

    model_config = ConfigDict(extra="allow")


class HistoryMetadata(BaseModel):
    """Conversation identity assigned by a history-enabled backend."""

    conversation_id: str
    title: str | None = None
    date: str | None = None

    model_config = ConfigDict(extra="ignore")


class StreamChoice(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @field_validator("messages", mode="before")
    def null_messages_are_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class StreamRecord(BaseModel):
    """One JSON record of the response stream.

    ``error`` is either a plain string or a :class:`BackendErrorDetail`;
    :attr:`error_text` normalises both shapes into a single string, or
    ``None`` when the backend did not provide usable text.
    """

    id: str | None = None
    choices: list[StreamChoice] = Field(default_factory=list)
    error: str | BackendErrorDetail | None = None
    history_metadata: HistoryMetadata | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("choices", mode="before")
    def null_choices_are_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_error(self) -> bool:
        if isinstance(self.error, BackendErrorDetail):
            return True
        return bool(self.error)

    @property
    def error_text(self) -> str | None:
        if isinstance(self.error, BackendErrorDetail):
            return self.error.message or None
        return self.error or None

    @property
    def messages(self) -> list[ChatMessage]:
        """Messages of the first choice, the only one the backend streams."""
        if not self.choices:
            return []
        return self.choices[0].messages
