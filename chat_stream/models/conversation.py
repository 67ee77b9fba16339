"""Model representing a full conversation."""

from __future__ import annotations

from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from .chat_message import ChatMessage
from .enums import MessageRole


class Conversation(BaseModel):
    """Represents a conversation between a user and the assistant.

    In stateless mode the identifier is generated by the client and the
    conversation only lives in memory.  In persisted mode the backend
    assigns the identifier, title and date through the
    ``history_metadata`` of the first streamed exchange.  The
    ``messages`` field contains the chronological sequence of messages;
    settled messages are never reordered or removed by an exchange.
    """

    id: str = Field(..., description="Unique identifier for the conversation.")
    title: Optional[str] = Field(
        default=None,
        description="Conversation title.  Derived from the first question or assigned by the backend."
    )
    messages: List[ChatMessage] = Field(
        default_factory=list,
        description="Chronological list of messages in the conversation."
    )
    date: Optional[str] = Field(
        default=None,
        description="ISO 8601 timestamp of the conversation's creation."
    )

    def add_message(self, message: ChatMessage) -> None:
        """Append a single message."""
        self.messages.append(message)

    def add_messages(self, messages: Iterable[ChatMessage]) -> None:
        """Append several messages, preserving their order."""
        self.messages.extend(messages)

    def request_messages(self) -> list[ChatMessage]:
        """Return the messages to send to the backend (error messages excluded)."""
        return [message for message in self.messages if message.role != MessageRole.ERROR]
