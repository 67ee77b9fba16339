"""Assemble streamed deltas into the assistant and tool messages of an exchange."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.chat_message import ChatMessage
from ..models.conversation import Conversation
from ..models.enums import MessageRole
from ..models.stream_record import HistoryMetadata, StreamRecord
from ..utils.abort import AbortHandle
from ..utils.helpers import new_id, utc_now_iso


@dataclass
class ExchangeContext:
    """Transient state of one question/answer exchange.

    Created when the question is submitted and dropped once the exchange
    settles.  ``conversation`` is resolved by the reconciler; it stays
    ``None`` for a persisted-mode conversation the backend has not yet
    identified, in which case ``display_buffer`` holds what is shown.
    """

    user_message: ChatMessage
    abort: AbortHandle
    conversation_id: str | None = None
    conversation: Conversation | None = None
    display_buffer: list[ChatMessage] = field(default_factory=list)
    assistant_content: str = ""
    assistant_message: ChatMessage | None = None
    tool_message: ChatMessage | None = None
    history_metadata: HistoryMetadata | None = None

    def result_messages(self) -> list[ChatMessage]:
        """Return ``[tool?, assistant?]`` in display order."""
        messages: list[ChatMessage] = []
        if self.tool_message is not None:
            messages.append(self.tool_message)
        if self.assistant_message is not None:
            messages.append(self.assistant_message)
        return messages


class MessageAssembler:
    """Fold stream records into an :class:`ExchangeContext`."""

    def consume(self, record: StreamRecord, context: ExchangeContext) -> list[ChatMessage]:
        """Apply ``record`` and return the exchange's pending messages.

        An empty list means the record carried no choices and nothing
        changed on screen.
        """
        if record.history_metadata is not None:
            context.history_metadata = record.history_metadata

        messages = record.messages
        if not messages:
            return []

        received_at = utc_now_iso()
        for message in messages:
            message.id = record.id
            message.date = received_at

        for message in messages:
            if message.role == MessageRole.ASSISTANT:
                self._apply_assistant(message, context, received_at)
            elif message.role == MessageRole.TOOL:
                context.tool_message = message
        return context.result_messages()

    @staticmethod
    def _apply_assistant(message: ChatMessage, context: ExchangeContext, received_at: str) -> None:
        context.assistant_content += message.content
        context.assistant_message = message.model_copy(update={"content": context.assistant_content})
        if message.context:
            context.tool_message = ChatMessage(
                id=new_id(),
                role=MessageRole.TOOL,
                content=message.context,
                date=received_at,
            )
