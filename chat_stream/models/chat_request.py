"""Request models: the chat API payload and the backend conversation body."""

from pydantic import BaseModel, Field

from .chat_message import ChatMessage


class ChatRequest(BaseModel):
    """Represents a question submitted to the chat session.

    When ``conversation_id`` is omitted a new conversation is started;
    otherwise the question continues the identified conversation, which
    must already be known to the session.
    """

    question: str = Field(
        ...,
        min_length=1,
        description="The user's question."
    )
    conversation_id: str | None = Field(
        default=None,
        description="Identifier of the conversation to continue.  If omitted a new conversation is started."
    )


class ConversationRequest(BaseModel):
    """Body sent to the backend's generation endpoints."""

    messages: list[ChatMessage]
    conversation_id: str | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "messages": [message.model_dump(mode="json", exclude_none=True) for message in self.messages],
        }
        if self.conversation_id:
            payload["conversation_id"] = self.conversation_id
        return payload
