"""Merge finished exchanges into the conversation state.

Two implementations share the :class:`ConversationReconciler` interface:
:class:`StatelessReconciler` keeps conversations in memory only, while
:class:`PersistedReconciler` works against a backend that stores the
history and assigns conversation identifiers.  The chat service picks
one per exchange and drives it through ``begin`` -> ``open_stream`` ->
``display``* -> one of ``complete`` / ``fail`` / ``cancel`` / ``reject``.
Each of the settling methods returns the display list.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger

from ..models.chat_message import ChatMessage
from ..models.conversation import Conversation
from ..streaming.message_assembler import ExchangeContext
from ..utils.api_client import BackendResponse, ChatApiClient
from ..utils.error_handler import (
    GENERATE_FAILURE_PREFIX,
    GENERIC_ERROR_DETAIL,
    GENERIC_ERROR_MESSAGE,
    ChatError,
    ConversationNotFoundError,
)
from ..utils.helpers import make_error_message, new_id, utc_now_iso
from .conversation_store import ConversationStore


class ConversationReconciler(ABC):
    """Capability interface for one conversation persistence model."""

    persists_transcript: bool = False

    def __init__(self, store: ConversationStore, api_client: ChatApiClient) -> None:
        self.store = store
        self.api_client = api_client

    @abstractmethod
    def begin(self, context: ExchangeContext) -> list[ChatMessage]:
        """Record the user message and return the messages to send.

        Raises :class:`ConversationNotFoundError` when ``context``
        references a conversation that is not in state.
        """

    @abstractmethod
    async def open_stream(self, context: ExchangeContext, messages: list[ChatMessage]) -> BackendResponse:
        ...

    @abstractmethod
    def display(self, context: ExchangeContext) -> list[ChatMessage]:
        """Return what should be on screen while the exchange streams."""

    @abstractmethod
    def complete(self, context: ExchangeContext) -> list[ChatMessage]:
        ...

    @abstractmethod
    def fail(self, context: ExchangeContext, error_text: str | None) -> list[ChatMessage]:
        ...

    @abstractmethod
    def cancel(self, context: ExchangeContext) -> list[ChatMessage]:
        ...

    async def reject(self, context: ExchangeContext, response: BackendResponse) -> list[ChatMessage]:
        """Handle a non-2xx generation response."""
        return self.fail(context, await self._response_error_text(response))

    @staticmethod
    async def _response_error_text(response: BackendResponse) -> str | None:
        try:
            body = await response.json()
        except ValueError:
            logger.warning("Backend answered {} with a non-JSON body", response.status_code)
            return None
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            error = error.get("message")
        return error if isinstance(error, str) and error else None

    @staticmethod
    def _require_conversation(context: ExchangeContext) -> Conversation:
        if context.conversation is None:
            raise ChatError("Exchange has no conversation to settle")
        return context.conversation


class StatelessReconciler(ConversationReconciler):
    """Conversations live only in the client's store for the session."""

    def begin(self, context: ExchangeContext) -> list[ChatMessage]:
        if context.conversation_id is None:
            conversation = Conversation(
                id=new_id(),
                title=context.user_message.content,
                messages=[context.user_message],
                date=utc_now_iso(),
            )
        else:
            conversation = self._locate(context.conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(context.conversation_id)
            conversation.add_message(context.user_message)

        context.conversation = conversation
        self.store.update_current_chat(conversation)
        return conversation.request_messages()

    def _locate(self, conversation_id: str) -> Conversation | None:
        current = self.store.current_chat
        if current is not None and current.id == conversation_id:
            return current
        return self.store.find_conversation(conversation_id)

    async def open_stream(self, context: ExchangeContext, messages: list[ChatMessage]) -> BackendResponse:
        return await self.api_client.conversation(messages, context.abort)

    def display(self, context: ExchangeContext) -> list[ChatMessage]:
        return [*self._require_conversation(context).messages, *context.result_messages()]

    def complete(self, context: ExchangeContext) -> list[ChatMessage]:
        conversation = self._require_conversation(context)
        conversation.add_messages(context.result_messages())
        self.store.update_current_chat(conversation)
        return list(conversation.messages)

    def fail(self, context: ExchangeContext, error_text: str | None) -> list[ChatMessage]:
        conversation = self._require_conversation(context)
        conversation.add_message(make_error_message(error_text or GENERIC_ERROR_MESSAGE))
        self.store.update_current_chat(conversation)
        return list(conversation.messages)

    def cancel(self, context: ExchangeContext) -> list[ChatMessage]:
        return list(self._require_conversation(context).messages)


class PersistedReconciler(ConversationReconciler):
    """Conversations are stored by the backend and identified by it.

    A new conversation only exists once the stream has delivered its
    ``history_metadata``; until then the user message is kept in the
    exchange's display buffer.
    """

    persists_transcript = True

    def begin(self, context: ExchangeContext) -> list[ChatMessage]:
        if context.conversation_id is None:
            context.display_buffer = [context.user_message]
            return [context.user_message]

        conversation = self.store.find_conversation(context.conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(context.conversation_id)
        conversation.add_message(context.user_message)
        context.conversation = conversation
        return conversation.request_messages()

    async def open_stream(self, context: ExchangeContext, messages: list[ChatMessage]) -> BackendResponse:
        return await self.api_client.history_generate(messages, context.abort, context.conversation_id)

    def display(self, context: ExchangeContext) -> list[ChatMessage]:
        return [*self._settled(context), *context.result_messages()]

    async def reject(self, context: ExchangeContext, response: BackendResponse) -> list[ChatMessage]:
        detail = await self._response_error_text(response) or GENERIC_ERROR_DETAIL
        logger.error("History generation failed with status {}: {}", response.status_code, detail)
        error = make_error_message(f"{GENERATE_FAILURE_PREFIX} {detail}")
        conversation = context.conversation
        if conversation is None:
            return [*context.display_buffer, error]
        conversation.add_message(error)
        self.store.update_current_chat(conversation)
        return list(conversation.messages)

    def complete(self, context: ExchangeContext) -> list[ChatMessage]:
        conversation = context.conversation
        if conversation is None:
            if context.history_metadata is None:
                logger.error("Stream ended without history metadata for a new conversation")
                return self.fail(context, None)
            conversation = self._create_from_metadata(context)
        conversation.add_messages(context.result_messages())
        self.store.update_current_chat(conversation)
        return list(conversation.messages)

    def fail(self, context: ExchangeContext, error_text: str | None) -> list[ChatMessage]:
        error = make_error_message(error_text or GENERIC_ERROR_MESSAGE)
        conversation = context.conversation
        if conversation is None and context.history_metadata is not None:
            conversation = self._create_from_metadata(context)
        if conversation is None:
            logger.error("Error retrieving data: no conversation was assigned by the backend")
            return [*context.display_buffer, error]
        conversation.add_message(error)
        self.store.update_current_chat(conversation)
        return list(conversation.messages)

    def cancel(self, context: ExchangeContext) -> list[ChatMessage]:
        return list(self._settled(context))

    @staticmethod
    def _settled(context: ExchangeContext) -> list[ChatMessage]:
        if context.conversation is not None:
            return context.conversation.messages
        return context.display_buffer

    @staticmethod
    def _create_from_metadata(context: ExchangeContext) -> Conversation:
        metadata = context.history_metadata
        if metadata is None:
            raise ChatError("Backend did not assign a conversation")
        conversation = Conversation(
            id=metadata.conversation_id,
            title=metadata.title,
            messages=[context.user_message],
            date=metadata.date,
        )
        context.conversation = conversation
        return conversation
