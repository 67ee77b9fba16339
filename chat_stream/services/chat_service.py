"""Orchestration of question/answer exchanges for a chat session.

The ChatService owns the lifecycle of every exchange: it registers a
cancellation handle, opens the backend stream, drains it through the
frame decoder, record parser and message assembler, and hands the result
to the conversation reconciler selected for the exchange.  Once an
exchange is done it runs the post-completion step (saving the transcript
in persisted mode).  It also exposes the session actions that surround
exchanges: stop generating, new chat, clear chat and the auth/history
checks.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache

import httpx
from loguru import logger

from ..config.backend_config import BackendConfig, get_backend_config
from ..models.chat_message import ChatMessage, Citation
from ..models.chat_response import ChatResponse, ErrorMessage, SessionState
from ..models.conversation import Conversation
from ..models.enums import HistoryStatus, MessageRole, MessageStatus
from ..streaming.frame_decoder import FrameDecoder
from ..streaming.message_assembler import ExchangeContext, MessageAssembler
from ..streaming.record_parser import ParseStatus, RecordParser
from ..utils.abort import AbortHandle
from ..utils.api_client import BackendResponse, ChatApiClient
from ..utils.error_handler import (
    GENERIC_ERROR_DETAIL,
    SAVE_FAILURE_MESSAGE,
    ConversationNotFoundError,
    ExchangeAborted,
    ExchangeInProgressError,
    StreamRecordError,
)
from ..utils.helpers import make_error_message, new_id, parse_citations, utc_now_iso
from ..utils.logger import exchange_logger
from .conversation_store import ConversationStore
from .reconciler import ConversationReconciler, PersistedReconciler, StatelessReconciler


class ChatService:
    """Coordinates exchanges between the user, the backend and the store.

    ``messages`` is the display list: what a front end should render at
    any point, including the partially streamed answer.  The service is
    the sole owner of the in-flight abort handles.
    """

    def __init__(
        self,
        backend_config: BackendConfig | None = None,
        api_client: ChatApiClient | None = None,
        store: ConversationStore | None = None,
    ) -> None:
        self.backend_config = backend_config or get_backend_config()
        self.api_client = api_client or ChatApiClient(config=self.backend_config)
        self.store = store or ConversationStore(history_enabled=self.backend_config.history_enabled)
        self.assembler = MessageAssembler()

        self.messages: list[ChatMessage] = []
        self.status = MessageStatus.NOT_RUNNING
        self.is_loading = False
        self.show_loading_message = False
        self.show_auth_message = self.backend_config.auth_enabled
        self.clearing_chat = False
        self.error_message: ErrorMessage | None = None

        self._abort_handles: list[AbortHandle] = []
        self._active_conversations: set[str] = set()
        self._pending_saves: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Exchanges

    @property
    def abort_handles(self) -> list[AbortHandle]:
        return list(self._abort_handles)

    def _select_reconciler(self) -> ConversationReconciler:
        if self.store.history_available:
            return PersistedReconciler(self.store, self.api_client)
        return StatelessReconciler(self.store, self.api_client)

    async def submit(self, question: str, conversation_id: str | None = None) -> ChatResponse:
        """Ask ``question`` and fold the streamed answer into the conversation.

        Parameters
        ----------
        question: str
            The user's question.
        conversation_id: str, optional
            Conversation to continue.  A new conversation is started when
            omitted.

        Returns
        -------
        ChatResponse
            The settled display list and the conversation it belongs to.

        Raises
        ------
        ConversationNotFoundError
            If ``conversation_id`` is not known to the session.  No request
            is sent to the backend in that case.
        ExchangeInProgressError
            If another exchange is still streaming into the same
            conversation.
        """
        if conversation_id is not None and conversation_id in self._active_conversations:
            raise ExchangeInProgressError(conversation_id)

        reconciler = self._select_reconciler()
        abort = AbortHandle()
        self._abort_handles.insert(0, abort)
        self.is_loading = True
        self.show_loading_message = True

        context = ExchangeContext(
            user_message=ChatMessage(
                id=new_id(),
                role=MessageRole.USER,
                content=question,
                date=utc_now_iso(),
            ),
            abort=abort,
            conversation_id=conversation_id,
        )
        log = exchange_logger(context.user_message.id)

        try:
            request_messages = reconciler.begin(context)
        except ConversationNotFoundError:
            log.error("Conversation not found: {}", conversation_id)
            self._release(abort)
            raise

        log.info(
            "Starting exchange in {} mode for conversation {}",
            "persisted" if reconciler.persists_transcript else "stateless",
            conversation_id or "<new>",
        )
        active_id = context.conversation.id if context.conversation is not None else conversation_id
        if active_id is not None:
            self._active_conversations.add(active_id)
        self.messages = reconciler.display(context)

        response: BackendResponse | None = None
        try:
            response = await reconciler.open_stream(context, request_messages)
            if not response.ok:
                self.messages = await reconciler.reject(context, response)
            else:
                await self._drain(response, context, reconciler)
                self.messages = reconciler.complete(context)
        except ExchangeAborted:
            log.info("Exchange cancelled")
            self.messages = reconciler.cancel(context)
        except Exception as exc:
            if abort.aborted:
                log.info("Exchange cancelled while failing: {}", exc)
                self.messages = reconciler.cancel(context)
            elif isinstance(exc, StreamRecordError):
                log.error("Exchange failed: {}", exc)
                self.messages = reconciler.fail(context, exc.error_text)
            else:
                log.exception("Unexpected error while streaming the answer")
                self.messages = reconciler.fail(context, None)
        finally:
            if response is not None:
                await response.aclose()
            if active_id is not None:
                self._active_conversations.discard(active_id)
            self._release(abort)
            self.status = MessageStatus.DONE

        conversation = context.conversation
        self._after_exchange(conversation, reconciler.persists_transcript)
        return ChatResponse(
            conversation_id=conversation.id if conversation else None,
            title=conversation.title if conversation else None,
            messages=list(self.messages),
        )

    async def _drain(
        self,
        response: BackendResponse,
        context: ExchangeContext,
        reconciler: ConversationReconciler,
    ) -> None:
        decoder = FrameDecoder()
        parser = RecordParser()
        while True:
            self.status = MessageStatus.PROCESSING
            done, chunk = await response.read()
            fragments = decoder.finish() if done else decoder.feed(chunk)
            for fragment in fragments:
                result = parser.try_parse(fragment)
                if result.status != ParseStatus.PARSED or result.record is None:
                    continue
                if self.assembler.consume(result.record, context):
                    self.show_loading_message = False
                    self.messages = reconciler.display(context)
            if done:
                break

    def _release(self, abort: AbortHandle) -> None:
        self.is_loading = False
        self.show_loading_message = False
        self._abort_handles = [handle for handle in self._abort_handles if handle is not abort]

    def _after_exchange(self, conversation: Conversation | None, persists_transcript: bool) -> None:
        """Post-completion step: persist the transcript and re-arm the session.

        Exchanges that never produced a conversation (a persisted-mode
        request rejected before the backend assigned an id) leave the
        history untouched.  Only exchanges started in persisted mode save their
        transcript, whatever the history status is by the time they settle.
        """
        if conversation is not None:
            if persists_transcript:
                task = asyncio.create_task(self._save_transcript(conversation, list(conversation.messages)))
                self._pending_saves.add(task)
                task.add_done_callback(self._pending_saves.discard)
            self.store.update_chat_history(conversation)
            self.messages = list(conversation.messages)
        self.status = MessageStatus.NOT_RUNNING

    async def _save_transcript(self, conversation: Conversation, messages: list[ChatMessage]) -> None:
        try:
            response = await self.api_client.history_update(messages, conversation.id)
            saved = response.ok
        except httpx.HTTPError as exc:
            logger.error("Saving conversation {} failed: {}", conversation.id, exc)
            saved = False
        if saved:
            logger.debug("Saved {} messages of conversation {}", len(messages), conversation.id)
            return
        logger.error("Answers of conversation {} could not be saved", conversation.id)
        conversation.add_message(make_error_message(SAVE_FAILURE_MESSAGE))
        current = self.store.current_chat
        if current is not None and current.id == conversation.id:
            self.messages = list(conversation.messages)

    async def wait_for_saves(self) -> None:
        """Wait for outstanding transcript saves to settle."""
        if self._pending_saves:
            await asyncio.gather(*list(self._pending_saves), return_exceptions=True)

    # ------------------------------------------------------------------
    # Session actions

    def stop_generating(self) -> None:
        """Cancel every exchange currently registered."""
        handles = list(self._abort_handles)
        logger.info("Stopping {} in-flight exchange(s)", len(handles))
        for handle in handles:
            handle.abort()
        self.show_loading_message = False
        self.is_loading = False

    def new_chat(self) -> None:
        self.status = MessageStatus.PROCESSING
        self.messages = []
        self.store.update_current_chat(None)
        self.status = MessageStatus.NOT_RUNNING

    async def clear_chat(self) -> bool:
        """Clear the messages of the current chat.

        Returns ``False`` (and raises the error dialog) when the backend
        refuses to clear a persisted conversation.
        """
        self.clearing_chat = True
        try:
            current = self.store.current_chat
            if current is None:
                return True
            if self.store.history_available:
                try:
                    response = await self.api_client.history_clear(current.id)
                    cleared = response.ok
                except httpx.HTTPError as exc:
                    logger.error("Clearing conversation {} failed: {}", current.id, exc)
                    cleared = False
                if not cleared:
                    self.error_message = ErrorMessage(
                        title="Error clearing current chat",
                        subtitle=GENERIC_ERROR_DETAIL,
                    )
                    return False
            self.store.delete_current_chat_messages(current.id)
            self.store.update_chat_history(current)
            self.messages = []
            return True
        finally:
            self.clearing_chat = False

    def dismiss_error(self) -> None:
        self.error_message = None

    async def check_auth(self) -> bool:
        """Refresh and return whether the missing-authentication banner is shown."""
        if not self.backend_config.auth_enabled:
            self.show_auth_message = False
            return False
        principals = await self.api_client.get_user_info()
        self.show_auth_message = not principals and not self.backend_config.is_local
        return self.show_auth_message

    async def ensure_history(self) -> HistoryStatus:
        """Query the backend's history store and record its status."""
        if not self.store.history_enabled:
            self.store.set_history_status(HistoryStatus.NOT_CONFIGURED)
            return HistoryStatus.NOT_CONFIGURED
        status = await self.api_client.history_ensure()
        self.store.set_history_status(status)
        if status not in (HistoryStatus.WORKING, HistoryStatus.NOT_CONFIGURED):
            self.error_message = ErrorMessage(
                title="Chat history is not enabled",
                subtitle=f"{status.value}. Please contact the site administrator.",
            )
        return status

    # ------------------------------------------------------------------
    # Queries

    def find_citations(self, message_id: str) -> list[Citation] | None:
        """Return the citations of a displayed tool message, or None if unknown."""
        for message in self.messages:
            if message.id == message_id and message.role == MessageRole.TOOL:
                return parse_citations(message)
        return None

    def list_conversations(self) -> list[Conversation]:
        return list(self.store.chat_history)

    def get_state(self) -> SessionState:
        current = self.store.current_chat
        return SessionState(
            status=self.status,
            is_loading=self.is_loading,
            show_loading_message=self.show_loading_message,
            show_auth_message=self.show_auth_message,
            clearing_chat=self.clearing_chat,
            history_status=self.store.history_status,
            current_conversation_id=current.id if current else None,
            error_message=self.error_message,
        )


@lru_cache()
def get_chat_service() -> ChatService:
    """Dependency injector for ChatService instances.

    FastAPI will call this function to obtain a singleton
    ChatService.  The lru_cache decorator ensures only one
    instance exists.
    """
    return ChatService()
