"""HTTP client for the chat-completion backend using httpx.

The generation endpoints return a newline-delimited JSON body which is
read incrementally through :class:`BackendResponse`; the history
endpoints are plain request/response calls.  Every streaming call takes
an :class:`~chat_stream.utils.abort.AbortHandle` so that sending the
request and each chunk read can be cancelled cooperatively.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Sequence

import httpx
from loguru import logger

from ..config.backend_config import BackendConfig, get_backend_config
from ..models.chat_message import ChatMessage
from ..models.chat_request import ConversationRequest
from ..models.enums import HistoryStatus
from .abort import AbortHandle
from .error_handler import handle_backend_error


class BackendResponse:
    """Thin wrapper over an ``httpx.Response`` exposing a chunk-read interface."""

    def __init__(self, response: httpx.Response, abort: AbortHandle | None = None) -> None:
        self._response = response
        self._abort = abort
        self._chunks: AsyncIterator[bytes] | None = None

    @property
    def ok(self) -> bool:
        return self._response.is_success

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def json(self) -> Any:
        await self._response.aread()
        return self._response.json()

    async def read(self) -> tuple[bool, bytes]:
        """Return ``(done, chunk)`` for the next piece of the body.

        Raises :class:`~chat_stream.utils.error_handler.ExchangeAborted`
        if the abort handle fires before the chunk arrives.
        """
        if self._chunks is None:
            self._chunks = self._response.aiter_bytes()
        if self._abort is None:
            chunk = await self._next_chunk(self._chunks)
        else:
            chunk = await self._abort.run(self._next_chunk(self._chunks))
        if chunk is None:
            return True, b""
        return False, chunk

    @staticmethod
    async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes | None:
        try:
            return await chunks.__anext__()
        except StopAsyncIteration:
            return None

    async def aclose(self) -> None:
        await self._response.aclose()


class ChatApiClient:
    """Issue requests to the chat backend.

    An ``httpx.AsyncClient`` may be injected (tests use one backed by
    ``httpx.MockTransport``); otherwise one is created lazily from the
    :class:`BackendConfig` and shared by all calls until :meth:`aclose`.
    """

    def __init__(self, config: BackendConfig | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.config = config or get_backend_config()
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Streaming generation

    async def conversation(self, messages: Sequence[ChatMessage], abort: AbortHandle) -> BackendResponse:
        """Ask the stateless endpoint for an answer."""
        body = ConversationRequest(messages=list(messages))
        return await self._stream("POST", self.config.conversation_path, body.to_payload(), abort)

    async def history_generate(
        self,
        messages: Sequence[ChatMessage],
        abort: AbortHandle,
        conversation_id: str | None = None,
    ) -> BackendResponse:
        """Ask the history-enabled endpoint for an answer."""
        body = ConversationRequest(messages=list(messages), conversation_id=conversation_id)
        return await self._stream("POST", self.config.history_generate_path, body.to_payload(), abort)

    async def _stream(self, method: str, path: str, payload: dict[str, Any], abort: AbortHandle) -> BackendResponse:
        logger.debug("Opening stream {} {}", method, path)
        request = self.client.build_request(method, path, json=payload)
        response = await abort.run(self.client.send(request, stream=True))
        logger.debug("Stream {} answered with status {}", path, response.status_code)
        return BackendResponse(response, abort)

    # ------------------------------------------------------------------
    # History management

    async def history_update(self, messages: Sequence[ChatMessage], conversation_id: str) -> BackendResponse:
        """Persist the full transcript of a conversation."""
        body = ConversationRequest(messages=list(messages), conversation_id=conversation_id)
        response = await self.client.post(self.config.history_update_path, json=body.to_payload())
        return BackendResponse(response)

    async def history_clear(self, conversation_id: str) -> BackendResponse:
        """Delete the messages of a persisted conversation."""
        response = await self.client.request(
            "DELETE",
            self.config.history_clear_path,
            json={"conversation_id": conversation_id},
        )
        return BackendResponse(response)

    @handle_backend_error(default=lambda: HistoryStatus.FAILED)
    async def history_ensure(self) -> HistoryStatus:
        """Return whether the backend's chat history store is usable."""
        response = await self.client.get(self.config.history_ensure_path)
        if response.is_success:
            return HistoryStatus.WORKING
        detail = ""
        try:
            body = response.json()
            if isinstance(body, dict):
                detail = str(body.get("error") or "")
        except ValueError:
            pass
        lowered = detail.lower()
        if response.status_code == 404 or "not configured" in lowered:
            return HistoryStatus.NOT_CONFIGURED
        if "credentials" in lowered:
            return HistoryStatus.INVALID_CREDENTIALS
        if response.status_code >= 500:
            return HistoryStatus.NOT_WORKING
        return HistoryStatus.FAILED

    # ------------------------------------------------------------------
    # Identity

    @handle_backend_error(default=list)
    async def get_user_info(self) -> list[dict[str, Any]]:
        """Return the authenticated principals, or an empty list."""
        response = await self.client.get(self.config.user_info_path)
        if not response.is_success:
            logger.info("No identity provider found. Access to chat will be blocked.")
            return []
        payload = response.json()
        return payload if isinstance(payload, list) else []
