from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import httpx
import pytest

from chat_stream.config.backend_config import BackendConfig
from chat_stream.services.chat_service import ChatService
from chat_stream.services.conversation_store import ConversationStore
from chat_stream.utils.api_client import ChatApiClient


BASE_URL = "http://backend.test"


def ndjson(*records: dict[str, Any]) -> bytes:
    """Encode records the way the backend frames them."""
    return b"".join(json.dumps(record).encode("utf-8") + b"\n" for record in records)


def assistant_record(content: str, record_id: str = "rec-1", **extra: Any) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    message.update(extra)
    return {"id": record_id, "choices": [{"messages": [message]}]}


def tool_record(citations: list[dict[str, Any]], record_id: str = "rec-1") -> dict[str, Any]:
    content = json.dumps({"citations": citations, "intent": "[]"})
    return {"id": record_id, "choices": [{"messages": [{"role": "tool", "content": content}]}]}


async def chunked(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


class FakeBackend:
    """Records requests and answers them with scripted responses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, path: str, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, path)] = responder

    def stream(self, method: str, path: str, chunks: list[bytes], status_code: int = 200) -> None:
        self.on(method, path, lambda request: httpx.Response(status_code, content=chunked(list(chunks))))

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def body(self, path: str, index: int = -1) -> dict[str, Any]:
        return json.loads(self.calls(path)[index].content)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, json={"error": "not found"})
        return responder(request)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_service(backend: FakeBackend) -> Callable[..., ChatService]:
    def _make(history_enabled: bool = False, auth_enabled: bool = False, base_url: str = BASE_URL) -> ChatService:
        config = BackendConfig.model_validate(
            {
                "base_url": base_url,
                "history_enabled": history_enabled,
                "auth_enabled": auth_enabled,
            }
        )
        client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(backend.handle))
        api_client = ChatApiClient(config=config, client=client)
        return ChatService(
            backend_config=config,
            api_client=api_client,
            store=ConversationStore(history_enabled=history_enabled),
        )

    return _make
