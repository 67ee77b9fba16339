from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import assistant_record, ndjson, tool_record, wait_until

from chat_stream.models.chat_message import ChatMessage
from chat_stream.models.conversation import Conversation
from chat_stream.models.enums import HistoryStatus, MessageRole, MessageStatus
from chat_stream.utils.error_handler import (
    GENERATE_FAILURE_PREFIX,
    GENERIC_ERROR_DETAIL,
    GENERIC_ERROR_MESSAGE,
    SAVE_FAILURE_MESSAGE,
    ConversationNotFoundError,
    ExchangeInProgressError,
)


def roles(messages: list[ChatMessage]) -> list[MessageRole]:
    return [message.role for message in messages]


def blocking_stream(first_chunk: bytes, release: asyncio.Event):
    """Responder that sends one chunk and then waits for ``release``."""

    async def body():
        yield first_chunk
        await release.wait()
        yield ndjson(assistant_record(" never shown"))

    return lambda request: httpx.Response(200, content=body())


def seeded_conversation(conversation_id: str = "conv-1") -> Conversation:
    return Conversation(
        id=conversation_id,
        title="Earlier",
        messages=[
            ChatMessage(id="m1", role=MessageRole.USER, content="First question"),
            ChatMessage(id="m2", role=MessageRole.ASSISTANT, content="First answer"),
        ],
        date="2024-01-01T00:00:00+00:00",
    )


# ----------------------------------------------------------------------
# Stateless mode


async def test_stateless_exchange_appends_tool_and_assistant(backend, make_service) -> None:
    payload = ndjson(
        tool_record([{"content": "doc", "title": "Doc"}]),
        assistant_record("Hel"),
        {},
        assistant_record("lo"),
    )
    backend.stream("POST", "/conversation", [payload[:25], payload[25:70], payload[70:]])
    service = make_service()

    response = await service.submit("Say hello")

    assert roles(response.messages) == [MessageRole.USER, MessageRole.TOOL, MessageRole.ASSISTANT]
    assert response.messages[-1].content == "Hello"
    conversation = service.store.current_chat
    assert conversation is not None
    assert conversation.id == response.conversation_id
    assert conversation.title == "Say hello"
    assert service.store.chat_history == [conversation]
    assert service.status == MessageStatus.NOT_RUNNING
    assert service.is_loading is False
    assert service.show_loading_message is False
    assert service.abort_handles == []
    sent = backend.body("/conversation")
    assert [message["role"] for message in sent["messages"]] == ["user"]
    assert backend.calls("/history/update") == []


async def test_record_split_across_chunks_yields_single_assistant_message(backend, make_service) -> None:
    backend.stream(
        "POST",
        "/conversation",
        [
            b'{"id":"x",',
            b'"choices":[{"messages":[{"role":"assistant","content":"Hi"}]}]}\n{}\n',
        ],
    )
    service = make_service()

    response = await service.submit("Hello?")

    assert roles(response.messages) == [MessageRole.USER, MessageRole.ASSISTANT]
    assert response.messages[-1].content == "Hi"
    assert response.messages[-1].id == "x"


async def test_follow_up_sends_history_without_error_messages(backend, make_service) -> None:
    backend.stream("POST", "/conversation", [ndjson({"error": "Temporarily unavailable"})])
    service = make_service()
    first = await service.submit("First")
    assert roles(first.messages) == [MessageRole.USER, MessageRole.ERROR]
    assert first.messages[-1].content == "Temporarily unavailable"

    backend.stream("POST", "/conversation", [ndjson(assistant_record("Better now"))])
    second = await service.submit("Second", first.conversation_id)

    sent = backend.body("/conversation")
    assert [message["content"] for message in sent["messages"]] == ["First", "Second"]
    assert roles(second.messages) == [
        MessageRole.USER,
        MessageRole.ERROR,
        MessageRole.USER,
        MessageRole.ASSISTANT,
    ]


async def test_error_without_text_falls_back_to_generic_message(backend, make_service) -> None:
    backend.stream("POST", "/conversation", [ndjson(assistant_record("partial"), {"error": {"code": 500}})])
    service = make_service()

    response = await service.submit("Question")

    assert roles(response.messages) == [MessageRole.USER, MessageRole.ERROR]
    assert response.messages[-1].content == GENERIC_ERROR_MESSAGE


async def test_transport_failure_becomes_error_message(backend, make_service) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend.on("POST", "/conversation", refuse)
    service = make_service()

    response = await service.submit("Anyone there?")

    assert roles(response.messages) == [MessageRole.USER, MessageRole.ERROR]
    assert response.messages[-1].content == GENERIC_ERROR_MESSAGE
    assert service.abort_handles == []


async def test_stateless_non_2xx_reports_backend_error(backend, make_service) -> None:
    backend.on("POST", "/conversation", lambda request: httpx.Response(400, json={"error": "Bad request"}))
    service = make_service()

    response = await service.submit("Question")

    assert response.messages[-1].role == MessageRole.ERROR
    assert response.messages[-1].content == "Bad request"


async def test_unknown_conversation_is_rejected_before_any_request(backend, make_service) -> None:
    service = make_service()

    with pytest.raises(ConversationNotFoundError):
        await service.submit("Hello", "missing")

    assert backend.requests == []
    assert service.abort_handles == []
    assert service.is_loading is False
    assert service.store.current_chat is None


async def test_cancel_mid_stream_keeps_only_the_user_message(backend, make_service) -> None:
    release = asyncio.Event()
    backend.on("POST", "/conversation", blocking_stream(ndjson(tool_record([]), assistant_record("Hi")), release))
    service = make_service()

    task = asyncio.create_task(service.submit("Tell me a story"))
    await wait_until(lambda: len(service.messages) == 3)
    assert service.status == MessageStatus.PROCESSING
    assert service.is_loading is True
    assert service.show_loading_message is False
    assert service.messages[-1].content == "Hi"

    service.stop_generating()
    response = await task

    assert roles(response.messages) == [MessageRole.USER]
    conversation = service.store.current_chat
    assert conversation is not None
    assert roles(conversation.messages) == [MessageRole.USER]
    assert service.abort_handles == []
    assert service.is_loading is False


async def test_stop_generating_cancels_every_registered_exchange(backend, make_service) -> None:
    release = asyncio.Event()
    backend.on("POST", "/conversation", blocking_stream(ndjson(assistant_record("...")), release))
    service = make_service()

    first = asyncio.create_task(service.submit("One"))
    second = asyncio.create_task(service.submit("Two"))
    await wait_until(lambda: len(service.abort_handles) == 2 and len(backend.requests) == 2)

    service.stop_generating()
    results = await asyncio.gather(first, second)

    for result in results:
        assert roles(result.messages) == [MessageRole.USER]
    assert service.abort_handles == []


async def test_second_submit_to_streaming_conversation_is_rejected(backend, make_service) -> None:
    backend.stream("POST", "/conversation", [ndjson(assistant_record("First answer"))])
    service = make_service()
    first = await service.submit("First")

    release = asyncio.Event()
    backend.on("POST", "/conversation", blocking_stream(ndjson(assistant_record("Thinking")), release))
    pending = asyncio.create_task(service.submit("Second", first.conversation_id))
    await wait_until(lambda: len(service.abort_handles) == 1)

    with pytest.raises(ExchangeInProgressError):
        await service.submit("Third", first.conversation_id)

    service.stop_generating()
    await pending
    assert [message.content for message in service.store.current_chat.messages] == [
        "First",
        "First answer",
        "Second",
    ]


async def test_second_question_to_new_streaming_conversation_is_rejected(backend, make_service) -> None:
    release = asyncio.Event()
    backend.on("POST", "/conversation", blocking_stream(ndjson(assistant_record("Thinking")), release))
    service = make_service()

    pending = asyncio.create_task(service.submit("First"))
    await wait_until(lambda: service.store.current_chat is not None and len(backend.requests) == 1)
    conversation_id = service.store.current_chat.id

    with pytest.raises(ExchangeInProgressError):
        await service.submit("Second", conversation_id)

    assert len(backend.requests) == 1
    service.stop_generating()
    first = await pending
    assert [message.content for message in first.messages] == ["First"]

    backend.stream("POST", "/conversation", [ndjson(assistant_record("Done"))])
    follow_up = await service.submit("Second", conversation_id)
    assert [message.content for message in follow_up.messages] == ["First", "Second", "Done"]


async def test_exchange_started_stateless_is_not_saved_when_history_recovers(backend, make_service) -> None:
    release = asyncio.Event()
    backend.on("POST", "/conversation", blocking_stream(ndjson(assistant_record("Hi")), release))
    backend.on("POST", "/history/update", lambda request: httpx.Response(200, json={"success": True}))
    service = make_service(history_enabled=True)
    service.store.set_history_status(HistoryStatus.NOT_WORKING)

    task = asyncio.create_task(service.submit("Hello"))
    await wait_until(lambda: len(service.messages) == 2)
    service.store.set_history_status(HistoryStatus.WORKING)
    release.set()
    response = await task
    await service.wait_for_saves()

    assert response.messages[-1].content == "Hi never shown"
    assert backend.calls("/history/update") == []
    assert service.store.chat_history[0].id == response.conversation_id


# ----------------------------------------------------------------------
# Persisted mode


async def test_persisted_new_conversation_uses_history_metadata(backend, make_service) -> None:
    metadata = {"conversation_id": "conv-42", "title": "Greeting", "date": "2024-05-01T10:00:00Z"}
    backend.stream(
        "POST",
        "/history/generate",
        [
            ndjson(
                {**assistant_record("Hello"), "history_metadata": metadata},
                {**assistant_record(" you"), "history_metadata": metadata},
            )
        ],
    )
    backend.on("POST", "/history/update", lambda request: httpx.Response(200, json={"success": True}))
    service = make_service(history_enabled=True)

    response = await service.submit("Hi")
    await service.wait_for_saves()

    assert response.conversation_id == "conv-42"
    assert response.title == "Greeting"
    conversation = service.store.current_chat
    assert conversation is not None
    assert conversation.id == "conv-42"
    assert conversation.date == "2024-05-01T10:00:00Z"
    assert roles(conversation.messages) == [MessageRole.USER, MessageRole.ASSISTANT]
    assert conversation.messages[-1].content == "Hello you"
    assert service.store.chat_history == [conversation]

    generate_body = backend.body("/history/generate")
    assert "conversation_id" not in generate_body
    update_body = backend.body("/history/update")
    assert update_body["conversation_id"] == "conv-42"
    assert [message["role"] for message in update_body["messages"]] == ["user", "assistant"]


async def test_persisted_non_2xx_without_conversation_creates_nothing(backend, make_service) -> None:
    backend.on("POST", "/history/generate", lambda request: httpx.Response(500, json={"error": "Store offline"}))
    service = make_service(history_enabled=True)

    response = await service.submit("Hi")
    await service.wait_for_saves()

    assert roles(response.messages) == [MessageRole.USER, MessageRole.ERROR]
    assert response.messages[-1].content == f"{GENERATE_FAILURE_PREFIX} Store offline"
    assert response.conversation_id is None
    assert service.store.chat_history == []
    assert service.store.current_chat is None
    assert backend.calls("/history/update") == []


async def test_persisted_non_2xx_for_existing_conversation_appends_one_error(backend, make_service) -> None:
    backend.on("POST", "/history/generate", lambda request: httpx.Response(503, text="unavailable"))
    backend.on("POST", "/history/update", lambda request: httpx.Response(200, json={"success": True}))
    service = make_service(history_enabled=True)
    service.store.chat_history = [seeded_conversation()]

    response = await service.submit("Follow up", "conv-1")
    await service.wait_for_saves()

    assert roles(response.messages) == [
        MessageRole.USER,
        MessageRole.ASSISTANT,
        MessageRole.USER,
        MessageRole.ERROR,
    ]
    assert response.messages[-1].content == f"{GENERATE_FAILURE_PREFIX} {GENERIC_ERROR_DETAIL}"
    assert backend.body("/history/generate")["conversation_id"] == "conv-1"


async def test_persisted_continuation_appends_to_history_conversation(backend, make_service) -> None:
    backend.stream("POST", "/history/generate", [ndjson(tool_record([{"content": "c"}]), assistant_record("Sure"))])
    backend.on("POST", "/history/update", lambda request: httpx.Response(200, json={"success": True}))
    service = make_service(history_enabled=True)
    conversation = seeded_conversation()
    service.store.chat_history = [conversation]

    await service.submit("And then?", "conv-1")
    await service.wait_for_saves()

    assert service.store.current_chat is conversation
    assert roles(conversation.messages)[2:] == [MessageRole.USER, MessageRole.TOOL, MessageRole.ASSISTANT]
    sent = backend.body("/history/generate")
    assert [message["content"] for message in sent["messages"]] == ["First question", "First answer", "And then?"]


async def test_persisted_missing_conversation_is_rejected(backend, make_service) -> None:
    service = make_service(history_enabled=True)

    with pytest.raises(ConversationNotFoundError):
        await service.submit("Hi", "conv-unknown")

    assert backend.requests == []


async def test_persisted_stream_without_metadata_is_display_only(backend, make_service) -> None:
    backend.stream("POST", "/history/generate", [ndjson(assistant_record("Orphan answer"))])
    service = make_service(history_enabled=True)

    response = await service.submit("Hi")

    assert roles(response.messages) == [MessageRole.USER, MessageRole.ERROR]
    assert response.messages[-1].content == GENERIC_ERROR_MESSAGE
    assert service.store.chat_history == []


async def test_persisted_stream_error_after_metadata_creates_conversation(backend, make_service) -> None:
    metadata = {"conversation_id": "conv-7", "title": "T", "date": "2024"}
    backend.stream(
        "POST",
        "/history/generate",
        [ndjson({**assistant_record("Par"), "history_metadata": metadata}, {"error": "Filtered"})],
    )
    backend.on("POST", "/history/update", lambda request: httpx.Response(200, json={"success": True}))
    service = make_service(history_enabled=True)

    response = await service.submit("Hi")
    await service.wait_for_saves()

    assert response.conversation_id == "conv-7"
    assert roles(response.messages) == [MessageRole.USER, MessageRole.ERROR]
    assert response.messages[-1].content == "Filtered"


async def test_persisted_cancel_keeps_only_user_message(backend, make_service) -> None:
    release = asyncio.Event()
    backend.on("POST", "/history/generate", blocking_stream(ndjson(assistant_record("Hi")), release))
    service = make_service(history_enabled=True)

    task = asyncio.create_task(service.submit("Hello"))
    await wait_until(lambda: len(service.messages) == 2)
    service.stop_generating()
    response = await task

    assert roles(response.messages) == [MessageRole.USER]
    assert service.store.chat_history == []


async def test_failed_save_appends_terminal_error_without_retry(backend, make_service) -> None:
    metadata = {"conversation_id": "conv-9", "title": "T", "date": "2024"}
    backend.stream("POST", "/history/generate", [ndjson({**assistant_record("Answer"), "history_metadata": metadata})])
    backend.on("POST", "/history/update", lambda request: httpx.Response(500, json={"error": "nope"}))
    service = make_service(history_enabled=True)

    await service.submit("Question")
    await service.wait_for_saves()

    conversation = service.store.current_chat
    assert conversation is not None
    assert roles(conversation.messages) == [MessageRole.USER, MessageRole.ASSISTANT, MessageRole.ERROR]
    assert conversation.messages[-1].content == SAVE_FAILURE_MESSAGE
    assert service.messages[-1].content == SAVE_FAILURE_MESSAGE
    assert len(backend.calls("/history/update")) == 1


async def test_persisted_metadata_record_without_choices_starts_conversation(backend, make_service) -> None:
    backend.stream(
        "POST",
        "/history/generate",
        [
            ndjson(
                {"id": "r-1", "choices": None, "history_metadata": {"conversation_id": "conv-8", "title": "Null"}},
                assistant_record("Answer", record_id="r-1"),
            )
        ],
    )
    backend.on("POST", "/history/update", lambda request: httpx.Response(200, json={"success": True}))
    service = make_service(history_enabled=True)

    response = await service.submit("Hi")
    await service.wait_for_saves()

    assert response.conversation_id == "conv-8"
    assert roles(response.messages) == [MessageRole.USER, MessageRole.ASSISTANT]
    assert response.messages[-1].content == "Answer"


# ----------------------------------------------------------------------
# Session actions


async def test_new_chat_resets_display_and_current_chat(backend, make_service) -> None:
    backend.stream("POST", "/conversation", [ndjson(assistant_record("Hi"))])
    service = make_service()
    await service.submit("Hello")

    service.new_chat()

    assert service.messages == []
    assert service.store.current_chat is None
    assert service.status == MessageStatus.NOT_RUNNING
    assert len(service.store.chat_history) == 1


async def test_clear_chat_in_persisted_mode_calls_backend(backend, make_service) -> None:
    backend.on("DELETE", "/history/clear", lambda request: httpx.Response(200, json={"message": "ok"}))
    service = make_service(history_enabled=True)
    conversation = seeded_conversation()
    service.store.chat_history = [conversation]
    service.store.update_current_chat(conversation)

    assert await service.clear_chat() is True

    assert json.loads(backend.calls("/history/clear")[0].content) == {"conversation_id": "conv-1"}
    assert conversation.messages == []
    assert service.messages == []
    assert service.clearing_chat is False


async def test_clear_chat_failure_raises_error_dialog(backend, make_service) -> None:
    backend.on("DELETE", "/history/clear", lambda request: httpx.Response(500))
    service = make_service(history_enabled=True)
    conversation = seeded_conversation()
    service.store.update_current_chat(conversation)

    assert await service.clear_chat() is False

    assert len(conversation.messages) == 2
    assert service.error_message is not None
    assert service.error_message.title == "Error clearing current chat"
    service.dismiss_error()
    assert service.error_message is None


async def test_clear_chat_in_stateless_mode_is_local(backend, make_service) -> None:
    service = make_service()
    conversation = seeded_conversation()
    service.store.update_current_chat(conversation)

    assert await service.clear_chat() is True

    assert conversation.messages == []
    assert backend.requests == []


@pytest.mark.parametrize(
    ("auth_enabled", "base_url", "principals", "expected"),
    [
        (False, "http://backend.test", [], False),
        (True, "http://backend.test", [], True),
        (True, "http://backend.test", [{"user_id": "someone"}], False),
        (True, "http://127.0.0.1:50505", [], False),
    ],
)
async def test_check_auth(backend, make_service, auth_enabled, base_url, principals, expected) -> None:
    backend.on("GET", "/.auth/me", lambda request: httpx.Response(200, json=principals))
    service = make_service(auth_enabled=auth_enabled, base_url=base_url)

    assert await service.check_auth() is expected
    assert service.show_auth_message is expected
    if not auth_enabled:
        assert backend.requests == []


async def test_failed_history_falls_back_to_stateless_mode(backend, make_service) -> None:
    backend.on("GET", "/history/ensure", lambda request: httpx.Response(500, json={"error": "store is down"}))
    backend.stream("POST", "/conversation", [ndjson(assistant_record("Stateless answer"))])
    service = make_service(history_enabled=True)

    status = await service.ensure_history()
    response = await service.submit("Hello")

    assert status == HistoryStatus.NOT_WORKING
    assert service.error_message is not None
    assert service.error_message.title == "Chat history is not enabled"
    assert service.error_message.subtitle.endswith("Please contact the site administrator.")
    assert response.messages[-1].content == "Stateless answer"
    assert backend.calls("/history/generate") == []


async def test_find_citations_reads_displayed_tool_message(backend, make_service) -> None:
    backend.stream(
        "POST",
        "/conversation",
        [ndjson(tool_record([{"content": "Doc body", "title": "Doc", "url": "https://example.com"}], record_id="r-5"), assistant_record("See doc", record_id="r-5"))],
    )
    service = make_service()
    await service.submit("Where?")

    citations = service.find_citations("r-5")

    assert citations is not None
    assert [citation.title for citation in citations] == ["Doc"]
    assert service.find_citations("unknown") is None
