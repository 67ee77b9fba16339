"""Error handling utilities and custom exceptions."""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger


GENERIC_ERROR_DETAIL = "Please try again. If the problem persists, please contact the site administrator."
GENERIC_ERROR_MESSAGE = f"An error occurred. {GENERIC_ERROR_DETAIL}"
GENERATE_FAILURE_PREFIX = (
    "There was an error generating a response. Chat history can't be saved at this time."
)
SAVE_FAILURE_MESSAGE = (
    "An error occurred. Answers can't be saved at this time. "
    "If the problem persists, please contact the site administrator."
)


class ChatError(Exception):
    """Exception raised when a chat operation fails."""

    pass


class ConversationNotFoundError(ChatError):
    """Raised when an exchange references a conversation missing from state."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class ExchangeInProgressError(ChatError):
    """Raised when a second question targets a conversation still streaming."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"An answer is already being generated for conversation {conversation_id}")
        self.conversation_id = conversation_id


class StreamRecordError(ChatError):
    """A stream record signalled a fatal error for the current exchange.

    ``error_text`` is the backend's message, or ``None`` when the record
    carried no usable text (callers then fall back to a generic message).
    """

    def __init__(self, error_text: str | None) -> None:
        super().__init__(error_text or "Stream record error")
        self.error_text = error_text


class ExchangeAborted(Exception):
    """The exchange was cancelled through its abort handle.

    Not a :class:`ChatError`: cancellation never produces an error message.
    """


async def http_exception_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Convert a ChatError into an HTTP 500 response."""
    logger.error("ChatError occurred: {}", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc)},
    )

# ---------------------------------------------------------------------------
# Decorators for asynchronous backend calls

from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import httpx

T = TypeVar("T")


def handle_backend_error(default: Callable[[], T]) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator returning ``default()`` when a backend call fails.

    Transport failures and invalid JSON bodies are logged and converted
    into the default value so that optional lookups (identity, history
    status) never interrupt the chat session.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except httpx.HTTPError as exc:
                logger.warning("Backend call {} failed: {}", func.__name__, exc)
                return default()
            except ValueError:
                logger.exception("Backend call {} returned an invalid body", func.__name__)
                return default()

        return wrapper

    return decorator
