"""General helper functions used across the application."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from loguru import logger
from pydantic import ValidationError

from ..models.chat_message import ChatMessage, Citation, ToolMessageContent
from ..models.enums import MessageRole


def new_id() -> str:
    """Return a fresh message or conversation identifier."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def make_error_message(content: str) -> ChatMessage:
    """Build an ``error``-role message stamped with a new id and the current time."""
    return ChatMessage(id=new_id(), role=MessageRole.ERROR, content=content, date=utc_now_iso())


def parse_citations(message: ChatMessage | None) -> list[Citation]:
    """Return the citations carried by a tool message.

    Non-tool messages and tool messages whose content is not a valid
    citation payload yield an empty list.
    """
    if message is None or message.role != MessageRole.TOOL:
        return []
    try:
        payload = ToolMessageContent.model_validate(json.loads(message.content))
    except (ValueError, ValidationError):
        logger.debug("Tool message {} has no parseable citations", message.id)
        return []
    return payload.citations
