"""Enumerations used across models."""

from enum import Enum


class MessageRole(str, Enum):
    """Enum for message roles in a conversation.

    ``USER`` denotes the human question, ``ASSISTANT`` the streamed reply
    and ``TOOL`` the retrieval payload (citations) that accompanies it.
    ``ERROR`` messages are synthesised by the client when an exchange
    fails; they are shown to the user but never sent back to the backend.
    """

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    ERROR = "error"


class Feedback(str, Enum):
    """User feedback attached to an assistant message."""

    NEUTRAL = "neutral"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    MISSING_CITATION = "missing_citation"
    WRONG_CITATION = "wrong_citation"
    OUT_OF_SCOPE = "out_of_scope"
    INACCURATE_OR_IRRELEVANT = "inaccurate_or_irrelevant"
    OTHER_UNHELPFUL = "other_unhelpful"
    HATE_SPEECH = "hate_speech"
    VIOLENT = "violent"
    SEXUAL = "sexual"
    MANIPULATIVE = "manipulative"
    OTHER_HARMFUL = "other_harmful"


class MessageStatus(str, Enum):
    """Processing state of the chat session's current exchange."""

    NOT_RUNNING = "Not Running"
    PROCESSING = "Processing"
    DONE = "Done"


class HistoryStatus(str, Enum):
    """Availability of the backend-persisted chat history."""

    NOT_CONFIGURED = "Chat history is not configured"
    NOT_WORKING = "Chat history is configured but not working"
    INVALID_CREDENTIALS = "Chat history credentials are invalid"
    WORKING = "Chat history is configured and working"
    FAILED = "Chat history status could not be determined"
