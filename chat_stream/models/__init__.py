"""Expose commonly used model classes at the package level.

Importing these classes here allows consumers to write concise imports like::

    from chat_stream.models import ChatMessage, Conversation, StreamRecord

These names refer to the underlying Pydantic models defined in their
respective modules.
"""

from .chat_request import ChatRequest, ConversationRequest  # noqa: F401
from .chat_response import ChatResponse, ErrorMessage, SessionState  # noqa: F401
from .conversation import Conversation  # noqa: F401
from .chat_message import ChatMessage, Citation, ToolMessageContent  # noqa: F401
from .stream_record import BackendErrorDetail, HistoryMetadata, StreamRecord  # noqa: F401
from .enums import Feedback, HistoryStatus, MessageRole, MessageStatus  # noqa: F401
