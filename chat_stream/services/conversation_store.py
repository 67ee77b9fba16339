"""Shared conversation state.

The store holds the conversation currently on screen and the list of
known conversations (the history panel).  Reconcilers write to it while
an exchange runs; everything else only reads.  Writes are
last-writer-wins.
"""

from __future__ import annotations

from loguru import logger

from ..models.conversation import Conversation
from ..models.enums import HistoryStatus


class ConversationStore:
    """In-memory application state shared by the chat session."""

    def __init__(self, history_enabled: bool = False) -> None:
        self.current_chat: Conversation | None = None
        self.chat_history: list[Conversation] = []
        self.history_enabled = history_enabled
        self.history_status: HistoryStatus | None = None

    @property
    def history_available(self) -> bool:
        """Whether exchanges should use the persisted-history mode."""
        if not self.history_enabled:
            return False
        return self.history_status in (None, HistoryStatus.WORKING)

    def update_current_chat(self, conversation: Conversation | None) -> None:
        self.current_chat = conversation

    def find_conversation(self, conversation_id: str) -> Conversation | None:
        """Return the conversation with ``conversation_id`` from the history list."""
        for conversation in self.chat_history:
            if conversation.id == conversation_id:
                return conversation
        return None

    def update_chat_history(self, conversation: Conversation) -> None:
        """Insert or replace ``conversation`` at the top of the history list."""
        others = [item for item in self.chat_history if item.id != conversation.id]
        self.chat_history = [conversation, *others]

    def delete_current_chat_messages(self, conversation_id: str) -> None:
        if self.current_chat is None or self.current_chat.id != conversation_id:
            logger.warning("Cannot clear messages of conversation {}: not current", conversation_id)
            return
        self.current_chat.messages = []

    def set_history_status(self, status: HistoryStatus) -> None:
        logger.info("Chat history status: {}", status.value)
        self.history_status = status
