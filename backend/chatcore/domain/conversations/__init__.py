"""Conversation domain exports."""

from .repo import ConversationRepository, reset_memory_state
from .service import ConversationService

__all__ = ["ConversationRepository", "ConversationService", "reset_memory_state"]
