"""Message search domain exports."""

from .repo import MessageRepository, reset_memory_state, seed_memory_store
from .service import MessageSearchService

__all__ = ["MessageRepository", "MessageSearchService", "reset_memory_state", "seed_memory_store"]
