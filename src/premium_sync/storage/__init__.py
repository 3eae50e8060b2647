"""Account repository implementations."""

from premium_sync.storage.memory import InMemoryAccountRepository

__all__ = ["InMemoryAccountRepository"]
