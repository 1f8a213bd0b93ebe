"""Shared protocol for durable key-value storage backends."""

from typing import Optional, Protocol


class KeyValueStore(Protocol):
    """String-keyed, string-valued persistent store.

    Backends raise PersistenceError when the underlying medium rejects an
    operation; callers decide whether that is fatal.
    """

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    def remove(self, key: str) -> None:
        """Delete a key without raising if it is absent."""
