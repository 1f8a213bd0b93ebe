"""In-memory key-value store, intended for development and tests."""

import threading
from typing import Optional

from urbanai.errors import PersistenceError
from urbanai.storage.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="storage/in_memory_store")


class InMemoryKeyValueStore(KeyValueStore):
    """Thread-safe dict-backed store with an optional total size quota."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        """Initialize an empty store; `quota_bytes` caps the summed key+value size."""
        logger.debug("Initializing InMemoryKeyValueStore", extra={"quota_bytes": quota_bytes})
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _size(key: str, value: str) -> int:
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            if self.quota_bytes is not None:
                used = sum(self._size(k, v) for k, v in self._data.items() if k != key)
                if used + self._size(key, value) > self.quota_bytes:
                    raise PersistenceError(
                        f"quota exceeded writing '{key}' ({self.quota_bytes} bytes)"
                    )
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)
