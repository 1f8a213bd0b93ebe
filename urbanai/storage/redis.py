"""Redis-backed key-value store."""

from typing import Optional

from urbanai.errors import PersistenceError
from urbanai.storage.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="storage/redis_store")


class RedisKeyValueStore(KeyValueStore):
    """Stores UTF-8 strings in Redis. Values never expire; TTLs live in the payload."""

    def __init__(self, client) -> None:
        """Wrap an already-connected Redis client."""
        logger.debug("Initializing RedisKeyValueStore")
        self.client = client

    def get(self, key: str) -> Optional[str]:
        try:
            raw = self.client.get(key)
        except Exception as exc:
            logger.error("Failed to read key from Redis: %s", exc, extra={"key": key})
            raise PersistenceError(f"redis read failed for '{key}'") from exc
        if raw is None:
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return str(raw)

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value.encode("utf-8"))
        except Exception as exc:
            logger.error("Failed to write key to Redis: %s", exc, extra={"key": key})
            raise PersistenceError(f"redis write failed for '{key}'") from exc

    def remove(self, key: str) -> None:
        try:
            self.client.delete(key)
        except Exception as exc:
            logger.error("Failed to delete key from Redis: %s", exc, extra={"key": key})
            raise PersistenceError(f"redis delete failed for '{key}'") from exc
