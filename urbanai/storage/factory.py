"""Factory helpers for choosing a durable store backend at startup."""

from __future__ import annotations

import redis

from urbanai import config
from urbanai.storage.base import KeyValueStore
from urbanai.storage.memory import InMemoryKeyValueStore
from urbanai.storage.redis import RedisKeyValueStore
from urbanai.storage.sql import SqlKeyValueStore
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="storage/factory")


DEFAULT_BACKEND = "sql"


def _build_redis_store(url: str, quota_bytes: int | None) -> KeyValueStore:
    """Connect to Redis, degrading to memory when the server is unreachable."""
    try:
        client = redis.Redis.from_url(url)
        client.ping()
    except redis.RedisError as exc:
        logger.warning(
            "Falling back to InMemoryKeyValueStore (Redis unavailable)",
            extra={"store_url": mask_url(url), "error": str(exc)},
        )
        return InMemoryKeyValueStore(quota_bytes=quota_bytes)
    logger.info("Using RedisKeyValueStore", extra={"store_url": mask_url(url)})
    return RedisKeyValueStore(client)


def build_store(settings: config.Settings | None = None) -> KeyValueStore:
    """Instantiate the configured key-value store."""
    settings = settings or config.settings
    backend = (settings.store_backend or DEFAULT_BACKEND).lower()

    if backend == "memory":
        logger.info("Using InMemoryKeyValueStore (data is lost on restart)")
        return InMemoryKeyValueStore(quota_bytes=settings.store_quota_bytes)

    if backend == "redis":
        if not settings.store_url:
            raise ValueError("store_url must be set for the redis store backend")
        return _build_redis_store(settings.store_url, settings.store_quota_bytes)

    if backend == "sql":
        if not settings.store_url:
            raise ValueError("store_url must be set for the sql store backend")
        logger.info("Using SqlKeyValueStore", extra={"store_url": mask_url(settings.store_url)})
        return SqlKeyValueStore.from_url(settings.store_url)

    raise ValueError(f"Unknown store backend '{backend}'")
