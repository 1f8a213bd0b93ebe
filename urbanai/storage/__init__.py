"""Durable key-value storage backends."""

from .base import KeyValueStore
from .factory import build_store
from .memory import InMemoryKeyValueStore
from .redis import RedisKeyValueStore
from .sql import SqlKeyValueStore

__all__ = [
    "build_store",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "SqlKeyValueStore",
]
