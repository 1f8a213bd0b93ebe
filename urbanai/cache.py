"""Per-domain record cache with TTL and write-through persistence."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type

from pydantic import ValidationError

from urbanai.domain import Domain, DomainRecord
from urbanai.errors import PersistenceError
from urbanai.storage.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache_layer")

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """A record plus the epoch second at which it stops being fresh."""
    record: DomainRecord
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheLayer:
    """
    In-memory map of coordinate bucket -> CacheEntry for one domain.

    Every write persists the whole map to the durable store under a single
    key, so another process (or the next start) can hydrate it. Expiry is lazy:
    expired entries stay in the map and remain reachable through get_stale().
    Store failures are logged and swallowed; memory stays authoritative.
    """

    def __init__(
        self,
        store: KeyValueStore,
        domain: Domain,
        record_type: Type[DomainRecord],
        *,
        prefix: str = "urbanai:",
        clock: Clock = time.time,
    ) -> None:
        self.store = store
        self.domain = domain
        self.record_type = record_type
        self.storage_key = f"{prefix}cache:{domain.value}"
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for `key` if it has not expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry

    def get_stale(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for `key` whether or not it has expired."""
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, record: DomainRecord, ttl_seconds: float) -> CacheEntry:
        """Insert or replace an entry, then persist the full map."""
        with self._lock:
            entry = CacheEntry(record=record, expires_at=self._clock() + ttl_seconds)
            self._entries[key] = entry
            self._persist_locked()
            return entry

    def hydrate(self) -> int:
        """Load persisted entries into memory; returns how many were loaded."""
        try:
            raw = self.store.get(self.storage_key)
        except PersistenceError as exc:
            logger.warning("Could not read persisted cache", extra={"domain": self.domain.value, "error": str(exc)})
            return 0
        if not raw:
            return 0

        try:
            payload = json.loads(raw)
        except ValueError as exc:
            logger.warning("Discarding corrupt persisted cache", extra={"domain": self.domain.value, "error": str(exc)})
            return 0
        if not isinstance(payload, dict):
            logger.warning("Discarding persisted cache with unexpected shape", extra={"domain": self.domain.value})
            return 0

        loaded: Dict[str, CacheEntry] = {}
        for key, item in payload.items():
            try:
                record = self.record_type.model_validate(item["record"])
                loaded[key] = CacheEntry(record=record, expires_at=float(item["expires_at"]))
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                logger.warning(
                    "Skipping unreadable cache entry",
                    extra={"domain": self.domain.value, "key": key, "error": str(exc)},
                )

        with self._lock:
            # entries written since startup win over persisted ones
            loaded.update(self._entries)
            self._entries = loaded
        logger.debug("Hydrated cache", extra={"domain": self.domain.value, "entries": len(loaded)})
        return len(loaded)

    def clear(self) -> None:
        """Drop every entry from memory and from the durable store."""
        with self._lock:
            self._entries.clear()
            try:
                self.store.remove(self.storage_key)
            except PersistenceError as exc:
                logger.warning("Could not remove persisted cache", extra={"domain": self.domain.value, "error": str(exc)})

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _persist_locked(self) -> None:
        """Write the whole map to the store; caller holds the lock."""
        payload = {
            key: {"expires_at": entry.expires_at, "record": entry.record.model_dump(mode="json")}
            for key, entry in self._entries.items()
        }
        try:
            self.store.set(self.storage_key, json.dumps(payload))
        except PersistenceError as exc:
            logger.warning(
                "Cache persistence failed; keeping in-memory copy only",
                extra={"domain": self.domain.value, "error": str(exc)},
            )
