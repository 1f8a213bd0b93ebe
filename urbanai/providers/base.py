"""Fallback-chain machinery shared by every provider adapter."""

from __future__ import annotations

import hashlib
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence, Tuple, Type, Union

import requests

from urbanai.cache import CacheLayer, Clock
from urbanai.domain import Domain, DomainRecord, LocationKey, RecordSource
from urbanai.errors import UpstreamError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="providers/base")

Fields = Mapping[str, Any]
SYNTHESIZED_PROVIDER = "synthesized"

# Anything an upstream call or response parsing can reasonably raise. Pydantic's
# ValidationError and requests' JSONDecodeError are both ValueErrors.
UPSTREAM_FAILURES = (
    requests.RequestException,
    UpstreamError,
    KeyError,
    IndexError,
    TypeError,
    ValueError,
    AttributeError,
)


@dataclass(frozen=True)
class UpstreamSource:
    """One tier of a fallback chain: `fetch(location, timeout)` returns normalized fields."""
    name: str
    fetch: Callable[[LocationKey, float], Fields]


@dataclass(frozen=True)
class Success:
    """A tier produced a valid record."""
    record: DomainRecord
    provider: str


@dataclass(frozen=True)
class Exhausted:
    """Every tier failed; `failures` holds (provider, reason) pairs in attempt order."""
    failures: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


ChainResult = Union[Success, Exhausted]


def run_fallback_chain(
    sources: Sequence[UpstreamSource],
    location: LocationKey,
    build: Callable[[Fields, str], DomainRecord],
    *,
    timeout: float,
) -> ChainResult:
    """Try each source in order and stop at the first one yielding a valid record."""
    failures = []
    for source in sources:
        try:
            fields = source.fetch(location, timeout)
            record = build(fields, source.name)
        except UPSTREAM_FAILURES as exc:
            logger.warning(
                "Upstream source failed; falling through",
                extra={"provider": source.name, "error_type": type(exc).__name__, "error": str(exc)},
            )
            failures.append((source.name, f"{type(exc).__name__}: {exc}"))
            continue
        logger.debug("Upstream source succeeded", extra={"provider": source.name})
        return Success(record=record, provider=source.name)
    return Exhausted(tuple(failures))


def location_rng(domain: Domain, location: LocationKey, precision: int) -> random.Random:
    """Random generator seeded from the domain and rounded coordinates."""
    digest = hashlib.sha256(f"{domain.value}:{location.bucket(precision)}".encode("utf-8")).digest()
    return random.Random(int.from_bytes(digest[:8], "big"))


class ProviderAdapter:
    """
    Produce a record for one domain, never raising to the caller.

    Resolution order for `fetch`:
      1. a fresh cache entry that came from a live fetch
      2. upstream sources, in priority order
      3. a fresh, then an expired, cache entry
      4. deterministic synthesis from the rounded coordinates
    Live and synthesized results are written back to the cache.
    """

    domain: Domain
    record_type: Type[DomainRecord]

    def __init__(
        self,
        cache: CacheLayer,
        sources: Sequence[UpstreamSource] = (),
        *,
        ttl_seconds: float,
        timeout_seconds: float = 5.0,
        precision: int = 2,
        clock: Clock = time.time,
    ) -> None:
        self.cache = cache
        self.sources = list(sources)
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.precision = precision
        self._clock = clock
        self.logger = get_tagged_logger(type(self).__module__, tag=f"providers/{self.domain.value}")

    def fetch(self, location: LocationKey) -> DomainRecord:
        """Return the best available record for `location`."""
        key = location.bucket(self.precision)

        fresh = self.cache.get(key)
        if fresh is not None and fresh.record.source is RecordSource.LIVE:
            self.logger.debug("Serving fresh cached record", extra={"location": key})
            return fresh.record.tagged(RecordSource.CACHED)

        result = run_fallback_chain(
            self.sources,
            location,
            lambda fields, provider: self._build(key, fields, provider, RecordSource.LIVE),
            timeout=self.timeout_seconds,
        )
        if isinstance(result, Success):
            self.cache.put(key, result.record, self.ttl_seconds)
            return result.record

        if self.sources:
            self.logger.info(
                "All upstream sources exhausted",
                extra={"location": key, "failures": [name for name, _ in result.failures]},
            )
        return self.offline_record(location)

    def offline_record(self, location: LocationKey) -> DomainRecord:
        """Best record available without network: cache (fresh, then stale), else synthesis."""
        key = location.bucket(self.precision)
        entry = self.cache.get(key) or self.cache.get_stale(key)
        if entry is not None:
            record = entry.record
            if record.source is RecordSource.SYNTHESIZED:
                return record
            return record.tagged(RecordSource.CACHED)

        record = self.synthesize(location)
        self.cache.put(key, record, self.ttl_seconds)
        self.logger.info("Synthesized record", extra={"location": key})
        return record

    def synthesize(self, location: LocationKey) -> DomainRecord:
        """Deterministic plausible record; same rounded coordinates give the same fields."""
        rng = location_rng(self.domain, location, self.precision)
        fields = self._synthesize_fields(rng, location)
        return self._build(location.bucket(self.precision), fields, SYNTHESIZED_PROVIDER, RecordSource.SYNTHESIZED)

    def _synthesize_fields(self, rng: random.Random, location: LocationKey) -> Fields:
        raise NotImplementedError

    def _build(self, key: str, fields: Fields, provider: str, source: RecordSource) -> DomainRecord:
        return self.record_type(
            location=key,
            source=source,
            provider=provider,
            fetched_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
            **fields,
        )
