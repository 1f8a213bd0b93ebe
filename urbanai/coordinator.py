"""Fan out to every provider adapter and merge the results into one snapshot."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

from urbanai.cache import Clock
from urbanai.domain import AggregatedSnapshot, Domain, DomainRecord, LocationKey
from urbanai.providers.base import ProviderAdapter
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="coordinator")

Subscriber = Callable[[AggregatedSnapshot], None]


class AggregationCoordinator:
    """
    Sole writer of the AggregatedSnapshot.

    - refreshes for the key that completed less than `min_refresh_interval`
      seconds ago are no-ops; a refresh for a key already in flight joins it
    - adapters run concurrently on worker threads; anything still running after
      `refresh_ceiling` seconds is abandoned for this cycle
    - results are only committed if their location is still the active one
    """

    def __init__(
        self,
        adapters: Mapping[Domain, ProviderAdapter],
        *,
        min_refresh_interval: float = 10.0,
        refresh_ceiling: float = 10.0,
        precision: int = 2,
        clock: Clock = time.monotonic,
        wall_clock: Clock = time.time,
    ) -> None:
        self.adapters = dict(adapters)
        self.min_refresh_interval = min_refresh_interval
        self.refresh_ceiling = refresh_ceiling
        self.precision = precision
        self._clock = clock
        self._wall_clock = wall_clock

        self._snapshot = AggregatedSnapshot()
        self._subscribers: List[Subscriber] = []
        self._active_key: Optional[str] = None
        self._active_location: Optional[LocationKey] = None
        self._last_refresh_key: Optional[str] = None
        self._last_refresh_at: float = float("-inf")
        self._inflight: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # subscriber surface
    # ------------------------------------------------------------------

    def get_snapshot(self) -> AggregatedSnapshot:
        return self._snapshot

    @property
    def active_location(self) -> Optional[LocationKey]:
        """The location most recently passed to refresh()."""
        return self._active_location

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register `callback` for every snapshot change; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, snapshot: AggregatedSnapshot) -> None:
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber raised; continuing with the others")

    # ------------------------------------------------------------------
    # refresh cycle
    # ------------------------------------------------------------------

    async def refresh(self, location: LocationKey) -> AggregatedSnapshot:
        """
        Refresh every domain for `location` and return the resulting snapshot.

        Raises InvalidLocationError for out-of-range coordinates; every other
        failure degrades to "snapshot unchanged" or to fallback records.
        """
        location.ensure_valid()
        key = location.bucket(self.precision)
        self._active_key = key
        self._active_location = location

        inflight = self._inflight.get(key)
        if inflight is not None and not inflight.done():
            logger.debug("Joining in-flight refresh", extra={"location": key})
            return await asyncio.shield(inflight)

        since_last = self._clock() - self._last_refresh_at
        if self._last_refresh_key == key and since_last < self.min_refresh_interval:
            logger.debug(
                "Skipping refresh; last one was too recent",
                extra={"location": key, "seconds_since_last": round(since_last, 3)},
            )
            return self._relabel(location)

        task = asyncio.ensure_future(self._run_cycle(location, key))
        self._inflight[key] = task
        task.add_done_callback(lambda t, k=key: self._forget_inflight(k, t))
        return await asyncio.shield(task)

    def _relabel(self, location: LocationKey) -> AggregatedSnapshot:
        """Carry a new display name for the same bucket into the current snapshot."""
        snapshot = self._snapshot
        if snapshot.location is not None and snapshot.location != location:
            snapshot = snapshot.model_copy(update={"location": location})
            self._publish(snapshot)
        return snapshot

    def _forget_inflight(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _run_cycle(self, location: LocationKey, key: str) -> AggregatedSnapshot:
        logger.info("Refresh cycle started", extra={"location": key, "label": location.label})
        previous = self._snapshot
        self._publish(previous.model_copy(update={"is_loading": True}))

        tasks = {
            asyncio.ensure_future(asyncio.to_thread(adapter.fetch, location)): domain
            for domain, adapter in self.adapters.items()
        }
        done, pending = (await asyncio.wait(tasks, timeout=self.refresh_ceiling)) if tasks else (set(), set())
        for task in pending:
            # the worker thread keeps running; its result is simply never read
            task.cancel()

        same_location = location.same_bucket(previous.location, self.precision)
        updates: Dict[str, DomainRecord] = {}
        for task, domain in tasks.items():
            record = await self._resolve_record(task, domain, done, location, previous if same_location else None)
            updates[domain.value] = record

        if self._active_key != key:
            logger.info(
                "Discarding refresh results for a location that is no longer active",
                extra={"location": key, "active": self._active_key},
            )
            active_task = self._inflight.get(self._active_key) if self._active_key else None
            if self._snapshot.is_loading and (active_task is None or active_task.done()):
                self._publish(self._snapshot.model_copy(update={"is_loading": False}))
            return self._snapshot

        snapshot = AggregatedSnapshot(
            # latest name given for this bucket
            location=self._active_location or location,
            is_loading=False,
            last_refresh_time=datetime.fromtimestamp(self._wall_clock(), tz=timezone.utc),
            **updates,
        )
        self._last_refresh_key = key
        self._last_refresh_at = self._clock()
        self._publish(snapshot)
        logger.info(
            "Refresh cycle finished",
            extra={
                "location": key,
                "sources": {name: rec.source.value for name, rec in updates.items()},
                "timed_out": [tasks[t].value for t in pending],
            },
        )
        return snapshot

    async def _resolve_record(
        self,
        task: asyncio.Future,
        domain: Domain,
        done: set,
        location: LocationKey,
        previous: Optional[AggregatedSnapshot],
    ) -> DomainRecord:
        """Pick the record to commit for one domain after the wait finished."""
        record: Optional[DomainRecord] = None
        if task in done:
            exc = task.exception()
            if exc is None:
                record = task.result()
            else:
                logger.error(
                    "Adapter raised unexpectedly",
                    exc_info=exc,
                    extra={"domain": domain.value},
                )
        else:
            logger.warning(
                "Adapter exceeded refresh ceiling",
                extra={"domain": domain.value, "ceiling_seconds": self.refresh_ceiling},
            )

        shown = previous.record_for(domain) if previous is not None else None
        if record is None:
            if shown is not None:
                return shown
            return await asyncio.to_thread(self.adapters[domain].offline_record, location)

        if shown is not None and record.fetched_at < shown.fetched_at:
            # never move a location's data backwards in time
            return shown
        return record
