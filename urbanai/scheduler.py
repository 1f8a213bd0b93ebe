"""Decide when the coordinator refreshes: mount, location change, timer, manual, other instances."""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from urbanai.coordinator import AggregationCoordinator
from urbanai.domain import AggregatedSnapshot, LocationKey
from urbanai.errors import InvalidLocationError, PersistenceError
from urbanai.storage.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="scheduler")


class SchedulerState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshScheduler:
    """
    Drive AggregationCoordinator.refresh from lifecycle events.

    The active location is persisted in the durable store under
    `location_key`. A background watcher polls that key so a location change
    written by another process is picked up here too. Use as an async context
    manager to run the periodic and watcher tasks.
    """

    def __init__(
        self,
        coordinator: AggregationCoordinator,
        store: KeyValueStore,
        *,
        default_location: LocationKey,
        location_key: str = "urbanai:location",
        periodic_interval: float = 120.0,
        poll_interval: float = 5.0,
    ) -> None:
        self.coordinator = coordinator
        self.store = store
        self.default_location = default_location
        self.location_key = location_key
        self.periodic_interval = periodic_interval
        self.poll_interval = poll_interval

        self.location: Optional[LocationKey] = None
        self.last_error: Optional[str] = None
        self._running = 0
        self._last_seen_raw: Optional[str] = None
        self._tasks: list[asyncio.Task] = []

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.REFRESHING if self._running else SchedulerState.IDLE

    # ------------------------------------------------------------------
    # hooks
    # ------------------------------------------------------------------

    async def on_mount(self) -> AggregatedSnapshot:
        """Restore the persisted location (or the default) and run the first refresh."""
        location = await self._load_location()
        if location is None:
            location = self.default_location
            logger.info("No persisted location; using default", extra={"location": location.label})
        self.location = location
        await self._save_location(location)
        return await self._refresh(location)

    async def on_location_change(self, location: LocationKey) -> AggregatedSnapshot:
        """Switch to `location`; raises InvalidLocationError without touching state."""
        try:
            location.ensure_valid()
        except InvalidLocationError as exc:
            self.last_error = str(exc)
            logger.warning("Rejected location change", extra={"error": str(exc)})
            raise
        self.location = location
        await self._save_location(location)
        return await self._refresh(location)

    async def periodic_tick(self) -> AggregatedSnapshot:
        return await self._refresh(self._current_location())

    async def on_manual_refresh(self) -> AggregatedSnapshot:
        logger.info("Manual refresh requested")
        return await self._refresh(self._current_location())

    async def on_cross_tab_storage_change(self, location: LocationKey) -> Optional[AggregatedSnapshot]:
        """Adopt a location another instance persisted; invalid ones are recorded and ignored."""
        try:
            location.ensure_valid()
        except InvalidLocationError as exc:
            self.last_error = str(exc)
            logger.warning("Ignoring invalid location from another instance", extra={"error": str(exc)})
            return None
        logger.info("Location changed by another instance", extra={"location": location.label})
        self.location = location
        return await self._refresh(location)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.on_mount()
        self._tasks = [
            asyncio.create_task(self._periodic_loop(), name="urbanai-periodic-refresh"),
            asyncio.create_task(self._watch_loop(), name="urbanai-location-watcher"),
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def __aenter__(self) -> "RefreshScheduler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _current_location(self) -> LocationKey:
        return self.location or self.default_location

    async def _refresh(self, location: LocationKey) -> AggregatedSnapshot:
        self._running += 1
        try:
            snapshot = await self.coordinator.refresh(location)
        except InvalidLocationError as exc:
            self.last_error = str(exc)
            raise
        finally:
            self._running -= 1
        self.last_error = None
        return snapshot

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.periodic_interval)
            try:
                await self.periodic_tick()
            except Exception:
                logger.exception("Periodic refresh failed")

    async def _watch_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                raw = await asyncio.to_thread(self.store.get, self.location_key)
            except PersistenceError as exc:
                logger.warning("Could not poll persisted location", extra={"error": str(exc)})
                continue
            if raw is None or raw == self._last_seen_raw:
                continue
            self._last_seen_raw = raw
            try:
                location = LocationKey.model_validate_json(raw)
            except ValidationError as exc:
                logger.warning("Ignoring unreadable persisted location", extra={"error": str(exc)})
                continue
            try:
                await self.on_cross_tab_storage_change(location)
            except Exception:
                logger.exception("Refresh after cross-instance location change failed")

    async def _load_location(self) -> Optional[LocationKey]:
        try:
            raw = await asyncio.to_thread(self.store.get, self.location_key)
        except PersistenceError as exc:
            logger.warning("Could not read persisted location", extra={"error": str(exc)})
            return None
        if not raw:
            return None
        self._last_seen_raw = raw
        try:
            return LocationKey.model_validate_json(raw).ensure_valid()
        except (ValidationError, InvalidLocationError) as exc:
            logger.warning("Discarding unusable persisted location", extra={"error": str(exc)})
            return None

    async def _save_location(self, location: LocationKey) -> None:
        raw = location.model_dump_json()
        self._last_seen_raw = raw
        try:
            await asyncio.to_thread(self.store.set, self.location_key, raw)
        except PersistenceError as exc:
            logger.warning("Could not persist location", extra={"error": str(exc)})
