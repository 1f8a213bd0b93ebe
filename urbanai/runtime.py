"""Wire the store, adapters, coordinator and scheduler together from settings."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict

from urbanai import config
from urbanai.cache import Clock
from urbanai.coordinator import AggregationCoordinator
from urbanai.domain import Domain, LocationKey
from urbanai.ollama_client import OllamaClient
from urbanai.providers import ProviderAdapter, build_adapters
from urbanai.scheduler import RefreshScheduler
from urbanai.storage import KeyValueStore, build_store
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="runtime")


@dataclass
class Runtime:
    settings: config.Settings
    store: KeyValueStore
    adapters: Dict[Domain, ProviderAdapter]
    coordinator: AggregationCoordinator
    scheduler: RefreshScheduler
    insights_client: OllamaClient

    def clear_caches(self) -> None:
        """Drop every domain's cached records, in memory and in the store."""
        for domain, adapter in self.adapters.items():
            adapter.cache.clear()
            logger.info("Cleared cache", extra={"domain": domain.value})


def default_location(settings: config.Settings) -> LocationKey:
    return LocationKey(
        latitude=settings.default_latitude,
        longitude=settings.default_longitude,
        name=settings.default_location_name,
    ).ensure_valid()


def build_runtime(
    settings: config.Settings | None = None,
    *,
    store: KeyValueStore | None = None,
    clock: Clock = time.time,
) -> Runtime:
    """Build every long-lived component; `store` overrides the configured backend."""
    settings = settings or config.settings
    store = store if store is not None else build_store(settings)
    adapters = build_adapters(store, settings, clock=clock)
    coordinator = AggregationCoordinator(
        adapters,
        min_refresh_interval=settings.min_refresh_interval_seconds,
        refresh_ceiling=settings.refresh_ceiling_seconds,
        precision=settings.coordinate_precision,
    )
    scheduler = RefreshScheduler(
        coordinator,
        store,
        default_location=default_location(settings),
        location_key=f"{settings.store_prefix}location",
        periodic_interval=settings.periodic_refresh_seconds,
        poll_interval=settings.location_poll_seconds,
    )
    return Runtime(
        settings=settings,
        store=store,
        adapters=adapters,
        coordinator=coordinator,
        scheduler=scheduler,
        insights_client=OllamaClient(settings),
    )
