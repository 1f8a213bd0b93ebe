"""Factory helpers wiring provider adapters to their cache layers at startup."""

from __future__ import annotations

import time
from typing import Dict

from urbanai import config
from urbanai.cache import CacheLayer, Clock
from urbanai.domain import Domain
from urbanai.providers.air_quality import AirQualityAdapter, build_air_quality_sources
from urbanai.providers.base import ProviderAdapter
from urbanai.providers.municipal import GreenSpaceAdapter, ResourceAdapter
from urbanai.providers.traffic import TrafficAdapter, build_traffic_sources
from urbanai.providers.weather import WeatherAdapter, build_weather_sources
from urbanai.storage.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="providers/factory")


def build_adapters(
    store: KeyValueStore,
    settings: config.Settings | None = None,
    *,
    clock: Clock = time.time,
    hydrate: bool = True,
) -> Dict[Domain, ProviderAdapter]:
    """Create one adapter (with its own cache layer) per domain."""
    settings = settings or config.settings

    plan = [
        (WeatherAdapter, settings.weather_ttl_seconds, build_weather_sources(
            openweathermap_api_key=settings.openweathermap_api_key,
            visual_crossing_api_key=settings.visual_crossing_api_key,
        )),
        (TrafficAdapter, settings.traffic_ttl_seconds, build_traffic_sources(
            tomtom_api_key=settings.tomtom_api_key,
        )),
        (AirQualityAdapter, settings.air_quality_ttl_seconds, build_air_quality_sources(
            airvisual_api_key=settings.airvisual_api_key,
        )),
        (ResourceAdapter, settings.resources_ttl_seconds, []),
        (GreenSpaceAdapter, settings.green_space_ttl_seconds, []),
    ]

    adapters: Dict[Domain, ProviderAdapter] = {}
    for adapter_cls, ttl, sources in plan:
        cache = CacheLayer(
            store,
            adapter_cls.domain,
            adapter_cls.record_type,
            prefix=settings.store_prefix,
            clock=clock,
        )
        if hydrate:
            cache.hydrate()
        adapters[adapter_cls.domain] = adapter_cls(
            cache,
            sources,
            ttl_seconds=ttl,
            timeout_seconds=settings.upstream_timeout_seconds,
            precision=settings.coordinate_precision,
            clock=clock,
        )
        logger.info(
            "Configured adapter",
            extra={"domain": adapter_cls.domain.value, "sources": [s.name for s in sources], "cached": len(cache)},
        )
    return adapters
