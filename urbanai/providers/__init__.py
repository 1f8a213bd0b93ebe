"""Provider adapters for each environmental data domain."""

from .air_quality import AirQualityAdapter
from .base import (
    ChainResult,
    Exhausted,
    ProviderAdapter,
    Success,
    UpstreamSource,
    run_fallback_chain,
)
from .factory import build_adapters
from .municipal import GreenSpaceAdapter, ResourceAdapter
from .traffic import TrafficAdapter
from .weather import WeatherAdapter

__all__ = [
    "build_adapters",
    "run_fallback_chain",
    "ChainResult",
    "Exhausted",
    "Success",
    "UpstreamSource",
    "ProviderAdapter",
    "WeatherAdapter",
    "TrafficAdapter",
    "AirQualityAdapter",
    "ResourceAdapter",
    "GreenSpaceAdapter",
]
