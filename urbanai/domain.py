"""Domain vocabulary and strict schemas for aggregated environmental data.

This module defines the normalized contract between provider adapters, the
cache layer and snapshot subscribers: location identity, the per-domain record
models, and the aggregated snapshot. Upstream response shapes never leave the
provider modules; everything downstream only sees these models.
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from urbanai.errors import InvalidLocationError


class _StrictBaseModel(BaseModel):
    """Immutable base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class Domain(str, Enum):
    """Environmental data domains; values double as snapshot field names."""
    WEATHER = "weather"
    TRAFFIC = "traffic"
    AIR_QUALITY = "air_quality"
    RESOURCES = "resources"
    GREEN_SPACE = "green_space"


class RecordSource(str, Enum):
    """How a record was obtained."""
    LIVE = "live"
    SYNTHESIZED = "synthesized"
    CACHED = "cached"


class LocationKey(_StrictBaseModel):
    """Coordinates (plus optional display name) identifying the data subject."""

    latitude: float
    longitude: float
    name: Optional[str] = None

    def ensure_valid(self) -> "LocationKey":
        """Raise InvalidLocationError unless both coordinates are finite and in range."""
        if not (math.isfinite(self.latitude) and -90.0 <= self.latitude <= 90.0):
            raise InvalidLocationError(f"latitude {self.latitude} outside [-90, 90]")
        if not (math.isfinite(self.longitude) and -180.0 <= self.longitude <= 180.0):
            raise InvalidLocationError(f"longitude {self.longitude} outside [-180, 180]")
        return self

    def bucket(self, precision: int) -> str:
        """Rounded coordinate string used as cache identity."""
        lat = round(self.latitude, precision) + 0.0  # normalizes -0.0
        lng = round(self.longitude, precision) + 0.0
        return f"{lat:.{precision}f},{lng:.{precision}f}"

    def same_bucket(self, other: Optional["LocationKey"], precision: int) -> bool:
        """Whether two keys share a cache bucket."""
        return other is not None and self.bucket(precision) == other.bucket(precision)

    @property
    def label(self) -> str:
        return self.name or f"{self.latitude:.4f},{self.longitude:.4f}"


class DomainRecord(_StrictBaseModel):
    """Fields common to every normalized record."""

    location: str
    source: RecordSource
    provider: str
    fetched_at: datetime

    def tagged(self, source: RecordSource) -> "DomainRecord":
        """Return a copy carrying a different source tag."""
        return self.model_copy(update={"source": source})


class WeatherRecord(DomainRecord):
    """Current weather; metric units (degrees C, km/h, mm)."""

    temperature: float = Field(ge=-90.0, le=60.0)
    condition: str
    humidity: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    wind_speed: Optional[float] = Field(default=None, ge=0.0)
    precipitation: Optional[float] = Field(default=None, ge=0.0)
    feels_like: Optional[float] = None
    place_name: Optional[str] = None


class TrafficRecord(DomainRecord):
    """Road congestion around the location."""

    congestion_level: float = Field(ge=0.0, le=100.0)
    incident_count: int = Field(ge=0)
    average_speed: float = Field(ge=0.0)
    free_flow_speed: Optional[float] = Field(default=None, ge=0.0)


class AirQualityRecord(DomainRecord):
    """Air quality; pollutant concentrations in micrograms per cubic metre."""

    aqi: int = Field(ge=0)
    pm25: Optional[float] = Field(default=None, ge=0.0)
    pm10: Optional[float] = Field(default=None, ge=0.0)
    no2: Optional[float] = Field(default=None, ge=0.0)
    o3: Optional[float] = Field(default=None, ge=0.0)


class ResourceRecord(DomainRecord):
    """Municipal resource consumption indicators."""

    water_usage: float = Field(ge=0.0)
    electricity_usage: float = Field(ge=0.0)
    waste_generation: float = Field(ge=0.0)
    recycling_rate: float = Field(ge=0.0, le=100.0)


class GreenSpaceRecord(DomainRecord):
    """Urban green space coverage."""

    total_area: float = Field(ge=0.0)
    tree_count: int = Field(ge=0)
    park_count: int = Field(ge=0)
    biodiversity_index: float = Field(ge=0.0, le=100.0)


RECORD_TYPES: Dict[Domain, Type[DomainRecord]] = {
    Domain.WEATHER: WeatherRecord,
    Domain.TRAFFIC: TrafficRecord,
    Domain.AIR_QUALITY: AirQualityRecord,
    Domain.RESOURCES: ResourceRecord,
    Domain.GREEN_SPACE: GreenSpaceRecord,
}


class AggregatedSnapshot(_StrictBaseModel):
    """Merged view of every domain for the active location."""

    location: Optional[LocationKey] = None
    weather: Optional[WeatherRecord] = None
    traffic: Optional[TrafficRecord] = None
    air_quality: Optional[AirQualityRecord] = None
    resources: Optional[ResourceRecord] = None
    green_space: Optional[GreenSpaceRecord] = None
    is_loading: bool = False
    last_refresh_time: Optional[datetime] = None

    def record_for(self, domain: Domain) -> Optional[DomainRecord]:
        return getattr(self, domain.value)
