"""Air-quality adapter: Open-Meteo air-quality API, then IQAir AirVisual."""
from __future__ import annotations

import random
from functools import partial
from typing import List

from urbanai.domain import AirQualityRecord, Domain, LocationKey
from urbanai.errors import SchemaMismatch
from urbanai.providers.base import Fields, ProviderAdapter, UpstreamSource
from urbanai.providers.http import get_json, require_object, warn_on_unexpected_units
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="providers/air_quality")

OPEN_METEO_AIR_URL = "https://air-quality-api.open-meteo.com/v1/air-quality"
AIRVISUAL_URL = "https://api.airvisual.com/v2/nearest_city"

OPEN_METEO_AIR_VARS = ["us_aqi", "pm2_5", "pm10", "nitrogen_dioxide", "ozone"]

OPEN_METEO_AIR_EXPECTED_UNITS = {
    "pm2_5": {"µg/m³", "ug/m3"},
    "pm10": {"µg/m³", "ug/m3"},
    "nitrogen_dioxide": {"µg/m³", "ug/m3"},
    "ozone": {"µg/m³", "ug/m3"},
    "us_aqi": {"USAQI", "aqi", "US AQI"},
}


def fetch_open_meteo_air(location: LocationKey, timeout: float) -> Fields:
    """Current pollutant levels from the keyless Open-Meteo air-quality API."""
    params = {
        "latitude": location.latitude,
        "longitude": location.longitude,
        "current": ",".join(OPEN_METEO_AIR_VARS),
        "timezone": "auto",
    }
    data = get_json(OPEN_METEO_AIR_URL, params, timeout=timeout, provider="open_meteo_air")

    current = require_object(data["current"], provider="open_meteo_air", what="current")
    warn_on_unexpected_units(data.get("current_units"), OPEN_METEO_AIR_EXPECTED_UNITS, provider="open_meteo_air")
    us_aqi = current.get("us_aqi")
    if us_aqi is None:
        raise SchemaMismatch("open_meteo_air", "no us_aqi value for this location")
    return {
        "aqi": int(round(us_aqi)),
        "pm25": current.get("pm2_5"),
        "pm10": current.get("pm10"),
        "no2": current.get("nitrogen_dioxide"),
        "o3": current.get("ozone"),
    }


def fetch_airvisual(location: LocationKey, timeout: float, *, api_key: str) -> Fields:
    """US AQI of the nearest monitored city; AirVisual's free tier has no concentrations."""
    params = {"lat": location.latitude, "lon": location.longitude, "key": api_key}
    data = get_json(AIRVISUAL_URL, params, timeout=timeout, provider="airvisual")

    if data.get("status") != "success":
        raise SchemaMismatch("airvisual", f"status={data.get('status')!r}")
    payload = require_object(data["data"], provider="airvisual", what="data")
    current = require_object(payload["current"], provider="airvisual", what="data.current")
    pollution = require_object(current["pollution"], provider="airvisual", what="data.current.pollution")
    return {"aqi": int(pollution["aqius"])}


def build_air_quality_sources(*, airvisual_api_key: str | None = None) -> List[UpstreamSource]:
    """Air-quality tiers in priority order."""
    sources = [UpstreamSource("open_meteo_air", fetch_open_meteo_air)]
    if airvisual_api_key:
        sources.append(UpstreamSource("airvisual", partial(fetch_airvisual, api_key=airvisual_api_key)))
    else:
        logger.info("AirVisual tier disabled (no API key)")
    return sources


class AirQualityAdapter(ProviderAdapter):
    """Air-quality records for a location."""

    domain = Domain.AIR_QUALITY
    record_type = AirQualityRecord

    def _synthesize_fields(self, rng: random.Random, location: LocationKey) -> Fields:
        urban_factor = rng.uniform(1.0, 1.5)
        aqi = round(rng.uniform(30.0, 70.0) * urban_factor)
        return {
            "aqi": aqi,
            "pm25": float(round(aqi * 0.8)),
            "pm10": float(round(aqi * 0.6)),
            "no2": float(round(10 + aqi * 0.3)),
            "o3": float(round(20 + aqi * 0.4)),
        }
