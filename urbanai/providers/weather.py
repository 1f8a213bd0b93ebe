"""Current-weather adapter: Open-Meteo, then OpenWeatherMap, then Visual Crossing."""
from __future__ import annotations

import random
from functools import partial
from typing import List, Optional

from urbanai.domain import Domain, LocationKey, WeatherRecord
from urbanai.errors import SchemaMismatch
from urbanai.providers.base import Fields, ProviderAdapter, UpstreamSource
from urbanai.providers.http import get_json, require_object, warn_on_unexpected_units
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="providers/weather")

OPEN_METEO_WEATHER_URL = "https://api.open-meteo.com/v1/forecast"
OPENWEATHERMAP_URL = "https://api.openweathermap.org/data/2.5/weather"
VISUAL_CROSSING_URL = "https://weather.visualcrossing.com/VisualCrossingWebServices/rest/services/timeline"

OPEN_METEO_CURRENT_VARS = [
    "temperature_2m",
    "relative_humidity_2m",
    "apparent_temperature",
    "precipitation",
    "weather_code",
    "wind_speed_10m",
]

OPEN_METEO_EXPECTED_UNITS = {
    "temperature_2m": {"°C"},
    "apparent_temperature": {"°C"},
    "relative_humidity_2m": {"%", "percent"},
    "precipitation": {"mm"},
    "wind_speed_10m": {"km/h", "kmh"},
}

# WMO weather interpretation codes, collapsed to dashboard-level labels.
WMO_CONDITIONS = {
    0: "Clear",
    1: "Mostly Clear",
    2: "Partly Cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Fog",
    51: "Drizzle",
    53: "Drizzle",
    55: "Drizzle",
    56: "Freezing Drizzle",
    57: "Freezing Drizzle",
    61: "Rain",
    63: "Rain",
    65: "Heavy Rain",
    66: "Freezing Rain",
    67: "Freezing Rain",
    71: "Snow",
    73: "Snow",
    75: "Heavy Snow",
    77: "Snow Grains",
    80: "Rain Showers",
    81: "Rain Showers",
    82: "Heavy Rain Showers",
    85: "Snow Showers",
    86: "Snow Showers",
    95: "Thunderstorm",
    96: "Thunderstorm",
    99: "Thunderstorm",
}

MS_TO_KMH = 3.6


def _condition_from_wmo(code: Optional[object]) -> str:
    """Map a WMO weather code to a label; unknown codes become "Unknown"."""
    if code is None:
        return "Unknown"
    try:
        return WMO_CONDITIONS.get(int(code), "Unknown")
    except (TypeError, ValueError):
        return "Unknown"


def fetch_open_meteo(location: LocationKey, timeout: float) -> Fields:
    """Current conditions from the keyless Open-Meteo forecast API."""
    params = {
        "latitude": location.latitude,
        "longitude": location.longitude,
        "current": ",".join(OPEN_METEO_CURRENT_VARS),
        "timezone": "auto",
        "temperature_unit": "celsius",
        "wind_speed_unit": "kmh",
        "precipitation_unit": "mm",
    }
    data = get_json(OPEN_METEO_WEATHER_URL, params, timeout=timeout, provider="open_meteo")

    current = require_object(data["current"], provider="open_meteo", what="current")
    warn_on_unexpected_units(data.get("current_units"), OPEN_METEO_EXPECTED_UNITS, provider="open_meteo")
    return {
        "temperature": current["temperature_2m"],
        "condition": _condition_from_wmo(current.get("weather_code")),
        "humidity": current.get("relative_humidity_2m"),
        "wind_speed": current.get("wind_speed_10m"),
        "precipitation": current.get("precipitation"),
        "feels_like": current.get("apparent_temperature"),
        "place_name": location.name,
    }


def fetch_openweathermap(location: LocationKey, timeout: float, *, api_key: str) -> Fields:
    """Current conditions from OpenWeatherMap (metric units; wind arrives in m/s)."""
    params = {
        "lat": location.latitude,
        "lon": location.longitude,
        "appid": api_key,
        "units": "metric",
    }
    data = get_json(OPENWEATHERMAP_URL, params, timeout=timeout, provider="openweathermap")

    main = require_object(data["main"], provider="openweathermap", what="main")
    weather = data.get("weather") or []
    if not isinstance(weather, list) or not weather:
        raise SchemaMismatch("openweathermap", "missing 'weather' conditions")
    conditions = require_object(weather[0], provider="openweathermap", what="weather[0]")
    wind_ms = require_object(data.get("wind") or {}, provider="openweathermap", what="wind").get("speed")
    rain = require_object(data.get("rain") or {}, provider="openweathermap", what="rain")
    return {
        "temperature": main["temp"],
        "condition": conditions.get("main") or "Unknown",
        "humidity": main.get("humidity"),
        "wind_speed": round(wind_ms * MS_TO_KMH, 1) if wind_ms is not None else None,
        "precipitation": rain.get("1h", 0.0),
        "feels_like": main.get("feels_like"),
        "place_name": data.get("name") or location.name,
    }


def fetch_visual_crossing(location: LocationKey, timeout: float, *, api_key: str) -> Fields:
    """Current conditions from the Visual Crossing timeline API."""
    url = f"{VISUAL_CROSSING_URL}/{location.latitude},{location.longitude}/today"
    params = {
        "unitGroup": "metric",
        "include": "current",
        "key": api_key,
        "contentType": "json",
    }
    data = get_json(url, params, timeout=timeout, provider="visual_crossing")

    current = require_object(data["currentConditions"], provider="visual_crossing", what="currentConditions")
    return {
        "temperature": current["temp"],
        "condition": current.get("conditions") or "Unknown",
        "humidity": current.get("humidity"),
        "wind_speed": current.get("windspeed"),
        "precipitation": current.get("precip") or 0.0,
        "feels_like": current.get("feelslike"),
        "place_name": location.name or data.get("resolvedAddress"),
    }


def build_weather_sources(
    *,
    openweathermap_api_key: str | None = None,
    visual_crossing_api_key: str | None = None,
) -> List[UpstreamSource]:
    """Weather tiers in priority order; keyed tiers are only included when configured."""
    sources = [UpstreamSource("open_meteo", fetch_open_meteo)]
    if openweathermap_api_key:
        sources.append(UpstreamSource("openweathermap", partial(fetch_openweathermap, api_key=openweathermap_api_key)))
    else:
        logger.info("OpenWeatherMap tier disabled (no API key)")
    if visual_crossing_api_key:
        sources.append(UpstreamSource("visual_crossing", partial(fetch_visual_crossing, api_key=visual_crossing_api_key)))
    else:
        logger.info("Visual Crossing tier disabled (no API key)")
    return sources


class WeatherAdapter(ProviderAdapter):
    """Weather records for a location."""

    domain = Domain.WEATHER
    record_type = WeatherRecord

    def _synthesize_fields(self, rng: random.Random, location: LocationKey) -> Fields:
        # warm near the equator, cooling about 0.3 C per degree of latitude
        base = 30.0 - abs(location.latitude) * 0.3
        temperature = round(min(45.0, max(-30.0, base + rng.uniform(-4.0, 4.0))), 1)

        roll = rng.random()
        if roll > 0.7:
            condition = "Clear" if temperature > 20 else "Cloudy"
        elif roll > 0.4:
            condition = "Partly Cloudy" if temperature > 15 else "Mostly Cloudy"
        elif roll > 0.2:
            condition = "Rain"
        else:
            condition = "Snow" if temperature < 2 else "Thunderstorm"

        wet = condition in {"Rain", "Snow", "Thunderstorm"}
        humidity = round(rng.uniform(65.0, 95.0) if wet else rng.uniform(35.0, 75.0))
        wind_speed = round(rng.uniform(5.0, 25.0), 1)
        return {
            "temperature": temperature,
            "condition": condition,
            "humidity": float(humidity),
            "wind_speed": wind_speed,
            "precipitation": round(rng.uniform(0.5, 15.0), 1) if wet else 0.0,
            "feels_like": round(temperature - wind_speed * 0.05 + (humidity - 50) * 0.03, 1),
            "place_name": location.name,
        }
