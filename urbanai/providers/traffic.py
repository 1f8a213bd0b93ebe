"""Traffic adapter backed by the TomTom flow and incident APIs."""
from __future__ import annotations

import random
from functools import partial
from typing import List

from urbanai.domain import Domain, LocationKey, TrafficRecord
from urbanai.errors import SchemaMismatch
from urbanai.providers.base import Fields, ProviderAdapter, UpstreamSource
from urbanai.providers.http import get_json, require_object
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="providers/traffic")

TOMTOM_FLOW_URL = "https://api.tomtom.com/traffic/services/4/flowSegmentData/absolute/10/json"
TOMTOM_INCIDENTS_URL = "https://api.tomtom.com/traffic/services/5/incidentDetails"

# half-width of the incident search box, in degrees
INCIDENT_BOX_DEGREES = 0.05


def _congestion_from_speeds(current_speed: float, free_flow_speed: float) -> float:
    """Percent of free-flow speed lost, clamped to [0, 100]."""
    if free_flow_speed <= 0:
        raise SchemaMismatch("tomtom", f"non-positive free flow speed {free_flow_speed}")
    lost = 100.0 - (current_speed / free_flow_speed) * 100.0
    return round(max(0.0, min(100.0, lost)), 1)


def fetch_tomtom(location: LocationKey, timeout: float, *, api_key: str) -> Fields:
    """Flow for the nearest road segment plus the number of incidents around it."""
    flow = get_json(
        TOMTOM_FLOW_URL,
        {"point": f"{location.latitude},{location.longitude}", "unit": "KMPH", "key": api_key},
        timeout=timeout,
        provider="tomtom",
    )
    segment = require_object(flow["flowSegmentData"], provider="tomtom", what="flowSegmentData")
    current_speed = float(segment["currentSpeed"])
    free_flow_speed = float(segment["freeFlowSpeed"])
    congestion = 100.0 if segment.get("roadClosure") else _congestion_from_speeds(current_speed, free_flow_speed)

    # TomTom bbox order is minLon,minLat,maxLon,maxLat
    bbox = ",".join(
        str(v)
        for v in (
            location.longitude - INCIDENT_BOX_DEGREES,
            location.latitude - INCIDENT_BOX_DEGREES,
            location.longitude + INCIDENT_BOX_DEGREES,
            location.latitude + INCIDENT_BOX_DEGREES,
        )
    )
    incidents = get_json(
        TOMTOM_INCIDENTS_URL,
        {"bbox": bbox, "fields": "{incidents{type}}", "language": "en-GB", "key": api_key},
        timeout=timeout,
        provider="tomtom",
    )
    items = incidents.get("incidents")
    if not isinstance(items, list):
        raise SchemaMismatch("tomtom", "incident response has no 'incidents' list")

    return {
        "congestion_level": congestion,
        "incident_count": len(items),
        "average_speed": current_speed,
        "free_flow_speed": free_flow_speed,
    }


def build_traffic_sources(*, tomtom_api_key: str | None = None) -> List[UpstreamSource]:
    """Traffic tiers in priority order."""
    if not tomtom_api_key:
        logger.info("TomTom tier disabled (no API key); traffic will be synthesized")
        return []
    return [UpstreamSource("tomtom", partial(fetch_tomtom, api_key=tomtom_api_key))]


class TrafficAdapter(ProviderAdapter):
    """Traffic records for a location."""

    domain = Domain.TRAFFIC
    record_type = TrafficRecord

    def _synthesize_fields(self, rng: random.Random, location: LocationKey) -> Fields:
        congestion = round(rng.uniform(10.0, 90.0), 1)
        # incidents get likelier as congestion rises
        if rng.random() < congestion / 100.0:
            incidents = rng.randint(1, 5)
        else:
            incidents = rng.randint(0, 1)
        return {
            "congestion_level": congestion,
            "incident_count": incidents,
            "average_speed": round(max(5.0, 60.0 - congestion * 0.5), 1),
            "free_flow_speed": 60.0,
        }
