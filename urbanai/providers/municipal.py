"""Resource-consumption and green-space adapters.

Neither domain has a public upstream feed yet, so both adapters run with an
empty source list: the first fetch synthesizes, later fetches reuse the cached
record.
"""
from __future__ import annotations

import random

from urbanai.domain import Domain, GreenSpaceRecord, LocationKey, ResourceRecord
from urbanai.providers.base import Fields, ProviderAdapter


class ResourceAdapter(ProviderAdapter):
    """Water, electricity and waste indicators."""

    domain = Domain.RESOURCES
    record_type = ResourceRecord

    def _synthesize_fields(self, rng: random.Random, location: LocationKey) -> Fields:
        return {
            "water_usage": round(100.0 + rng.uniform(0.0, 80.0), 1),
            "electricity_usage": round(120.0 + rng.uniform(0.0, 70.0), 1),
            "waste_generation": round(45.0 + rng.uniform(0.0, 15.0), 1),
            "recycling_rate": round(20.0 + rng.uniform(0.0, 30.0), 1),
        }


class GreenSpaceAdapter(ProviderAdapter):
    """Park area, tree count and biodiversity."""

    domain = Domain.GREEN_SPACE
    record_type = GreenSpaceRecord

    def _synthesize_fields(self, rng: random.Random, location: LocationKey) -> Fields:
        latitude_factor = 1.0 - abs(location.latitude) / 90.0  # highest at the equator
        total_area = round((50.0 + latitude_factor * 100.0) * (1.0 + rng.uniform(0.0, 0.3)))
        biodiversity = latitude_factor * 80.0 + rng.uniform(0.0, 20.0)
        return {
            "total_area": float(total_area),
            "tree_count": round(total_area * rng.uniform(20.0, 30.0)),
            "park_count": round(2 + total_area / 50.0),
            "biodiversity_index": float(min(100, max(0, round(biodiversity)))),
        }
