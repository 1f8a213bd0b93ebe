"""Shared HTTP session and JSON helper for upstream providers."""
from __future__ import annotations

from typing import Any, Mapping, Optional

import requests

from urbanai.errors import SchemaMismatch
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="providers/http")

# Module-level so tests can swap it for a fake.
session = requests.Session()
session.headers.update({"User-Agent": "urbanai-aggregator/0.1"})


def get_json(url: str, params: Optional[Mapping[str, Any]], *, timeout: float, provider: str) -> dict:
    """GET `url` and return its JSON object body; raise on non-2xx or non-object bodies."""
    logger.debug("GET upstream", extra={"provider": provider, "url": url})
    resp = session.get(url, params=params, timeout=timeout)
    resp.raise_for_status()
    try:
        data = resp.json()
    except ValueError as exc:
        raise SchemaMismatch(provider, "response body is not JSON") from exc
    if not isinstance(data, dict):
        raise SchemaMismatch(provider, f"expected a JSON object, got {type(data).__name__}")
    return data


def require_object(value: Any, *, provider: str, what: str) -> dict:
    """Return `value` if it is a JSON object, else raise SchemaMismatch naming `what`."""
    if not isinstance(value, dict):
        raise SchemaMismatch(provider, f"'{what}' is {type(value).__name__}, expected an object")
    return value


def warn_on_unexpected_units(units: Optional[Mapping[str, Any]], expected: Mapping[str, set], *, provider: str) -> None:
    """Log a warning when a provider reports units other than the ones we requested."""
    if not units:
        return
    units = require_object(units, provider=provider, what="units")
    for field, allowed in expected.items():
        actual = units.get(field)
        if actual is None or actual in allowed:
            continue
        logger.warning(
            "Unexpected upstream unit",
            extra={"provider": provider, "field": field, "unit": actual, "allowed": sorted(allowed)},
        )
