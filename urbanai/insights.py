"""Urban-planning chat on top of the current snapshot, with a canned answer when the LLM is down."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

import requests

from urbanai.domain import AggregatedSnapshot
from urbanai.ollama_client import OllamaClient
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="insights")


URBAN_PLANNING_SYSTEM_PROMPT = """You are an urban planning assistant for a city environmental dashboard.
You know urban planning practice, zoning and land use, traffic flow and transportation planning,
sustainable development and smart city infrastructure.
Ground your answers in the live readings below when they are relevant. Do not invent readings.
If you do not know something, say so and suggest where the user could find it.
Answer in the same language the user writes in."""

HISTORY_ROLES = {"user", "assistant"}


@dataclass(frozen=True)
class InsightResult:
    response: str
    fallback: bool = False


def describe_snapshot(snapshot: AggregatedSnapshot) -> list[str]:
    """One line per domain that has data."""
    lines: list[str] = []
    if snapshot.location is not None:
        lines.append(f"Location: {snapshot.location.label}")
    if snapshot.weather:
        w = snapshot.weather
        lines.append(f"Weather: {w.temperature:.1f} C, {w.condition}, humidity {w.humidity}%, wind {w.wind_speed} km/h")
    if snapshot.air_quality:
        a = snapshot.air_quality
        lines.append(f"Air quality: AQI {a.aqi}, PM2.5 {a.pm25}, PM10 {a.pm10}")
    if snapshot.traffic:
        t = snapshot.traffic
        lines.append(
            f"Traffic: congestion {t.congestion_level:.0f}%, {t.incident_count} incidents, "
            f"average speed {t.average_speed:.0f} km/h"
        )
    if snapshot.resources:
        r = snapshot.resources
        lines.append(
            f"Resources: water {r.water_usage}, electricity {r.electricity_usage}, "
            f"waste {r.waste_generation}, recycling {r.recycling_rate}%"
        )
    if snapshot.green_space:
        g = snapshot.green_space
        lines.append(
            f"Green space: {g.total_area:.0f} ha, {g.park_count} parks, {g.tree_count} trees, "
            f"biodiversity {g.biodiversity_index:.0f}/100"
        )
    return lines


def build_insight_messages(
    snapshot: AggregatedSnapshot,
    question: str,
    history: Optional[Iterable[Mapping[str, str]]] = None,
) -> list[dict]:
    """System prompt with the readings, prior user/assistant turns, then the question."""
    readings = describe_snapshot(snapshot)
    system = URBAN_PLANNING_SYSTEM_PROMPT
    if readings:
        system = "\n".join([system, "", "Current readings:", *(f"- {line}" for line in readings)])

    messages = [{"role": "system", "content": system}]
    for msg in history or []:
        role, content = msg.get("role"), msg.get("content")
        if role in HISTORY_ROLES and content:
            messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": question})
    return messages


def fallback_answer(snapshot: AggregatedSnapshot) -> str:
    readings = describe_snapshot(snapshot)
    if not readings:
        return "The insights assistant is unavailable right now and no readings have been collected yet."
    return "\n".join([
        "The insights assistant is unavailable right now. Here is the latest data:",
        *(f"- {line}" for line in readings),
    ])


def generate_insight(
    client: OllamaClient,
    snapshot: AggregatedSnapshot,
    question: str,
    history: Optional[Iterable[Mapping[str, str]]] = None,
) -> InsightResult:
    messages = build_insight_messages(snapshot, question, history)
    try:
        content = client.chat(messages)
    except (RuntimeError, requests.RequestException) as exc:
        logger.warning("Insight generation failed; serving fallback answer", extra={"error": str(exc)})
        return InsightResult(response=fallback_answer(snapshot), fallback=True)
    if not content.strip():
        logger.warning("LLM returned an empty answer; serving fallback answer")
        return InsightResult(response=fallback_answer(snapshot), fallback=True)
    return InsightResult(response=content.strip())
