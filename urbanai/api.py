"""HTTP API for the environmental data aggregator."""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field

from urbanai.domain import AggregatedSnapshot, LocationKey
from urbanai.errors import InvalidLocationError
from urbanai.insights import generate_insight
from urbanai.runtime import Runtime
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="api")


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def require_api_key(request: Request, x_api_key: str | None = Header(default=None)):
    """
    Validate the X-API-Key header against the configured api_key.
    """
    expected = get_runtime(request).settings.api_key
    # If no key is configured, allow requests (dev/default mode).
    if not expected:
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if hmac.compare_digest(str(x_api_key), str(expected)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])


class LocationRequest(BaseModel):
    """Incoming location change."""
    latitude: float
    longitude: float
    name: Optional[str] = None


class LocationResponse(BaseModel):
    location: LocationKey


class HistoryMessage(BaseModel):
    role: str
    content: str


class InsightRequest(BaseModel):
    """Question for the insights assistant plus optional prior turns."""
    message: str = Field(min_length=1)
    history: list[HistoryMessage] = Field(default_factory=list)


class InsightResponse(BaseModel):
    response: str  # markdown for the chat bubble
    fallback: bool = False


@router.get("/snapshot", response_model=AggregatedSnapshot)
def read_snapshot(runtime: Runtime = Depends(get_runtime)):
    """Return the current snapshot without triggering a refresh."""
    return runtime.coordinator.get_snapshot()


@router.post("/refresh", response_model=AggregatedSnapshot)
async def manual_refresh(runtime: Runtime = Depends(get_runtime)):
    """Refresh the active location now (subject to the minimum refresh interval)."""
    return await runtime.scheduler.on_manual_refresh()


@router.get("/location", response_model=LocationResponse)
def read_location(runtime: Runtime = Depends(get_runtime)):
    scheduler = runtime.scheduler
    return LocationResponse(location=scheduler.location or scheduler.default_location)


@router.put("/location", response_model=AggregatedSnapshot)
async def change_location(req: LocationRequest, runtime: Runtime = Depends(get_runtime)):
    """Switch the active location and return the refreshed snapshot."""
    location = LocationKey(latitude=req.latitude, longitude=req.longitude, name=req.name)
    try:
        return await runtime.scheduler.on_location_change(location)
    except InvalidLocationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
def clear_cache(runtime: Runtime = Depends(get_runtime)):
    """Drop every cached record; the next refresh goes upstream."""
    runtime.clear_caches()


@router.post("/insights", response_model=InsightResponse)
def ask_insights(req: InsightRequest, runtime: Runtime = Depends(get_runtime)):
    """Answer an urban-planning question using the current snapshot as context."""
    limit = runtime.settings.max_question_chars
    if len(req.message) > limit:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Message too long; limit {limit} characters.")

    result = generate_insight(
        runtime.insights_client,
        runtime.coordinator.get_snapshot(),
        req.message,
        [m.model_dump() for m in req.history],
    )
    return InsightResponse(response=result.response, fallback=result.fallback)
