"""FastAPI application setup for the UrbanAI aggregator."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from urbanai import config
from urbanai.api import router as api_router
from urbanai.runtime import Runtime, build_runtime
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="main")


def create_app(runtime: Runtime | None = None, settings: config.Settings | None = None) -> FastAPI:
    """Build the app; without an explicit runtime one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime(settings)
        logger.info("Starting refresh scheduler")
        async with app.state.runtime.scheduler:
            yield
        logger.info("Refresh scheduler stopped")

    app = FastAPI(title="UrbanAI Environmental Data Aggregator", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
