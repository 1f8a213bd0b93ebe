import os

import uvicorn

from urbanai.config import settings
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


if __name__ == "__main__":
    setup_logging(level=settings.log_level)
    logger.info("Starting UrbanAI aggregator", extra={"store_backend": settings.store_backend})

    uvicorn.run(
        "urbanai.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
