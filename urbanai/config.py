"""Application configuration pulled from environment variables via pydantic."""
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the UrbanAI aggregator service."""
    model_config = SettingsConfigDict(env_prefix="URBANAI_", extra="ignore")

    log_level: str = "INFO"

    # durable key-value store
    store_backend: str = "sql"  # options: memory, redis, sql
    store_url: str | None = "sqlite:///./urbanai_cache.db"
    store_prefix: str = "urbanai:"
    store_quota_bytes: int | None = None  # memory backend only

    # aggregation
    coordinate_precision: int = Field(default=2, ge=0, le=6)
    min_refresh_interval_seconds: float = Field(default=10.0, ge=0)
    refresh_ceiling_seconds: float = Field(default=10.0, gt=0)
    upstream_timeout_seconds: float = Field(default=5.0, gt=0)
    periodic_refresh_seconds: float = Field(default=120.0, gt=0)
    location_poll_seconds: float = Field(default=5.0, gt=0)

    # cache TTLs per domain
    weather_ttl_seconds: int = 1800
    traffic_ttl_seconds: int = 300
    air_quality_ttl_seconds: int = 900
    resources_ttl_seconds: int = 3600
    green_space_ttl_seconds: int = 86400

    # upstream provider credentials; a tier without a key is skipped
    openweathermap_api_key: str | None = None
    visual_crossing_api_key: str | None = None
    airvisual_api_key: str | None = None
    tomtom_api_key: str | None = None

    default_location_name: str = "Dhaka"
    default_latitude: float = 23.8103
    default_longitude: float = 90.4125

    # HTTP surface
    api_key: str | None = None
    max_question_chars: int = 4000

    # insights (LLM chat proxy)
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "phi4-mini"
    ollama_timeout_seconds: float = 8.0
    ollama_retries: int = 1
    ollama_retry_backoff_seconds: float = 0.5
    ollama_options: dict = Field(
        default_factory=lambda: {
            "temperature": float(os.getenv("URBANAI_OLLAMA_TEMPERATURE", 0.7)),
            "top_p": float(os.getenv("URBANAI_OLLAMA_TOP_P", 0.95)),
        }
    )

    @field_validator("ollama_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("store_backend", mode="after")
    @classmethod
    def lower_backend(cls, v: str) -> str:
        """Backend names are matched case-insensitively."""
        return v.strip().lower()


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
