"""
Viewfinder: Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Viewfinder matching service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Gemini (embeddings + image description)
    # ------------------------------------------------------------------ #
    GEMINI_API_KEY: str
    GEMINI_EMBEDDING_MODEL: str = "models/text-embedding-004"
    GEMINI_EMBEDDING_MODEL_FALLBACK: str = "models/embedding-001"
    GEMINI_VISION_MODEL_PRIMARY: str = "gemini-2.5-flash"
    GEMINI_VISION_MODEL_FALLBACK: str = "gemini-2.0-flash"

    # ------------------------------------------------------------------ #
    # Embedding pipeline
    # ------------------------------------------------------------------ #
    EMBEDDING_DIM: int = 768
    EMBEDDING_BATCH_SIZE: int = 16
    EMBEDDING_MAX_CONCURRENCY: int = 4
    EMBEDDING_STALE_AFTER_SECONDS: int = 900
    EMBEDDING_MAX_RETRY_ATTEMPTS: int = 5
    IMAGE_FETCH_TIMEOUT_SECONDS: float = 20.0

    # ------------------------------------------------------------------ #
    # Database – Cloud SQL via Unix socket or private IP
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_USER: str = "viewfinder_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "viewfinder"

    # ------------------------------------------------------------------ #
    # Redis – batch progress snapshots
    # ------------------------------------------------------------------ #
    REDIS_URL: str
    PROGRESS_TTL_SECONDS: int = 60 * 60 * 24

    # ------------------------------------------------------------------ #
    # Four-dimension matching weights
    # ------------------------------------------------------------------ #
    STYLE_EMOTION_WEIGHT: float = 0.40
    COMMUNICATION_PSYCHOLOGY_WEIGHT: float = 0.30
    PURPOSE_STORY_WEIGHT: float = 0.20
    COMPANION_WEIGHT: float = 0.10

    # "fixed" keeps the weight of a missing dimension out of the sum;
    # "renormalize" divides by the weights that were actually present.
    MATCH_WEIGHT_POLICY: Literal["fixed", "renormalize"] = "fixed"

    # Hard filters derived from quiz answers (region / budget / companion)
    MATCH_ENABLE_REGION_FILTER: bool = True
    MATCH_ENABLE_BUDGET_FILTER: bool = True
    MATCH_ENABLE_COMPANION_FILTER: bool = False

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ------------------------------------------------------------------ #
    # Google Cloud Platform
    # ------------------------------------------------------------------ #
    GCP_PROJECT_ID: str = ""
    GCP_REGION: str = "asia-northeast3"  # Seoul
    GCS_BUCKET_NAME: str = ""
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = True

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def dimension_weights(self) -> Dict[str, float]:
        """Weight per matching dimension, keyed by dimension name."""
        return {
            "style_emotion": self.STYLE_EMOTION_WEIGHT,
            "communication_psychology": self.COMMUNICATION_PSYCHOLOGY_WEIGHT,
            "purpose_story": self.PURPOSE_STORY_WEIGHT,
            "companion": self.COMPANION_WEIGHT,
        }

    @field_validator(
        "STYLE_EMOTION_WEIGHT",
        "COMMUNICATION_PSYCHOLOGY_WEIGHT",
        "PURPOSE_STORY_WEIGHT",
        "COMPANION_WEIGHT",
    )
    @classmethod
    def _weight_must_be_between_0_and_1(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Weight must be between 0 and 1, got {v}")
        return v

    @field_validator("EMBEDDING_BATCH_SIZE", "EMBEDDING_MAX_CONCURRENCY")
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
