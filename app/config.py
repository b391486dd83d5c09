"""
Engine Configuration.

Pydantic settings for type-safe environment configuration.
Every tunable of the knowledge-graph engine (feature hashing, search caps,
session lifetime and scoring) lives here so hosts can adjust it via env vars.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # === Feature Extraction ===
    feature_hash_bits: int = Field(
        default=18,
        ge=8,
        le=24,
        description="Size of each hashed feature block as a power of two",
    )
    feature_content_window: int = Field(
        default=600,
        ge=0,
        description="Characters of an entity's content body included in its features",
    )
    feature_word_weight: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Share of the vector norm given to word n-grams (rest goes to char 3-grams)",
    )

    # === Search ===
    search_max_results: int = Field(
        default=200,
        ge=1,
        description="Hard cap applied to every caller-supplied limit",
    )

    # === Sessions ===
    session_ttl_seconds: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Idle time after which a conversation session is reclaimed",
    )
    session_sweep_interval_seconds: float = Field(
        default=60 * 60,
        gt=0,
        description="Interval of the background session expiry sweep",
    )
    session_confidence_window: int = Field(
        default=5,
        ge=1,
        description="Number of recent turns considered for the confidence score",
    )
    session_confidence_decay: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Per-turn decay applied to older turns in the confidence score",
    )
    session_mention_decay: float = Field(
        default=0.85,
        gt=0.0,
        le=1.0,
        description="Per-turn decay applied to referenced concept weights",
    )
    session_focus_max_nodes: int = Field(
        default=20,
        ge=1,
        description="Maximum focus nodes kept in a session's context subgraph",
    )

    # === Enrichment ===
    enrichment_relationship_confidence: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Confidence attached to co-occurrence relationships",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
