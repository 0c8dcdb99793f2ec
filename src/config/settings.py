"""
Centralized settings management using pydantic-settings.

All environment variables and configuration values are defined here.
Use get_settings() to access the singleton settings instance.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Nothing is strictly required: without Supabase credentials the service
    runs against the static catalogue and in-memory save records.

    Optional environment variables:
        - SUPABASE_URL / SUPABASE_SERVICE_KEY: product catalogue + saved gifts
        - REDIS_URL / REDIS_ENABLED: shared session profiles
        - RETRIEVER_BACKEND: "static" or "supabase"
        - RANKING_WEIGHT_*: ranking weights and boosts
        - RATE_LIMIT_PER_MINUTE: recommend requests per client IP
        - ENVIRONMENT: Environment name (development, staging, production)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    # ==========================================================================
    # Server Configuration
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    workers: int = Field(default=4, description="Number of uvicorn workers")

    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="Allowed CORS origins"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # ==========================================================================
    # Supabase Configuration
    # ==========================================================================
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service role key")
    products_table: str = Field(default="products", description="Candidate product table")
    saved_table: str = Field(default="saved_gifts", description="Save records table")
    impressions_table: str = Field(default="recommend_log", description="Per-page impression log table")

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    # ==========================================================================
    # Redis Configuration
    # ==========================================================================
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    redis_enabled: bool = Field(
        default=False,
        description="Enable Redis for session profiles"
    )
    session_ttl_seconds: int = Field(
        default=86400,
        description="Session TTL in seconds (24 hours)"
    )

    # ==========================================================================
    # Recommendation Engine
    # ==========================================================================
    retriever_backend: str = Field(
        default="static",
        description="Candidate retriever: 'static' or 'supabase'"
    )
    retriever_limit: int = Field(default=200, description="Max candidates fetched per call")
    catalog_path: Optional[Path] = Field(
        default=None,
        description="JSON file seeding the static catalogue"
    )
    page_size: int = Field(default=30, ge=1, le=100, description="Default page size")
    max_per_retailer: Optional[int] = Field(
        default=None,
        description="Diversity cap per retailer within one ranking pass (disabled when unset)"
    )

    ranking_weight_similarity: float = Field(default=0.25)
    ranking_weight_quality: float = Field(default=0.35)
    ranking_weight_recency: float = Field(default=0.25)
    ranking_weight_popularity: float = Field(default=0.15)
    ranking_vendor_boost: float = Field(default=0.05)
    ranking_sponsored_boost: float = Field(default=0.03)
    ranking_unavailability_penalty: float = Field(default=0.5)

    @field_validator("retriever_backend")
    @classmethod
    def validate_retriever_backend(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("static", "supabase"):
            raise ValueError(f"Unknown retriever backend: {v}")
        return v

    # ==========================================================================
    # Client (deck) Configuration
    # ==========================================================================
    api_base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL the deck client talks to"
    )
    client_timeout_seconds: float = Field(default=10.0, description="HTTP timeout for the deck client")
    client_state_path: Path = Field(
        default=Path.home() / ".giftdeck" / "state.json",
        description="Where the deck client persists its session id"
    )
    prefetch_threshold: int = Field(
        default=6,
        description="Remaining-card count at which the deck prefetches the next page"
    )
    dispatch_workers: int = Field(default=4, description="Background workers for deck network calls")

    # ==========================================================================
    # Rate Limiting / Impressions
    # ==========================================================================
    rate_limit_enabled: bool = Field(default=True, description="Rate limit the recommend endpoints per client IP")
    rate_limit_per_minute: int = Field(default=60, ge=1, description="Recommend requests allowed per IP per minute")
    log_impressions: bool = Field(default=True, description="Record which products each served page contained")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
