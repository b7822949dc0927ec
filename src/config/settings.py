"""
Centralized settings management using pydantic-settings.

All environment variables and configuration values are defined here.
Use get_settings() to access the singleton settings instance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Optional environment variables:
        - HOST: Server host (default: 0.0.0.0)
        - PORT: Server port (default: 8080)
        - CATALOG_BACKEND: "memory" or "supabase" (default: memory)
        - SUPABASE_URL / SUPABASE_SERVICE_KEY: required when CATALOG_BACKEND=supabase
        - REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
        - REDIS_ENABLED: Use Redis as the cache tier instead of the in-process store
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
    # Catalog Store
    # ==========================================================================
    catalog_backend: str = Field(
        default="memory",
        description="Catalog reader backend: 'memory' or 'supabase'"
    )
    supabase_url: Optional[str] = Field(default=None, description="Supabase project URL")
    supabase_service_key: Optional[str] = Field(default=None, description="Supabase service role key")
    products_table: str = Field(default="products", description="Table holding catalog products")

    @field_validator("catalog_backend", mode="before")
    @classmethod
    def parse_catalog_backend(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in ("memory", "supabase"):
                raise ValueError(f"catalog_backend must be 'memory' or 'supabase', got {v!r}")
        return v

    # ==========================================================================
    # Redis Configuration
    # ==========================================================================
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    redis_enabled: bool = Field(
        default=False,
        description="Use Redis as the cache tier (in-process store otherwise)"
    )
    redis_socket_timeout_seconds: float = Field(
        default=1.0,
        description="Socket timeout for Redis commands"
    )

    # ==========================================================================
    # Cache TTLs
    # ==========================================================================
    search_cache_ttl_seconds: int = Field(
        default=300,
        description="TTL for cached search results (5 minutes)"
    )
    autocomplete_cache_ttl_seconds: int = Field(
        default=60,
        description="TTL for cached autocomplete suggestions"
    )
    popular_queries_cache_ttl_seconds: int = Field(
        default=600,
        description="TTL for the cached popular-queries list"
    )

    # ==========================================================================
    # Request Pipeline
    # ==========================================================================
    facet_timeout_ms: int = Field(
        default=800,
        description="Join timeout for facet aggregations; late facets are dropped"
    )
    primary_fetch_timeout_ms: int = Field(
        default=5000,
        description="Timeout for the primary result fetch; exceeding it fails the request"
    )
    relevance_full_rank_limit: int = Field(
        default=2000,
        description="Match sets up to this size are scored in full for relevance ordering"
    )
    relevance_window: int = Field(
        default=500,
        description="Popular candidates re-ranked when a large match set has no fresh ranking index"
    )
    search_workers: int = Field(default=8, description="Threads for primary fetches")
    facet_workers: int = Field(default=8, description="Threads for facet aggregations")

    # ==========================================================================
    # Ranking Index
    # ==========================================================================
    ranking_index_ttl_seconds: int = Field(
        default=3600,
        description="How long a rebuilt ranking index is considered fresh"
    )
    ranking_rebuild_batch_size: int = Field(
        default=500,
        description="Products scored per catalog page during rebuild"
    )
    ranking_rebuild_lock_ttl_seconds: int = Field(
        default=900,
        description="Expiry of the shared rebuild flag, in case a worker dies mid-rebuild"
    )

    # ==========================================================================
    # Analytics
    # ==========================================================================
    analytics_enabled: bool = Field(default=True, description="Record query analytics")
    analytics_workers: int = Field(default=2, description="Threads for analytics writes")
    analytics_stats_retention_days: int = Field(
        default=30,
        description="Days a daily search-stats hash is kept"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses lru_cache to ensure only one instance is created.
    Settings are loaded from environment variables and .env file.

    Returns:
        Settings: The application settings instance

    Raises:
        ValidationError: If environment variables hold invalid values
    """
    # Try to find .env file in project root
    env_file = Path(__file__).parent.parent.parent / ".env"
    if env_file.exists():
        os.environ.setdefault("ENV_FILE", str(env_file))

    return Settings(_env_file=env_file if env_file.exists() else None)


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a settings instance for testing with optional overrides.

    This bypasses the cache to allow different settings in tests.

    Args:
        **overrides: Setting values to override

    Returns:
        Settings: A new settings instance with overrides applied
    """
    test_defaults = {
        "environment": "testing",
        "debug": True,
        "catalog_backend": "memory",
        "redis_enabled": False,
        "analytics_enabled": True,
    }
    test_defaults.update(overrides)

    return Settings(_env_file=None, **test_defaults)
