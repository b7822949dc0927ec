"""
Store client singletons.

This module provides singleton instances for the catalog database and the
cache tier, ensuring efficient resource usage across the application.
"""

from functools import lru_cache
from typing import Optional

import redis
from supabase import Client, create_client

from config.settings import get_settings
from core.errors import StoreUnavailableError


class SupabaseClientError(StoreUnavailableError):
    """Raised when Supabase client cannot be created."""

    def __init__(self, message: str):
        super().__init__(message, store="catalog")


class RedisClientError(StoreUnavailableError):
    """Raised when the Redis client cannot be created."""

    def __init__(self, message: str):
        super().__init__(message, store="cache")


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Get the singleton Supabase client instance.

    Uses lru_cache to ensure only one client is created and reused.

    Returns:
        Client: The Supabase client instance

    Raises:
        SupabaseClientError: If client cannot be created
    """
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_key:
        raise SupabaseClientError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
    try:
        return create_client(settings.supabase_url, settings.supabase_service_key)
    except Exception as e:
        raise SupabaseClientError(f"Failed to create Supabase client: {e}") from e


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """
    Get the singleton Redis client.

    The connection pool is lazy; the first command opens a socket.

    Raises:
        RedisClientError: If the URL cannot be parsed
    """
    settings = get_settings()
    try:
        return redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
        )
    except Exception as e:
        raise RedisClientError(f"Failed to create Redis client: {e}") from e


def get_redis_client_optional() -> Optional[redis.Redis]:
    """Get the Redis client if it answers PING, else None."""
    try:
        client = get_redis_client()
        client.ping()
        return client
    except (RedisClientError, redis.RedisError):
        return None
