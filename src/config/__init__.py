"""
Configuration module for the catalog search engine.

This module provides centralized configuration management using pydantic-settings.
All environment variables and configuration values should be accessed through this module.

Usage:
    from config import get_settings

    settings = get_settings()
    ttl = settings.search_cache_ttl_seconds
    is_dev = settings.is_development
"""

from config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
