"""
Core module for cross-cutting concerns.

This module provides:
- Structured logging configuration
- Request tracing middleware
- The error taxonomy shared by stores, engine and API
- Text and time utilities
"""

from core.errors import (
    AnalyticsError,
    FacetTimeoutError,
    SearchEngineError,
    SearchValidationError,
    StoreUnavailableError,
)
from core.logging import configure_logging, get_logger
from core.utils import normalize_query, normalize_string_set, utc_now

__all__ = [
    "configure_logging",
    "get_logger",
    "AnalyticsError",
    "FacetTimeoutError",
    "SearchEngineError",
    "SearchValidationError",
    "StoreUnavailableError",
    "normalize_query",
    "normalize_string_set",
    "utc_now",
]
