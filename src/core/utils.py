"""
Core Utility Functions.

Text normalization and time helpers shared by the planner, autocomplete
and analytics.
"""

import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional


_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: Optional[str]) -> str:
    """Trim and collapse runs of whitespace to a single space."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_query(text: Optional[str]) -> str:
    """
    Normalize query text for matching and ledger keys.

    Args:
        text: Raw query text (may be None)

    Returns:
        Lower-cased, trimmed, whitespace-collapsed text ("" when empty)
    """
    return collapse_whitespace(text).lower()


def normalize_string_set(items: Optional[Iterable[Optional[str]]]) -> List[str]:
    """
    Normalize strings to a sorted list of unique lowercase, stripped values.

    Sorting makes the result stable regardless of input order.

    Args:
        items: Strings (may contain None, empty strings)

    Returns:
        Sorted list of normalized strings
    """
    if not items:
        return []
    return sorted({s.lower().strip() for s in items if s and s.strip()})


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so ages can be compared."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_key(moment: Optional[datetime] = None) -> str:
    """ISO date (YYYY-MM-DD) used to bucket daily counters."""
    return ensure_utc(moment or utc_now()).date().isoformat()
