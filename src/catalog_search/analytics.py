"""
Search Analytics Recorder.

Records query frequency, result counts and latency for trending queries
and suggestion ranking. Writes are dispatched to a small thread pool and
never block or fail the search that triggered them.

Stored state:
- search_frequency: sorted set, member = normalized query, score = count
- search_stats:<YYYY-MM-DD>: hash with total_searches, total_results,
  total_duration_ms; expires after the retention window
"""

from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional

from config.constants import (
    DEFAULT_AUTOCOMPLETE_CONFIG,
    QUERY_FREQUENCY_KEY,
    SEARCH_STATS_KEY_PREFIX,
    AutocompleteConfig,
)
from core.errors import AnalyticsError
from core.logging import LoggerMixin
from core.utils import day_key, normalize_query, utc_now
from catalog_search.models import DailySearchStats, PopularQuery
from catalog_search.stores.kv import KeyValueStore


SECONDS_PER_DAY = 86400


class AnalyticsRecorder(LoggerMixin):
    """
    Fire-and-forget search event recording plus ledger reads.

    Usage:
        recorder = AnalyticsRecorder(store)
        recorder.record("blue shirt", result_count=12, duration_ms=35)
        recorder.popular_queries(10)
    """

    def __init__(
        self,
        store: KeyValueStore,
        retention_days: int = 30,
        max_workers: int = 2,
        enabled: bool = True,
        config: AutocompleteConfig = DEFAULT_AUTOCOMPLETE_CONFIG,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._retention_seconds = retention_days * SECONDS_PER_DAY
        self._enabled = enabled
        self._config = config
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analytics")

    # =========================================================================
    # Search Events
    # =========================================================================

    def record(self, query_text: Optional[str], result_count: int, duration_ms: float) -> Optional[Future]:
        """
        Queue a search event. Returns immediately.

        The returned future (None when recording is disabled or the pool is
        closed) lets tests and shutdown hooks wait for the write.
        """
        if not self._enabled:
            return None
        try:
            return self._executor.submit(self._write, query_text, result_count, duration_ms)
        except RuntimeError as e:
            # Pool already shut down
            self.logger.warning("Analytics pool unavailable, dropping event", error=str(e))
            return None

    def _write(self, query_text: Optional[str], result_count: int, duration_ms: float) -> None:
        try:
            normalized = normalize_query(query_text)
            if normalized:
                # Single atomic ZINCRBY; never read-modify-write
                self._store.increment_sorted_set_score(QUERY_FREQUENCY_KEY, normalized, 1)

            self._store.increment_counters(
                self._stats_key(day_key(self._clock())),
                {
                    "total_searches": 1,
                    "total_results": int(result_count),
                    "total_duration_ms": float(duration_ms),
                },
                ttl_seconds=self._retention_seconds,
            )
        except Exception as e:
            # Don't let analytics failures break search
            error = AnalyticsError(f"Failed to record search event: {e}")
            self.logger.warning("Failed to log search analytics", error=str(error), query=query_text)

    @staticmethod
    def _stats_key(day: str) -> str:
        return f"{SEARCH_STATS_KEY_PREFIX}:{day}"

    # =========================================================================
    # Ledger Reads
    # =========================================================================

    def popular_queries(self, limit: int = 10) -> List[PopularQuery]:
        """Most frequent normalized queries, highest count first."""
        if limit <= 0:
            return []
        rows = self._store.range_by_score_desc(QUERY_FREQUENCY_KEY, 0, limit - 1)
        return [PopularQuery(query=member, count=int(score)) for member, score in rows]

    def queries_containing(self, text: str, limit: int, exclude_exact: bool = False) -> List[str]:
        """
        Popular ledger queries that contain `text` (case-insensitive).

        Scans the top of the ledger only, so rarely used queries never
        surface as suggestions.
        """
        needle = normalize_query(text)
        if not needle or limit <= 0:
            return []
        rows = self._store.range_by_score_desc(QUERY_FREQUENCY_KEY, 0, self._config.LEDGER_SCAN - 1)
        matches = []
        for member, _ in rows:
            if needle not in member:
                continue
            if exclude_exact and member == needle:
                continue
            matches.append(member)
            if len(matches) >= limit:
                break
        return matches

    def related_queries(self, query_text: Optional[str]) -> List[str]:
        """Suggestions shown with search results: other popular queries containing this one."""
        if len(normalize_query(query_text)) < self._config.MIN_PREFIX_LENGTH:
            return []
        return self.queries_containing(query_text or "", self._config.RESULT_SUGGESTIONS, exclude_exact=True)

    def prune_ledger(self, keep: int) -> int:
        """Keep only the `keep` most frequent queries; returns how many were dropped."""
        removed = self._store.trim_sorted_set(QUERY_FREQUENCY_KEY, max(0, keep))
        self.logger.info("Pruned query frequency ledger", kept=keep, removed=removed)
        return removed

    # =========================================================================
    # Daily Stats
    # =========================================================================

    def daily_stats(self, day: Optional[str] = None) -> DailySearchStats:
        day = day or day_key(self._clock())
        raw = self._store.get_hash(self._stats_key(day))
        return DailySearchStats(
            day=day,
            total_searches=int(float(raw.get("total_searches", 0))),
            total_results=int(float(raw.get("total_results", 0))),
            total_duration_ms=float(raw.get("total_duration_ms", 0.0)),
        )

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
