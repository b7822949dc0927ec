"""
Unit tests for the analytics recorder.
"""

from unittest.mock import MagicMock

import pytest

from catalog_search.analytics import AnalyticsRecorder
from config.constants import QUERY_FREQUENCY_KEY


@pytest.fixture
def recorder(kv_store, now):
    rec = AnalyticsRecorder(kv_store, retention_days=30, max_workers=1, clock=lambda: now)
    yield rec
    rec.close()


class TestRecord:

    def test_record_updates_ledger_and_daily_counters(self, recorder, kv_store):
        recorder.record("  Blue  SHIRT ", result_count=3, duration_ms=12.5).result(timeout=5)
        recorder.record("blue shirt", result_count=1, duration_ms=7.5).result(timeout=5)

        assert kv_store.range_by_score_desc(QUERY_FREQUENCY_KEY, 0, -1) == [("blue shirt", 2.0)]

        stats = recorder.daily_stats("2024-06-01")
        assert stats.total_searches == 2
        assert stats.total_results == 4
        assert stats.total_duration_ms == pytest.approx(20.0)
        assert stats.average_duration_ms == pytest.approx(10.0)

    def test_empty_query_counts_search_but_not_ledger(self, recorder, kv_store):
        recorder.record("", result_count=5, duration_ms=1).result(timeout=5)

        assert kv_store.range_by_score_desc(QUERY_FREQUENCY_KEY, 0, -1) == []
        assert recorder.daily_stats().total_searches == 1

    def test_store_failure_is_swallowed(self, now):
        store = MagicMock()
        store.increment_sorted_set_score.side_effect = RuntimeError("ledger down")
        rec = AnalyticsRecorder(store, clock=lambda: now)
        try:
            future = rec.record("shirt", result_count=1, duration_ms=1)
            # The job completes normally; nothing escapes to the caller
            assert future.result(timeout=5) is None
        finally:
            rec.close()

    def test_disabled_recorder_does_nothing(self, kv_store):
        rec = AnalyticsRecorder(kv_store, enabled=False)
        assert rec.record("shirt", 1, 1) is None
        assert kv_store.keys() == []
        rec.close()

    def test_record_after_close_is_dropped(self, kv_store):
        rec = AnalyticsRecorder(kv_store)
        rec.close()
        assert rec.record("shirt", 1, 1) is None

    def test_daily_counters_expire_with_retention(self, kv_store, now):
        from catalog_search.stores.kv import InMemoryKeyValueStore

        ticks = {"t": 0.0}
        store = InMemoryKeyValueStore(clock=lambda: ticks["t"])
        rec = AnalyticsRecorder(store, retention_days=1, clock=lambda: now)
        try:
            rec.record("shirt", 1, 1).result(timeout=5)
            ticks["t"] += 86401
            assert rec.daily_stats("2024-06-01").total_searches == 0
        finally:
            rec.close()


class TestLedgerReads:

    @pytest.fixture
    def ledger(self, kv_store):
        for query, count in [
            ("shirt", 9), ("blue shirt", 7), ("shirts", 5), ("apple", 4), ("t-shirt", 2),
        ]:
            kv_store.increment_sorted_set_score(QUERY_FREQUENCY_KEY, query, count)
        return kv_store

    def test_popular_queries(self, recorder, ledger):
        popular = recorder.popular_queries(3)
        assert [(p.query, p.count) for p in popular] == [("shirt", 9), ("blue shirt", 7), ("shirts", 5)]

    def test_popular_queries_zero_limit(self, recorder, ledger):
        assert recorder.popular_queries(0) == []

    def test_related_queries_exclude_exact_match(self, recorder, ledger):
        assert recorder.related_queries("Shirt") == ["blue shirt", "shirts", "t-shirt"]

    def test_related_queries_need_two_characters(self, recorder, ledger):
        assert recorder.related_queries("s") == []
        assert recorder.related_queries(None) == []

    def test_prune_ledger(self, recorder, ledger):
        assert recorder.prune_ledger(2) == 3
        assert [p.query for p in recorder.popular_queries(10)] == ["shirt", "blue shirt"]
