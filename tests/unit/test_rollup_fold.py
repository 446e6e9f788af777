"""
집계 누적 연산 단위 테스트 (DB 불필요)
"""

import itertools
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

import pytest

from propqr.services.analytics_service import (
    bump_count,
    bump_daily_bucket,
    fold_event,
    new_subject_rollup,
    new_system_rollup,
    subject_key,
    top_k,
)


@dataclass
class _Event:
    event_id: str
    subject_id: str
    occurred_at: datetime
    flagged: bool = False
    source: str = "code"
    redirect_type: str = "single"
    device_class: str = "mobile"
    geo_country: str = "US"


def _snapshot(rollup):
    return (
        rollup.total_scans,
        rollup.flagged_scans,
        rollup.scans_by_source,
        rollup.scans_by_redirect_type,
        rollup.device_counts,
        rollup.geo_counts,
        rollup.daily_buckets,
        rollup.first_scanned_at,
        rollup.last_scanned_at,
    )


@pytest.mark.unit
class TestBumpHelpers:

    def test_bump_count_does_not_mutate_input(self):
        original = {"a": 1}
        updated = bump_count(original, "a")
        assert original == {"a": 1}
        assert updated == {"a": 2}
        assert bump_count(None, "x", 3) == {"x": 3}

    def test_daily_bucket_prunes_relative_to_newest(self):
        buckets = bump_daily_bucket({}, date(2026, 1, 1), retention_days=3)
        buckets = bump_daily_bucket(buckets, date(2026, 1, 2), retention_days=3)
        buckets = bump_daily_bucket(buckets, date(2026, 1, 4), retention_days=3)
        assert buckets == {"2026-01-02": 1, "2026-01-04": 1}

    def test_late_event_outside_window_is_dropped(self):
        buckets = bump_daily_bucket({"2026-01-10": 2}, date(2026, 1, 1), retention_days=5)
        assert buckets == {"2026-01-10": 2}

    def test_daily_bucket_is_order_independent(self):
        days = [date(2026, 1, 1) + timedelta(days=n) for n in (0, 1, 1, 4, 7, 9, 9, 12)]
        results = set()
        for perm in itertools.islice(itertools.permutations(days), 0, 2000, 97):
            buckets = {}
            for d in perm:
                buckets = bump_daily_bucket(buckets, d, retention_days=6)
            results.add(tuple(sorted(buckets.items())))
        assert len(results) == 1


@pytest.mark.unit
class TestFoldEvent:

    def _events(self):
        base = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)
        return [
            _Event(f"evt-{n:05d}", "p1", base + timedelta(hours=n * 7),
                   flagged=(n % 4 == 0),
                   source="code" if n % 3 else "direct-api",
                   device_class=("mobile", "desktop", "tablet")[n % 3],
                   geo_country=("US", "KR", "unknown")[n % 2])
            for n in range(25)
        ]

    def test_fold_counts(self):
        rollup = new_subject_rollup("p1")
        events = self._events()
        for e in events:
            fold_event(rollup, e, retention_days=90)

        assert rollup.total_scans == 25
        assert rollup.flagged_scans == 7
        assert sum(rollup.device_counts.values()) == 25
        assert sum(rollup.daily_buckets.values()) == 25
        assert rollup.first_scanned_at == events[0].occurred_at
        assert rollup.last_scanned_at == events[-1].occurred_at

    def test_fold_is_order_independent(self):
        events = self._events()
        ordered = new_subject_rollup("p1")
        for e in events:
            fold_event(ordered, e, retention_days=3)

        rng = random.Random(7)
        for _ in range(5):
            shuffled = events[:]
            rng.shuffle(shuffled)
            rollup = new_subject_rollup("p1")
            for e in shuffled:
                fold_event(rollup, e, retention_days=3)
            assert _snapshot(rollup) == _snapshot(ordered)

    def test_system_rollup_counts_subjects(self):
        rollup = new_system_rollup()
        now = datetime(2026, 2, 1, tzinfo=timezone.utc)
        for n, subject in enumerate(["p1", "p2", "p1"]):
            fold_event(rollup, _Event(f"evt-{n:05d}", subject, now), retention_days=90)
        assert rollup.subject_counts == {"p1": 2, "p2": 1}
        assert rollup.generation_success == 0


@pytest.mark.unit
class TestTopK:

    def test_count_desc_then_key_asc(self):
        entries = top_k({"b": 3, "a": 3, "c": 5, "d": 1}, 3)
        assert [(e.key, e.count) for e in entries] == [("c", 5), ("a", 3), ("b", 3)]

    def test_percentages(self):
        entries = top_k({"x": 1, "y": 3}, 10)
        assert [e.percentage for e in entries] == [75.0, 25.0]

    def test_empty(self):
        assert top_k({}, 5) == []
        assert top_k(None, 5) == []


@pytest.mark.unit
def test_subject_key_prefix():
    assert subject_key("p1") == "subject:p1"
