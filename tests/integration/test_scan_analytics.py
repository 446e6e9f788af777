"""
스캔 수집 → 집계 통합 테스트
"""

import random
import threading
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from propqr.clock import as_utc
from propqr.models import ResourceStatus, ScanEvent, ScanIngestFailure
from propqr.services.exceptions import DeletedResourceError, NotFoundError, ValidationError
from propqr.services.scan_dispatcher import ScanDispatcher
from propqr.services.scan_ingest_service import ScanSignal

IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
DESKTOP = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"


def _event(session_factory, event_id):
    with session_factory() as session:
        return session.get(ScanEvent, event_id)


@pytest.fixture
def generated(services, properties):
    for subject_id in ("p1", "p2", "p3"):
        services.lifecycle.generate(subject_id)
    return services


@pytest.mark.integration
class TestScanIngest:

    def test_ingest_records_event_and_updates_rollups(self, generated, session_factory):
        services = generated
        event_id = services.ingestor.ingest("p1", ScanSignal(user_agent=IPHONE, ip_address="8.8.8.8"))

        event = _event(session_factory, event_id)
        assert event.resource_version == 1
        assert event.resource_status == ResourceStatus.ACTIVE
        assert event.flagged is False
        assert event.redirect_type == "single"
        assert (event.device_class, event.platform, event.browser) == ("mobile", "ios", "safari")
        assert (event.geo_country, event.geo_region) == ("US", "California")

        view = services.analytics.get("p1")
        assert view.total_scans == 1
        assert view.scans_by_source == {"code": 1}
        assert [(d.key, d.count) for d in view.device_distribution] == [("mobile", 1)]

        resource = services.lifecycle.get("p1")
        assert resource.scan_count == 1
        assert resource.last_scanned_at == as_utc(event.occurred_at)

    def test_chain_ref_makes_dual_redirect(self, generated, session_factory):
        event_id = generated.ingestor.ingest("p2")
        assert _event(session_factory, event_id).redirect_type == "dual"

    def test_duplicate_event_id_counted_once(self, generated):
        services = generated
        signal = ScanSignal(event_id="retry-evt-0001", user_agent=DESKTOP)

        assert services.ingestor.ingest("p1", signal) == "retry-evt-0001"
        assert services.ingestor.ingest("p1", signal) == "retry-evt-0001"

        assert services.analytics.get("p1").total_scans == 1
        assert services.analytics.get_system().total_scans == 1
        assert services.lifecycle.get("p1").scan_count == 1

    def test_rollup_failure_propagates_and_retry_applies(self, generated, session_factory, monkeypatch):
        services = generated
        real_apply_scope = services.analytics._apply_scope
        calls = []

        def fail_once(rollup_key, event):
            calls.append(rollup_key)
            if len(calls) == 1:
                raise RuntimeError("rollup row locked")
            return real_apply_scope(rollup_key, event)

        monkeypatch.setattr(services.analytics, "_apply_scope", fail_once)
        signal = ScanSignal(event_id="apply-evt-0001")

        with pytest.raises(RuntimeError):
            services.ingestor.ingest("p1", signal)
        assert _event(session_factory, "apply-evt-0001") is not None
        assert services.analytics.get("p1").total_scans == 0

        # 같은 event_id 재시도는 저장된 이벤트를 다시 반영
        assert services.ingestor.ingest("p1", signal) == "apply-evt-0001"
        assert services.analytics.get("p1").total_scans == 1
        assert services.analytics.get_system().total_scans == 1
        assert services.analytics.reconcile() == 0

    def test_reapplying_event_is_noop(self, generated, session_factory):
        services = generated
        event_id = services.ingestor.ingest("p1")

        assert services.analytics.apply(_event(session_factory, event_id)) is False
        assert services.analytics.get("p1").total_scans == 1

    def test_unknown_subject_and_invalid_input(self, generated):
        services = generated
        with pytest.raises(NotFoundError):
            services.ingestor.ingest("ghost")
        with pytest.raises(ValidationError):
            services.ingestor.ingest("p1", ScanSignal(event_id="short"))
        with pytest.raises(ValidationError):
            services.ingestor.ingest("p1", ScanSignal(event_id="retry-evt-0001\n"))
        with pytest.raises(ValidationError):
            services.ingestor.ingest("p1\n")
        with pytest.raises(ValidationError):
            services.ingestor.ingest("p1", ScanSignal(source="email"))

    def test_geo_failure_falls_back_to_unknown(self, generated, session_factory):
        event_id = generated.ingestor.ingest("p1", ScanSignal(ip_address="203.0.113.99"))
        event = _event(session_factory, event_id)
        assert (event.geo_country, event.geo_region) == ("unknown", "unknown")

    def test_deactivated_scan_is_flagged(self, generated, session_factory):
        services = generated
        services.lifecycle.deactivate("p1")

        event = _event(session_factory, services.ingestor.ingest("p1"))

        assert event.flagged is True
        assert event.resource_status == ResourceStatus.DEACTIVATED
        assert services.analytics.get("p1").flagged_scans == 1

    def test_expired_scan_is_flagged(self, generated, session_factory, clock):
        clock.advance(days=31)
        event = _event(session_factory, generated.ingestor.ingest("p3"))
        assert event.flagged is True
        assert event.resource_status == ResourceStatus.EXPIRED

    def test_deleted_resource_rejects_scans_but_keeps_analytics(self, generated):
        services = generated
        for _ in range(3):
            services.ingestor.ingest("p1")
        services.lifecycle.delete("p1")

        with pytest.raises(DeletedResourceError):
            services.ingestor.ingest("p1")
        assert services.analytics.get("p1").total_scans == 3
        assert len(services.analytics.recent_events("p1")) == 3
        assert services.analytics.rebuild("p1").total_scans == 3


@pytest.mark.integration
class TestRollupReplay:
    """집계는 이벤트 로그로부터 언제든 같은 값으로 다시 계산된다"""

    def _ingest_shuffled(self, services, clock):
        base = clock() - timedelta(days=6)
        signals = [
            ScanSignal(
                event_id=f"evt-{n:06d}",
                user_agent=IPHONE if n % 2 else DESKTOP,
                ip_address=("8.8.8.8", "1.1.1.1", None)[n % 3],
                source="code" if n % 4 else "direct-api",
                occurred_at=base + timedelta(hours=n * 5),
            )
            for n in range(30)
        ]
        random.Random(11).shuffle(signals)
        for signal in signals:
            services.ingestor.ingest("p1" if signal.event_id[-1] in "02468" else "p2", signal)

    def test_rebuild_matches_incremental(self, generated, clock):
        services = generated
        self._ingest_shuffled(services, clock)
        incremental = {s: services.analytics.get(s) for s in ("p1", "p2")}
        counts = {s: services.lifecycle.get(s).scan_count for s in ("p1", "p2")}

        for subject_id in ("p1", "p2"):
            assert services.analytics.rebuild(subject_id) == incremental[subject_id]
            assert services.lifecycle.get(subject_id).scan_count == counts[subject_id]
        assert sum(v.total_scans for v in incremental.values()) == 30

    def test_rebuild_system_keeps_generation_counters(self, generated, clock):
        services = generated
        self._ingest_shuffled(services, clock)
        before = services.analytics.get_system()

        after = services.analytics.rebuild_system()

        assert after == before
        assert after.generation_success == 3
        assert after.total_scans == 30
        assert [e.key for e in after.top_subjects] == ["p1", "p2"]

    def test_rebuild_without_events(self, generated):
        view = generated.analytics.rebuild("p3")
        assert view.total_scans == 0
        assert generated.lifecycle.get("p3").scan_count == 0

    def test_reconcile_applies_missing_events(self, generated, test_session, clock):
        services = generated
        services.ingestor.ingest("p1")
        # 알림이 유실된 이벤트 (로그에만 존재)
        test_session.add(ScanEvent(
            event_id="lost-evt-0001",
            subject_id="p1",
            resource_version=1,
            resource_status=ResourceStatus.ACTIVE,
            flagged=False,
            occurred_at=clock(),
            ingested_at=clock(),
            source="code",
            redirect_type="single",
            device_class="desktop",
        ))
        test_session.commit()

        assert services.analytics.reconcile() == 1
        assert services.analytics.get("p1").total_scans == 2
        assert services.analytics.get_system().total_scans == 2
        assert services.analytics.reconcile() == 0


@pytest.mark.integration
class TestAnalyticsReads:

    def test_recent_events_window(self, generated, clock):
        services = generated
        services.ingestor.ingest("p1", ScanSignal(occurred_at=clock() - timedelta(days=10)))
        newest = services.ingestor.ingest("p1", ScanSignal(occurred_at=clock() - timedelta(hours=1)))
        older = services.ingestor.ingest("p1", ScanSignal(occurred_at=clock() - timedelta(days=2)))

        assert [e.event_id for e in services.analytics.recent_events("p1", days=7)] == [newest, older]

    def test_trends_and_period_comparison(self, generated, clock):
        services = generated
        today = clock().date()
        daily = {
            today.isoformat(): 4,
            (today - timedelta(days=1)).isoformat(): 2,
            (today - timedelta(days=8)).isoformat(): 3,
        }

        trends = services.analytics.scan_trends(daily, days=7)
        assert len(trends) == 7
        assert trends[-1] == {"date": today.isoformat(), "scans": 4}
        assert trends[0]["scans"] == 0

        comparison = services.analytics.period_comparison(daily, days=7)
        assert comparison == {"days": 7, "current_period": 6, "previous_period": 3, "change_percent": 100.0}

    def test_period_comparison_without_previous(self, services):
        assert services.analytics.period_comparison({}, days=7)["change_percent"] == 0.0

    def test_system_view_counts_statuses(self, generated):
        services = generated
        services.lifecycle.deactivate("p2")
        services.lifecycle.delete("p3")

        by_status = services.analytics.get_system().resources_by_status
        assert by_status == {"ACTIVE": 1, "EXPIRED": 0, "DEACTIVATED": 1, "DELETED": 1}

    def test_top_subjects_limited_to_top_k(self, generated):
        services = generated
        for subject_id, scans in (("p1", 1), ("p2", 3), ("p3", 2)):
            for _ in range(scans):
                services.ingestor.ingest(subject_id)

        top = services.analytics.get_system().top_subjects
        assert [(e.key, e.count) for e in top] == [("p2", 3), ("p3", 2), ("p1", 1)]
        assert [e.key for e in services.analytics.top_subjects(limit=2)] == ["p2", "p3"]


@pytest.mark.integration
class TestScanDispatcher:
    """응답과 분리된 비동기 수집 경로"""

    def test_submitted_scans_are_ingested(self, generated):
        services = generated
        event_ids = [services.dispatcher.submit("p1", ScanSignal(user_agent=IPHONE)) for _ in range(3)]

        assert services.dispatcher.drain(timeout=10)
        assert len(set(event_ids)) == 3
        assert services.analytics.get("p1").total_scans == 3
        assert services.dispatcher.stats()["ingested"] == 3

    def test_rejected_scan_is_recorded_without_retry(self, generated, session_factory):
        services = generated
        services.dispatcher.submit("ghost")
        assert services.dispatcher.drain(timeout=10)

        with session_factory() as session:
            failures = session.scalars(select(ScanIngestFailure)).all()
        assert len(failures) == 1
        assert failures[0].subject_id == "ghost"
        assert failures[0].attempts == 1
        assert services.dispatcher.stats()["failed"] == 1

    def test_transient_failure_is_retried(self, generated, monkeypatch):
        services = generated
        real_ingest = services.ingestor.ingest
        calls = []

        def flaky(subject_id, signal):
            calls.append(signal.event_id)
            if len(calls) == 1:
                raise RuntimeError("database is locked")
            return real_ingest(subject_id, signal)

        monkeypatch.setattr(services.ingestor, "ingest", flaky)
        event_id = services.dispatcher.submit("p1")
        assert services.dispatcher.drain(timeout=10)

        # 재시도에도 같은 event_id 사용
        assert calls == [event_id, event_id]
        assert services.analytics.get("p1").total_scans == 1

    def test_exhausted_retries_are_recorded(self, generated, session_factory, monkeypatch):
        services = generated

        def broken(subject_id, signal):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(services.ingestor, "ingest", broken)
        services.dispatcher.submit("p1")
        assert services.dispatcher.drain(timeout=10)

        with session_factory() as session:
            failure = session.scalars(select(ScanIngestFailure)).one()
        assert failure.attempts == 2
        assert "database is locked" in failure.error

    def test_rollup_failure_is_retried_by_dispatcher(self, generated, monkeypatch):
        services = generated
        real_apply_scope = services.analytics._apply_scope
        calls = []

        def fail_once(rollup_key, event):
            calls.append(rollup_key)
            if len(calls) == 1:
                raise RuntimeError("rollup row locked")
            return real_apply_scope(rollup_key, event)

        monkeypatch.setattr(services.analytics, "_apply_scope", fail_once)
        services.dispatcher.submit("p1")
        assert services.dispatcher.drain(timeout=10)

        assert services.analytics.get("p1").total_scans == 1
        assert services.analytics.get_system().total_scans == 1
        stats = services.dispatcher.stats()
        assert (stats["ingested"], stats["failed"], stats["outstanding"]) == (1, 0, 0)

    def test_persistent_rollup_failure_is_recorded(self, generated, session_factory, monkeypatch):
        services = generated

        def broken(rollup_key, event):
            raise RuntimeError("rollup row locked")

        monkeypatch.setattr(services.analytics, "_apply_scope", broken)
        event_id = services.dispatcher.submit("p1")
        assert services.dispatcher.drain(timeout=10)

        with session_factory() as session:
            failure = session.scalars(select(ScanIngestFailure)).one()
        assert failure.event_id == event_id
        assert "rollup row locked" in failure.error
        assert services.dispatcher.stats()["failed"] == 1

        # 이벤트는 로그에 남아 있으므로 reconcile 로 복구된다
        monkeypatch.undo()
        assert _event(session_factory, event_id) is not None
        assert services.analytics.reconcile() == 1
        assert services.analytics.get("p1").total_scans == 1

    def test_drain_waits_for_running_job(self, session_factory):
        release = threading.Event()
        started = threading.Event()

        class SlowIngestor:
            def ingest(self, subject_id, signal):
                started.set()
                release.wait(5)
                return signal.event_id

        dispatcher = ScanDispatcher(SlowIngestor(), session_factory, workers=1, retry_count=1, retry_backoff=0)
        try:
            dispatcher.submit("p1")
            assert started.wait(5)
            assert dispatcher.stats()["queued"] == 0
            assert dispatcher.outstanding() == 1
            assert dispatcher.drain(timeout=0.05) is False
            release.set()
            assert dispatcher.drain(timeout=5)
            assert dispatcher.outstanding() == 0
        finally:
            release.set()
            dispatcher.stop()

    def test_full_queue_drops_and_records(self, session_factory):
        release = threading.Event()
        started = threading.Event()

        class BlockingIngestor:
            def ingest(self, subject_id, signal):
                started.set()
                release.wait(5)
                return signal.event_id

        dispatcher = ScanDispatcher(BlockingIngestor(), session_factory, workers=1, queue_size=1, retry_count=1, retry_backoff=0)
        try:
            assert dispatcher.submit("p1") is not None
            assert started.wait(5)
            assert dispatcher.submit("p2") is not None
            assert dispatcher.submit("p3") is None
            assert dispatcher.stats()["dropped"] == 1
        finally:
            release.set()
            dispatcher.drain(timeout=5)
            dispatcher.stop()

        with session_factory() as session:
            count = session.scalar(select(func.count()).select_from(ScanIngestFailure))
        assert count == 1

    def test_stop_and_restart(self, session_factory):
        class NoopIngestor:
            def ingest(self, subject_id, signal):
                return signal.event_id

        dispatcher = ScanDispatcher(NoopIngestor(), session_factory, workers=2, retry_backoff=0)
        dispatcher.start()
        assert dispatcher.stats()["workers"] == 2
        dispatcher.stop()
        assert dispatcher.stats()["workers"] == 0

        dispatcher.submit("p1")
        assert dispatcher.drain(timeout=5)
        assert dispatcher.stats()["ingested"] == 1
        dispatcher.stop()
