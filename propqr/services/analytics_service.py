"""
스캔 분석 집계 서비스

scan_events 위에 매물별/전체 집계(rollup)를 캐시로 유지합니다.
- apply: 이벤트 1건을 집계에 반영 (event_id 단위 중복 방지)
- rebuild: 이벤트 로그를 occurred_at 순으로 재생해 집계를 다시 계산
- get / get_system: 읽기 전용 조회

집계는 도착 순서와 무관하게 같은 결과가 나와야 하므로 모든 갱신은 교환법칙이 성립하는
연산(카운트 증가, min/max, 최신 버킷 기준 보관 기간 절단)으로만 구성한다.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import delete, func, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from propqr.clock import as_utc, utcnow
from propqr.models import CodeResource, ResourceStatus, RollupAppliedEvent, ScanEvent, SubjectRollup, SystemRollup
from propqr.services.events import EventBus, QR_GENERATED, QR_GENERATION_FAILED
from propqr.services.single_flight import KeyedLocks
from propqr.validation import validate_subject_id

logger = logging.getLogger(__name__)

SYSTEM_KEY = "system"
SUBJECT_KEY_PREFIX = "subject:"

Rollup = Union[SubjectRollup, SystemRollup]


def subject_key(subject_id: str) -> str:
    return f"{SUBJECT_KEY_PREFIX}{subject_id}"


def bump_count(counts: Optional[Dict[str, int]], key: str, n: int = 1) -> Dict[str, int]:
    updated = dict(counts or {})
    updated[key] = updated.get(key, 0) + n
    return updated


def bump_daily_bucket(buckets: Optional[Dict[str, int]], day: date, retention_days: int) -> Dict[str, int]:
    """
    일별 버킷 증가 후 보관 기간 밖의 버킷을 제거.
    기준은 가장 최근 버킷 날짜이므로 이벤트 도착 순서와 무관하게 결과가 같다.
    """
    days = {date.fromisoformat(k): v for k, v in (buckets or {}).items()}
    newest = max([day, *days])
    cutoff = newest - timedelta(days=retention_days - 1)
    if day >= cutoff:
        days[day] = days.get(day, 0) + 1
    return {d.isoformat(): c for d, c in sorted(days.items()) if d >= cutoff}


def fold_event(rollup: Rollup, event: Any, retention_days: int) -> None:
    """이벤트 1건을 집계 행에 반영 (순수 누적 연산)"""
    occurred = as_utc(event.occurred_at)

    rollup.total_scans = (rollup.total_scans or 0) + 1
    if event.flagged:
        rollup.flagged_scans = (rollup.flagged_scans or 0) + 1
    rollup.scans_by_source = bump_count(rollup.scans_by_source, event.source)
    rollup.scans_by_redirect_type = bump_count(rollup.scans_by_redirect_type, event.redirect_type)
    rollup.device_counts = bump_count(rollup.device_counts, event.device_class)
    rollup.geo_counts = bump_count(rollup.geo_counts, event.geo_country)
    rollup.daily_buckets = bump_daily_bucket(rollup.daily_buckets, occurred.date(), retention_days)
    if isinstance(rollup, SystemRollup):
        rollup.subject_counts = bump_count(rollup.subject_counts, event.subject_id)

    first = as_utc(rollup.first_scanned_at)
    if first is None or occurred < first:
        rollup.first_scanned_at = occurred
    last = as_utc(rollup.last_scanned_at)
    if last is None or occurred > last:
        rollup.last_scanned_at = occurred


def _empty_counters() -> Dict[str, Any]:
    return {
        "total_scans": 0,
        "flagged_scans": 0,
        "scans_by_source": {},
        "scans_by_redirect_type": {},
        "device_counts": {},
        "geo_counts": {},
        "daily_buckets": {},
        "first_scanned_at": None,
        "last_scanned_at": None,
    }


def new_subject_rollup(subject_id: str) -> SubjectRollup:
    return SubjectRollup(subject_id=subject_id, **_empty_counters())


def new_system_rollup() -> SystemRollup:
    return SystemRollup(id=SYSTEM_KEY, subject_counts={}, generation_success=0, generation_failure=0, **_empty_counters())


@dataclass(frozen=True)
class DistributionEntry:
    key: str
    count: int
    percentage: float


def top_k(counts: Optional[Dict[str, int]], k: int) -> List[DistributionEntry]:
    """count 내림차순, 동률이면 key 오름차순"""
    counts = counts or {}
    total = sum(counts.values())
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:k]
    return [
        DistributionEntry(key=key, count=count, percentage=round(count * 100 / total, 2) if total else 0.0)
        for key, count in ranked
    ]


@dataclass
class RollupView:
    subject_id: Optional[str]
    total_scans: int = 0
    flagged_scans: int = 0
    scans_by_source: Dict[str, int] = field(default_factory=dict)
    scans_by_redirect_type: Dict[str, int] = field(default_factory=dict)
    device_distribution: List[DistributionEntry] = field(default_factory=list)
    geo_distribution: List[DistributionEntry] = field(default_factory=list)
    daily_scans: Dict[str, int] = field(default_factory=dict)
    first_scanned_at: Optional[datetime] = None
    last_scanned_at: Optional[datetime] = None


@dataclass
class SystemView(RollupView):
    generation_success: int = 0
    generation_failure: int = 0
    generation_failure_rate: float = 0.0
    top_subjects: List[DistributionEntry] = field(default_factory=list)
    resources_by_status: Dict[str, int] = field(default_factory=dict)


class AnalyticsService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        retention_days: int = 90,
        top_k: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.retention_days = retention_days
        self.top_k = top_k
        self.clock = clock
        self._locks = KeyedLocks()

    def register(self, bus: EventBus) -> None:
        bus.subscribe(QR_GENERATED, lambda data: self.record_generation(True))
        bus.subscribe(QR_GENERATION_FAILED, lambda data: self.record_generation(False))

    # ==================== 쓰기 ====================

    def apply(self, event: Any) -> bool:
        """
        이벤트를 매물 집계와 전체 집계에 반영.
        각 집계는 자신의 마커로 중복을 막으므로 같은 이벤트를 여러 번 넣어도 한 번만 반영된다.
        """
        applied_subject = self._apply_scope(subject_key(event.subject_id), event)
        applied_system = self._apply_scope(SYSTEM_KEY, event)
        return applied_subject or applied_system

    def _apply_scope(self, rollup_key: str, event: Any) -> bool:
        with self._locks.hold(rollup_key):
            with self.session_factory() as session:
                if session.get(RollupAppliedEvent, (rollup_key, event.event_id)) is not None:
                    logger.debug(f"[ROLLUP] {event.event_id} already applied to {rollup_key}")
                    return False
                session.add(RollupAppliedEvent(rollup_key=rollup_key, event_id=event.event_id))

                if rollup_key == SYSTEM_KEY:
                    rollup = session.get(SystemRollup, SYSTEM_KEY)
                    if rollup is None:
                        rollup = new_system_rollup()
                        session.add(rollup)
                    fold_event(rollup, event, self.retention_days)
                else:
                    rollup = session.get(SubjectRollup, event.subject_id)
                    if rollup is None:
                        rollup = new_subject_rollup(event.subject_id)
                        session.add(rollup)
                    fold_event(rollup, event, self.retention_days)
                    self._bump_resource_counters(session, event.subject_id, as_utc(event.occurred_at))

                try:
                    session.commit()
                except IntegrityError as e:
                    # 다른 프로세스가 같은 마커/행을 먼저 만든 경우. reconcile 에서 다시 반영된다.
                    session.rollback()
                    logger.warning(f"[ROLLUP] Concurrent apply for {rollup_key}/{event.event_id}: {e.orig}")
                    return False
        return True

    def _bump_resource_counters(self, session: Session, subject_id: str, occurred: datetime) -> None:
        session.execute(
            update(CodeResource)
            .where(CodeResource.subject_id == subject_id)
            .values(scan_count=CodeResource.scan_count + 1)
            .execution_options(synchronize_session=False)
        )
        session.execute(
            update(CodeResource)
            .where(
                CodeResource.subject_id == subject_id,
                or_(CodeResource.last_scanned_at.is_(None), CodeResource.last_scanned_at < occurred),
            )
            .values(last_scanned_at=occurred)
            .execution_options(synchronize_session=False)
        )

    def record_generation(self, success: bool) -> None:
        with self._locks.hold(SYSTEM_KEY):
            with self.session_factory() as session:
                rollup = session.get(SystemRollup, SYSTEM_KEY)
                if rollup is None:
                    rollup = new_system_rollup()
                    session.add(rollup)
                if success:
                    rollup.generation_success = (rollup.generation_success or 0) + 1
                else:
                    rollup.generation_failure = (rollup.generation_failure or 0) + 1
                session.commit()

    def rebuild(self, subject_id: str) -> RollupView:
        """매물 집계를 삭제하고 저장된 이벤트 전체를 occurred_at 오름차순으로 재생"""
        validate_subject_id(subject_id)
        rollup_key = subject_key(subject_id)
        with self._locks.hold(rollup_key):
            with self.session_factory() as session:
                session.execute(delete(RollupAppliedEvent).where(RollupAppliedEvent.rollup_key == rollup_key))
                session.execute(delete(SubjectRollup).where(SubjectRollup.subject_id == subject_id))

                events = session.scalars(
                    select(ScanEvent)
                    .where(ScanEvent.subject_id == subject_id)
                    .order_by(ScanEvent.occurred_at, ScanEvent.event_id)
                ).all()

                last_scanned_at = None
                if events:
                    rollup = new_subject_rollup(subject_id)
                    session.add(rollup)
                    for event in events:
                        session.add(RollupAppliedEvent(rollup_key=rollup_key, event_id=event.event_id))
                        fold_event(rollup, event, self.retention_days)
                    last_scanned_at = rollup.last_scanned_at

                session.execute(
                    update(CodeResource)
                    .where(CodeResource.subject_id == subject_id)
                    .values(scan_count=len(events), last_scanned_at=last_scanned_at)
                    .execution_options(synchronize_session=False)
                )
                session.commit()

        logger.info(f"[ROLLUP] Rebuilt {subject_id} from {len(events)} events")
        return self.get(subject_id)

    def rebuild_system(self) -> SystemView:
        """전체 집계 재계산. 생성 성공/실패 카운터는 이벤트 로그에 없으므로 유지한다."""
        with self._locks.hold(SYSTEM_KEY):
            with self.session_factory() as session:
                existing = session.get(SystemRollup, SYSTEM_KEY)
                success = existing.generation_success if existing else 0
                failure = existing.generation_failure if existing else 0
                session.execute(delete(RollupAppliedEvent).where(RollupAppliedEvent.rollup_key == SYSTEM_KEY))
                session.execute(delete(SystemRollup).where(SystemRollup.id == SYSTEM_KEY))
                session.expunge_all()

                rollup = new_system_rollup()
                rollup.generation_success = success
                rollup.generation_failure = failure
                session.add(rollup)

                count = 0
                events = session.scalars(
                    select(ScanEvent).order_by(ScanEvent.occurred_at, ScanEvent.event_id)
                ).all()
                for event in events:
                    session.add(RollupAppliedEvent(rollup_key=SYSTEM_KEY, event_id=event.event_id))
                    fold_event(rollup, event, self.retention_days)
                    count += 1
                session.commit()

        logger.info(f"[ROLLUP] Rebuilt system rollup from {count} events")
        return self.get_system()

    def reconcile(self, limit: int = 1000) -> int:
        """마커가 빠진 이벤트(알림 유실)를 찾아 다시 반영"""
        subject_marker = (
            select(RollupAppliedEvent.event_id)
            .where(
                RollupAppliedEvent.rollup_key == literal(SUBJECT_KEY_PREFIX) + ScanEvent.subject_id,
                RollupAppliedEvent.event_id == ScanEvent.event_id,
            )
            .exists()
        )
        system_marker = (
            select(RollupAppliedEvent.event_id)
            .where(RollupAppliedEvent.rollup_key == SYSTEM_KEY, RollupAppliedEvent.event_id == ScanEvent.event_id)
            .exists()
        )
        with self.session_factory() as session:
            pending = session.scalars(
                select(ScanEvent)
                .where(or_(~subject_marker, ~system_marker))
                .order_by(ScanEvent.occurred_at, ScanEvent.event_id)
                .limit(limit)
            ).all()

        for event in pending:
            self.apply(event)
        if pending:
            logger.info(f"[ROLLUP] Reconciled {len(pending)} events")
        return len(pending)

    # ==================== 읽기 ====================

    def get(self, subject_id: str) -> RollupView:
        validate_subject_id(subject_id)
        with self.session_factory() as session:
            rollup = session.get(SubjectRollup, subject_id)
        if rollup is None:
            return RollupView(subject_id=subject_id)
        return RollupView(subject_id=subject_id, **self._view_fields(rollup))

    def get_system(self) -> SystemView:
        with self.session_factory() as session:
            rollup = session.get(SystemRollup, SYSTEM_KEY)
            status_rows = session.execute(
                select(CodeResource.status, func.count()).group_by(CodeResource.status)
            ).all()

        resources_by_status = {status: 0 for status in ResourceStatus.ALL}
        resources_by_status.update({status: n for status, n in status_rows})

        if rollup is None:
            return SystemView(subject_id=None, resources_by_status=resources_by_status)

        success = rollup.generation_success or 0
        failure = rollup.generation_failure or 0
        attempts = success + failure
        return SystemView(
            subject_id=None,
            generation_success=success,
            generation_failure=failure,
            generation_failure_rate=round(failure * 100 / attempts, 2) if attempts else 0.0,
            top_subjects=top_k(rollup.subject_counts, self.top_k),
            resources_by_status=resources_by_status,
            **self._view_fields(rollup),
        )

    def top_subjects(self, limit: Optional[int] = None) -> List[DistributionEntry]:
        with self.session_factory() as session:
            rollup = session.get(SystemRollup, SYSTEM_KEY)
        return top_k(rollup.subject_counts if rollup else None, limit or self.top_k)

    def recent_events(self, subject_id: str, days: int = 7, limit: int = 50) -> List[ScanEvent]:
        validate_subject_id(subject_id)
        since = self.clock() - timedelta(days=days)
        with self.session_factory() as session:
            return list(session.scalars(
                select(ScanEvent)
                .where(ScanEvent.subject_id == subject_id, ScanEvent.occurred_at >= since)
                .order_by(ScanEvent.occurred_at.desc(), ScanEvent.event_id.desc())
                .limit(limit)
            ).all())

    def scan_trends(self, daily_scans: Dict[str, int], days: int = 30) -> List[Dict[str, Any]]:
        """최근 days 일간 일별 스캔 수 (스캔 없는 날은 0)"""
        today = self.clock().date()
        return [
            {"date": d.isoformat(), "scans": daily_scans.get(d.isoformat(), 0)}
            for d in (today - timedelta(days=offset) for offset in range(days - 1, -1, -1))
        ]

    def period_comparison(self, daily_scans: Dict[str, int], days: int = 30) -> Dict[str, Any]:
        """최근 days 일과 그 직전 days 일의 스캔 수 비교"""
        today = self.clock().date()
        current = previous = 0
        for key, count in daily_scans.items():
            age = (today - date.fromisoformat(key)).days
            if 0 <= age < days:
                current += count
            elif days <= age < days * 2:
                previous += count

        if previous:
            change = round((current - previous) * 100 / previous, 2)
        else:
            change = 100.0 if current else 0.0
        return {"days": days, "current_period": current, "previous_period": previous, "change_percent": change}

    def _view_fields(self, rollup: Rollup) -> Dict[str, Any]:
        return {
            "total_scans": rollup.total_scans or 0,
            "flagged_scans": rollup.flagged_scans or 0,
            "scans_by_source": dict(rollup.scans_by_source or {}),
            "scans_by_redirect_type": dict(rollup.scans_by_redirect_type or {}),
            "device_distribution": top_k(rollup.device_counts, self.top_k),
            "geo_distribution": top_k(rollup.geo_counts, self.top_k),
            "daily_scans": dict(rollup.daily_buckets or {}),
            "first_scanned_at": as_utc(rollup.first_scanned_at),
            "last_scanned_at": as_utc(rollup.last_scanned_at),
        }
