import logging
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from propqr.clock import as_utc, utcnow
from propqr.models import CodeResource, Property, ResourceStatus, ScanEvent
from propqr.services.device_classifier import classify_device
from propqr.services.events import EventBus, SCAN_RECORDED
from propqr.services.exceptions import DeletedResourceError, NotFoundError, ValidationError
from propqr.services.geo_resolver import GeoLocation, UNKNOWN_LOCATION
from propqr.services.qr_lifecycle_service import effective_status
from propqr.validation import validate_event_id, validate_subject_id

logger = logging.getLogger(__name__)

SOURCE_CODE = "code"
SOURCE_DIRECT_API = "direct-api"
SCAN_SOURCES = (SOURCE_CODE, SOURCE_DIRECT_API)

REDIRECT_SINGLE = "single"
REDIRECT_DUAL = "dual"
REDIRECT_TYPES = (REDIRECT_SINGLE, REDIRECT_DUAL)


@dataclass
class ScanSignal:
    """스캔 요청에서 수집한 원시 신호"""
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    referrer: Optional[str] = None
    session_id: Optional[str] = None
    source: str = SOURCE_CODE
    redirect_type: Optional[str] = None
    event_id: Optional[str] = None # 클라이언트 재시도 시 동일 ID 사용
    occurred_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.occurred_at is not None:
            data["occurred_at"] = self.occurred_at.isoformat()
        return data


class ScanIngestService:
    """
    스캔 이벤트 수집기.

    이벤트를 저장한 뒤 같은 호출 안에서 집계기에 반영하고, 그 다음 scan.recorded 를 발행한다.
    집계 반영 실패는 호출자에게 그대로 전파되므로 디스패처의 재시도/실패 기록 대상이 된다.
    같은 event_id 가 다시 들어오면 저장된 이벤트를 다시 반영한다 (집계 마커로 한 번만 집계).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        geo_resolver: Any,
        bus: EventBus,
        clock: Callable[[], datetime] = utcnow,
        aggregator: Optional[Any] = None,
    ):
        self.session_factory = session_factory
        self.geo_resolver = geo_resolver
        self.bus = bus
        self.clock = clock
        self.aggregator = aggregator

    def ingest(self, subject_id: str, signal: Optional[ScanSignal] = None) -> str:
        signal = signal or ScanSignal()
        validate_subject_id(subject_id)
        if signal.source not in SCAN_SOURCES:
            raise ValidationError(f"지원하지 않는 source: {signal.source}", field="source")
        if signal.redirect_type is not None and signal.redirect_type not in REDIRECT_TYPES:
            raise ValidationError(f"지원하지 않는 redirect_type: {signal.redirect_type}", field="redirect_type")
        event_id = validate_event_id(signal.event_id) if signal.event_id else uuid.uuid4().hex

        now = self.clock()
        occurred_at = as_utc(signal.occurred_at) or now

        with self.session_factory() as session:
            stored = session.get(ScanEvent, event_id)
            if stored is not None:
                logger.info(f"[SCAN] Duplicate event {event_id} for {subject_id}, re-applying rollups")
                self._aggregate(stored)
                return event_id

            resource = session.scalar(select(CodeResource).where(CodeResource.subject_id == subject_id))
            if resource is None:
                raise NotFoundError(f"QR 리소스를 찾을 수 없습니다: {subject_id}", subject_id=subject_id)
            if resource.status == ResourceStatus.DELETED:
                raise DeletedResourceError(f"삭제된 QR 리소스입니다: {subject_id}", subject_id=subject_id)

            status = effective_status(resource.status, resource.expires_at, now)
            redirect_type = signal.redirect_type
            if redirect_type is None:
                subject = session.get(Property, subject_id)
                has_chain_ref = bool(subject and subject.chain_ref and subject.chain_ref.strip())
                redirect_type = REDIRECT_DUAL if has_chain_ref else REDIRECT_SINGLE
            resource_version = resource.version

        device = classify_device(signal.user_agent)
        geo = self._resolve_geo(signal.ip_address)

        event = ScanEvent(
            event_id=event_id,
            subject_id=subject_id,
            resource_version=resource_version,
            resource_status=status,
            flagged=status != ResourceStatus.ACTIVE,
            occurred_at=occurred_at,
            ingested_at=now,
            source=signal.source,
            redirect_type=redirect_type,
            device_class=device.device_class,
            platform=device.platform,
            browser=device.browser,
            geo_country=geo.country,
            geo_region=geo.region,
            session_id=signal.session_id,
            referrer=signal.referrer,
            user_agent=signal.user_agent,
            ip_address=signal.ip_address,
        )
        with self.session_factory() as session:
            session.add(event)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(f"[SCAN] Event {event_id} was stored concurrently, re-applying rollups")
                stored = session.get(ScanEvent, event_id)
                if stored is not None:
                    self._aggregate(stored)
                return event_id

        logger.info(
            f"[SCAN] Recorded {event_id} subject={subject_id} v{resource_version} "
            f"status={status} device={device.device_class} geo={geo.country}"
        )
        self._aggregate(event)
        self.bus.publish(SCAN_RECORDED, event)
        return event_id

    def _aggregate(self, event: ScanEvent) -> None:
        if self.aggregator is not None:
            self.aggregator.apply(event)

    def _resolve_geo(self, ip_address: Optional[str]) -> GeoLocation:
        if self.geo_resolver is None:
            return UNKNOWN_LOCATION
        try:
            return self.geo_resolver.resolve(ip_address)
        except Exception as e:
            logger.warning(f"[SCAN] Geo resolution failed for {ip_address}: {e}")
            return UNKNOWN_LOCATION
