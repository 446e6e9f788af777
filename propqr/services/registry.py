import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from propqr.clock import utcnow
from propqr.services.analytics_service import AnalyticsService
from propqr.services.events import EventBus
from propqr.services.geo_resolver import GeoResolver
from propqr.services.qr_encoder import QrEncoder
from propqr.services.qr_lifecycle_service import QrLifecycleService
from propqr.services.redirect_service import RedirectService
from propqr.services.scan_dispatcher import ScanDispatcher
from propqr.services.scan_ingest_service import ScanIngestService
from propqr.services.storage_service import StorageService
from propqr.settings import Settings, settings as default_settings
from propqr.url_builder import UrlBuilder

logger = logging.getLogger(__name__)


@dataclass
class ServiceRegistry:
    config: Settings
    bus: EventBus
    urls: UrlBuilder
    lifecycle: QrLifecycleService
    ingestor: ScanIngestService
    analytics: AnalyticsService
    dispatcher: ScanDispatcher
    redirect: RedirectService

    def shutdown(self) -> None:
        self.dispatcher.drain(timeout=5.0)
        self.dispatcher.stop()


def build_services(
    session_factory: Callable[[], Session],
    *,
    config: Settings = default_settings,
    storage: Optional[Any] = None,
    encoder: Optional[Any] = None,
    geo_resolver: Optional[Any] = None,
    bus: Optional[EventBus] = None,
    clock: Callable[[], datetime] = utcnow,
) -> ServiceRegistry:
    """설정값으로 서비스들을 조립하고 집계기를 수집기와 이벤트 버스에 연결"""
    bus = bus or EventBus()
    urls = UrlBuilder.from_settings(config)

    lifecycle = QrLifecycleService(
        session_factory,
        storage if storage is not None else StorageService(),
        encoder if encoder is not None else QrEncoder(box_size=config.qr_box_size, border=config.qr_border),
        urls,
        bus,
        ttl_days=config.qr_ttl_days,
        history_retention=config.qr_history_retention,
        batch_limit=config.qr_batch_limit,
        storage_retry_count=config.storage_retry_count,
        storage_retry_backoff=config.storage_retry_backoff,
        clock=clock,
    )
    analytics = AnalyticsService(
        session_factory,
        retention_days=config.rollup_retention_days,
        top_k=config.rollup_top_k,
        clock=clock,
    )
    analytics.register(bus)

    ingestor = ScanIngestService(
        session_factory,
        geo_resolver if geo_resolver is not None else GeoResolver(config.geo_lookup_url, timeout=config.geo_timeout),
        bus,
        clock=clock,
        aggregator=analytics,
    )
    dispatcher = ScanDispatcher(
        ingestor,
        session_factory,
        workers=config.scan_dispatcher_workers,
        queue_size=config.scan_queue_size,
        retry_count=config.ingest_retry_count,
        retry_backoff=config.ingest_retry_backoff,
    )
    redirect = RedirectService(lifecycle, dispatcher, urls)

    logger.info("[APP] Services assembled")
    return ServiceRegistry(
        config=config,
        bus=bus,
        urls=urls,
        lifecycle=lifecycle,
        ingestor=ingestor,
        analytics=analytics,
        dispatcher=dispatcher,
        redirect=redirect,
    )
