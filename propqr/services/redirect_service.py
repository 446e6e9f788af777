"""
스캔 리다이렉트 결정

QR 스캔 시 이동할 URL(주: 매물 상세, 보조: 블록체인 익스플로러)을 계산하고,
스캔 기록은 응답과 분리된 디스패처 큐로 넘긴다.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from propqr.models import ResourceStatus
from propqr.services.exceptions import DeactivatedResourceError
from propqr.services.qr_lifecycle_service import QrLifecycleService
from propqr.services.scan_dispatcher import ScanDispatcher
from propqr.services.scan_ingest_service import REDIRECT_DUAL, REDIRECT_SINGLE, ScanSignal
from propqr.url_builder import UrlBuilder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedirectPlan:
    subject_id: str
    primary_url: str
    secondary_url: Optional[str]
    redirect_type: str # single, dual
    resource_version: int
    resource_status: str
    display_name: str
    event_id: Optional[str] = None


class RedirectService:
    def __init__(self, lifecycle: QrLifecycleService, dispatcher: ScanDispatcher, urls: UrlBuilder):
        self.lifecycle = lifecycle
        self.dispatcher = dispatcher
        self.urls = urls

    def decide(self, subject_id: str, signal: Optional[ScanSignal] = None) -> RedirectPlan:
        """
        삭제/미존재 → NotFoundError, 비활성화 → DeactivatedResourceError (스캔은 플래그와 함께 기록).
        그 외(만료 포함)는 리다이렉트 계획을 반환한다.
        """
        signal = signal or ScanSignal()
        resource = self.lifecycle.get(subject_id)
        subject = self.lifecycle.get_subject(subject_id)

        primary_url = self.urls.property_url(subject_id)
        secondary_url = self.urls.explorer_url(subject.chain_ref)
        redirect_type = REDIRECT_DUAL if secondary_url else REDIRECT_SINGLE

        event_id = self._hand_off(subject_id, replace(signal, redirect_type=redirect_type))

        if resource.status == ResourceStatus.DEACTIVATED:
            logger.info(f"[SCAN] Deactivated resource scanned: {subject_id}")
            raise DeactivatedResourceError(f"비활성화된 QR 코드입니다: {subject_id}", subject_id=subject_id)

        return RedirectPlan(
            subject_id=subject_id,
            primary_url=primary_url,
            secondary_url=secondary_url,
            redirect_type=redirect_type,
            resource_version=resource.version,
            resource_status=resource.status,
            display_name=subject.display_name,
            event_id=event_id,
        )

    def _hand_off(self, subject_id: str, signal: ScanSignal) -> Optional[str]:
        try:
            return self.dispatcher.submit(subject_id, signal)
        except Exception as e:
            logger.error(f"[SCAN] Failed to hand off scan for {subject_id}: {e}")
            return None
