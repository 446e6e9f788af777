"""
스캔 분석 API 엔드포인트

집계는 scan_events 위의 캐시이므로 rebuild/reconcile 로 언제든 다시 계산할 수 있습니다.
"""

import logging

from fastapi import APIRouter, Depends, Query

from propqr.api.deps import get_services
from propqr.schemas.analytics import (
    PeriodComparison,
    ScanEventResponse,
    SubjectAnalyticsResponse,
    SystemAnalyticsResponse,
    TrendPoint,
)
from propqr.services.analytics_service import RollupView
from propqr.services.registry import ServiceRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


def _subject_response(services: ServiceRegistry, view: RollupView, include_recent: bool, trend_days: int) -> SubjectAnalyticsResponse:
    analytics = services.analytics
    response = SubjectAnalyticsResponse.model_validate(view)
    if include_recent:
        response.recent_scans = [
            ScanEventResponse.model_validate(e) for e in analytics.recent_events(view.subject_id, days=7)
        ]
    response.trends = [TrendPoint(**point) for point in analytics.scan_trends(view.daily_scans, days=trend_days)]
    response.period_comparison = PeriodComparison(**analytics.period_comparison(view.daily_scans, days=trend_days))
    return response


@router.get("/system", response_model=SystemAnalyticsResponse)
def get_system_analytics(
    period_days: int = Query(default=30, ge=1, le=45),
    services: ServiceRegistry = Depends(get_services),
):
    """전체 스캔/생성 통계"""
    view = services.analytics.get_system()
    response = SystemAnalyticsResponse.model_validate(view)
    response.period_comparison = PeriodComparison(**services.analytics.period_comparison(view.daily_scans, days=period_days))
    return response


@router.post("/system/rebuild", response_model=SystemAnalyticsResponse)
def rebuild_system_analytics(services: ServiceRegistry = Depends(get_services)):
    return SystemAnalyticsResponse.model_validate(services.analytics.rebuild_system())


@router.post("/reconcile")
def reconcile_analytics(
    limit: int = Query(default=1000, ge=1, le=100000),
    services: ServiceRegistry = Depends(get_services),
):
    """집계에 반영되지 않은 이벤트를 다시 반영"""
    return {"reconciled": services.analytics.reconcile(limit=limit)}


@router.get("/{subject_id}", response_model=SubjectAnalyticsResponse)
def get_subject_analytics(
    subject_id: str,
    include_recent: bool = Query(default=True),
    trend_days: int = Query(default=30, ge=1, le=45),
    services: ServiceRegistry = Depends(get_services),
):
    """
    매물별 스캔 통계. 삭제된 리소스라도 기존 집계는 그대로 조회된다.
    """
    return _subject_response(services, services.analytics.get(subject_id), include_recent, trend_days)


@router.post("/{subject_id}/rebuild", response_model=SubjectAnalyticsResponse)
def rebuild_subject_analytics(subject_id: str, services: ServiceRegistry = Depends(get_services)):
    view = services.analytics.rebuild(subject_id)
    return _subject_response(services, view, include_recent=False, trend_days=30)
