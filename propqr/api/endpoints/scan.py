import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import HTMLResponse

from propqr.api.deps import get_services
from propqr.schemas.scan import RedirectPlanResponse
from propqr.services.exceptions import DeactivatedResourceError, NotFoundError, QrServiceError
from propqr.services.redirect_page import render_error_page, render_redirect_page
from propqr.services.registry import ServiceRegistry
from propqr.services.scan_ingest_service import SOURCE_CODE, SOURCE_DIRECT_API, ScanSignal
from propqr.validation import validate_event_id

router = APIRouter()
logger = logging.getLogger(__name__)


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def _signal_from_request(request: Request, source: str, session_id: Optional[str], event_id: Optional[str] = None) -> ScanSignal:
    return ScanSignal(
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
        referrer=request.headers.get("referer"),
        session_id=session_id,
        source=source,
        event_id=event_id,
    )


@router.get("/scan/{subject_id}", response_class=HTMLResponse)
def scan_redirect_page(
    subject_id: str,
    request: Request,
    sid: Optional[str] = Query(default=None, max_length=128),
    services: ServiceRegistry = Depends(get_services),
):
    """
    QR 스캔 진입점. 매물 상세로 자동 이동하는 HTML 페이지를 반환합니다.
    """
    signal = _signal_from_request(request, SOURCE_CODE, sid)
    try:
        plan = services.redirect.decide(subject_id, signal)
    except DeactivatedResourceError as e:
        return HTMLResponse(render_error_page("QR Code Deactivated", "This QR code is no longer active."), status_code=e.http_status)
    except NotFoundError as e:
        return HTMLResponse(render_error_page("Property Not Found", "This QR code does not point to an available property."), status_code=e.http_status)
    except QrServiceError as e:
        logger.error(f"[SCAN] Redirect failed for {subject_id}: {e.error_code} {e.message}")
        return HTMLResponse(render_error_page("Invalid QR Code", e.message), status_code=e.http_status)

    return HTMLResponse(render_redirect_page(plan, delay_seconds=services.config.redirect_delay_seconds))


@router.get("/api/scan/{subject_id}", response_model=RedirectPlanResponse)
def scan_decision(
    subject_id: str,
    request: Request,
    sid: Optional[str] = Query(default=None, max_length=128),
    x_scan_event_id: Optional[str] = Header(default=None),
    services: ServiceRegistry = Depends(get_services),
):
    """리다이렉트 결정을 JSON 으로 반환 (X-Scan-Event-Id 헤더로 재시도 중복 방지)"""
    if x_scan_event_id:
        validate_event_id(x_scan_event_id)
    signal = _signal_from_request(request, SOURCE_DIRECT_API, sid, event_id=x_scan_event_id)
    return RedirectPlanResponse.model_validate(services.redirect.decide(subject_id, signal))
