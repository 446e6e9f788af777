from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func, select, text
import logging

from propqr.api.deps import get_services
from propqr.db import get_session
from propqr.models import ScanIngestFailure
from propqr.services.registry import ServiceRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/system")
def get_system_health(session: Session = Depends(get_session), services: ServiceRegistry = Depends(get_services)):
    """
    데이터베이스 연결, 스토리지 설정, 스캔 수집 큐 상태를 확인합니다.
    """
    db_ok = False
    ingest_failures = None
    try:
        session.execute(text("SELECT 1"))
        ingest_failures = session.scalar(select(func.count()).select_from(ScanIngestFailure))
        db_ok = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    storage_enabled = getattr(services.lifecycle.storage, "enabled", True)
    return {
        "status": "healthy" if db_ok and storage_enabled else "unhealthy",
        "database": "ok" if db_ok else "error",
        "storage": "ok" if storage_enabled else "disabled",
        "generations_in_flight": services.lifecycle.in_flight(),
        "scan_dispatcher": services.dispatcher.stats(),
        "scan_ingest_failures": ingest_failures,
    }


@router.get("/scan")
def get_scan_health(services: ServiceRegistry = Depends(get_services)):
    stats = services.dispatcher.stats()
    return {
        "status": "healthy" if stats["workers"] > 0 or stats["queued"] == 0 else "degraded",
        "service": "scan",
        **stats,
    }
