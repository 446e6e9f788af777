"""
QR 리소스 API 엔드포인트

생성/재생성/비활성화/삭제 및 목록/이력 조회를 제공합니다.
서비스 예외(QrServiceError)는 main 의 예외 핸들러에서 상태 코드로 변환됩니다.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from propqr.api.deps import get_services
from propqr.schemas.qr import (
    BatchGenerateRequest,
    BatchGenerateResponse,
    DeleteResponse,
    GenerateResponse,
    PayloadVerificationResponse,
    QrResourcePageResponse,
    QrResourceResponse,
    QrVersionResponse,
)
from propqr.services.qr_lifecycle_service import GenerationResult
from propqr.services.registry import ServiceRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


def _generation_response(result: GenerationResult) -> GenerateResponse:
    return GenerateResponse(outcome=result.outcome, resource=QrResourceResponse.model_validate(result.resource))


# ==================== 생성 ====================

@router.post("/generate/{subject_id}", response_model=GenerateResponse)
def generate_qr(
    subject_id: str,
    force: bool = Query(default=False),
    reason: Optional[str] = Query(default=None, max_length=200),
    services: ServiceRegistry = Depends(get_services),
):
    """
    QR 코드 생성 (활성 리소스가 있으면 force=true 가 아닌 한 기존 리소스 반환)
    """
    return _generation_response(services.lifecycle.generate(subject_id, force=force, reason=reason))


@router.post("/batch-generate", response_model=BatchGenerateResponse)
def batch_generate_qr(payload: BatchGenerateRequest, services: ServiceRegistry = Depends(get_services)):
    result = services.lifecycle.batch_generate(payload.subject_ids, force=payload.force, reason=payload.reason)
    return result.to_dict()


@router.post("/generate-missing", response_model=BatchGenerateResponse)
def generate_missing_qr(
    limit: Optional[int] = Query(default=None, ge=1, le=10000),
    services: ServiceRegistry = Depends(get_services),
):
    """QR 코드가 없는 모든 매물에 대해 생성"""
    return services.lifecycle.generate_missing(limit=limit).to_dict()


@router.post("/sweep")
def sweep_expired_qr(services: ServiceRegistry = Depends(get_services)):
    swept = services.lifecycle.sweep_expired()
    return {"swept": swept, "count": len(swept)}


# ==================== 조회 ====================

@router.get("", response_model=QrResourcePageResponse)
def list_qr(
    cursor: Optional[str] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    services: ServiceRegistry = Depends(get_services),
):
    page = services.lifecycle.list(cursor=cursor, limit=limit)
    return QrResourcePageResponse(
        items=[QrResourceResponse.model_validate(item) for item in page.items],
        next_cursor=page.next_cursor,
    )


@router.get("/needing-regeneration", response_model=List[str])
def list_needing_regeneration(
    within_days: int = Query(default=0, ge=0, le=365),
    services: ServiceRegistry = Depends(get_services),
):
    return services.lifecycle.list_needing_regeneration(within_days=within_days)


@router.get("/{subject_id}", response_model=QrResourceResponse)
def get_qr(subject_id: str, services: ServiceRegistry = Depends(get_services)):
    return QrResourceResponse.model_validate(services.lifecycle.get(subject_id))


@router.get("/{subject_id}/history", response_model=List[QrVersionResponse])
def get_qr_history(subject_id: str, services: ServiceRegistry = Depends(get_services)):
    return [QrVersionResponse.model_validate(v) for v in services.lifecycle.history(subject_id)]


@router.get("/{subject_id}/verify", response_model=PayloadVerificationResponse)
def verify_qr_payload(subject_id: str, services: ServiceRegistry = Depends(get_services)):
    """저장된 페이로드 디코딩/재인코딩 일치 여부 확인"""
    return services.lifecycle.verify_payload(subject_id)


# ==================== 상태 전환 ====================

@router.post("/{subject_id}/regenerate", response_model=GenerateResponse)
def regenerate_qr(
    subject_id: str,
    reason: Optional[str] = Query(default=None, max_length=200),
    services: ServiceRegistry = Depends(get_services),
):
    return _generation_response(services.lifecycle.regenerate(subject_id, reason=reason))


@router.post("/{subject_id}/deactivate", response_model=QrResourceResponse)
def deactivate_qr(subject_id: str, services: ServiceRegistry = Depends(get_services)):
    return QrResourceResponse.model_validate(services.lifecycle.deactivate(subject_id))


@router.delete("/{subject_id}", response_model=DeleteResponse)
def delete_qr(subject_id: str, services: ServiceRegistry = Depends(get_services)):
    return services.lifecycle.delete(subject_id)
