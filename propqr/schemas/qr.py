from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class QrResourceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject_id: str
    version: int
    status: str
    payload: str
    payload_hash: str
    storage_locator: str
    image_url: Optional[str] = None
    generation_reason: Optional[str] = None
    generated_at: datetime
    expires_at: datetime
    scan_count: int = 0
    last_scanned_at: Optional[datetime] = None


class GenerateResponse(BaseModel):
    outcome: str # created, regenerated, exists
    resource: QrResourceResponse


class QrResourcePageResponse(BaseModel):
    items: List[QrResourceResponse]
    next_cursor: Optional[str] = None


class QrVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject_id: str
    version: int
    status: str
    payload_hash: str
    storage_locator: str
    generation_reason: Optional[str] = None
    generated_at: datetime
    expires_at: datetime
    superseded_at: Optional[datetime] = None


class BatchGenerateRequest(BaseModel):
    subject_ids: List[str] = Field(..., min_length=1)
    force: bool = False
    reason: Optional[str] = None


class BatchItemSuccess(BaseModel):
    subject_id: str
    version: int
    outcome: str
    image_url: Optional[str] = None


class BatchItemFailure(BaseModel):
    subject_id: str
    error_code: str
    message: str


class BatchGenerateResponse(BaseModel):
    successful: List[BatchItemSuccess]
    failed: List[BatchItemFailure]
    total_requested: int
    total_successful: int
    total_failed: int


class PayloadVerificationResponse(BaseModel):
    subject_id: str
    version: int
    payload: str
    payload_hash: str
    round_trip_ok: bool
    hash_ok: bool
    scan_url_ok: bool


class DeleteResponse(BaseModel):
    subject_id: str
    status: str
    already_deleted: bool
