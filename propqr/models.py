from typing import Any
from datetime import datetime
import uuid

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class ResourceStatus:
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    DEACTIVATED = "DEACTIVATED"
    DELETED = "DELETED"

    ALL = (ACTIVE, EXPIRED, DEACTIVATED, DELETED)


class Property(Base):
    """
    매물 원본 레코드 (외부 리스팅 서비스가 관리, 이 서비스는 읽기 전용).
    """
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    action: Mapped[str] = mapped_column(Text, nullable=False, default="sale") # sale, rent
    chain_ref: Mapped[str | None] = mapped_column(Text, nullable=True) # 온체인 주소
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    crypto_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    primary_image: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CodeResource(Base):
    """
    매물별 현재 QR 리소스. subject_id당 1행.
    scan_count / last_scanned_at 은 집계기만 갱신한다.
    """
    __tablename__ = "qr_resources"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=ResourceStatus.ACTIVE)

    payload: Mapped[str] = mapped_column(Text, nullable=False)
    payload_hash: Mapped[str] = mapped_column(Text, nullable=False)
    storage_locator: Mapped[str] = mapped_column(Text, nullable=False) # images/<subject_id>.png
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    generation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    scan_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_qr_resources_generated_at_subject", "generated_at", "subject_id"),
    )


class CodeResourceVersion(Base):
    """
    QR 리소스 버전 이력 (append-only). 대체된 행은 더 이상 수정되지 않는다.
    """
    __tablename__ = "qr_resource_versions"
    __table_args__ = (
        UniqueConstraint("subject_id", "version", name="uq_qr_resource_versions_subject_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=ResourceStatus.ACTIVE)

    payload: Mapped[str] = mapped_column(Text, nullable=False)
    payload_hash: Mapped[str] = mapped_column(Text, nullable=False)
    storage_locator: Mapped[str] = mapped_column(Text, nullable=False)
    generation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ScanEvent(Base):
    """
    스캔 1건의 불변 기록. 생성 후 수정/삭제하지 않는다.
    """
    __tablename__ = "scan_events"
    __table_args__ = (
        Index("ix_scan_events_subject_occurred", "subject_id", "occurred_at"),
    )

    event_id: Mapped[str] = mapped_column(Text, primary_key=True)
    subject_id: Mapped[str] = mapped_column(Text, nullable=False)
    resource_version: Mapped[int] = mapped_column(Integer, nullable=False)
    resource_status: Mapped[str] = mapped_column(Text, nullable=False) # 스캔 시점의 유효 상태
    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    source: Mapped[str] = mapped_column(Text, nullable=False) # code, direct-api
    redirect_type: Mapped[str] = mapped_column(Text, nullable=False) # single, dual
    device_class: Mapped[str] = mapped_column(Text, nullable=False)
    platform: Mapped[str] = mapped_column(Text, nullable=False, default="unknown")
    browser: Mapped[str] = mapped_column(Text, nullable=False, default="unknown")
    geo_country: Mapped[str] = mapped_column(Text, nullable=False, default="unknown")
    geo_region: Mapped[str] = mapped_column(Text, nullable=False, default="unknown")

    session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(Text, nullable=True)


class SubjectRollup(Base):
    """
    매물별 스캔 집계 (scan_events 위의 재생성 가능한 캐시).
    """
    __tablename__ = "subject_rollups"

    subject_id: Mapped[str] = mapped_column(Text, primary_key=True)
    total_scans: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    flagged_scans: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scans_by_source: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    scans_by_redirect_type: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    device_counts: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    geo_counts: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    daily_buckets: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict) # YYYY-MM-DD -> count
    first_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SystemRollup(Base):
    """
    전체 스캔 집계 (단일 행, id='system') + QR 생성 성공/실패 카운터.
    """
    __tablename__ = "system_rollups"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default="system")
    total_scans: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    flagged_scans: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scans_by_source: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    scans_by_redirect_type: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    device_counts: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    geo_counts: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    daily_buckets: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    subject_counts: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict) # subject_id -> scans
    first_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    generation_success: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generation_failure: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class RollupAppliedEvent(Base):
    """
    집계 중복 반영 방지용 마커. rollup_key: 'subject:<id>' 또는 'system'.
    """
    __tablename__ = "rollup_applied_events"

    rollup_key: Mapped[str] = mapped_column(Text, primary_key=True)
    event_id: Mapped[str] = mapped_column(Text, primary_key=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ScanIngestFailure(Base):
    """
    재시도를 모두 소진한 스캔 수집 실패 기록 (헬스 지표용).
    """
    __tablename__ = "scan_ingest_failures"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
