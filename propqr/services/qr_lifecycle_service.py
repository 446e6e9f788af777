"""
QR 리소스 라이프사이클 서비스

매물별 QR 리소스의 생성/재생성/비활성화/삭제와 버전 이력을 관리합니다.

상태 전이: ACTIVE → EXPIRED (TTL 경과 또는 재생성으로 대체)
           → DEACTIVATED (재생성으로 복구 가능) → DELETED (종료 상태)

- 같은 (subject_id, force) 의 generate/regenerate 는 single-flight 로 합쳐진다.
- blob 을 먼저 쓰고 메타데이터를 커밋한다. 커밋이 실패하면 blob 을 보상(복원/삭제)한다.
- 다른 프로세스와의 경합은 버전 조건부 UPDATE 와 (subject_id, version) 유니크 제약으로 감지한다.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from propqr.clock import as_utc, utcnow
from propqr.models import CodeResource, CodeResourceVersion, Property, ResourceStatus
from propqr.payload import canonical_payload, decode_payload, encode_link, payload_hash
from propqr.services.events import EventBus, QR_GENERATED, QR_GENERATION_FAILED
from propqr.services.exceptions import (
    DeletedResourceError,
    GenerationConflictError,
    InvariantViolationError,
    NotFoundError,
    QrServiceError,
    StorageFailureError,
    ValidationError,
)
from propqr.services.single_flight import KeyedLocks, SingleFlight
from propqr.url_builder import UrlBuilder
from propqr.validation import validate_subject_id

logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_REGENERATED = "regenerated"
OUTCOME_EXISTS = "exists"

MAX_PAGE_SIZE = 100


def image_key(subject_id: str) -> str:
    return f"images/{subject_id}.png"


def metadata_key(subject_id: str) -> str:
    return f"metadata/{subject_id}.json"


def flight_key(subject_id: str, force: bool) -> tuple[str, bool]:
    return subject_id, force


def effective_status(status: str, expires_at: datetime, now: datetime) -> str:
    """ACTIVE 이지만 만료 시각이 지난 리소스는 EXPIRED 로 본다 (저장 값은 그대로)"""
    if status == ResourceStatus.ACTIVE and as_utc(expires_at) <= now:
        return ResourceStatus.EXPIRED
    return status


def encode_cursor(generated_at: datetime, subject_id: str) -> str:
    raw = json.dumps({"g": as_utc(generated_at).isoformat(), "s": subject_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        return as_utc(datetime.fromisoformat(data["g"])), str(data["s"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
        raise ValidationError(f"잘못된 cursor: {e}", field="cursor", error_code="INVALID_CURSOR")


def _is_transient_storage_error(exc: BaseException) -> bool:
    return isinstance(exc, StorageFailureError) and exc.recoverable


@dataclass(frozen=True)
class ResourceSnapshot:
    subject_id: str
    version: int
    status: str # 유효 상태 (만료 반영)
    stored_status: str
    payload: str
    payload_hash: str
    storage_locator: str
    image_url: Optional[str]
    generation_reason: Optional[str]
    generated_at: datetime
    expires_at: datetime
    scan_count: int
    last_scanned_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: CodeResource, now: datetime) -> "ResourceSnapshot":
        return cls(
            subject_id=row.subject_id,
            version=row.version,
            status=effective_status(row.status, row.expires_at, now),
            stored_status=row.status,
            payload=row.payload,
            payload_hash=row.payload_hash,
            storage_locator=row.storage_locator,
            image_url=row.image_url,
            generation_reason=row.generation_reason,
            generated_at=as_utc(row.generated_at),
            expires_at=as_utc(row.expires_at),
            scan_count=row.scan_count or 0,
            last_scanned_at=as_utc(row.last_scanned_at),
        )

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "version": self.version,
            "status": self.status,
            "payload": self.payload,
            "payload_hash": self.payload_hash,
            "image_key": self.storage_locator,
            "image_url": self.image_url,
            "generated_at": self.generated_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class VersionSnapshot:
    subject_id: str
    version: int
    status: str
    payload_hash: str
    storage_locator: str
    generation_reason: Optional[str]
    generated_at: datetime
    expires_at: datetime
    superseded_at: Optional[datetime]


@dataclass(frozen=True)
class GenerationResult:
    resource: ResourceSnapshot
    outcome: str # created, regenerated, exists


@dataclass
class ResourcePage:
    items: List[ResourceSnapshot]
    next_cursor: Optional[str]


@dataclass
class BatchResult:
    successful: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_requested(self) -> int:
        return len(self.successful) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "total_requested": self.total_requested,
            "total_successful": len(self.successful),
            "total_failed": len(self.failed),
        }


class QrLifecycleService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        storage: Any,
        encoder: Any,
        urls: UrlBuilder,
        bus: Optional[EventBus] = None,
        *,
        ttl_days: int = 365,
        history_retention: int = 0,
        batch_limit: int = 100,
        storage_retry_count: int = 3,
        storage_retry_backoff: float = 0.5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.encoder = encoder
        self.urls = urls
        self.bus = bus
        self.ttl_days = ttl_days
        self.history_retention = history_retention
        self.batch_limit = batch_limit
        self.storage_retry_count = storage_retry_count
        self.storage_retry_backoff = storage_retry_backoff
        self.clock = clock

        self._flight = SingleFlight()
        self._locks = KeyedLocks()

    # ==================== 공개 연산 ====================

    def generate(self, subject_id: str, force: bool = False, reason: Optional[str] = None) -> GenerationResult:
        """
        QR 리소스 생성. 살아있는 ACTIVE 리소스가 있고 force=False 면 기존 리소스를 그대로 반환.
        같은 force 값으로 진행 중인 생성이 있으면 그 결과를 함께 받는다.
        force=True 호출은 진행 중인 비강제 생성에 합류하지 않고, 매물 락에서 그 생성이 끝나길 기다린 뒤 새 버전을 만든다.
        """
        validate_subject_id(subject_id)
        reason = reason or ("forced" if force else "initial")
        return self._flight.do(flight_key(subject_id, force), lambda: self._locked_generate(subject_id, force, reason))

    def regenerate(self, subject_id: str, reason: Optional[str] = None) -> GenerationResult:
        validate_subject_id(subject_id)
        reason = reason or "regenerate"
        return self._flight.do(flight_key(subject_id, True), lambda: self._locked_generate(subject_id, True, reason))

    def get(self, subject_id: str) -> ResourceSnapshot:
        validate_subject_id(subject_id)
        now = self.clock()
        with self.session_factory() as session:
            resource = self._load(session, subject_id)
            self._ensure_visible(resource, subject_id)
            self._check_single_active(session, subject_id)
            return ResourceSnapshot.from_row(resource, now)

    def get_subject(self, subject_id: str) -> Property:
        validate_subject_id(subject_id)
        with self.session_factory() as session:
            subject = session.get(Property, subject_id)
            if subject is None:
                raise NotFoundError(f"매물을 찾을 수 없습니다: {subject_id}", subject_id=subject_id)
            return subject

    def deactivate(self, subject_id: str) -> ResourceSnapshot:
        validate_subject_id(subject_id)
        with self._locks.hold(subject_id):
            now = self.clock()
            with self.session_factory() as session:
                resource = self._load(session, subject_id)
                self._ensure_visible(resource, subject_id)
                if resource.status != ResourceStatus.DEACTIVATED:
                    self._transition(session, resource, ResourceStatus.DEACTIVATED, now)
                    session.commit()
                    session.refresh(resource)
                    logger.info(f"[QR] Deactivated {subject_id} (v{resource.version})")
                return ResourceSnapshot.from_row(resource, now)

    def delete(self, subject_id: str) -> Dict[str, Any]:
        """
        DELETED 로 전환하고 이미지/메타데이터 blob 을 삭제한다.
        이미 삭제된 리소스에 대해서도 blob 삭제를 다시 시도하므로 중단 후 재호출해도 안전하다.
        """
        validate_subject_id(subject_id)
        with self._locks.hold(subject_id):
            now = self.clock()
            with self.session_factory() as session:
                resource = self._load(session, subject_id)
                if resource is None:
                    raise NotFoundError(f"QR 리소스를 찾을 수 없습니다: {subject_id}", subject_id=subject_id)
                already_deleted = resource.status == ResourceStatus.DELETED
                if not already_deleted:
                    self._transition(session, resource, ResourceStatus.DELETED, now)
                    session.commit()

            for key in (image_key(subject_id), metadata_key(subject_id)):
                self._storage_call("delete", self.storage.delete, key)

        logger.info(f"[QR] Deleted {subject_id} (already_deleted={already_deleted})")
        return {"subject_id": subject_id, "status": ResourceStatus.DELETED, "already_deleted": already_deleted}

    def list(self, cursor: Optional[str] = None, limit: int = 20) -> ResourcePage:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit은 1에서 {MAX_PAGE_SIZE} 사이여야 합니다.", field="limit")

        now = self.clock()
        stmt = (
            select(CodeResource)
            .where(CodeResource.status != ResourceStatus.DELETED)
            .order_by(CodeResource.generated_at.desc(), CodeResource.subject_id.desc())
            .limit(limit + 1)
        )
        if cursor:
            after_generated_at, after_subject_id = decode_cursor(cursor)
            stmt = stmt.where(
                or_(
                    CodeResource.generated_at < after_generated_at,
                    and_(CodeResource.generated_at == after_generated_at, CodeResource.subject_id < after_subject_id),
                )
            )

        with self.session_factory() as session:
            rows = session.scalars(stmt).all()

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = encode_cursor(rows[-1].generated_at, rows[-1].subject_id) if has_more and rows else None
        return ResourcePage(items=[ResourceSnapshot.from_row(r, now) for r in rows], next_cursor=next_cursor)

    def history(self, subject_id: str) -> List[VersionSnapshot]:
        validate_subject_id(subject_id)
        with self.session_factory() as session:
            rows = session.scalars(
                select(CodeResourceVersion)
                .where(CodeResourceVersion.subject_id == subject_id)
                .order_by(CodeResourceVersion.version.desc())
            ).all()
        if not rows:
            raise NotFoundError(f"QR 리소스 이력이 없습니다: {subject_id}", subject_id=subject_id)
        return [
            VersionSnapshot(
                subject_id=r.subject_id,
                version=r.version,
                status=r.status,
                payload_hash=r.payload_hash,
                storage_locator=r.storage_locator,
                generation_reason=r.generation_reason,
                generated_at=as_utc(r.generated_at),
                expires_at=as_utc(r.expires_at),
                superseded_at=as_utc(r.superseded_at),
            )
            for r in rows
        ]

    def verify_payload(self, subject_id: str) -> Dict[str, Any]:
        """저장된 페이로드를 디코딩 후 재인코딩해 바이트 동일성/해시를 검증"""
        resource = self.get(subject_id)
        link = decode_payload(resource.payload)
        reencoded = encode_link(link)
        return {
            "subject_id": subject_id,
            "version": resource.version,
            "payload": resource.payload,
            "payload_hash": resource.payload_hash,
            "round_trip_ok": reencoded == resource.payload,
            "hash_ok": payload_hash(reencoded) == resource.payload_hash,
            "scan_url_ok": link.scan_url == self.urls.scan_url(subject_id),
        }

    def batch_generate(self, subject_ids: List[str], force: bool = False, reason: Optional[str] = None) -> BatchResult:
        ids = list(dict.fromkeys(subject_ids))
        if not ids:
            raise ValidationError("subject_ids가 비어 있습니다.", field="subject_ids")
        if len(ids) > self.batch_limit:
            raise ValidationError(
                f"배치 최대 건수({self.batch_limit})를 초과했습니다: {len(ids)}",
                field="subject_ids",
                error_code="BATCH_TOO_LARGE",
            )

        result = BatchResult()
        for subject_id in ids:
            try:
                generated = self.generate(subject_id, force=force, reason=reason or "batch")
            except QrServiceError as e:
                logger.warning(f"[QR] Batch item failed {subject_id}: {e.error_code} {e.message}")
                result.failed.append({"subject_id": subject_id, "error_code": e.error_code, "message": e.message})
                continue
            result.successful.append({
                "subject_id": subject_id,
                "version": generated.resource.version,
                "outcome": generated.outcome,
                "image_url": generated.resource.image_url,
            })

        logger.info(f"[QR] Batch generate done: ok={len(result.successful)} failed={len(result.failed)}")
        return result

    def generate_missing(self, limit: Optional[int] = None) -> BatchResult:
        """QR 리소스가 없는 모든 매물에 대해 생성"""
        stmt = (
            select(Property.id)
            .where(~select(CodeResource.id).where(CodeResource.subject_id == Property.id).exists())
            .order_by(Property.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        with self.session_factory() as session:
            missing = list(session.scalars(stmt).all())

        logger.info(f"[QR] {len(missing)} subjects without QR resource")
        combined = BatchResult()
        for start in range(0, len(missing), self.batch_limit):
            chunk = self.batch_generate(missing[start:start + self.batch_limit], reason="missing")
            combined.successful.extend(chunk.successful)
            combined.failed.extend(chunk.failed)
        return combined

    def sweep_expired(self) -> List[str]:
        """만료 시각이 지난 ACTIVE 리소스의 저장 상태를 EXPIRED 로 확정"""
        now = self.clock()
        with self.session_factory() as session:
            candidates = session.execute(
                select(CodeResource.subject_id)
                .where(CodeResource.status == ResourceStatus.ACTIVE, CodeResource.expires_at <= now)
                .order_by(CodeResource.expires_at)
            ).scalars().all()

        swept: List[str] = []
        for subject_id in candidates:
            with self._locks.hold(subject_id):
                with self.session_factory() as session:
                    resource = self._load(session, subject_id)
                    if resource is None or effective_status(resource.status, resource.expires_at, now) != ResourceStatus.EXPIRED:
                        continue
                    if resource.status != ResourceStatus.ACTIVE:
                        continue
                    self._transition(session, resource, ResourceStatus.EXPIRED, now)
                    session.commit()
                    swept.append(subject_id)

        if swept:
            logger.info(f"[QR] Swept {len(swept)} expired resources")
        return swept

    def list_needing_regeneration(self, within_days: int = 0) -> List[str]:
        """만료되었거나 within_days 안에 만료될 리소스의 subject_id 목록"""
        horizon = self.clock() + timedelta(days=within_days)
        with self.session_factory() as session:
            return list(session.scalars(
                select(CodeResource.subject_id)
                .where(
                    or_(
                        CodeResource.status == ResourceStatus.EXPIRED,
                        and_(CodeResource.status == ResourceStatus.ACTIVE, CodeResource.expires_at <= horizon),
                    )
                )
                .order_by(CodeResource.expires_at, CodeResource.subject_id)
            ).all())

    def count_by_status(self) -> Dict[str, int]:
        with self.session_factory() as session:
            rows = session.execute(
                select(CodeResource.status, func.count()).group_by(CodeResource.status)
            ).all()
        counts = {status: 0 for status in ResourceStatus.ALL}
        counts.update({status: n for status, n in rows})
        return counts

    def in_flight(self) -> int:
        return self._flight.in_flight()

    # ==================== 생성 내부 ====================

    def _locked_generate(self, subject_id: str, force: bool, reason: str) -> GenerationResult:
        with self._locks.hold(subject_id):
            return self._generate(subject_id, force, reason)

    def _generate(self, subject_id: str, force: bool, reason: str) -> GenerationResult:
        now = self.clock()
        with self.session_factory() as session:
            subject = session.get(Property, subject_id)
            if subject is None:
                raise NotFoundError(f"매물을 찾을 수 없습니다: {subject_id}", subject_id=subject_id)

            resource = self._load(session, subject_id)
            expected_version: Optional[int] = None
            if resource is not None:
                if resource.status == ResourceStatus.DELETED:
                    raise DeletedResourceError(f"삭제된 QR 리소스입니다: {subject_id}", subject_id=subject_id)
                self._check_single_active(session, subject_id)
                if not force and effective_status(resource.status, resource.expires_at, now) == ResourceStatus.ACTIVE:
                    logger.info(f"[QR] {subject_id} already active (v{resource.version}), skipping")
                    return GenerationResult(ResourceSnapshot.from_row(resource, now), OUTCOME_EXISTS)
                expected_version = resource.version

        try:
            snapshot = self._write_version(subject_id, expected_version, reason, now)
        except Exception as e:
            self._publish(QR_GENERATION_FAILED, {
                "subject_id": subject_id,
                "error_code": getattr(e, "error_code", type(e).__name__),
            })
            raise

        outcome = OUTCOME_CREATED if expected_version is None else OUTCOME_REGENERATED
        self._write_metadata_snapshot(snapshot)
        self._publish(QR_GENERATED, {"subject_id": subject_id, "version": snapshot.version, "outcome": outcome})
        logger.info(f"[QR] {outcome} {subject_id} v{snapshot.version} (reason={reason})")
        return GenerationResult(snapshot, outcome)

    def _write_version(self, subject_id: str, expected_version: Optional[int], reason: str, now: datetime) -> ResourceSnapshot:
        new_version = (expected_version or 0) + 1
        payload = canonical_payload(subject_id, self.urls.scan_url(subject_id))
        digest = payload_hash(payload)
        png = self.encoder.encode(payload)
        key = image_key(subject_id)
        expires_at = now + timedelta(days=self.ttl_days)

        # 이전 버전이 참조하던 이미지는 보상 시 복원해야 함
        previous_blob = self._storage_call("get", self.storage.get, key) if expected_version is not None else None

        try:
            self._storage_call("put", self.storage.put, key, png, "image/png")
            image_url = self.storage.public_url(key)
            values = {
                "version": new_version,
                "status": ResourceStatus.ACTIVE,
                "payload": payload,
                "payload_hash": digest,
                "storage_locator": key,
                "image_url": image_url,
                "generation_reason": reason,
                "generated_at": now,
                "expires_at": expires_at,
            }
            with self.session_factory() as session:
                if expected_version is None:
                    session.add(CodeResource(subject_id=subject_id, scan_count=0, **values))
                else:
                    self._advance_version(session, subject_id, expected_version, values, now)
                session.add(CodeResourceVersion(
                    subject_id=subject_id,
                    version=new_version,
                    status=ResourceStatus.ACTIVE,
                    payload=payload,
                    payload_hash=digest,
                    storage_locator=key,
                    generation_reason=reason,
                    generated_at=now,
                    expires_at=expires_at,
                ))
                session.flush()
                self._prune_history(session, subject_id)
                session.commit()
        except BaseException as e:
            logger.error(f"[QR] Metadata commit failed for {subject_id} v{new_version}, compensating blob: {e!r}")
            self._compensate(key, previous_blob)
            if isinstance(e, IntegrityError):
                raise GenerationConflictError(
                    f"다른 생성 작업과 충돌했습니다: {subject_id}",
                    subject_id=subject_id,
                    expected_version=expected_version,
                ) from e
            raise

        with self.session_factory() as session:
            return ResourceSnapshot.from_row(self._load(session, subject_id), now)

    def _advance_version(self, session: Session, subject_id: str, expected_version: int, values: Dict[str, Any], now: datetime) -> None:
        result = session.execute(
            update(CodeResource)
            .where(
                CodeResource.subject_id == subject_id,
                CodeResource.version == expected_version,
                CodeResource.status != ResourceStatus.DELETED,
            )
            .values(updated_at=now, **values)
        )
        if result.rowcount != 1:
            raise GenerationConflictError(
                f"리소스 버전이 변경되었습니다: {subject_id} (expected v{expected_version})",
                subject_id=subject_id,
                expected_version=expected_version,
            )
        session.execute(
            update(CodeResourceVersion)
            .where(CodeResourceVersion.subject_id == subject_id, CodeResourceVersion.version == expected_version)
            .values(status=ResourceStatus.EXPIRED, superseded_at=now)
        )

    def _prune_history(self, session: Session, subject_id: str) -> None:
        if self.history_retention <= 0:
            return
        keep = select(CodeResourceVersion.version).where(
            CodeResourceVersion.subject_id == subject_id,
            CodeResourceVersion.superseded_at.is_not(None),
        ).order_by(CodeResourceVersion.version.desc()).limit(self.history_retention)
        kept_versions = list(session.scalars(keep).all())
        session.execute(
            delete(CodeResourceVersion).where(
                CodeResourceVersion.subject_id == subject_id,
                CodeResourceVersion.superseded_at.is_not(None),
                CodeResourceVersion.version.not_in(kept_versions or [-1]),
            )
        )

    def _compensate(self, key: str, previous_blob: Optional[bytes]) -> None:
        try:
            if previous_blob is not None:
                self._storage_call("put", self.storage.put, key, previous_blob, "image/png")
            else:
                self._storage_call("delete", self.storage.delete, key)
        except Exception as e:
            logger.critical(f"[QR] Blob compensation failed, orphaned object {key}: {e}")

    def _write_metadata_snapshot(self, snapshot: ResourceSnapshot) -> None:
        body = json.dumps(snapshot.to_metadata(), ensure_ascii=False).encode("utf-8")
        try:
            self._storage_call("put", self.storage.put, metadata_key(snapshot.subject_id), body, "application/json")
        except Exception as e:
            logger.warning(f"[QR] Metadata snapshot write failed for {snapshot.subject_id}: {e}")

    # ==================== 공통 ====================

    def _storage_call(self, operation: str, fn: Callable, *args):
        retrying = Retrying(
            stop=stop_after_attempt(self.storage_retry_count),
            wait=wait_exponential(multiplier=self.storage_retry_backoff, max=10),
            retry=retry_if_exception(_is_transient_storage_error),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"[QR] 스토리지 {operation} 재시도 중... ({retry_state.attempt_number}회째): {retry_state.outcome.exception()}"
            ),
        )
        return retrying(fn, *args)

    def _load(self, session: Session, subject_id: str) -> Optional[CodeResource]:
        return session.scalar(select(CodeResource).where(CodeResource.subject_id == subject_id))

    def _ensure_visible(self, resource: Optional[CodeResource], subject_id: str) -> None:
        if resource is None:
            raise NotFoundError(f"QR 리소스를 찾을 수 없습니다: {subject_id}", subject_id=subject_id)
        if resource.status == ResourceStatus.DELETED:
            raise DeletedResourceError(f"삭제된 QR 리소스입니다: {subject_id}", subject_id=subject_id)

    def _check_single_active(self, session: Session, subject_id: str) -> None:
        active = session.scalar(
            select(func.count())
            .select_from(CodeResourceVersion)
            .where(CodeResourceVersion.subject_id == subject_id, CodeResourceVersion.status == ResourceStatus.ACTIVE)
        )
        if active and active > 1:
            logger.critical(f"[QR] INVARIANT VIOLATION: {active} active versions for {subject_id}")
            raise InvariantViolationError(
                f"{subject_id}에 ACTIVE 버전이 {active}개 존재합니다.",
                subject_id=subject_id,
                active_versions=active,
            )

    def _transition(self, session: Session, resource: CodeResource, status: str, now: datetime) -> None:
        result = session.execute(
            update(CodeResource)
            .where(
                CodeResource.subject_id == resource.subject_id,
                CodeResource.version == resource.version,
                CodeResource.status == resource.status,
            )
            .values(status=status, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise GenerationConflictError(
                f"리소스 상태가 동시에 변경되었습니다: {resource.subject_id}",
                subject_id=resource.subject_id,
                expected_version=resource.version,
            )
        session.execute(
            update(CodeResourceVersion)
            .where(CodeResourceVersion.subject_id == resource.subject_id, CodeResourceVersion.version == resource.version)
            .values(status=status)
        )

    def _publish(self, event_type: str, data: Dict[str, Any]) -> None:
        if self.bus is not None:
            self.bus.publish(event_type, data)
