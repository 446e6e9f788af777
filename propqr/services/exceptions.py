"""
QR Service Exception Classes

구조화된 에러 처리를 위한 예외 클래스 정의.
각 예외는 HTTP 응답 코드(http_status)를 함께 가진다.
"""
from typing import Optional, Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    """에러 심각도 레벨"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class QrServiceError(Exception):
    """
    Base exception for all QR service errors

    Attributes:
        message: 에러 메시지
        error_code: 에러 코드
        severity: 에러 심각도
        context: 추가 컨텍스트 정보
        recoverable: 복구 가능 여부
    """

    http_status: int = 500
    default_code: str = "QR_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = False
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.severity = severity
        self.context = context or {}
        self.recoverable = recoverable
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """에러 정보를 딕셔너리로 변환"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "recoverable": self.recoverable
        }


class NotFoundError(QrServiceError):
    """매물 또는 QR 리소스가 없음"""

    http_status = 404
    default_code = "NOT_FOUND"

    def __init__(self, message: str, subject_id: Optional[str] = None, **kwargs):
        context = {"subject_id": subject_id}
        context.update(kwargs)
        super().__init__(message=message, severity=ErrorSeverity.LOW, context=context)
        self.subject_id = subject_id


class DeletedResourceError(NotFoundError):
    """삭제(종료 상태)된 QR 리소스"""

    default_code = "RESOURCE_DELETED"


class DeactivatedResourceError(QrServiceError):
    """비활성화된 QR 리소스 (재생성으로 복구 가능)"""

    http_status = 410
    default_code = "RESOURCE_DEACTIVATED"

    def __init__(self, message: str, subject_id: Optional[str] = None, **kwargs):
        context = {"subject_id": subject_id}
        context.update(kwargs)
        super().__init__(message=message, severity=ErrorSeverity.LOW, context=context, recoverable=True)
        self.subject_id = subject_id


class GenerationConflictError(QrServiceError):
    """
    동일 매물에 대한 다른 생성 작업과 충돌 (다른 프로세스가 먼저 버전을 올린 경우 등)

    Attributes:
        expected_version: 갱신 시 기대했던 버전
    """

    http_status = 409
    default_code = "GENERATION_CONFLICT"

    def __init__(self, message: str, subject_id: Optional[str] = None, expected_version: Optional[int] = None):
        super().__init__(
            message=message,
            severity=ErrorSeverity.MEDIUM,
            context={"subject_id": subject_id, "expected_version": expected_version},
            recoverable=True,
        )
        self.subject_id = subject_id
        self.expected_version = expected_version


class ValidationError(QrServiceError):
    """잘못된 식별자 또는 입력값"""

    http_status = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, error_code: Optional[str] = None, **kwargs):
        context = {"field": field}
        context.update(kwargs)
        super().__init__(message=message, error_code=error_code, severity=ErrorSeverity.LOW, context=context)
        self.field = field


class StorageFailureError(QrServiceError):
    """
    Blob 스토리지 호출 실패

    recoverable=True 이면 일시적 오류로 보고 재시도 대상이 된다.

    Attributes:
        key: 대상 오브젝트 키
        operation: 수행하려던 작업 (put, get, delete)
    """

    http_status = 503
    default_code = "STORAGE_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        recoverable: bool = True,
    ):
        super().__init__(
            message=message,
            severity=ErrorSeverity.HIGH,
            context={"key": key, "operation": operation},
            recoverable=recoverable,
        )
        self.key = key
        self.operation = operation


class InvariantViolationError(QrServiceError):
    """내부 불변식 위반 (예: 한 매물에 ACTIVE 버전이 둘 이상). 복구 불가."""

    http_status = 500
    default_code = "INVARIANT_VIOLATION"

    def __init__(self, message: str, **context):
        super().__init__(message=message, severity=ErrorSeverity.CRITICAL, context=context, recoverable=False)
