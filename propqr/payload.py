"""
QR 코드에 인코딩되는 페이로드의 정규화(canonical) 직렬화.

키 순서가 고정된 compact JSON 이므로, 디코딩한 내용을 다시 인코딩하면
바이트 단위로 동일한 결과가 나온다.
"""
import hashlib
import json
from dataclasses import dataclass

from propqr.services.exceptions import ValidationError

PAYLOAD_TYPE = "resource-link"
PAYLOAD_KEYS = ("type", "subject_id", "scan_url")


@dataclass(frozen=True)
class ResourceLink:
    subject_id: str
    scan_url: str
    type: str = PAYLOAD_TYPE


def canonical_payload(subject_id: str, scan_url: str) -> str:
    data = {"type": PAYLOAD_TYPE, "subject_id": subject_id, "scan_url": scan_url}
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def encode_link(link: ResourceLink) -> str:
    return canonical_payload(link.subject_id, link.scan_url)


def decode_payload(raw: str | bytes) -> ResourceLink:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"페이로드 JSON 파싱 실패: {e}", field="payload", error_code="INVALID_PAYLOAD")

    if not isinstance(data, dict) or set(data) != set(PAYLOAD_KEYS):
        raise ValidationError("페이로드 키 구성이 올바르지 않습니다.", field="payload", error_code="INVALID_PAYLOAD")
    if data["type"] != PAYLOAD_TYPE:
        raise ValidationError(f"지원하지 않는 페이로드 타입: {data['type']}", field="payload", error_code="INVALID_PAYLOAD")
    if not isinstance(data["subject_id"], str) or not isinstance(data["scan_url"], str):
        raise ValidationError("subject_id/scan_url은 문자열이어야 합니다.", field="payload", error_code="INVALID_PAYLOAD")

    return ResourceLink(subject_id=data["subject_id"], scan_url=data["scan_url"])


def payload_hash(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
