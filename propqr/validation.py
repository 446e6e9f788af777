import re

from propqr.services.exceptions import ValidationError

SUBJECT_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")
EVENT_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{8,64}")


def validate_subject_id(subject_id: str) -> str:
    if not subject_id:
        raise ValidationError("subject_id가 비어 있습니다.", field="subject_id", error_code="EMPTY_ID")
    if not SUBJECT_ID_PATTERN.fullmatch(subject_id):
        raise ValidationError(
            f"subject_id 형식이 올바르지 않습니다: {subject_id!r}",
            field="subject_id",
            error_code="INVALID_SUBJECT_ID",
        )
    return subject_id


def validate_event_id(event_id: str) -> str:
    if not EVENT_ID_PATTERN.fullmatch(event_id or ""):
        raise ValidationError(
            f"event_id 형식이 올바르지 않습니다: {event_id!r}",
            field="event_id",
            error_code="INVALID_EVENT_ID",
        )
    return event_id
