import logging
from typing import Optional

import httpx
from supabase import create_client, Client

from propqr.services.exceptions import StorageFailureError
from propqr.settings import settings

logger = logging.getLogger(__name__)


def _status_of(exc: Exception) -> Optional[int]:
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _is_not_found(exc: Exception) -> bool:
    return _status_of(exc) == 404 or "not found" in str(exc).lower()


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    status = _status_of(exc)
    return status is not None and (status == 429 or status >= 500)


class StorageService:
    """
    Supabase Storage 기반 blob 저장소.

    put/get/delete 실패는 StorageFailureError 로 변환되며,
    일시적 오류(네트워크, 429, 5xx)는 recoverable=True 로 표시된다.
    재시도는 호출한 쪽(QrLifecycleService)에서 수행한다.
    """

    def __init__(self, client: Optional[Client] = None, bucket: Optional[str] = None):
        self.url = settings.supabase_url
        self.key = settings.supabase_service_role_key
        self.bucket = bucket or settings.supabase_bucket
        self.client: Optional[Client] = client

        if self.client is None:
            if not self.url or not self.key:
                logger.warning("Supabase credentials not set. Storage service disabled.")
            else:
                try:
                    self.client = create_client(self.url, self.key)
                except Exception as e:
                    logger.error(f"Failed to initialize Supabase client: {e}")
                    self.client = None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _bucket(self, key: str, operation: str):
        if not self.client:
            raise StorageFailureError("Supabase client is not initialized.", key=key, operation=operation, recoverable=False)
        return self.client.storage.from_(self.bucket)

    def put(self, key: str, data: bytes, content_type: str) -> None:
        bucket = self._bucket(key, "put")
        try:
            bucket.upload(
                path=key,
                file=data,
                file_options={"content-type": content_type, "upsert": "true"},
            )
        except Exception as e:
            logger.error(f"[STORAGE] Upload failed ({key}): {e}")
            raise StorageFailureError(f"업로드 실패: {e}", key=key, operation="put", recoverable=_is_transient(e)) from e

    def get(self, key: str) -> Optional[bytes]:
        bucket = self._bucket(key, "get")
        try:
            return bucket.download(key)
        except Exception as e:
            if _is_not_found(e):
                return None
            logger.error(f"[STORAGE] Download failed ({key}): {e}")
            raise StorageFailureError(f"다운로드 실패: {e}", key=key, operation="get", recoverable=_is_transient(e)) from e

    def delete(self, key: str) -> None:
        bucket = self._bucket(key, "delete")
        try:
            bucket.remove([key])
        except Exception as e:
            if _is_not_found(e):
                return
            logger.error(f"[STORAGE] Remove failed ({key}): {e}")
            raise StorageFailureError(f"삭제 실패: {e}", key=key, operation="delete", recoverable=_is_transient(e)) from e

    def public_url(self, key: str) -> str:
        if not self.client:
            return f"{self.url}/storage/v1/object/public/{self.bucket}/{key}"
        return self.client.storage.from_(self.bucket).get_public_url(key)
