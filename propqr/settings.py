from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "postgresql+psycopg://postgres@localhost:5432/propqr"

    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_bucket: str = "qr-codes"

    # URL 구성
    scan_base_url: str = "https://qr-service.daobitat.xyz"
    property_base_url: str = "https://www.daobitat.xyz"
    explorer_base_url: str = "https://basescan.org"

    # QR 리소스 라이프사이클
    qr_ttl_days: int = 365 # 생성 후 만료까지 일수
    qr_history_retention: int = 0 # 보관할 이전 버전 수 (0 = 전부 보관)
    qr_batch_limit: int = 100 # 배치 생성 최대 건수
    qr_box_size: int = 10
    qr_border: int = 4
    storage_retry_count: int = 3 # tenacity 재시도 횟수
    storage_retry_backoff: float = 0.5 # 지수 백오프 배수 (초)

    # 스캔 수집 / 집계
    rollup_retention_days: int = 90 # 일별 버킷 보관 기간
    rollup_top_k: int = 10 # 디바이스/지역 분포 상위 K
    scan_dispatcher_workers: int = 2
    scan_queue_size: int = 10000
    ingest_retry_count: int = 5
    ingest_retry_backoff: float = 0.5

    redirect_delay_seconds: int = 3

    # IP 위치 조회 ({ip} 자리표시자 필수, 빈 값이면 비활성화)
    geo_lookup_url: str = "http://ip-api.com/json/{ip}"
    geo_timeout: float = 2.0

    @field_validator("database_url")
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if not v.startswith(("postgresql", "sqlite")):
            raise ValueError("DB URL은 'postgresql' 또는 'sqlite'로 시작해야 합니다.")
        return v

    @field_validator("scan_base_url", "property_base_url", "explorer_base_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL은 'http://' 또는 'https://'로 시작해야 합니다.")
        return v.rstrip("/")

    @field_validator("geo_lookup_url")
    @classmethod
    def validate_geo_url(cls, v: str) -> str:
        if not v:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL은 'http://' 또는 'https://'로 시작해야 합니다.")
        if "{ip}" not in v:
            raise ValueError("geo_lookup_url에는 '{ip}' 자리표시자가 있어야 합니다.")
        return v

    @field_validator("qr_ttl_days", "storage_retry_count", "ingest_retry_count", "rollup_retention_days", "qr_batch_limit", "scan_dispatcher_workers", "scan_queue_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("값은 1 이상이어야 합니다.")
        return v

    @field_validator("qr_history_retention", "redirect_delay_seconds")
    @classmethod
    def validate_non_negative_int(cls, v: int) -> int:
        if v < 0:
            raise ValueError("값은 0 이상이어야 합니다.")
        return v

    @field_validator("storage_retry_backoff", "ingest_retry_backoff", "geo_timeout")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("대기 시간은 0 이상이어야 합니다.")
        return v

    @field_validator("rollup_top_k")
    @classmethod
    def validate_top_k(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError("rollup_top_k는 1에서 100 사이여야 합니다.")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)


settings = Settings()
