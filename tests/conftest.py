"""Pytest configuration and fixtures."""

import os

# propqr.db 가 import 시점에 엔진을 만들기 때문에 먼저 지정
os.environ.setdefault("DATABASE_URL", "sqlite://")

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session

from propqr.models import Base, Property
from propqr.services.events import EventBus
from propqr.services.exceptions import StorageFailureError
from propqr.services.geo_resolver import GeoLocation, UNKNOWN_LOCATION
from propqr.services.registry import build_services
from propqr.settings import Settings


def _patch_jsonb_to_json(base):
    """
    SQLite에서 JSONB를 JSON으로 변경하여 컴파일 오류 방지.
    테스트용으로만 사용.
    """
    from sqlalchemy.dialects.postgresql import JSONB

    for table in base.metadata.sorted_tables:
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()


class FakeClock:
    """테스트에서 시간을 직접 제어하기 위한 시계"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeStorage:
    """메모리 blob 저장소. put/get/delete 호출 기록과 실패 주입을 지원"""

    enabled = True

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.puts: list[str] = []
        self.deletes: list[str] = []
        self.put_failures: list[Exception] = []
        self.put_hook = None
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str) -> None:
        if self.put_hook is not None:
            self.put_hook(key)
        with self._lock:
            if self.put_failures:
                raise self.put_failures.pop(0)
            self.objects[key] = data
            self.content_types[key] = content_type
            self.puts.append(key)

    def get(self, key: str):
        with self._lock:
            return self.objects.get(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self.objects.pop(key, None)
            self.deletes.append(key)

    def public_url(self, key: str) -> str:
        return f"memory://{key}"

    def image_puts(self) -> list[str]:
        return [k for k in self.puts if k.startswith("images/")]


class FakeEncoder:
    def __init__(self):
        self.calls = 0

    def encode(self, payload: str) -> bytes:
        self.calls += 1
        return b"PNG:" + payload.encode("utf-8")


class StubGeoResolver:
    def __init__(self, table=None):
        self.table = table or {}

    def resolve(self, ip):
        if ip == "203.0.113.99":
            raise RuntimeError("geo service down")
        return self.table.get(ip, UNKNOWN_LOCATION)


@pytest.fixture(scope="function")
def test_engine(tmp_path):
    """
    테스트용 SQLite 파일 DB 엔진.
    디스패처 워커 스레드와 공유해야 하므로 메모리 DB 대신 파일을 사용한다.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'propqr_test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        echo=False,
    )
    _patch_jsonb_to_json(Base)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def test_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def encoder():
    return FakeEncoder()


@pytest.fixture
def geo_resolver():
    return StubGeoResolver({
        "8.8.8.8": GeoLocation(country="US", region="California"),
        "1.1.1.1": GeoLocation(country="AU", region="Queensland"),
    })


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite://",
        qr_ttl_days=30,
        storage_retry_count=3,
        storage_retry_backoff=0,
        ingest_retry_count=2,
        ingest_retry_backoff=0,
        scan_dispatcher_workers=1,
        rollup_retention_days=90,
        rollup_top_k=3,
        geo_lookup_url="",
    )


@pytest.fixture
def services(session_factory, test_settings, storage, encoder, geo_resolver, clock):
    registry = build_services(
        session_factory,
        config=test_settings,
        storage=storage,
        encoder=encoder,
        geo_resolver=geo_resolver,
        bus=EventBus(),
        clock=clock,
    )
    yield registry
    registry.shutdown()


@pytest.fixture
def properties(test_session):
    """기본 매물: p1 (체인 주소 없음), p2 (체인 주소 있음), p3"""
    rows = [
        Property(id="p1", display_name="Lakeside Villa", action="sale", price=250000),
        Property(id="p2", display_name="Harbor Loft", action="rent", price=1800, chain_ref="0xabc"),
        Property(id="p3", display_name="Garden House", action="sale", price=410000),
    ]
    test_session.add_all(rows)
    test_session.commit()
    return rows


# 테스트 마커 정의
def pytest_configure(config):
    """Pytest 마커 등록."""
    config.addinivalue_line("markers", "unit: 단위 테스트 (DB 불필요)")
    config.addinivalue_line("markers", "integration: 통합 테스트 (SQLite 파일 DB 사용)")
    config.addinivalue_line("markers", "slow: 느린 테스트 (> 1분)")
