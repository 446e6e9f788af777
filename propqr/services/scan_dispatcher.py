from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from propqr.models import ScanIngestFailure
from propqr.services.exceptions import NotFoundError, ValidationError
from propqr.services.scan_ingest_service import ScanIngestService, ScanSignal

logger = logging.getLogger(__name__)

# 재시도해도 결과가 바뀌지 않는 오류
NON_RETRYABLE = (NotFoundError, ValidationError)

_STOP = object()


@dataclass(frozen=True)
class ScanJob:
    subject_id: str
    signal: ScanSignal


class ScanDispatcher:
    """
    리다이렉트 응답과 분리된 스캔 수집 경로.

    submit() 은 큐에 넣고 바로 반환한다. 데몬 워커 스레드가 큐를 비우며
    ingest 를 tenacity 재시도 정책으로 실행하고, 재시도를 모두 소진하면
    scan_ingest_failures 에 기록한다.
    """

    def __init__(
        self,
        ingestor: ScanIngestService,
        session_factory: Callable[[], Session],
        *,
        workers: int = 2,
        queue_size: int = 10000,
        retry_count: int = 5,
        retry_backoff: float = 0.5,
    ):
        self.ingestor = ingestor
        self.session_factory = session_factory
        self.workers = workers
        self.retry_count = retry_count
        self.retry_backoff = retry_backoff

        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._threads: List[threading.Thread] = []
        self._started = False
        self._start_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats: Dict[str, int] = {"submitted": 0, "ingested": 0, "failed": 0, "dropped": 0}
        # 큐에 들어갔지만 아직 처리가 끝나지 않은 작업 수
        self._outstanding = 0
        self._idle = threading.Condition()

    def start(self) -> None:
        with self._start_lock:
            if self._started:
                return
            for i in range(self.workers):
                t = threading.Thread(target=self._worker, name=f"scan-dispatcher-{i}", daemon=True)
                t.start()
                self._threads.append(t)
            self._started = True
        logger.info(f"[SCAN] Dispatcher started with {self.workers} workers")

    def submit(self, subject_id: str, signal: Optional[ScanSignal] = None) -> Optional[str]:
        """
        수집 작업을 큐에 넣고 event_id 를 반환. 큐가 가득 차면 실패로 기록하고 None.
        재시도 시 중복 집계를 막기 위해 event_id 를 여기서 미리 정한다.
        """
        signal = signal or ScanSignal()
        if not signal.event_id:
            signal = replace(signal, event_id=uuid.uuid4().hex)
        job = ScanJob(subject_id=subject_id, signal=signal)

        if not self._started:
            self.start()
        with self._idle:
            self._outstanding += 1
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            self._finish_job()
            logger.error(f"[SCAN] Dispatcher queue full, dropping scan for {subject_id}")
            self._bump("dropped")
            self._record_failure(job, "dispatcher queue full", attempts=0)
            return None
        self._bump("submitted")
        return signal.event_id

    def drain(self, timeout: Optional[float] = None) -> bool:
        """큐에 들어간 작업이 모두 끝날 때까지 대기. 시간 초과 시 False"""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._outstanding:
                if deadline is None:
                    self._idle.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._start_lock:
            if not self._started:
                return
            for _ in self._threads:
                self._queue.put(_STOP)
            for t in self._threads:
                t.join(timeout)
            self._threads = []
            self._started = False
        logger.info("[SCAN] Dispatcher stopped")

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            data = dict(self._stats)
        data["queued"] = self._queue.qsize()
        data["workers"] = len(self._threads)
        data["outstanding"] = self.outstanding()
        return data

    def _worker(self) -> None:
        while True:
            job = self._queue.get()
            if job is _STOP:
                return
            try:
                self._process(job)
            finally:
                self._finish_job()

    def _finish_job(self) -> None:
        with self._idle:
            self._outstanding -= 1
            if not self._outstanding:
                self._idle.notify_all()

    def outstanding(self) -> int:
        with self._idle:
            return self._outstanding

    def _process(self, job: ScanJob) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_count),
            wait=wait_exponential(multiplier=self.retry_backoff, max=30),
            retry=retry_if_not_exception_type(NON_RETRYABLE),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"[SCAN] 수집 재시도 중... {job.subject_id} ({retry_state.attempt_number}회째): {retry_state.outcome.exception()}"
            ),
        )
        try:
            retrying(self.ingestor.ingest, job.subject_id, job.signal)
        except NON_RETRYABLE as e:
            logger.warning(f"[SCAN] Scan rejected for {job.subject_id}: {e.message}")
            self._bump("failed")
            self._record_failure(job, f"{e.error_code}: {e.message}", attempts=1)
            return
        except Exception as e:
            logger.exception(f"[SCAN] Ingestion failed after {self.retry_count} attempts for {job.subject_id}: {e}")
            self._bump("failed")
            self._record_failure(job, str(e), attempts=self.retry_count)
            return
        self._bump("ingested")

    def _record_failure(self, job: ScanJob, error: str, attempts: int) -> None:
        try:
            with self.session_factory() as session:
                session.add(ScanIngestFailure(
                    subject_id=job.subject_id,
                    event_id=job.signal.event_id,
                    error=error[:2000],
                    attempts=attempts,
                    payload=job.signal.to_dict(),
                ))
                session.commit()
        except Exception as e:
            logger.error(f"[SCAN] Failed to record ingest failure for {job.subject_id}: {e}")

    def _bump(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1
