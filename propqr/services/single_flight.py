import logging
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from typing import Callable, Dict, Hashable, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """
    키 단위 single-flight 그룹.

    같은 키로 진행 중인 호출이 있으면 새 호출은 그 결과(또는 예외)를 그대로 받는다.
    진행 중인 작업이 끝나면 키는 테이블에서 제거된다. 다른 키는 서로 막지 않는다.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[Hashable, Future] = {}
        self._callers: Dict[Hashable, int] = {}

    def do(self, key: Hashable, fn: Callable[[], T]) -> T:
        with self._lock:
            future = self._calls.get(key)
            if future is None:
                future = Future()
                self._calls[key] = future
                self._callers[key] = 1
                leader = True
            else:
                self._callers[key] += 1
                leader = False

        if not leader:
            logger.debug(f"[FLIGHT] Joined in-flight call for {key}")
            return future.result()

        try:
            result = fn()
        except BaseException as e:
            self._forget(key)
            future.set_exception(e)
            raise
        self._forget(key)
        future.set_result(result)
        return result

    def _forget(self, key: Hashable) -> None:
        with self._lock:
            self._calls.pop(key, None)
            self._callers.pop(key, None)

    def pending(self, key: Hashable) -> int:
        """진행 중인 호출에 붙어 있는 호출자 수 (리더 포함)"""
        with self._lock:
            return self._callers.get(key, 0)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)


class KeyedLocks:
    """
    키별 재진입 불가 락 테이블 (집계 행 단위 직렬화용).
    락을 잡고 있거나 기다리는 호출자가 없으면 키를 테이블에서 제거한다.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                self._holders[key] = 0
            self._holders[key] += 1
        try:
            with lock:
                yield
        finally:
            with self._lock:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    del self._holders[key]
                    del self._locks[key]

    def holders(self, key: Hashable) -> int:
        """락을 잡고 있거나 기다리는 호출자 수"""
        with self._lock:
            return self._holders.get(key, 0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._locks)
