import logging
import threading
from typing import Callable, Dict, List, Any

logger = logging.getLogger(__name__)

SCAN_RECORDED = "scan.recorded"
QR_GENERATED = "qr.generated"
QR_GENERATION_FAILED = "qr.generation_failed"


class EventBus:
    """
    내부 컴포넌트 간 연동을 위한 경량 이벤트 버스.
    핸들러는 발행한 스레드에서 동기적으로 실행되며, 핸들러 예외는 로그만 남긴다.
    """
    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: Callable):
        """이벤트 구독 등록"""
        with self._lock:
            if event_type not in self._handlers:
                self._handlers[event_type] = []
            self._handlers[event_type].append(handler)
        logger.debug(f"[EVENT] Subscribed to {event_type}")

    def publish(self, event_type: str, data: Any) -> int:
        """이벤트 발행. 정상 처리된 핸들러 수를 반환"""
        logger.debug(f"[EVENT] Publishing {event_type}")
        with self._lock:
            handlers = list(self._handlers.get(event_type, []))

        handled = 0
        for handler in handlers:
            try:
                handler(data)
                handled += 1
            except Exception as e:
                logger.exception(f"[EVENT] Exception in handler for {event_type}: {e}")
        return handled


# 싱글톤 인스턴스
bus = EventBus()
