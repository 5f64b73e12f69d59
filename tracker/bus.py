# tracker/bus.py
"""
이벤트 버스 - 프로세스 내부 발행/구독

상태 변경(처치/리셋/초기화)과 즉시 처리(틱 실행, 오래된 알림 정리)를 분리합니다.

- 동기 전달: publish()가 반환되기 전에 현재 구독자 전원이 호출됨
- 저장/재생 없음, 발행 1회당 구독자별 최대 1회 전달
- 구독자 예외는 로그만 남기고 publish() 밖으로 나가지 않음
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Type, Union


@dataclass(frozen=True)
class TickRequested:
    """해당 테넌트 즉시 틱 실행 요청"""
    tenant_id: str


@dataclass(frozen=True)
class ReconcileRequested:
    """상태가 바뀐 보스들의 오래된 채널 알림 정리 요청"""
    tenant_id: str
    entity_names: Tuple[str, ...]


@dataclass(frozen=True)
class SideFeatureRefreshRequested:
    """설정 변경 등으로 대시보드만 다시 그리는 요청"""
    tenant_id: str


Event = Union[TickRequested, ReconcileRequested, SideFeatureRefreshRequested]
EVENT_TYPES = (TickRequested, ReconcileRequested, SideFeatureRefreshRequested)

Handler = Callable[[Event], None]


class EventBus:
    """
    타입별 구독자 목록을 가진 동기 이벤트 버스

    사용:
    ```
    bus = EventBus()
    bus.subscribe(TickRequested, lambda e: runner.run_tick(e.tenant_id))
    bus.publish(TickRequested('guild-1'))
    ```
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._subscribers: Dict[Type, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type, handler: Handler):
        if event_type not in EVENT_TYPES:
            raise TypeError(f"지원하지 않는 이벤트 타입: {event_type!r}")
        with self._lock:
            self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> bool:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def publish(self, event: Event) -> int:
        """
        이벤트 발행

        Args:
            event: TickRequested / ReconcileRequested / SideFeatureRefreshRequested

        Returns:
            정상 처리한 구독자 수
        """
        if not isinstance(event, EVENT_TYPES):
            raise TypeError(f"지원하지 않는 이벤트: {event!r}")

        # 발행 시점의 구독자 목록 사본으로 전달
        with self._lock:
            handlers = list(self._subscribers.get(type(event), []))

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                self.logger.exception("이벤트 처리 실패: %s", event)
        return delivered

    def clear(self):
        with self._lock:
            self._subscribers.clear()
