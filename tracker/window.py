# tracker/window.py
"""
리스폰 윈도우 계산

상태(마지막 처치/리셋 시각)와 보스 정적 정보만으로 윈도우를 계산하는 순수 함수입니다.
DB나 현재 시각에 의존하지 않으므로 몇 번을 호출해도 결과가 같습니다.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from .models import EntityMetadata, TenantEntityState, TriggerKind, Window
from .utils import to_iso, to_utc


def window_key(entity_name: str, trigger_at: datetime) -> str:
    """
    트리거 1회를 식별하는 키

    같은 보스라도 처치 시각이 바뀌면 키가 바뀌므로 이전 알림 기록은 자동으로 무효가 됩니다.
    """
    return f"{entity_name}:{to_iso(trigger_at)}"


def select_bounds(kind: TriggerKind, meta: EntityMetadata) -> Optional[Tuple[float, float, TriggerKind]]:
    """트리거 종류에 맞는 (최소, 최대, 실제 적용 종류) 반환. 적용할 값이 없으면 None"""
    if kind == TriggerKind.RESET and meta.has_reset_bounds:
        return meta.reset_min_hours, meta.reset_max_hours, TriggerKind.RESET
    if meta.has_normal_bounds:
        return meta.normal_min_hours, meta.normal_max_hours, TriggerKind.NORMAL
    return None


def compute_window(state: Optional[TenantEntityState], meta: EntityMetadata) -> Optional[Window]:
    """
    현재 활성 윈도우 계산

    Args:
        state: 테넌트 상태 (기록이 없으면 None)
        meta: 보스 정적 정보

    Returns:
        Window 또는 None (기록 없음 / 적용할 리스폰 시간 없음)

    규칙:
        - RESET 트리거이고 리셋 시간이 있으면 리셋 시간 사용
        - 아니면 일반 리스폰 시간 사용
        - 둘 다 없으면 None
    """
    if state is None or state.last_trigger_at is None:
        return None

    bounds = select_bounds(state.trigger_kind, meta)
    if bounds is None:
        return None
    min_hours, max_hours, kind = bounds

    base = to_utc(state.last_trigger_at)
    return Window(
        start=base + timedelta(hours=float(min_hours)),
        end=base + timedelta(hours=float(max_hours)),
        trigger_at=base,
        trigger_kind=kind,
    )


def in_lead_range(window: Window, lead_minutes: int, now: datetime) -> bool:
    """now가 [시작 - lead, 시작) 구간에 있는지"""
    threshold = window.start - timedelta(minutes=lead_minutes)
    return threshold <= now < window.start


def active_windows(entries: Iterable[Tuple[EntityMetadata, Optional[TenantEntityState]]]
                   ) -> List[Tuple[EntityMetadata, TenantEntityState, Window]]:
    """기록이 있고 윈도우 계산이 되는 보스만 (보스, 상태, 윈도우)로 반환"""
    result = []
    for meta, state in entries:
        window = compute_window(state, meta)
        if window is not None:
            result.append((meta, state, window))
    return result


def upcoming_windows(entries: Iterable[Tuple[EntityMetadata, Optional[TenantEntityState]]],
                     now: datetime, hours: float) -> List[Tuple[EntityMetadata, Window]]:
    """
    대시보드 목록

    시작이 now + hours 이내이고 아직 끝나지 않은 윈도우를
    max(시작, now) 오름차순으로 정렬합니다.
    """
    horizon = now + timedelta(hours=hours)
    within = [
        (meta, window)
        for meta, _state, window in active_windows(entries)
        if window.end > now and window.start <= horizon
    ]
    within.sort(key=lambda item: (item[1].anchor(now), item[0].name))
    return within
