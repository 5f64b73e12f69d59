# tracker/triggers.py
"""
트리거 적용 (처치 기록 / 수동 초기화 / 서버 리셋 일괄 적용)

DB에 상태를 먼저 기록한 뒤 이벤트 버스로 정리 요청과 즉시 틱 요청을 발행합니다.
DB 쓰기 실패(StorageError)는 삼키지 않고 호출자에게 전파합니다.
"""

import logging
from datetime import datetime
from typing import List, Optional, Union

from .bus import EventBus, ReconcileRequested, TickRequested
from .database import TrackerDB
from .errors import ValidationError
from .models import EntityMetadata, TriggerKind
from .utils import parse_server_time, to_utc
from .window import window_key


logger = logging.getLogger(__name__)


def resolve_trigger_time(value: Union[datetime, str]) -> datetime:
    """HH:MM 형식이면 서버 시간(UTC) 기준 가장 최근 시각, 아니면 ISO 시각으로 해석"""
    if isinstance(value, str) and len(value.strip()) <= 5 and ':' in value:
        return parse_server_time(value)
    return to_utc(value)


class TriggerApplier:

    def __init__(self, db: TrackerDB, bus: Optional[EventBus] = None):
        self.db = db
        self.bus = bus

    def _require_entity(self, name: str) -> EntityMetadata:
        meta = self.db.get_entity(name)
        if meta is None:
            raise ValidationError(f"알 수 없는 보스입니다: {name!r}")
        return meta

    def _publish(self, tenant_id: str, names: List[str]):
        if self.bus is None:
            return
        if names:
            self.bus.publish(ReconcileRequested(tenant_id, tuple(names)))
        self.bus.publish(TickRequested(tenant_id))

    def record_normal_trigger(self, tenant_id: str, entity_name: str,
                              trigger_at: Union[datetime, str]) -> EntityMetadata:
        """
        처치 기록

        Args:
            tenant_id: 테넌트 ID
            entity_name: 보스 이름 (대소문자 무시)
            trigger_at: 처치 시각 (timezone-aware datetime, ISO 문자열 또는 "HH:MM")

        Returns:
            기록된 보스 정보 (정식 이름 포함)

        Raises:
            ValidationError: 알 수 없는 보스, 리스폰 시간이 없는 보스, 잘못된 시각
            StorageError: DB 쓰기 실패
        """
        meta = self._require_entity(entity_name)
        if not meta.has_normal_bounds:
            raise ValidationError(f"{meta.name} 은(는) 리스폰 타이머가 없는 보스입니다")
        ts = resolve_trigger_time(trigger_at)

        self.db.upsert_trigger(tenant_id, meta.name, ts, TriggerKind.NORMAL, window_key(meta.name, ts))
        logger.info("처치 기록: tenant=%s boss=%s at=%s", tenant_id, meta.name, ts.isoformat())

        self._publish(tenant_id, [meta.name])
        return meta

    def clear_state(self, tenant_id: str, entity_name: str) -> bool:
        """
        처치 기록 초기화

        Returns:
            초기화했으면 True, 활성 기록이 없었으면 False (아무것도 쓰지 않음)
        """
        meta = self._require_entity(entity_name)
        cleared = self.db.clear_trigger(tenant_id, meta.name)
        if not cleared:
            return False

        logger.info("처치 기록 초기화: tenant=%s boss=%s", tenant_id, meta.name)
        self._publish(tenant_id, [meta.name])
        return True

    def apply_reset_trigger_bulk(self, tenant_id: str, trigger_at: Union[datetime, str]) -> List[str]:
        """
        서버 리셋 일괄 적용

        리셋 리스폰 시간이 있는 보스 전체를 같은 시각으로 한 트랜잭션에 기록합니다.

        Returns:
            실제로 기록된 보스 이름 리스트
        """
        ts = resolve_trigger_time(trigger_at)
        eligible = [meta.name for meta in self.db.list_entities() if meta.has_reset_bounds]

        updated = self.db.upsert_triggers(
            tenant_id,
            [(name, window_key(name, ts)) for name in eligible],
            ts,
            TriggerKind.RESET,
        )
        logger.info("서버 리셋 적용: tenant=%s at=%s bosses=%d", tenant_id, ts.isoformat(), len(updated))

        self._publish(tenant_id, updated)
        return updated
