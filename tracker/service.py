# tracker/service.py
"""
서비스 조립

DB, 이벤트 버스, 전송 계층, 스케줄러를 시작 시점에 한 번 만들어서 서로 연결하고,
종료 시점에 정리합니다. 모듈 전역 인스턴스는 두지 않습니다.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from .bus import EventBus, SideFeatureRefreshRequested
from .catalog import load_catalog
from .config import (
    MAX_LEAD_MINUTES, MAX_LOOKAHEAD_HOURS, MIN_LEAD_MINUTES, MIN_LOOKAHEAD_HOURS, Settings,
)
from .database import TrackerDB
from .errors import ValidationError
from .models import EntityMetadata, TenantConfig
from .notification.transport import DiscordTransport, Transport
from .scheduler import StaleReconciler, TickRunner, TrackerScheduler
from .triggers import TriggerApplier
from .utils import now_utc, to_utc
from .window import compute_window, upcoming_windows


logger = logging.getLogger(__name__)


def _check_range(label: str, value: int, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} 값은 정수여야 합니다")
    if not low <= value <= high:
        raise ValidationError(f"{label} 값은 {low}~{high} 사이여야 합니다")
    return value


class TrackerService:
    """
    트래커 서비스 (프로세스 수명 동안 하나)

    사용:
    ```
    service = TrackerService(load_settings())
    service.triggers.record_normal_trigger('guild-1', 'Drake', now_utc())
    service.scheduler.run_forever()
    service.close()
    ```
    """

    def __init__(self, settings: Settings, db: Optional[TrackerDB] = None,
                 transport: Optional[Transport] = None, bus: Optional[EventBus] = None):
        self.settings = settings
        self.db = db or TrackerDB(settings.db_path)
        self.bus = bus or EventBus()
        self.transport = transport or DiscordTransport(
            settings.discord_token,
            api_base=settings.discord_api_base,
            timeout=settings.http_timeout,
        )

        self.triggers = TriggerApplier(self.db, self.bus)
        self.runner = TickRunner(self.db, self.transport, settings.cleanup_grace_minutes)
        self.reconciler = StaleReconciler(self.db, self.transport, settings.reconcile_scan_limit)
        self.scheduler = TrackerScheduler(self.runner, self.reconciler, settings.tick_seconds)
        self.scheduler.attach(self.bus)

        if settings.catalog_path:
            load_catalog(self.db, settings.catalog_path)

    # --------------------------
    # 테넌트 / 구독자 설정
    # --------------------------
    def configure_tenant(self, tenant_id: str, broadcast_channel_id: Optional[str] = None,
                         ping_role_id: Optional[str] = None, lookahead_hours: Optional[int] = None,
                         ping_minutes: Optional[int] = None) -> TenantConfig:
        """
        테넌트 설정 변경 (주어진 값만 반영)

        Raises:
            ValidationError: 범위를 벗어난 값
        """
        if lookahead_hours is not None:
            _check_range('lookahead_hours', lookahead_hours, MIN_LOOKAHEAD_HOURS, MAX_LOOKAHEAD_HOURS)
        if ping_minutes is not None:
            _check_range('ping_minutes', ping_minutes, MIN_LEAD_MINUTES, MAX_LEAD_MINUTES)

        config = self.db.upsert_tenant_config(
            tenant_id,
            broadcast_channel_id=broadcast_channel_id,
            ping_role_id=ping_role_id,
            lookahead_hours=lookahead_hours,
            ping_minutes=ping_minutes,
        )
        self.bus.publish(SideFeatureRefreshRequested(tenant_id))
        return config

    def set_alert_minutes(self, subscriber_id: str, tenant_id: str, minutes: int):
        """개인 알림 시간 설정 (1~1440분)"""
        _check_range('minutes', minutes, MIN_LEAD_MINUTES, MAX_LEAD_MINUTES)
        self.db.set_alert_minutes(subscriber_id, tenant_id, minutes)

    def _trackable(self, name: str) -> EntityMetadata:
        meta = self.db.get_entity(name)
        if meta is None:
            raise ValidationError(f"알 수 없는 보스입니다: {name!r}")
        if not meta.has_normal_bounds:
            raise ValidationError(f"{meta.name} 은(는) 리스폰 타이머가 없는 보스입니다")
        return meta

    def subscribe(self, subscriber_id: str, tenant_id: str, entity_name: str) -> bool:
        meta = self._trackable(entity_name)
        return self.db.add_subscription(subscriber_id, tenant_id, meta.name)

    def unsubscribe(self, subscriber_id: str, tenant_id: str, entity_name: str) -> bool:
        meta = self.db.get_entity(entity_name)
        if meta is None:
            raise ValidationError(f"알 수 없는 보스입니다: {entity_name!r}")
        return self.db.remove_subscription(subscriber_id, tenant_id, meta.name)

    def subscribe_all(self, subscriber_id: str, tenant_id: str) -> List[str]:
        """리스폰 타이머가 있는 모든 보스 구독"""
        names = [meta.name for meta in self.db.list_entities() if meta.has_normal_bounds]
        for name in names:
            self.db.add_subscription(subscriber_id, tenant_id, name)
        return names

    def unsubscribe_all(self, subscriber_id: str, tenant_id: str) -> int:
        names = self.db.list_subscriptions(subscriber_id, tenant_id)
        for name in names:
            self.db.remove_subscription(subscriber_id, tenant_id, name)
        return len(names)

    def list_subscriptions(self, subscriber_id: str, tenant_id: str) -> List[str]:
        return self.db.list_subscriptions(subscriber_id, tenant_id)

    # --------------------------
    # 조회
    # --------------------------
    def upcoming(self, tenant_id: str, hours: Optional[int] = None,
                 now: Optional[datetime] = None) -> List[Dict]:
        """대시보드와 같은 기준의 다가오는 윈도우 목록"""
        now = to_utc(now) if now is not None else now_utc()
        if hours is None:
            config = self.db.get_tenant_config(tenant_id)
            hours = config.lookahead_hours if config else 3
        return [
            _window_dict(meta, window)
            for meta, window in upcoming_windows(self.db.list_entity_states(tenant_id), now, hours)
        ]

    def entity_status(self, tenant_id: str, entity_name: str) -> Optional[Dict]:
        """보스 하나의 상태. 알 수 없는 보스면 None"""
        meta = self.db.get_entity(entity_name)
        if meta is None:
            return None
        state = self.db.get_state(tenant_id, meta.name)
        window = compute_window(state, meta)
        result = {
            'name': meta.name,
            'location': meta.location,
            'trackable': meta.has_normal_bounds,
            'reset_eligible': meta.has_reset_bounds,
            'last_trigger_at': state.last_trigger_at.isoformat() if state and state.last_trigger_at else None,
            'trigger_kind': state.trigger_kind.value if state else 'none',
            'window': None,
        }
        if window is not None:
            result['window'] = _window_dict(meta, window)
        return result

    def close(self):
        """스케줄러, 전송 계층, DB 순서로 정리"""
        self.scheduler.shutdown()
        self.bus.clear()
        close = getattr(self.transport, 'close', None)
        if close is not None:
            close()
        self.db.close()


def _window_dict(meta: EntityMetadata, window) -> Dict:
    return {
        'name': meta.name,
        'start': window.start.isoformat(),
        'end': window.end.isoformat(),
        'single': window.is_single,
        'trigger_kind': window.trigger_kind.value,
    }
