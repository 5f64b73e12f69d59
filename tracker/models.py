# tracker/models.py
"""
트래커 데이터 모델

DB 행(sqlite3.Row)을 도메인 객체로 바꿔서 계산 로직이 컬럼 이름에 묶이지 않게 합니다.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .utils import from_iso


class TriggerKind(str, Enum):
    NONE = 'none'
    NORMAL = 'normal'
    RESET = 'reset'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'TriggerKind':
        if not value:
            return cls.NONE
        return cls(value)


@dataclass(frozen=True)
class EntityMetadata:
    """보스 정적 정보 (테넌트와 무관)"""
    name: str
    location: str = ''
    normal_min_hours: Optional[float] = None
    normal_max_hours: Optional[float] = None
    reset_min_hours: Optional[float] = None
    reset_max_hours: Optional[float] = None

    @property
    def has_normal_bounds(self) -> bool:
        return self.normal_min_hours is not None and self.normal_max_hours is not None

    @property
    def has_reset_bounds(self) -> bool:
        return self.reset_min_hours is not None and self.reset_max_hours is not None

    @classmethod
    def from_row(cls, row) -> 'EntityMetadata':
        return cls(
            name=row['name'],
            location=row['location'] or '',
            normal_min_hours=row['normal_min_hours'],
            normal_max_hours=row['normal_max_hours'],
            reset_min_hours=row['reset_min_hours'],
            reset_max_hours=row['reset_max_hours'],
        )


@dataclass(frozen=True)
class TenantEntityState:
    """테넌트별 보스 상태 (처치/리셋 기록)"""
    tenant_id: str
    entity_name: str
    last_trigger_at: Optional[datetime] = None
    trigger_kind: TriggerKind = TriggerKind.NONE
    window_key: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'TenantEntityState':
        return cls(
            tenant_id=row['tenant_id'],
            entity_name=row['entity_name'],
            last_trigger_at=from_iso(row['last_trigger_utc']),
            trigger_kind=TriggerKind.parse(row['trigger_kind']),
            window_key=row['window_key'],
        )


@dataclass(frozen=True)
class Window:
    """리스폰 윈도우 (저장하지 않고 매번 계산)"""
    start: datetime
    end: datetime
    trigger_at: datetime
    trigger_kind: TriggerKind

    @property
    def is_single(self) -> bool:
        """최소/최대 시간이 같으면 구간이 아니라 한 시점"""
        return self.start == self.end

    def anchor(self, now: datetime) -> datetime:
        """대시보드 정렬 기준: 이미 열린 윈도우는 현재 시각으로 취급"""
        return self.start if self.start > now else now


@dataclass(frozen=True)
class TenantConfig:
    tenant_id: str
    broadcast_channel_id: Optional[str] = None
    ping_role_id: Optional[str] = None
    lookahead_hours: int = 3
    ping_minutes: int = 30
    dashboard_message_id: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'TenantConfig':
        return cls(
            tenant_id=row['tenant_id'],
            broadcast_channel_id=row['broadcast_channel_id'],
            ping_role_id=row['ping_role_id'],
            lookahead_hours=row['lookahead_hours'],
            ping_minutes=row['ping_minutes'],
            dashboard_message_id=row['dashboard_message_id'],
        )


@dataclass(frozen=True)
class DeliveryRecord:
    tenant_id: str
    entity_name: str
    window_key: str
    delivered: bool
    channel_id: Optional[str]
    message_id: Optional[str]
    delete_after: Optional[datetime]
    deleted: bool

    @classmethod
    def from_row(cls, row) -> 'DeliveryRecord':
        return cls(
            tenant_id=row['tenant_id'],
            entity_name=row['entity_name'],
            window_key=row['window_key'],
            delivered=bool(row['delivered']),
            channel_id=row['channel_id'],
            message_id=row['message_id'],
            delete_after=from_iso(row['delete_after_utc']),
            deleted=bool(row['deleted']),
        )
