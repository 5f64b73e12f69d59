# tracker/database.py
"""
SQLite 데이터베이스 관리

보스 정적 정보, 테넌트별 보스 상태, 알림 발송 기록(중복 방지 장부)을 저장합니다.

기능:
- 보스 정적 정보 저장/조회
- 테넌트별 처치/리셋 상태 저장 (트리거 기록)
- 채널 핑 / 개인 DM 발송 기록 (같은 윈도우에 한 번만)
- 채널 메시지 삭제 예약 정보
- 테넌트 설정, 구독, 개인 알림 시간
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .config import DEFAULT_LOOKAHEAD_HOURS, DEFAULT_PING_MINUTES
from .errors import StorageError
from .models import DeliveryRecord, EntityMetadata, TenantConfig, TenantEntityState, TriggerKind
from .utils import to_iso


logger = logging.getLogger(__name__)

_TENANT_CONFIG_FIELDS = (
    'broadcast_channel_id',
    'ping_role_id',
    'lookahead_hours',
    'ping_minutes',
    'dashboard_message_id',
)


def normalize_name(name: str) -> str:
    """앞뒤 공백 제거 + 연속 공백 하나로"""
    return ' '.join(str(name or '').split())


class TrackerDB:
    """
    리스폰 트래커 데이터베이스

    하나의 sqlite 연결을 스케줄러 스레드와 웹 스레드가 같이 쓰므로
    모든 접근은 내부 잠금을 거칩니다. 중복 발송 방지는 잠금이 아니라
    기본 키(INSERT OR IGNORE)로 보장합니다.
    """

    def __init__(self, db_path: str = 'tracker.db'):
        """
        DB 초기화 및 테이블 생성

        Args:
            db_path: DB 파일 경로 (기본: tracker.db)
        """
        self.db_path = db_path
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self):
        """테이블 생성 (없을 경우에만)"""
        with self._transaction() as cursor:
            cursor.executescript('''
                CREATE TABLE IF NOT EXISTS entity_metadata (
                    name TEXT PRIMARY KEY,
                    location TEXT,
                    normal_min_hours REAL,
                    normal_max_hours REAL,
                    reset_min_hours REAL,
                    reset_max_hours REAL
                );

                CREATE TABLE IF NOT EXISTS tenant_entity_state (
                    tenant_id TEXT NOT NULL,
                    entity_name TEXT NOT NULL,
                    last_trigger_utc TEXT,
                    trigger_kind TEXT,
                    window_key TEXT,
                    PRIMARY KEY (tenant_id, entity_name)
                );

                CREATE TABLE IF NOT EXISTS broadcast_delivery (
                    tenant_id TEXT NOT NULL,
                    entity_name TEXT NOT NULL,
                    window_key TEXT NOT NULL,
                    delivered INTEGER NOT NULL DEFAULT 0,
                    channel_id TEXT,
                    message_id TEXT,
                    delete_after_utc TEXT,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (tenant_id, entity_name, window_key)
                );

                CREATE TABLE IF NOT EXISTS user_alert (
                    subscriber_id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    entity_name TEXT NOT NULL,
                    window_key TEXT NOT NULL,
                    delivered INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (subscriber_id, tenant_id, entity_name, window_key)
                );

                CREATE TABLE IF NOT EXISTS subscription (
                    subscriber_id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    entity_name TEXT NOT NULL,
                    PRIMARY KEY (subscriber_id, tenant_id, entity_name)
                );

                CREATE TABLE IF NOT EXISTS alert_preference (
                    subscriber_id TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    alert_minutes INTEGER NOT NULL,
                    PRIMARY KEY (subscriber_id, tenant_id)
                );

                CREATE TABLE IF NOT EXISTS tenant_config (
                    tenant_id TEXT PRIMARY KEY,
                    broadcast_channel_id TEXT,
                    ping_role_id TEXT,
                    lookahead_hours INTEGER,
                    ping_minutes INTEGER,
                    dashboard_message_id TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_entity_name_nocase
                    ON entity_metadata(name COLLATE NOCASE);
                CREATE INDEX IF NOT EXISTS idx_delivery_due
                    ON broadcast_delivery(tenant_id, delete_after_utc);
            ''')
        logger.debug("데이터베이스 초기화 완료: %s", self.db_path)

    @contextmanager
    def _transaction(self):
        """
        쓰기 트랜잭션

        블록 안의 모든 쓰기가 한 번에 커밋되거나 모두 롤백됩니다.
        sqlite 오류는 StorageError로 바꿔서 호출자에게 전파합니다.
        """
        with self._lock:
            try:
                with self.conn:
                    yield self.conn.cursor()
            except sqlite3.Error as e:
                logger.error("DB 쓰기 실패: %s", e)
                raise StorageError(str(e)) from e

    def _fetchall(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchall()

    def _fetchone(self, sql: str, params: Iterable = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchone()

    # --------------------------
    # 보스 정적 정보
    # --------------------------
    def insert_entity(self, meta: EntityMetadata) -> bool:
        """보스 추가 (이미 있으면 무시). 새로 추가되면 True"""
        with self._transaction() as cursor:
            cursor.execute('''
                INSERT OR IGNORE INTO entity_metadata
                (name, location, normal_min_hours, normal_max_hours,
                 reset_min_hours, reset_max_hours)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (meta.name, meta.location, meta.normal_min_hours, meta.normal_max_hours,
                  meta.reset_min_hours, meta.reset_max_hours))
            return cursor.rowcount > 0

    def delete_entity(self, name: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute(
                'DELETE FROM entity_metadata WHERE name = ? COLLATE NOCASE',
                (normalize_name(name),)
            )
            return cursor.rowcount > 0

    def get_entity(self, name: str) -> Optional[EntityMetadata]:
        """이름으로 보스 조회 (대소문자 무시)"""
        row = self._fetchone(
            'SELECT * FROM entity_metadata WHERE name = ? COLLATE NOCASE',
            (normalize_name(name),)
        )
        return EntityMetadata.from_row(row) if row else None

    def list_entities(self) -> List[EntityMetadata]:
        rows = self._fetchall('SELECT * FROM entity_metadata ORDER BY name')
        return [EntityMetadata.from_row(row) for row in rows]

    # --------------------------
    # 테넌트별 보스 상태
    # --------------------------
    def get_state(self, tenant_id: str, entity_name: str) -> Optional[TenantEntityState]:
        row = self._fetchone('''
            SELECT * FROM tenant_entity_state
            WHERE tenant_id = ? AND entity_name = ?
        ''', (tenant_id, entity_name))
        return TenantEntityState.from_row(row) if row else None

    def list_entity_states(self, tenant_id: str) -> List[Tuple[EntityMetadata, Optional[TenantEntityState]]]:
        """
        모든 보스와 해당 테넌트의 상태를 함께 조회

        Returns:
            (보스 정보, 상태 또는 None) 리스트. 상태는 기록된 적 있는 보스에만 존재
        """
        rows = self._fetchall('''
            SELECT b.*,
                   ? AS tenant_id,
                   s.entity_name,
                   s.last_trigger_utc,
                   s.trigger_kind,
                   s.window_key
              FROM entity_metadata b
              LEFT JOIN tenant_entity_state s
                ON s.entity_name = b.name AND s.tenant_id = ?
             ORDER BY b.name
        ''', (tenant_id, tenant_id))

        result = []
        for row in rows:
            meta = EntityMetadata.from_row(row)
            state = TenantEntityState.from_row(row) if row['entity_name'] is not None else None
            result.append((meta, state))
        return result

    def upsert_trigger(self, tenant_id: str, entity_name: str, trigger_at: datetime,
                       kind: TriggerKind, key: str):
        """처치/리셋 기록 (있으면 덮어쓰기)"""
        with self._transaction() as cursor:
            self._upsert_trigger(cursor, tenant_id, entity_name, to_iso(trigger_at), kind, key)

    @staticmethod
    def _upsert_trigger(cursor, tenant_id, entity_name, trigger_iso, kind, key):
        cursor.execute('''
            INSERT INTO tenant_entity_state
            (tenant_id, entity_name, last_trigger_utc, trigger_kind, window_key)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(tenant_id, entity_name) DO UPDATE SET
                last_trigger_utc = excluded.last_trigger_utc,
                trigger_kind     = excluded.trigger_kind,
                window_key       = excluded.window_key
        ''', (tenant_id, entity_name, trigger_iso, kind.value, key))
        return cursor.rowcount

    def upsert_triggers(self, tenant_id: str, items: List[Tuple[str, str]],
                        trigger_at: datetime, kind: TriggerKind) -> List[str]:
        """
        여러 보스를 한 트랜잭션으로 기록

        Args:
            items: (보스 이름, 윈도우 키) 리스트

        Returns:
            실제로 기록된 보스 이름 리스트
        """
        trigger_iso = to_iso(trigger_at)
        updated = []
        with self._transaction() as cursor:
            for name, key in items:
                if self._upsert_trigger(cursor, tenant_id, name, trigger_iso, kind, key) > 0:
                    updated.append(name)
        return updated

    def clear_trigger(self, tenant_id: str, entity_name: str) -> bool:
        """
        기록 초기화 (수동 리셋)

        활성 기록이 없으면 아무것도 쓰지 않고 False
        """
        with self._transaction() as cursor:
            cursor.execute('''
                UPDATE tenant_entity_state
                   SET last_trigger_utc = NULL,
                       trigger_kind     = ?,
                       window_key       = NULL
                 WHERE tenant_id = ? AND entity_name = ?
                   AND last_trigger_utc IS NOT NULL
            ''', (TriggerKind.NONE.value, tenant_id, entity_name))
            return cursor.rowcount > 0

    # --------------------------
    # 테넌트 설정
    # --------------------------
    def get_tenant_config(self, tenant_id: str) -> Optional[TenantConfig]:
        row = self._fetchone('SELECT * FROM tenant_config WHERE tenant_id = ?', (tenant_id,))
        return TenantConfig.from_row(row) if row else None

    def list_tenant_configs(self) -> List[TenantConfig]:
        rows = self._fetchall('SELECT * FROM tenant_config ORDER BY tenant_id')
        return [TenantConfig.from_row(row) for row in rows]

    def upsert_tenant_config(self, tenant_id: str, **patch) -> TenantConfig:
        """
        테넌트 설정 병합 저장

        None이 아닌 값만 덮어쓰고 나머지는 기존 값(없으면 기본값)을 유지합니다.
        """
        unknown = set(patch) - set(_TENANT_CONFIG_FIELDS)
        if unknown:
            raise ValueError(f"알 수 없는 설정 항목: {sorted(unknown)}")

        with self._transaction() as cursor:
            row = cursor.execute(
                'SELECT * FROM tenant_config WHERE tenant_id = ?', (tenant_id,)
            ).fetchone()
            existing = dict(row) if row else {}
            merged = {
                'broadcast_channel_id': existing.get('broadcast_channel_id'),
                'ping_role_id': existing.get('ping_role_id'),
                'lookahead_hours': existing.get('lookahead_hours') or DEFAULT_LOOKAHEAD_HOURS,
                'ping_minutes': existing.get('ping_minutes') or DEFAULT_PING_MINUTES,
                'dashboard_message_id': existing.get('dashboard_message_id'),
            }
            merged.update({k: v for k, v in patch.items() if v is not None})

            cursor.execute('''
                INSERT INTO tenant_config
                (tenant_id, broadcast_channel_id, ping_role_id, lookahead_hours,
                 ping_minutes, dashboard_message_id)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id) DO UPDATE SET
                    broadcast_channel_id = excluded.broadcast_channel_id,
                    ping_role_id         = excluded.ping_role_id,
                    lookahead_hours      = excluded.lookahead_hours,
                    ping_minutes         = excluded.ping_minutes,
                    dashboard_message_id = excluded.dashboard_message_id
            ''', (tenant_id, merged['broadcast_channel_id'], merged['ping_role_id'],
                  merged['lookahead_hours'], merged['ping_minutes'],
                  merged['dashboard_message_id']))

        return TenantConfig(tenant_id=tenant_id, **merged)

    def set_dashboard_message(self, tenant_id: str, message_id: Optional[str]):
        with self._transaction() as cursor:
            cursor.execute('''
                UPDATE tenant_config SET dashboard_message_id = ? WHERE tenant_id = ?
            ''', (message_id, tenant_id))

    # --------------------------
    # 구독 / 개인 알림 시간
    # --------------------------
    def add_subscription(self, subscriber_id: str, tenant_id: str, entity_name: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute('''
                INSERT OR IGNORE INTO subscription (subscriber_id, tenant_id, entity_name)
                VALUES (?, ?, ?)
            ''', (subscriber_id, tenant_id, entity_name))
            return cursor.rowcount > 0

    def remove_subscription(self, subscriber_id: str, tenant_id: str, entity_name: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute('''
                DELETE FROM subscription
                 WHERE subscriber_id = ? AND tenant_id = ? AND entity_name = ?
            ''', (subscriber_id, tenant_id, entity_name))
            return cursor.rowcount > 0

    def list_subscriptions(self, subscriber_id: str, tenant_id: str) -> List[str]:
        rows = self._fetchall('''
            SELECT entity_name FROM subscription
             WHERE subscriber_id = ? AND tenant_id = ?
             ORDER BY entity_name
        ''', (subscriber_id, tenant_id))
        return [row['entity_name'] for row in rows]

    def set_alert_minutes(self, subscriber_id: str, tenant_id: str, minutes: int):
        with self._transaction() as cursor:
            cursor.execute('''
                INSERT INTO alert_preference (subscriber_id, tenant_id, alert_minutes)
                VALUES (?, ?, ?)
                ON CONFLICT(subscriber_id, tenant_id) DO UPDATE SET
                    alert_minutes = excluded.alert_minutes
            ''', (subscriber_id, tenant_id, minutes))

    def get_alert_minutes(self, subscriber_id: str, tenant_id: str) -> Optional[int]:
        row = self._fetchone('''
            SELECT alert_minutes FROM alert_preference
             WHERE subscriber_id = ? AND tenant_id = ?
        ''', (subscriber_id, tenant_id))
        return row['alert_minutes'] if row else None

    def list_alert_subscribers(self, tenant_id: str) -> Dict[str, Tuple[int, List[str]]]:
        """
        DM 알림 대상 조회

        Returns:
            {구독자 ID: (알림 시간(분), 구독 보스 이름 리스트)}
            알림 시간이 설정되어 있고 구독이 1개 이상인 구독자만 포함
        """
        rows = self._fetchall('''
            SELECT p.subscriber_id, p.alert_minutes, s.entity_name
              FROM alert_preference p
              JOIN subscription s
                ON s.subscriber_id = p.subscriber_id AND s.tenant_id = p.tenant_id
             WHERE p.tenant_id = ?
             ORDER BY p.subscriber_id, s.entity_name
        ''', (tenant_id,))

        result: Dict[str, Tuple[int, List[str]]] = {}
        for row in rows:
            minutes, names = result.setdefault(row['subscriber_id'], (row['alert_minutes'], []))
            names.append(row['entity_name'])
        return result

    # --------------------------
    # 채널 핑 발송 기록 + 삭제 예약
    # --------------------------
    def claim_broadcast(self, tenant_id: str, entity_name: str, key: str) -> bool:
        """
        채널 핑 발송 권한 획득

        같은 (테넌트, 보스, 윈도우 키)로는 한 번만 True를 반환합니다.
        틱이 겹쳐도 기본 키 충돌로 두 번째 시도는 False.
        """
        with self._transaction() as cursor:
            cursor.execute('''
                INSERT OR IGNORE INTO broadcast_delivery
                (tenant_id, entity_name, window_key, delivered, deleted)
                VALUES (?, ?, ?, 0, 0)
            ''', (tenant_id, entity_name, key))
            return cursor.rowcount > 0

    def record_broadcast_message(self, tenant_id: str, entity_name: str, key: str,
                                 channel_id: str, message_id: str, delete_after: datetime):
        """발송한 메시지 위치와 삭제 예정 시각 저장"""
        with self._transaction() as cursor:
            cursor.execute('''
                UPDATE broadcast_delivery
                   SET delivered = 1,
                       channel_id = ?,
                       message_id = ?,
                       delete_after_utc = ?,
                       deleted = 0
                 WHERE tenant_id = ? AND entity_name = ? AND window_key = ?
            ''', (channel_id, message_id, to_iso(delete_after), tenant_id, entity_name, key))

    def get_delivery(self, tenant_id: str, entity_name: str, key: str) -> Optional[DeliveryRecord]:
        row = self._fetchone('''
            SELECT * FROM broadcast_delivery
             WHERE tenant_id = ? AND entity_name = ? AND window_key = ?
        ''', (tenant_id, entity_name, key))
        return DeliveryRecord.from_row(row) if row else None

    def list_deliveries(self, tenant_id: str) -> List[DeliveryRecord]:
        rows = self._fetchall('''
            SELECT * FROM broadcast_delivery WHERE tenant_id = ?
             ORDER BY entity_name, window_key
        ''', (tenant_id,))
        return [DeliveryRecord.from_row(row) for row in rows]

    def list_deliveries_due(self, tenant_id: str, now: datetime) -> List[DeliveryRecord]:
        """삭제 예정 시각이 지난(now 이하) 미삭제 메시지 조회"""
        rows = self._fetchall('''
            SELECT * FROM broadcast_delivery
             WHERE tenant_id = ?
               AND deleted = 0
               AND message_id IS NOT NULL
               AND channel_id IS NOT NULL
               AND delete_after_utc IS NOT NULL
               AND delete_after_utc <= ?
             ORDER BY delete_after_utc
        ''', (tenant_id, to_iso(now)))
        return [DeliveryRecord.from_row(row) for row in rows]

    def mark_delivery_deleted(self, tenant_id: str, entity_name: str, key: str):
        """삭제 완료 표시 (재시도하지 않도록)"""
        with self._transaction() as cursor:
            cursor.execute('''
                UPDATE broadcast_delivery SET deleted = 1
                 WHERE tenant_id = ? AND entity_name = ? AND window_key = ?
            ''', (tenant_id, entity_name, key))

    def mark_message_deleted(self, channel_id: str, message_id: str) -> int:
        """메시지 위치로 삭제 표시. 바뀐 행 수 반환"""
        with self._transaction() as cursor:
            cursor.execute('''
                UPDATE broadcast_delivery SET deleted = 1
                 WHERE channel_id = ? AND message_id = ? AND deleted = 0
            ''', (channel_id, message_id))
            return cursor.rowcount

    # --------------------------
    # 개인 DM 발송 기록
    # --------------------------
    def claim_user_alert(self, subscriber_id: str, tenant_id: str, entity_name: str, key: str) -> bool:
        """개인 알림 발송 권한 획득 (윈도우당 한 번)"""
        with self._transaction() as cursor:
            cursor.execute('''
                INSERT OR IGNORE INTO user_alert
                (subscriber_id, tenant_id, entity_name, window_key, delivered)
                VALUES (?, ?, ?, ?, 0)
            ''', (subscriber_id, tenant_id, entity_name, key))
            return cursor.rowcount > 0

    def mark_user_alert_delivered(self, subscriber_id: str, tenant_id: str, entity_name: str, key: str):
        with self._transaction() as cursor:
            cursor.execute('''
                UPDATE user_alert SET delivered = 1
                 WHERE subscriber_id = ? AND tenant_id = ? AND entity_name = ? AND window_key = ?
            ''', (subscriber_id, tenant_id, entity_name, key))

    def get_user_alert(self, subscriber_id: str, tenant_id: str, entity_name: str,
                       key: str) -> Optional[bool]:
        """기록이 없으면 None, 있으면 전달 성공 여부"""
        row = self._fetchone('''
            SELECT delivered FROM user_alert
             WHERE subscriber_id = ? AND tenant_id = ? AND entity_name = ? AND window_key = ?
        ''', (subscriber_id, tenant_id, entity_name, key))
        return bool(row['delivered']) if row else None

    def get_statistics(self) -> Dict:
        """
        통계 조회

        Returns:
            테넌트 수, 기록된 보스 상태 수, 발송된 핑/DM 수
        """
        def count(sql):
            return self._fetchone(sql)[0]

        return {
            'tenants': count('SELECT COUNT(*) FROM tenant_config'),
            'entities': count('SELECT COUNT(*) FROM entity_metadata'),
            'active_triggers': count(
                'SELECT COUNT(*) FROM tenant_entity_state WHERE last_trigger_utc IS NOT NULL'),
            'broadcasts_sent': count('SELECT COUNT(*) FROM broadcast_delivery WHERE delivered = 1'),
            'user_alerts_sent': count('SELECT COUNT(*) FROM user_alert WHERE delivered = 1'),
        }

    def close(self):
        """DB 연결 종료"""
        with self._lock:
            self.conn.close()
        logger.debug("데이터베이스 연결 종료")
