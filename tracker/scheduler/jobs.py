# tracker/scheduler/jobs.py
"""
스케줄링 작업 (틱)

테넌트마다 아래 순서로 실행합니다.
1. 대시보드 갱신
2. 채널 핑 (윈도우당 한 번)
3. 개인 DM (구독자 x 윈도우당 한 번)
4. 만료된 채널 핑 삭제

모든 단계는 실행할 때마다 중복 방지 조건을 다시 확인하므로
중간에 실패해도 다음 틱에서 이어서 진행하면 됩니다.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from ..database import TrackerDB
from ..errors import TransportError
from ..models import TenantConfig
from ..notification.messages import render_dashboard, render_ping, render_user_alert
from ..notification.transport import MessageRef, Transport
from ..utils import now_utc, to_utc
from ..window import active_windows, in_lead_range, upcoming_windows


logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """틱 1회 결과 (테스트/상태 조회용)"""
    tenants: int = 0
    dashboards: int = 0
    pings_sent: int = 0
    pings_failed: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0
    deleted: int = 0
    errors: List[str] = field(default_factory=list)


class TickRunner:
    """
    틱 실행기

    DB와 전송 계층을 주입받아 사용합니다. 주기 실행(스케줄러)과
    즉시 실행(이벤트 버스)이 같은 run_tick()을 호출합니다.
    """

    def __init__(self, db: TrackerDB, transport: Transport, cleanup_grace_minutes: int = 15):
        self.db = db
        self.transport = transport
        self.cleanup_grace = timedelta(minutes=cleanup_grace_minutes)

    def _tenants(self, tenant_id: Optional[str]) -> List[TenantConfig]:
        if tenant_id is None:
            configs = self.db.list_tenant_configs()
        else:
            config = self.db.get_tenant_config(tenant_id)
            configs = [config] if config else []
        return [c for c in configs if c.broadcast_channel_id]

    def run_tick(self, tenant_id: Optional[str] = None, now: Optional[datetime] = None) -> TickReport:
        """
        틱 실행

        Args:
            tenant_id: 지정하면 해당 테넌트만, 없으면 채널이 설정된 전체 테넌트
            now: 기준 시각 (기본: 현재 UTC)

        Returns:
            TickReport
        """
        now = to_utc(now) if now is not None else now_utc()
        report = TickReport()

        for config in self._tenants(tenant_id):
            report.tenants += 1
            try:
                self.run_tenant(config, now, report)
            except Exception as e:
                # 한 테넌트 실패가 다른 테넌트 처리를 막지 않음
                logger.exception("테넌트 %s 틱 실패", config.tenant_id)
                report.errors.append(f"{config.tenant_id}: {e}")

        if report.pings_sent or report.alerts_sent or report.deleted or report.errors:
            logger.info(
                "틱 완료: 테넌트 %d, 핑 %d(실패 %d), DM %d(실패 %d), 삭제 %d, 오류 %d",
                report.tenants, report.pings_sent, report.pings_failed,
                report.alerts_sent, report.alerts_failed, report.deleted, len(report.errors),
            )
        return report

    def run_tenant(self, config: TenantConfig, now: datetime, report: TickReport):
        """한 테넌트의 네 단계를 순서대로 실행"""
        if self.refresh_dashboard(config, now):
            report.dashboards += 1
        self.send_broadcast_pings(config, now, report)
        self.send_user_alerts(config, now, report)
        self.cleanup_expired(config, now, report)

    # --------------------------
    # 1. 대시보드
    # --------------------------
    def refresh_dashboard(self, config: TenantConfig, now: Optional[datetime] = None) -> bool:
        """
        대시보드 메시지 갱신

        기존 메시지가 있으면 수정하고(내용이 같으면 건너뜀),
        없으면(404) 새로 보내고 위치를 저장합니다. 그 외 실패는 기존 메시지를 그대로 둡니다.

        Returns:
            대시보드가 최신 상태면 True
        """
        now = to_utc(now) if now is not None else now_utc()
        if not config.broadcast_channel_id:
            return False

        entries = upcoming_windows(self.db.list_entity_states(config.tenant_id), now, config.lookahead_hours)
        content = render_dashboard(entries, config.lookahead_hours)

        if config.dashboard_message_id:
            ref = MessageRef(config.broadcast_channel_id, config.dashboard_message_id)
            try:
                current = self.transport.fetch(ref)
                if current.content != content:
                    self.transport.edit(ref, content)
                return True
            except TransportError as e:
                if e.status != 404:
                    # 일시적인 실패면 기존 메시지를 유지하고 다음 틱에서 다시 수정
                    logger.warning("대시보드 메시지 수정 실패 (tenant=%s): %s", config.tenant_id, e)
                    return False
                logger.warning("대시보드 메시지가 없어 새로 보냅니다 (tenant=%s)", config.tenant_id)

        try:
            ref = self.transport.send(config.broadcast_channel_id, content)
        except TransportError as e:
            logger.warning("대시보드 메시지 발송 실패 (tenant=%s): %s", config.tenant_id, e)
            return False
        self.db.set_dashboard_message(config.tenant_id, ref.message_id)
        logger.info("대시보드 메시지 생성: tenant=%s message=%s", config.tenant_id, ref.message_id)
        return True

    # --------------------------
    # 2. 채널 핑
    # --------------------------
    def send_broadcast_pings(self, config: TenantConfig, now: datetime, report: Optional[TickReport] = None):
        """
        윈도우 시작 ping_minutes 분 전부터 시작 직전까지 채널 핑 1회 발송

        발송 권한(기록)을 먼저 획득한 뒤 보내므로 틱이 겹쳐도 한 번만 발송됩니다.
        발송이 실패해도 기록은 남겨서 같은 윈도우에 재시도하지 않습니다.
        """
        report = report if report is not None else TickReport()

        for meta, state, window in active_windows(self.db.list_entity_states(config.tenant_id)):
            if not in_lead_range(window, config.ping_minutes, now):
                continue
            if self.db.get_delivery(config.tenant_id, meta.name, state.window_key) is not None:
                continue
            if not self.db.claim_broadcast(config.tenant_id, meta.name, state.window_key):
                continue

            try:
                ref = self.transport.send(
                    config.broadcast_channel_id,
                    render_ping(meta, window, config.ping_role_id),
                )
            except TransportError as e:
                logger.warning("채널 핑 발송 실패 (tenant=%s boss=%s): %s", config.tenant_id, meta.name, e)
                report.pings_failed += 1
                continue

            self.db.record_broadcast_message(
                config.tenant_id, meta.name, state.window_key,
                ref.channel_id, ref.message_id, window.end + self.cleanup_grace,
            )
            report.pings_sent += 1
            logger.info("📤 채널 핑 발송: tenant=%s boss=%s", config.tenant_id, meta.name)
        return report

    # --------------------------
    # 3. 개인 DM
    # --------------------------
    def send_user_alerts(self, config: TenantConfig, now: datetime, report: Optional[TickReport] = None):
        """
        구독자별 DM 알림

        알림 시간이 설정되어 있고 구독이 있는 사용자만 대상입니다 (구독이 없으면 알림 없음).
        DM 실패도 기록을 남깁니다 (전달 보장이 아니라 시도 보장).
        """
        report = report if report is not None else TickReport()
        subscribers = self.db.list_alert_subscribers(config.tenant_id)
        if not subscribers:
            return report

        windows = {
            meta.name: (meta, state, window)
            for meta, state, window in active_windows(self.db.list_entity_states(config.tenant_id))
        }

        for subscriber_id, (minutes, names) in subscribers.items():
            for name in names:
                if name not in windows:
                    continue
                meta, state, window = windows[name]
                if not in_lead_range(window, minutes, now):
                    continue
                if self.db.get_user_alert(subscriber_id, config.tenant_id, name, state.window_key) is not None:
                    continue
                if not self.db.claim_user_alert(subscriber_id, config.tenant_id, name, state.window_key):
                    continue

                try:
                    channel_id = self.transport.direct_channel(subscriber_id)
                    self.transport.send(channel_id, render_user_alert(meta, window, config.tenant_id))
                except TransportError as e:
                    logger.warning("DM 발송 실패 (user=%s boss=%s): %s", subscriber_id, name, e)
                    report.alerts_failed += 1
                    continue

                self.db.mark_user_alert_delivered(subscriber_id, config.tenant_id, name, state.window_key)
                report.alerts_sent += 1
        return report

    # --------------------------
    # 4. 만료 정리
    # --------------------------
    def cleanup_expired(self, config: TenantConfig, now: datetime, report: Optional[TickReport] = None):
        """
        삭제 예정 시각이 지난 채널 핑 삭제

        삭제 성공 여부와 관계없이 삭제 표시를 해서 레코드당 한 번만 시도합니다.
        """
        report = report if report is not None else TickReport()

        for record in self.db.list_deliveries_due(config.tenant_id, now):
            try:
                self.transport.delete(MessageRef(record.channel_id, record.message_id))
                report.deleted += 1
            except TransportError as e:
                logger.warning("만료 메시지 삭제 실패 (tenant=%s boss=%s): %s",
                               config.tenant_id, record.entity_name, e)
            self.db.mark_delivery_deleted(config.tenant_id, record.entity_name, record.window_key)
        return report
