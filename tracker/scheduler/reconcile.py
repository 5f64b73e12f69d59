# tracker/scheduler/reconcile.py
"""
오래된 채널 핑 정리

처치/리셋/초기화가 들어오면 이전 윈도우 기준으로 보낸 "스폰 임박" 핑은 즉시 틀린 정보가 됩니다.
만료 정리(윈도우 종료 + 유예)까지 기다리지 않고, 상태가 바뀐 보스의 핑 중
현재 윈도우와 시작/끝이 다른 메시지를 바로 삭제합니다.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from ..database import TrackerDB
from ..errors import TransportError
from ..notification.messages import parse_ping, ping_matches
from ..notification.transport import MessageRef, Transport
from ..window import compute_window


logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    scanned: int = 0
    kept: List[MessageRef] = field(default_factory=list)
    deleted: List[MessageRef] = field(default_factory=list)
    failed: List[MessageRef] = field(default_factory=list)


class StaleReconciler:

    def __init__(self, db: TrackerDB, transport: Transport, scan_limit: int = 50):
        self.db = db
        self.transport = transport
        self.scan_limit = scan_limit

    def reconcile(self, tenant_id: str, entity_names: Iterable[str]) -> ReconcileReport:
        """
        지정한 보스들의 오래된 채널 핑 삭제

        Args:
            tenant_id: 테넌트 ID
            entity_names: 상태가 바뀐 보스 이름들

        Returns:
            ReconcileReport (유지/삭제/실패한 메시지)

        규칙:
            - 메시지의 시작/끝이 새로 계산한 윈도우와 정확히 같으면 유지
            - 다르거나 현재 윈도우가 없으면 삭제
        """
        report = ReconcileReport()
        config = self.db.get_tenant_config(tenant_id)
        if config is None or not config.broadcast_channel_id:
            return report

        names = {name.lower(): name for name in entity_names}
        if not names:
            return report

        try:
            messages = self.transport.recent_messages(config.broadcast_channel_id, self.scan_limit)
        except TransportError as e:
            logger.warning("채널 메시지 조회 실패 (tenant=%s): %s", tenant_id, e)
            return report

        # 보스별로 윈도우는 한 번만 다시 계산
        windows = {}
        for key, name in names.items():
            meta = self.db.get_entity(name)
            if meta is None:
                continue
            windows[key] = compute_window(self.db.get_state(tenant_id, meta.name), meta)

        for message in messages:
            ping = parse_ping(message.content)
            if ping is None:
                continue
            key = ping.entity_name.lower()
            if key not in names:
                continue
            report.scanned += 1

            if ping_matches(ping, windows.get(key)):
                report.kept.append(message.ref)
                continue

            try:
                self.transport.delete(message.ref)
            except TransportError as e:
                logger.warning("오래된 핑 삭제 실패 (tenant=%s boss=%s): %s", tenant_id, ping.entity_name, e)
                report.failed.append(message.ref)
                continue

            self.db.mark_message_deleted(message.ref.channel_id, message.ref.message_id)
            report.deleted.append(message.ref)
            logger.info("🧹 오래된 핑 삭제: tenant=%s boss=%s", tenant_id, ping.entity_name)

        return report
