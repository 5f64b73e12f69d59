"""
틱 스케줄링

주기적으로(또는 이벤트 요청 시 즉시) 테넌트별 대시보드 갱신,
채널 핑, 개인 DM, 만료 메시지 정리를 실행합니다.
"""

from .scheduler import TrackerScheduler
from .jobs import TickRunner, TickReport
from .reconcile import StaleReconciler, ReconcileReport

__all__ = [
    'TrackerScheduler',
    'TickRunner',
    'TickReport',
    'StaleReconciler',
    'ReconcileReport',
]
