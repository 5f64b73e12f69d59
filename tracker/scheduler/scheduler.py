# tracker/scheduler/scheduler.py
"""
리스폰 트래커 스케줄러

APScheduler로 전체 테넌트 틱을 주기적으로 실행하고,
이벤트 버스 요청이 오면 해당 테넌트 틱을 별도 1회 작업으로 바로 실행합니다.
"""

import atexit
import logging
import time
from typing import Dict, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..bus import EventBus, ReconcileRequested, SideFeatureRefreshRequested, TickRequested
from ..utils import now_utc
from .jobs import TickRunner
from .reconcile import StaleReconciler


logger = logging.getLogger(__name__)

PERIODIC_JOB_ID = 'periodic_tick'


class TrackerScheduler:
    """
    틱 스케줄러

    기능:
    - tick_seconds 마다 전체 테넌트 틱 실행 (틱은 한 번에 하나만 실행)
    - 이벤트 버스 요청 시 테넌트 단위 즉시 틱 / 대시보드 갱신 / 오래된 핑 정리
    - 프로그램 종료 시 안전하게 정리
    """

    def __init__(self, runner: TickRunner, reconciler: StaleReconciler, tick_seconds: int = 60):
        """
        Args:
            runner: 틱 실행기
            reconciler: 오래된 핑 정리기
            tick_seconds: 주기 실행 간격 (초)
        """
        self.runner = runner
        self.reconciler = reconciler
        self.tick_seconds = tick_seconds
        # 주기 틱과 즉시 틱이 같은 테넌트를 동시에 처리하지 않도록 작업은 한 번에 하나씩
        self.scheduler = BackgroundScheduler(
            timezone='UTC',
            executors={'default': ThreadPoolExecutor(max_workers=1)},
        )
        self.is_running = False

        atexit.register(self.shutdown)

    def attach(self, bus: EventBus):
        """이벤트 버스 구독 등록"""
        bus.subscribe(TickRequested, lambda event: self.request_tick(event.tenant_id))
        bus.subscribe(SideFeatureRefreshRequested, lambda event: self.request_dashboard(event.tenant_id))
        bus.subscribe(ReconcileRequested, self._on_reconcile)

    def _on_reconcile(self, event: ReconcileRequested):
        self.reconciler.reconcile(event.tenant_id, event.entity_names)

    def start(self):
        """
        스케줄러 시작

        주기 작업을 등록하고 첫 틱은 바로 실행합니다.
        """
        self.scheduler.add_job(
            self.runner.run_tick,
            IntervalTrigger(seconds=self.tick_seconds),
            id=PERIODIC_JOB_ID,
            name=f'전체 테넌트 틱 ({self.tick_seconds}초)',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=now_utc(),
        )
        self.scheduler.start()
        self.is_running = True

        logger.info("✅ 스케줄러 시작됨 (간격 %d초)", self.tick_seconds)
        self._log_next_run_time()

    def _log_next_run_time(self):
        for job in self.scheduler.get_jobs():
            if job.next_run_time:
                logger.info("📅 다음 실행 예정: %s (%s)", job.next_run_time.isoformat(), job.name)

    def request_tick(self, tenant_id: str):
        """
        테넌트 즉시 틱

        스케줄러가 돌고 있으면 1회 작업으로 넣어서 호출한 쪽을 막지 않고,
        주기 작업도 취소하지 않습니다. 앞선 틱이 끝날 때까지 기다렸다가 실행합니다.
        아직 시작 전이면 바로 실행합니다.
        """
        if not self.is_running:
            self.runner.run_tick(tenant_id)
            return
        self.scheduler.add_job(
            self.runner.run_tick,
            kwargs={'tenant_id': tenant_id},
            id=f'tick:{tenant_id}',
            name=f'즉시 틱 ({tenant_id})',
            replace_existing=True,
            misfire_grace_time=None,
        )

    def request_dashboard(self, tenant_id: str):
        """테넌트 대시보드만 갱신"""
        if not self.is_running:
            self._refresh_dashboard(tenant_id)
            return
        self.scheduler.add_job(
            self._refresh_dashboard,
            args=[tenant_id],
            id=f'dashboard:{tenant_id}',
            name=f'대시보드 갱신 ({tenant_id})',
            replace_existing=True,
            misfire_grace_time=None,
        )

    def _refresh_dashboard(self, tenant_id: str):
        config = self.runner.db.get_tenant_config(tenant_id)
        if config is None:
            return
        self.runner.refresh_dashboard(config)

    def shutdown(self):
        """스케줄러 종료"""
        atexit.unregister(self.shutdown)
        if self.is_running:
            logger.info("🛑 스케줄러 종료 중...")
            self.scheduler.shutdown(wait=True)
            self.is_running = False
            logger.info("스케줄러 종료 완료")

    def run_forever(self):
        """
        스케줄러를 계속 실행 (데몬 모드)

        Ctrl+C로 종료할 때까지 대기합니다.
        """
        if not self.is_running:
            self.start()

        logger.info("🔄 스케줄러 실행 중... (Ctrl+C로 종료)")
        try:
            while True:
                time.sleep(1)
        except (KeyboardInterrupt, SystemExit):
            logger.info("종료 신호 감지됨")
            self.shutdown()

    def run_once(self, tenant_id: Optional[str] = None):
        """즉시 1회 실행 (테스트용)"""
        return self.runner.run_tick(tenant_id)

    def get_status(self) -> Dict:
        """
        스케줄러 상태 조회

        Returns:
            상태 정보 딕셔너리
        """
        jobs = self.scheduler.get_jobs() if self.is_running else []

        return {
            'is_running': self.is_running,
            'tick_seconds': self.tick_seconds,
            'job_count': len(jobs),
            'jobs': [
                {
                    'id': job.id,
                    'name': job.name,
                    'next_run_time': job.next_run_time.isoformat() if job.next_run_time else None
                }
                for job in jobs
            ]
        }
