import atexit
import threading
import time

import pytest

from tracker.bus import ReconcileRequested, SideFeatureRefreshRequested, TickRequested
from tracker.scheduler import TickReport, TickRunner, TrackerScheduler
from tracker.scheduler.scheduler import PERIODIC_JOB_ID

from conftest import CHANNEL, TENANT


class RecordingRunner:
    """run_tick / refresh_dashboard 호출만 기록"""

    def __init__(self, db):
        self.db = db
        self.ticks = []
        self.dashboards = []
        self.ticked = threading.Event()

    def run_tick(self, tenant_id=None, now=None):
        self.ticks.append(tenant_id)
        self.ticked.set()
        return TickReport()

    def refresh_dashboard(self, config, now=None):
        self.dashboards.append(config.tenant_id)
        return True


class RecordingReconciler:

    def __init__(self):
        self.calls = []

    def reconcile(self, tenant_id, entity_names):
        self.calls.append((tenant_id, tuple(entity_names)))


@pytest.fixture
def scheduler(db):
    sched = TrackerScheduler(RecordingRunner(db), RecordingReconciler(), tick_seconds=3600)
    yield sched
    sched.shutdown()


def test_requests_run_inline_before_start(scheduler, tenant):
    scheduler.request_tick(TENANT)
    scheduler.request_dashboard(TENANT)
    scheduler.request_dashboard('unknown-guild')

    assert scheduler.runner.ticks == [TENANT]
    assert scheduler.runner.dashboards == [TENANT]


def test_attach_routes_events(scheduler, bus, tenant):
    scheduler.attach(bus)

    bus.publish(ReconcileRequested(TENANT, ('Drake',)))
    bus.publish(TickRequested(TENANT))
    bus.publish(SideFeatureRefreshRequested(TENANT))

    assert scheduler.reconciler.calls == [(TENANT, ('Drake',))]
    assert scheduler.runner.ticks == [TENANT]
    assert scheduler.runner.dashboards == [TENANT]


def test_status_before_start(scheduler):
    assert scheduler.get_status() == {
        'is_running': False,
        'tick_seconds': 3600,
        'job_count': 0,
        'jobs': [],
    }


def test_start_runs_first_tick_and_registers_job(scheduler):
    scheduler.start()
    assert scheduler.runner.ticked.wait(5)
    assert scheduler.runner.ticks[0] is None

    status = scheduler.get_status()
    assert status['is_running'] is True
    assert PERIODIC_JOB_ID in [job['id'] for job in status['jobs']]

    scheduler.shutdown()
    assert scheduler.get_status()['is_running'] is False


def test_request_tick_while_running_uses_job(scheduler):
    scheduler.start()
    assert scheduler.runner.ticked.wait(5)
    scheduler.runner.ticked.clear()

    scheduler.request_tick(TENANT)
    assert scheduler.runner.ticked.wait(5)
    assert TENANT in scheduler.runner.ticks


def test_run_once_with_real_runner(db, transport, tenant):
    sched = TrackerScheduler(TickRunner(db, transport), RecordingReconciler())
    report = sched.run_once(TENANT)
    assert report.tenants == 1
    assert len(transport.sent_to(CHANNEL)) == 1


class BlockingRunner(RecordingRunner):
    """첫 틱을 release 될 때까지 붙잡고 동시 실행 수를 기록"""

    def __init__(self, db):
        super().__init__(db)
        self.started = threading.Event()
        self.release = threading.Event()
        self.done = threading.Semaphore(0)
        self.lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def run_tick(self, tenant_id=None, now=None):
        with self.lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        self.release.wait(5)
        with self.lock:
            self.active -= 1
        self.ticks.append(tenant_id)
        self.done.release()
        return TickReport()


def test_requested_tick_waits_for_periodic_tick(db, tenant):
    runner = BlockingRunner(db)
    sched = TrackerScheduler(runner, RecordingReconciler(), tick_seconds=3600)
    try:
        sched.start()
        assert runner.started.wait(5)

        # 주기 틱이 끝나기 전에 즉시 틱 요청
        sched.request_tick(TENANT)
        # 기본 허용 지연(1초)보다 오래 기다려도 즉시 틱이 버려지지 않음
        time.sleep(1.2)
        runner.release.set()

        assert runner.done.acquire(timeout=5)
        assert runner.done.acquire(timeout=5)
        assert runner.ticks == [None, TENANT]
        assert runner.max_active == 1
    finally:
        runner.release.set()
        sched.shutdown()


def test_shutdown_unregisters_exit_hook(db, monkeypatch):
    hooks = []
    monkeypatch.setattr(atexit, 'register', hooks.append)
    monkeypatch.setattr(atexit, 'unregister', lambda func: hooks.remove(func) if func in hooks else None)

    schedulers = [TrackerScheduler(RecordingRunner(db), RecordingReconciler()) for _ in range(3)]
    assert len(hooks) == 3

    schedulers[0].start()
    schedulers[0].shutdown()
    schedulers[1].shutdown()
    assert hooks == [schedulers[2].shutdown]

    # 두 번 종료해도 문제 없음
    schedulers[0].shutdown()
    schedulers[2].shutdown()
    assert hooks == []
