"""Tests for the kitchen scheduler loop."""

from datetime import datetime, timedelta

import pytest

from app.core.alerting import alert_manager
from app.core.config import Settings
from app.core.metrics import metrics
from app.models.kitchen import OrderStatus
from app.schemas.kitchen import SchedulerStatus, WorkerHealthState
from app.services.admission_service import AdmissionService
from app.services.scheduler_service import KitchenScheduler, classify_health


@pytest.fixture
def scheduler(session_factory, publisher, clock):
    instance = KitchenScheduler(session_factory, publisher=publisher, clock=clock)
    yield instance
    instance.stop()


def _break_admission(monkeypatch):
    def broken(self):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(AdmissionService, "run_pass", broken)


class TestTick:

    def test_tick_promotes_and_records(self, scheduler, make_order, clock):
        make_order()
        make_order()

        report = scheduler.tick()

        assert report.ok
        assert report.promoted == 2
        status = scheduler.status()
        assert status.tick_count == 1
        assert status.last_tick_at == clock()
        assert status.last_success_at == clock()
        assert status.consecutive_failures == 0

    def test_tick_sweeps_late_orders(self, scheduler, make_order, clock):
        make_order(
            status=OrderStatus.IN_PREPARATION,
            preparation_start_at=clock() - timedelta(minutes=30),
            expected_finish_at=clock() - timedelta(minutes=10),
        )

        assert scheduler.tick().late_orders == 1

    def test_cadence(self, session_factory, publisher, clock):
        scheduler = KitchenScheduler(
            session_factory,
            publisher=publisher,
            clock=clock,
            app_settings=Settings(tuning_every_ticks=2, learning_every_ticks=3),
        )

        reports = [scheduler.tick() for _ in range(6)]

        assert [r.ran_delay_prediction for r in reports] == [False, True, False, True, False, True]
        assert [r.ran_learning for r in reports] == [False, False, True, False, False, True]

    def test_delay_prediction_writes_setting(self, session_factory, publisher, clock, make_order, settings_store):
        settings_store.set_value("max_concurrent_preparations", 1)
        make_order(
            status=OrderStatus.IN_PREPARATION,
            preparation_start_at=clock(),
            expected_finish_at=clock() + timedelta(minutes=12),
        )
        scheduler = KitchenScheduler(
            session_factory, publisher=publisher, clock=clock,
            app_settings=Settings(tuning_every_ticks=1),
        )

        scheduler.tick()

        assert settings_store.get_int("kitchen_delay_minutes") == 20

    def test_failed_step_does_not_stop_the_others(self, scheduler, make_order, clock, monkeypatch):
        _break_admission(monkeypatch)
        make_order(
            status=OrderStatus.IN_PREPARATION,
            preparation_start_at=clock() - timedelta(minutes=30),
            expected_finish_at=clock() - timedelta(minutes=10),
        )

        report = scheduler.tick()

        assert report.errors == ["admission: database is locked"]
        assert report.late_orders == 1

    def test_failure_bookkeeping_and_alert(self, scheduler, monkeypatch):
        alert_manager.clear()
        failures_before = metrics.scheduler_tick_failures
        _break_admission(monkeypatch)

        scheduler.tick()
        scheduler.tick()
        assert scheduler.status().consecutive_failures == 2
        assert alert_manager.get_recent(level="critical") == []

        scheduler.tick()
        status = scheduler.status()
        assert status.consecutive_failures == 3
        assert status.last_error == "admission: database is locked"
        assert status.last_success_at is None
        assert alert_manager.get_recent(level="critical")[0]["title"] == "Kitchen scheduler failing"
        assert metrics.scheduler_tick_failures == failures_before + 3

        scheduler.tick()
        assert len(alert_manager.get_recent(level="critical")) == 1

        monkeypatch.undo()
        scheduler.tick()
        status = scheduler.status()
        assert status.consecutive_failures == 0
        assert status.last_error is None
        assert status.last_success_at is not None


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_runs_first_tick(self, scheduler, make_order):
        make_order()

        await scheduler.start(5)

        status = scheduler.status()
        assert status.running is True
        assert status.interval_seconds == 5
        assert status.tick_count == 1
        assert status.started_at is not None
        scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_uses_configured_interval(self, scheduler, settings_store):
        settings_store.set_value("tick_interval_seconds", 45)

        await scheduler.start()

        assert scheduler.interval_seconds == 45
        scheduler.stop()

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self, scheduler):
        await scheduler.start(5)
        await scheduler.start(5)

        assert scheduler.status().tick_count == 1
        scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, scheduler):
        await scheduler.start(5)

        scheduler.stop()
        scheduler.stop()

        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_update_interval_restarts_running_loop(self, scheduler):
        await scheduler.start(5)

        await scheduler.update_interval(12)

        assert scheduler.running is True
        assert scheduler.interval_seconds == 12
        assert scheduler.status().tick_count == 2
        scheduler.stop()

    @pytest.mark.asyncio
    async def test_update_interval_when_stopped(self, scheduler):
        await scheduler.update_interval(12)

        assert scheduler.running is False
        assert scheduler.interval_seconds == 12
        assert scheduler.status().tick_count == 0

    @pytest.mark.asyncio
    async def test_update_interval_rejects_zero(self, scheduler):
        with pytest.raises(ValueError):
            await scheduler.update_interval(0)


class TestHealth:

    NOW = datetime(2025, 3, 14, 10, 0, 0)

    def _status(self, **overrides):
        fields = dict(running=True, interval_seconds=30, started_at=self.NOW - timedelta(hours=1))
        fields.update(overrides)
        return SchedulerStatus(**fields)

    def test_ok(self):
        health = classify_health(self._status(last_tick_at=self.NOW - timedelta(seconds=40)), self.NOW)
        assert health.status == WorkerHealthState.OK
        assert health.threshold_seconds == 60
        assert health.seconds_since_last_tick == 40

    def test_warning_when_ticks_overdue(self):
        health = classify_health(self._status(last_tick_at=self.NOW - timedelta(seconds=61)), self.NOW)
        assert health.status == WorkerHealthState.WARNING

    def test_stopped(self):
        health = classify_health(self._status(running=False, last_tick_at=self.NOW), self.NOW)
        assert health.status == WorkerHealthState.STOPPED

    def test_never_ticked_falls_back_to_start_time(self):
        health = classify_health(self._status(started_at=self.NOW - timedelta(seconds=10)), self.NOW)
        assert health.status == WorkerHealthState.OK
        assert health.seconds_since_last_tick == 10

    def test_scheduler_health_uses_its_clock(self, scheduler):
        assert scheduler.health().status == WorkerHealthState.STOPPED
