"""Periodic kitchen scheduler (admission passes, late sweep, tuning)."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.alerting import alert_manager
from app.core.config import Settings, get_settings
from app.core.metrics import metrics
from app.db.base import utc_now
from app.schemas.kitchen import (
    SchedulerStatus,
    TickReport,
    WorkerHealth,
    WorkerHealthState,
)
from app.services.admission_service import AdmissionService
from app.services.notification_service import KitchenEventPublisher, kitchen_events
from app.services.settings_service import TICK_INTERVAL_SECONDS, SystemSettingsStore
from app.services.timing_service import Clock
from app.services.tuning_service import CapacityAdjuster, DelayPredictor, DurationLearner

logger = logging.getLogger(__name__)

FAILURE_ALERT_THRESHOLD = 3
HEALTH_INTERVAL_FACTOR = 2


def classify_health(status: SchedulerStatus, now: datetime) -> WorkerHealth:
    """OK, WARNING when ticks are overdue, STOPPED when the loop is not running."""
    threshold = status.interval_seconds * HEALTH_INTERVAL_FACTOR
    reference = status.last_tick_at or status.started_at
    seconds_since = int((now - reference).total_seconds()) if reference else None

    if not status.running:
        state = WorkerHealthState.STOPPED
    elif seconds_since is None or seconds_since > threshold:
        state = WorkerHealthState.WARNING
    else:
        state = WorkerHealthState.OK

    return WorkerHealth(
        status=state,
        running=status.running,
        interval_seconds=status.interval_seconds,
        tick_count=status.tick_count,
        last_tick_at=status.last_tick_at,
        seconds_since_last_tick=seconds_since,
        started_at=status.started_at,
        threshold_seconds=threshold,
        last_error=status.last_error,
    )


class KitchenScheduler:
    """Asyncio loop that drives the kitchen queue.

    Every tick runs an admission pass and the late sweep; the delay predictor
    and the learners run on every Nth tick. Ticks are synchronous, so
    ``stop()`` only ever cancels the sleep between two ticks. State is
    in-memory and starts fresh on every process start.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        publisher: Optional[KitchenEventPublisher] = None,
        app_settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.session_factory = session_factory
        self.publisher = publisher if publisher is not None else kitchen_events
        self.app_settings = app_settings or get_settings()
        self.clock = clock

        self._running = False
        self._task_handle: Optional[asyncio.Task] = None
        self._interval: Optional[int] = None
        self._started_at: Optional[datetime] = None
        self._last_tick_at: Optional[datetime] = None
        self._last_success_at: Optional[datetime] = None
        self._tick_count = 0
        self._consecutive_failures = 0
        self._last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval_seconds(self) -> int:
        return self._interval or self._configured_interval()

    def _configured_interval(self) -> int:
        default = self.app_settings.default_tick_interval_seconds
        try:
            db = self.session_factory()
            try:
                return SystemSettingsStore(db, self.app_settings).get_int(TICK_INTERVAL_SECONDS) or default
            finally:
                db.close()
        except SQLAlchemyError as e:
            logger.warning(f"Could not read scheduler interval, using {default}s: {e}")
            return default

    async def start(self, interval_seconds: Optional[int] = None):
        """Start ticking. Runs the first tick right away."""
        if self._running:
            logger.warning("Kitchen scheduler already running")
            return

        self._interval = interval_seconds or self._configured_interval()
        self._running = True
        self._started_at = self.clock()
        logger.info(f"Kitchen scheduler started (every {self._interval}s)")

        self._safe_tick()
        self._task_handle = asyncio.create_task(self._loop())

    async def _loop(self):
        while self._running:
            await asyncio.sleep(self._interval)
            if not self._running:
                break
            self._safe_tick()

    def _safe_tick(self):
        try:
            self.tick()
        except Exception as e:
            # tick() records its own step failures; this only guards the loop
            logger.error(f"Kitchen scheduler tick crashed: {e}", exc_info=True)

    def stop(self):
        if not self._running and self._task_handle is None:
            return
        self._running = False
        if self._task_handle and not self._task_handle.done():
            self._task_handle.cancel()
        self._task_handle = None
        logger.info("Kitchen scheduler stopped")

    async def update_interval(self, seconds: int):
        """Change the cadence; restarts the loop when it is running."""
        if seconds < 1:
            raise ValueError("Scheduler interval must be at least 1 second")
        if self._running:
            self.stop()
            await self.start(seconds)
        else:
            self._interval = seconds
        logger.info(f"Kitchen scheduler interval set to {seconds}s")

    def tick(self) -> TickReport:
        """Run one scheduler cycle with a fresh session."""
        self._tick_count += 1
        report = TickReport(tick_number=self._tick_count)
        started = time.monotonic()

        db = self.session_factory()
        try:
            admission = AdmissionService(
                db, publisher=self.publisher, clock=self.clock, app_settings=self.app_settings
            )

            def admit():
                report.promoted = admission.run_pass().promoted_count

            def sweep():
                report.late_orders = len(admission.detect_late_orders())

            self._run_step(db, report.errors, "admission", admit)
            self._run_step(db, report.errors, "late-orders", sweep)

            if self._tick_count % self.app_settings.tuning_every_ticks == 0:
                predictor = DelayPredictor(db, clock=self.clock, app_settings=self.app_settings)
                self._run_step(db, report.errors, "delay-prediction", predictor.refresh)
                report.ran_delay_prediction = True

            if self._tick_count % self.app_settings.learning_every_ticks == 0:
                learner = DurationLearner(db, clock=self.clock, app_settings=self.app_settings)
                adjuster = CapacityAdjuster(db, clock=self.clock, app_settings=self.app_settings)
                self._run_step(db, report.errors, "duration-learning", learner.recalibrate)
                self._run_step(db, report.errors, "capacity-adjustment", adjuster.apply)
                report.ran_learning = True
        finally:
            db.close()

        self._record(report, time.monotonic() - started)
        return report

    @staticmethod
    def _run_step(db: Session, errors: List[str], name: str, step: Callable[[], object]):
        try:
            step()
        except Exception as e:
            db.rollback()
            errors.append(f"{name}: {e}")
            logger.error(f"Kitchen scheduler step '{name}' failed: {e}")

    def _record(self, report: TickReport, duration: float):
        now = self.clock()
        self._last_tick_at = now
        metrics.record_tick(duration, report.ok)

        if report.ok:
            self._last_success_at = now
            self._consecutive_failures = 0
            self._last_error = None
            if report.promoted or report.late_orders:
                logger.debug(
                    f"Tick #{report.tick_number}: {report.promoted} promoted, "
                    f"{report.late_orders} late"
                )
            return

        self._consecutive_failures += 1
        self._last_error = "; ".join(report.errors)
        if self._consecutive_failures == FAILURE_ALERT_THRESHOLD:
            alert_manager.alert(
                "critical",
                "Kitchen scheduler failing",
                f"{self._consecutive_failures} consecutive ticks failed: {self._last_error}",
                source="scheduler",
            )

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self._running,
            interval_seconds=self.interval_seconds,
            started_at=self._started_at,
            last_tick_at=self._last_tick_at,
            last_success_at=self._last_success_at,
            tick_count=self._tick_count,
            consecutive_failures=self._consecutive_failures,
            last_error=self._last_error,
        )

    def health(self) -> WorkerHealth:
        return classify_health(self.status(), self.clock())
