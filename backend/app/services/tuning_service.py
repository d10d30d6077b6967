"""
Adaptive kitchen tuning.

Three background helpers that learn from recent history:
- DurationLearner: recalibrates the base preparation time from delivered orders
- CapacityAdjuster: suggests a capacity from lateness and recent throughput
- DelayPredictor: predicts the queueing delay a new ASAP order will see

None of them raises to the caller. Missing or insufficient history falls back
to the current configuration.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.db.base import utc_now
from app.models.kitchen import Order, OrderStatus
from app.schemas.kitchen import (
    CapacityRecommendation,
    DurationRecalibration,
    LoadAnalysis,
    PerformanceEvaluation,
)
from app.services.capacity_service import KitchenCapacityService
from app.services.settings_service import (
    BASE_PREPARATION_DURATION_MINUTES,
    KITCHEN_DELAY_MINUTES,
    MAX_CONCURRENT_PREPARATIONS,
    SUGGESTED_MAX_CONCURRENT_PREPARATIONS,
    SystemSettingsStore,
)
from app.services.timing_service import Clock, operating_day_bounds, round_half_up

logger = logging.getLogger(__name__)

# Actual durations outside this window are data errors (forgotten orders etc.)
MIN_PLAUSIBLE_MINUTES = 5
MAX_PLAUSIBLE_MINUTES = 60

LEARNING_WINDOW_DAYS = 30
LEARNING_SAMPLE_LIMIT = 50
LEARNED_MIN_MINUTES = 10
LEARNED_MAX_MINUTES = 45
RECALIBRATION_THRESHOLD_MINUTES = 2

LOAD_WINDOW_HOURS = 4
LOAD_MIN_SAMPLES = 5
FAST_KITCHEN_MINUTES = 10
SLOW_KITCHEN_MINUTES = 25
LATE_SHARE_THRESHOLD = 30.0

DELAY_HISTORY_DAYS = 7
DELAY_DEFAULT_BUFFER_MINUTES = 15
DELAY_MAX_MINUTES = 60


def _actual_minutes(order: Order) -> Optional[float]:
    if order.preparation_start_at is None or order.completed_at is None:
        return None
    return (order.completed_at - order.preparation_start_at).total_seconds() / 60


def _plausible(minutes: Optional[float]) -> bool:
    return minutes is not None and MIN_PLAUSIBLE_MINUTES <= minutes <= MAX_PLAUSIBLE_MINUTES


class _TuningBase:
    def __init__(
        self,
        db: Session,
        settings_store: Optional[SystemSettingsStore] = None,
        clock: Clock = utc_now,
        app_settings: Optional[Settings] = None,
    ):
        self.db = db
        self.app_settings = app_settings or get_settings()
        self.settings_store = settings_store or SystemSettingsStore(db, self.app_settings)
        self.clock = clock

    def _delivered_since(self, since: datetime, limit: Optional[int] = None) -> List[Order]:
        stmt = (
            select(Order)
            .where(
                Order.status == OrderStatus.DELIVERED,
                Order.preparation_start_at.is_not(None),
                Order.completed_at.is_not(None),
                Order.completed_at >= since,
            )
            .order_by(Order.completed_at.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())


class DurationLearner(_TuningBase):
    """Learns the base preparation time from recently delivered orders."""

    def sample_durations(self) -> List[float]:
        since = self.clock() - timedelta(days=LEARNING_WINDOW_DAYS)
        orders = self._delivered_since(since, limit=LEARNING_SAMPLE_LIMIT)
        return [m for m in (_actual_minutes(o) for o in orders) if _plausible(m)]

    @staticmethod
    def _clamped_mean(samples: List[float]) -> int:
        learned = round_half_up(sum(samples) / len(samples))
        return max(LEARNED_MIN_MINUTES, min(LEARNED_MAX_MINUTES, learned))

    def duration_for_line_count(self, line_count: int) -> int:
        """Base estimate scaled by order size: +5% per line, at most +50%."""
        base = self.settings_store.get_int(BASE_PREPARATION_DURATION_MINUTES)
        factor = min(1.5, 1 + line_count * 0.05)
        return max(LEARNED_MIN_MINUTES, min(LEARNED_MAX_MINUTES, round_half_up(base * factor)))

    def recalibrate(self) -> DurationRecalibration:
        current = self.settings_store.get_int(BASE_PREPARATION_DURATION_MINUTES)
        try:
            samples = self.sample_durations()
            if not samples:
                logger.debug("No delivered orders to learn preparation time from")
                return DurationRecalibration(previous_minutes=current)

            learned = self._clamped_mean(samples)
            result = DurationRecalibration(
                previous_minutes=current,
                learned_minutes=learned,
                sample_size=len(samples),
            )
            if abs(learned - current) > RECALIBRATION_THRESHOLD_MINUTES:
                self.settings_store.set_value(BASE_PREPARATION_DURATION_MINUTES, learned)
                result.updated = True
                logger.info(
                    f"Base preparation time recalibrated {current} -> {learned} min "
                    f"({len(samples)} samples)"
                )
            return result
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Preparation time recalibration failed: {e}")
            return DurationRecalibration(previous_minutes=current)


class CapacityAdjuster(_TuningBase):
    """Suggests a capacity from lateness and the pace of recent deliveries."""

    def evaluate_performance(self) -> PerformanceEvaluation:
        now = self.clock()
        day_start, day_end = operating_day_bounds(now, self.app_settings.timezone)
        try:
            today = (
                Order.status == OrderStatus.IN_PREPARATION,
                Order.created_at >= day_start,
                Order.created_at < day_end,
            )
            in_preparation = self.db.execute(
                select(func.count(Order.id)).where(*today)
            ).scalar_one() or 0
            late = self.db.execute(
                select(func.count(Order.id)).where(
                    *today,
                    Order.expected_finish_at.is_not(None),
                    Order.expected_finish_at < now,
                )
            ).scalar_one() or 0
        except SQLAlchemyError as e:
            logger.error(f"Kitchen performance evaluation failed: {e}")
            return PerformanceEvaluation(
                late_orders=0, in_preparation=0, late_percent=0.0, needs_adjustment=False
            )

        late_percent = (late / in_preparation * 100) if in_preparation else 0.0
        return PerformanceEvaluation(
            late_orders=late,
            in_preparation=in_preparation,
            late_percent=round(late_percent, 1),
            needs_adjustment=late_percent > LATE_SHARE_THRESHOLD,
        )

    def analyze_recent_load(self) -> Optional[LoadAnalysis]:
        """Mean actual preparation time over the last hours; None below the sample minimum."""
        since = self.clock() - timedelta(hours=LOAD_WINDOW_HOURS)
        try:
            orders = self._delivered_since(since)
        except SQLAlchemyError as e:
            logger.error(f"Recent load analysis failed: {e}")
            return None

        samples = [m for m in (_actual_minutes(o) for o in orders) if _plausible(m)]
        if len(samples) < LOAD_MIN_SAMPLES:
            return None

        average = sum(samples) / len(samples)
        if average < FAST_KITCHEN_MINUTES:
            trend = "increase"
        elif average > SLOW_KITCHEN_MINUTES:
            trend = "decrease"
        else:
            trend = "hold"
        return LoadAnalysis(average_minutes=round(average, 1), sample_size=len(samples), trend=trend)

    @staticmethod
    def adjust(base: int, trend: str) -> int:
        if trend == "increase":
            value = min(base + 2, base * 1.25)
        elif trend == "decrease":
            value = max(base - 2, base * 0.75)
        else:
            value = base
        return max(1, round_half_up(value))

    def recommend(self) -> CapacityRecommendation:
        base = self.settings_store.get_int(MAX_CONCURRENT_PREPARATIONS)
        performance = self.evaluate_performance()
        load = self.analyze_recent_load()

        if performance.needs_adjustment:
            trend = "decrease"
            reason = f"{performance.late_percent}% of orders in preparation are late"
        elif load is not None:
            trend = load.trend
            reason = f"average preparation {load.average_minutes} min over {load.sample_size} orders"
        else:
            trend = "hold"
            reason = "not enough recent deliveries"

        return CapacityRecommendation(
            base_capacity=base,
            suggested_capacity=self.adjust(base, trend),
            trend=trend,
            reason=reason,
            late_percent=performance.late_percent,
            average_minutes=load.average_minutes if load else None,
            sample_size=load.sample_size if load else 0,
        )

    def apply(self) -> CapacityRecommendation:
        """Store the recommendation as the advisory suggested capacity."""
        recommendation = self.recommend()
        try:
            self.settings_store.set_value(
                SUGGESTED_MAX_CONCURRENT_PREPARATIONS, recommendation.suggested_capacity
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not store suggested capacity: {e}")
            return recommendation

        if recommendation.trend != "hold":
            logger.info(
                f"Suggested capacity {recommendation.base_capacity} -> "
                f"{recommendation.suggested_capacity} ({recommendation.reason})"
            )
        return recommendation


class DelayPredictor(_TuningBase):
    """Predicts how long a new ASAP order waits before preparation starts."""

    def __init__(
        self,
        db: Session,
        settings_store: Optional[SystemSettingsStore] = None,
        clock: Clock = utc_now,
        app_settings: Optional[Settings] = None,
    ):
        super().__init__(db, settings_store, clock, app_settings)
        self.capacity = KitchenCapacityService(
            db, self.settings_store, clock=clock, app_settings=self.app_settings
        )

    def _average_estimate(self, now: datetime) -> float:
        since = now - timedelta(days=DELAY_HISTORY_DAYS)
        estimates = [
            o.estimated_duration_minutes
            for o in self._delivered_since(since)
            if o.estimated_duration_minutes and _plausible(_actual_minutes(o))
        ]
        if not estimates:
            return DELAY_DEFAULT_BUFFER_MINUTES
        return sum(estimates) / len(estimates)

    def estimate_delay(self) -> int:
        try:
            if self.capacity.available_slots() > 0:
                return 0

            now = self.clock()
            day_start, day_end = operating_day_bounds(now, self.app_settings.timezone)
            next_release = self.db.execute(
                select(func.min(Order.expected_finish_at)).where(
                    Order.status == OrderStatus.IN_PREPARATION,
                    Order.created_at >= day_start,
                    Order.created_at < day_end,
                )
            ).scalar_one_or_none()

            wait = 0
            if next_release is not None:
                wait = max(0, round_half_up((next_release - now).total_seconds() / 60))

            total = wait + round_half_up(self._average_estimate(now) * 0.5)
            return max(0, min(total, DELAY_MAX_MINUTES))
        except SQLAlchemyError as e:
            logger.error(f"Kitchen delay estimation failed: {e}")
            return 0

    def estimate_for_new_order(self) -> int:
        return self.estimate_delay()

    def refresh(self) -> int:
        """Recompute the delay and publish it to the kitchen_delay_minutes setting."""
        delay = self.estimate_delay()
        try:
            self.settings_store.set_value(KITCHEN_DELAY_MINUTES, delay)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not store kitchen delay: {e}")
            return delay
        logger.debug(f"Kitchen delay updated: {delay} min")
        return delay
