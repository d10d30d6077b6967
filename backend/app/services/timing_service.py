"""Preparation timing calculations.

Scheduled orders start preparation at ``delivery_time - duration`` and are
expected to finish ``duration`` minutes after they actually start. ASAP
orders (no requested delivery time) have no start gate.

All timestamps are naive UTC. The operating day is the calendar day in the
configured restaurant timezone.
"""

import logging
import math
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.db.base import utc_now
from app.models.kitchen import Order, OrderPriority
from app.services.settings_service import (
    BASE_PREPARATION_DURATION_MINUTES,
    SystemSettingsStore,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def compute_preparation_start(
    delivery_time: Optional[datetime], duration_minutes: int
) -> Optional[datetime]:
    """Latest moment a scheduled order can start and still be on time."""
    if delivery_time is None:
        return None
    return delivery_time - timedelta(minutes=duration_minutes)


def compute_expected_finish(
    start: Optional[datetime], duration_minutes: int
) -> Optional[datetime]:
    if start is None:
        return None
    return start + timedelta(minutes=duration_minutes)


def priority_for(delivery_time: Optional[datetime]) -> OrderPriority:
    """ASAP orders are HIGH, orders for a later delivery time are NORMAL."""
    return OrderPriority.HIGH if delivery_time is None else OrderPriority.NORMAL


def round_half_up(value: float) -> int:
    """Halves round away from zero for positive values (2.5 -> 3), unlike round()."""
    return int(math.floor(value + 0.5))


def minutes_late(expected_finish: datetime, now: datetime) -> int:
    """Whole minutes elapsed since the expected finish (0 if not late)."""
    seconds = (now - expected_finish).total_seconds()
    return max(0, math.floor(seconds / 60))


def resolve_timezone(tz_name: str):
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{tz_name}', using UTC for the operating day")
        return timezone.utc


def operating_day_bounds(now: datetime, tz_name: str = "UTC") -> Tuple[datetime, datetime]:
    """Naive-UTC [start, end) of the local calendar day containing ``now``."""
    tz = resolve_timezone(tz_name)
    local_now = now.replace(tzinfo=timezone.utc).astimezone(tz)
    local_start = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    local_end = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    return (
        local_start.astimezone(timezone.utc).replace(tzinfo=None),
        local_end.astimezone(timezone.utc).replace(tzinfo=None),
    )


class TimingService:
    """Derives preparation timestamps for orders."""

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

    def base_duration(self) -> int:
        return self.settings_store.get_int(BASE_PREPARATION_DURATION_MINUTES)

    def estimated_duration(self, order: Order) -> int:
        """Per-order override if present, else the system base estimate."""
        if order.estimated_duration_minutes and order.estimated_duration_minutes > 0:
            return order.estimated_duration_minutes
        return self.base_duration()

    def preparation_start_for(self, order: Order) -> Optional[datetime]:
        return compute_preparation_start(
            order.requested_delivery_time, self.estimated_duration(order)
        )

    def ready_to_start(self, order: Order, now: Optional[datetime] = None) -> bool:
        if order.requested_delivery_time is None:
            return True
        now = now or self.clock()
        return now >= self.preparation_start_for(order)

    def today_bounds(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        return operating_day_bounds(now or self.clock(), self.app_settings.timezone)
