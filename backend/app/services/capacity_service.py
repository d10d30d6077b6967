"""Kitchen capacity service.

Answers how many orders may be in preparation at once and how many are in
preparation right now. Pure reads, no caching: call it inside the same
transaction as the writes that depend on it.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.db.base import utc_now
from app.models.kitchen import Order, OrderStatus
from app.schemas.kitchen import CapacitySnapshot
from app.services.settings_service import (
    ADAPTIVE_CAPACITY_ENABLED,
    DYNAMIC_CAPACITY_ENABLED,
    MAX_CONCURRENT_PREPARATIONS,
    SUGGESTED_MAX_CONCURRENT_PREPARATIONS,
    SystemSettingsStore,
)
from app.services.timing_service import (
    Clock,
    operating_day_bounds,
    resolve_timezone,
    round_half_up,
)

logger = logging.getLogger(__name__)

# Adaptive suggestions may move capacity at most this far from the base
ADAPTIVE_MAX_DEVIATION = 0.25


def dynamic_multiplier(local_time: datetime) -> float:
    """Capacity multiplier by hour of day and weekday."""
    hour = local_time.hour
    multiplier = 1.0
    if 12 <= hour < 14 or 19 <= hour < 21:
        multiplier = 1.2  # lunch / dinner rush
    elif 14 <= hour < 17:
        multiplier = 0.8
    elif hour < 10 or hour >= 22:
        multiplier = 0.7
    if local_time.weekday() >= 5:
        multiplier += 0.1
    return multiplier


class KitchenCapacityService:
    """Service for kitchen capacity checks."""

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

    def base_capacity(self) -> int:
        """Configured ceiling; the default if the setting is missing or unreadable."""
        return self.settings_store.get_int(MAX_CONCURRENT_PREPARATIONS)

    def max_capacity(self) -> int:
        base = self.base_capacity()
        capacity = base

        if self.settings_store.get_bool(ADAPTIVE_CAPACITY_ENABLED):
            suggested = self.settings_store.get_int(SUGGESTED_MAX_CONCURRENT_PREPARATIONS)
            if suggested:
                low = max(1, round_half_up(base * (1 - ADAPTIVE_MAX_DEVIATION)))
                high = round_half_up(base * (1 + ADAPTIVE_MAX_DEVIATION))
                capacity = max(low, min(suggested, high))

        if self.settings_store.get_bool(DYNAMIC_CAPACITY_ENABLED):
            local_now = self.clock().replace(tzinfo=timezone.utc).astimezone(
                resolve_timezone(self.app_settings.timezone)
            )
            scaled = round_half_up(capacity * dynamic_multiplier(local_now))
            floor = max(1, round_half_up(capacity * 0.5))
            ceiling = round_half_up(capacity * 1.5)
            capacity = max(floor, min(scaled, ceiling))

        return capacity

    def current_load(self) -> int:
        """Orders in preparation created during the current operating day.

        Orders left IN_PREPARATION from earlier days (e.g. after a crash) are
        not counted.
        """
        day_start, day_end = operating_day_bounds(self.clock(), self.app_settings.timezone)
        count = self.db.execute(
            select(func.count(Order.id)).where(
                Order.status == OrderStatus.IN_PREPARATION,
                Order.created_at >= day_start,
                Order.created_at < day_end,
            )
        ).scalar_one()
        return count or 0

    def available_slots(self) -> int:
        return max(0, self.max_capacity() - self.current_load())

    def is_full(self) -> bool:
        return self.available_slots() == 0

    def snapshot(self) -> CapacitySnapshot:
        max_capacity = self.max_capacity()
        load = self.current_load()
        available = max(0, max_capacity - load)
        return CapacitySnapshot(
            max_capacity=max_capacity,
            current_load=load,
            available_slots=available,
            utilization_percent=round_half_up(load / max_capacity * 100) if max_capacity > 0 else 0,
            is_full=available == 0,
        )
