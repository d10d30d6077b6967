"""Tests for KitchenCapacityService."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import Settings
from app.models.kitchen import OrderStatus
from app.services.capacity_service import KitchenCapacityService, dynamic_multiplier
from app.services.settings_service import SystemSettingsStore
from app.services.tuning_service import CapacityAdjuster


class TestCapacity:

    def test_default_capacity(self, db_session, clock):
        service = KitchenCapacityService(db_session, clock=clock)
        assert service.max_capacity() == 8

    def test_configured_capacity_read_fresh(self, db_session, clock, set_capacity):
        service = KitchenCapacityService(db_session, clock=clock)
        set_capacity(3)
        assert service.max_capacity() == 3
        set_capacity(5)
        assert service.max_capacity() == 5

    def test_invalid_stored_value_falls_back_to_default(self, db_session, clock):
        from app.models.settings import SettingType, SystemSetting

        db_session.add(SystemSetting(
            key="max_concurrent_preparations", value="lots", value_type=SettingType.INT
        ))
        db_session.commit()

        assert KitchenCapacityService(db_session, clock=clock).max_capacity() == 8

    def test_read_failure_falls_back_to_default(self, db_session, clock, monkeypatch):
        store = SystemSettingsStore(db_session)

        def broken(key):
            raise OperationalError("SELECT", {}, Exception("no such table"))

        monkeypatch.setattr(store, "_raw", broken)
        service = KitchenCapacityService(db_session, settings_store=store, clock=clock)
        assert service.max_capacity() == 8

    def test_load_counts_only_todays_orders_in_preparation(self, db_session, clock, make_order):
        make_order(status=OrderStatus.IN_PREPARATION)
        make_order(status=OrderStatus.IN_PREPARATION)
        make_order(status=OrderStatus.IN_PREPARATION, created_at=clock() - timedelta(days=1))
        make_order(status=OrderStatus.READY)
        make_order()

        assert KitchenCapacityService(db_session, clock=clock).current_load() == 2

    def test_available_slots_never_negative(self, db_session, clock, make_order, set_capacity):
        for _ in range(3):
            make_order(status=OrderStatus.IN_PREPARATION)
        set_capacity(2)

        service = KitchenCapacityService(db_session, clock=clock)
        assert service.available_slots() == 0
        assert service.is_full() is True

    def test_snapshot(self, db_session, clock, make_order, set_capacity):
        set_capacity(4)
        make_order(status=OrderStatus.IN_PREPARATION)

        snapshot = KitchenCapacityService(db_session, clock=clock).snapshot()

        assert snapshot.max_capacity == 4
        assert snapshot.current_load == 1
        assert snapshot.available_slots == 3
        assert snapshot.utilization_percent == 25
        assert snapshot.is_full is False

    def test_utilization_rounds_half_up(self, db_session, clock, make_order):
        make_order(status=OrderStatus.IN_PREPARATION)

        # 1 of 8 is 12.5%
        assert KitchenCapacityService(db_session, clock=clock).snapshot().utilization_percent == 13

    def test_operating_day_uses_configured_timezone(self, db_session, clock, make_order):
        clock.now = datetime(2025, 3, 14, 0, 30)  # 01:30 in Madrid
        madrid = Settings(timezone="Europe/Madrid")
        make_order(status=OrderStatus.IN_PREPARATION, created_at=datetime(2025, 3, 13, 23, 10))
        make_order(status=OrderStatus.IN_PREPARATION, created_at=datetime(2025, 3, 13, 22, 50))

        utc_load = KitchenCapacityService(db_session, clock=clock).current_load()
        madrid_load = KitchenCapacityService(db_session, clock=clock, app_settings=madrid).current_load()

        assert utc_load == 0
        assert madrid_load == 1


class TestDynamicCapacity:

    @pytest.mark.parametrize(
        "when, expected",
        [
            (datetime(2025, 3, 12, 13, 0), 1.2),   # Wednesday lunch
            (datetime(2025, 3, 12, 15, 0), 0.8),   # afternoon lull
            (datetime(2025, 3, 12, 8, 0), 0.7),    # early morning
            (datetime(2025, 3, 12, 11, 0), 1.0),
            (datetime(2025, 3, 15, 20, 0), 1.3),   # Saturday dinner
        ],
    )
    def test_multiplier(self, when, expected):
        assert dynamic_multiplier(when) == pytest.approx(expected)

    def test_applied_when_enabled(self, db_session, clock, settings_store, set_capacity):
        set_capacity(10)
        settings_store.set_value("dynamic_capacity_enabled", True)
        clock.now = datetime(2025, 3, 12, 13, 0)

        assert KitchenCapacityService(db_session, clock=clock).max_capacity() == 12

    def test_disabled_by_default(self, db_session, clock, set_capacity):
        set_capacity(10)
        clock.now = datetime(2025, 3, 12, 13, 0)
        assert KitchenCapacityService(db_session, clock=clock).max_capacity() == 10


class TestAdaptiveCapacity:

    def test_suggestion_clamped_to_deviation(self, db_session, clock, settings_store, set_capacity):
        set_capacity(8)
        settings_store.set_value("adaptive_capacity_enabled", True)
        settings_store.set_value("suggested_max_concurrent_preparations", 20)

        assert KitchenCapacityService(db_session, clock=clock).max_capacity() == 10

    def test_suggestion_ignored_when_disabled(self, db_session, clock, settings_store, set_capacity):
        set_capacity(8)
        settings_store.set_value("suggested_max_concurrent_preparations", 6)

        assert KitchenCapacityService(db_session, clock=clock).max_capacity() == 8

    def test_suggestion_used_when_enabled(self, db_session, clock, settings_store, set_capacity):
        set_capacity(8)
        settings_store.set_value("adaptive_capacity_enabled", True)
        settings_store.set_value("suggested_max_concurrent_preparations", 6)

        assert KitchenCapacityService(db_session, clock=clock).max_capacity() == 6

    def test_adjuster_increase_survives_clamp(self, db_session, clock, make_order, settings_store, set_capacity):
        """base 2 * 1.25 = 2.5 must clamp to 3, the value the adjuster stores."""
        set_capacity(2)
        for _ in range(6):
            completed = clock() - timedelta(hours=1)
            make_order(
                status=OrderStatus.DELIVERED,
                preparation_start_at=completed - timedelta(minutes=7),
                completed_at=completed,
                created_at=completed - timedelta(minutes=8),
            )

        recommendation = CapacityAdjuster(db_session, clock=clock).apply()
        settings_store.set_value("adaptive_capacity_enabled", True)

        assert recommendation.trend == "increase"
        assert recommendation.suggested_capacity == 3
        assert KitchenCapacityService(db_session, clock=clock).max_capacity() == 3

    def test_lower_bound_rounds_half_up(self, db_session, clock, settings_store, set_capacity):
        set_capacity(6)
        settings_store.set_value("adaptive_capacity_enabled", True)
        settings_store.set_value("suggested_max_concurrent_preparations", 3)

        # 6 * 0.75 = 4.5
        assert KitchenCapacityService(db_session, clock=clock).max_capacity() == 5
