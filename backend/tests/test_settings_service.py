"""Tests for the runtime settings store."""

import pytest

from app.core.config import Settings
from app.models.settings import SettingType, SystemSetting
from app.services.settings_service import (
    MAX_CONCURRENT_PREPARATIONS,
    SETTING_DEFINITIONS,
    SystemSettingsStore,
    UnknownSettingError,
)


class TestReads:

    def test_defaults_come_from_process_settings(self, db_session):
        store = SystemSettingsStore(
            db_session, Settings(default_max_concurrent_preparations=12)
        )
        assert store.get_int(MAX_CONCURRENT_PREPARATIONS) == 12
        assert store.get_int("tick_interval_seconds") == 30
        assert store.get_bool("dynamic_capacity_enabled") is False

    def test_value_below_minimum_falls_back(self, db_session):
        db_session.add(SystemSetting(key=MAX_CONCURRENT_PREPARATIONS, value="0", value_type=SettingType.INT))
        db_session.commit()

        assert SystemSettingsStore(db_session).get_int(MAX_CONCURRENT_PREPARATIONS) == 8

    def test_explicit_default_wins(self, db_session):
        assert SystemSettingsStore(db_session).get_int("not_a_setting", default=3) == 3

    @pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), ("off", False), ("no", False)])
    def test_bool_parsing(self, db_session, raw, expected):
        db_session.add(SystemSetting(key="dynamic_capacity_enabled", value=raw, value_type=SettingType.BOOLEAN))
        db_session.commit()

        assert SystemSettingsStore(db_session).get_bool("dynamic_capacity_enabled") is expected


class TestWrites:

    def test_set_value_creates_then_updates(self, db_session):
        store = SystemSettingsStore(db_session)

        row = store.set_value(MAX_CONCURRENT_PREPARATIONS, 5)
        assert row.value == "5"
        assert row.value_type == SettingType.INT
        assert row.description == SETTING_DEFINITIONS[MAX_CONCURRENT_PREPARATIONS].description

        store.set_value(MAX_CONCURRENT_PREPARATIONS, "6")
        assert store.get_int(MAX_CONCURRENT_PREPARATIONS) == 6
        assert db_session.query(SystemSetting).count() == 1

    def test_unknown_key_rejected(self, db_session):
        with pytest.raises(UnknownSettingError):
            SystemSettingsStore(db_session).set_value("MAX_PEDIDOS_EN_PREPARACION", 5)

    @pytest.mark.parametrize("value", [0, -3, "many", True])
    def test_invalid_int_rejected(self, db_session, value):
        with pytest.raises(ValueError):
            SystemSettingsStore(db_session).set_value(MAX_CONCURRENT_PREPARATIONS, value)

    def test_boolean_normalised(self, db_session):
        store = SystemSettingsStore(db_session)
        assert store.set_value("adaptive_capacity_enabled", "yes").value == "true"
        assert store.set_value("adaptive_capacity_enabled", False).value == "false"

    def test_all_lists_every_canonical_key(self, db_session):
        values = SystemSettingsStore(db_session).all()
        assert set(values) == set(SETTING_DEFINITIONS)
        assert values["suggested_max_concurrent_preparations"] is None
        assert values["kitchen_delay_minutes"] == 0
