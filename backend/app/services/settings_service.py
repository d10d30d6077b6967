"""Runtime settings store backed by the ``system_settings`` table.

Every read goes to the database, so a value changed through the API (or by
the adaptive tuning loop) is picked up on the very next scheduler tick.
Reads never raise: a missing, unparsable or unreadable value falls back to
the process default from :mod:`app.core.config`.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.models.settings import SettingType, SystemSetting

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettingDefinition:
    """Canonical runtime setting."""

    key: str
    value_type: SettingType
    default: Callable[[Settings], Any]
    description: str
    min_value: Optional[int] = None


MAX_CONCURRENT_PREPARATIONS = "max_concurrent_preparations"
TICK_INTERVAL_SECONDS = "tick_interval_seconds"
BASE_PREPARATION_DURATION_MINUTES = "base_preparation_duration_minutes"
KITCHEN_DELAY_MINUTES = "kitchen_delay_minutes"
DYNAMIC_CAPACITY_ENABLED = "dynamic_capacity_enabled"
ADAPTIVE_CAPACITY_ENABLED = "adaptive_capacity_enabled"
SUGGESTED_MAX_CONCURRENT_PREPARATIONS = "suggested_max_concurrent_preparations"

SETTING_DEFINITIONS: Dict[str, SettingDefinition] = {
    d.key: d
    for d in (
        SettingDefinition(
            MAX_CONCURRENT_PREPARATIONS,
            SettingType.INT,
            lambda s: s.default_max_concurrent_preparations,
            "Maximum number of orders in preparation at the same time",
            min_value=1,
        ),
        SettingDefinition(
            TICK_INTERVAL_SECONDS,
            SettingType.INT,
            lambda s: s.default_tick_interval_seconds,
            "Kitchen scheduler tick interval in seconds",
            min_value=1,
        ),
        SettingDefinition(
            BASE_PREPARATION_DURATION_MINUTES,
            SettingType.INT,
            lambda s: s.default_base_preparation_duration_minutes,
            "Default preparation time in minutes",
            min_value=1,
        ),
        SettingDefinition(
            KITCHEN_DELAY_MINUTES,
            SettingType.INT,
            lambda s: 0,
            "Predicted queueing delay for a new ASAP order",
            min_value=0,
        ),
        SettingDefinition(
            DYNAMIC_CAPACITY_ENABLED,
            SettingType.BOOLEAN,
            lambda s: False,
            "Scale capacity by hour of day and weekday",
        ),
        SettingDefinition(
            ADAPTIVE_CAPACITY_ENABLED,
            SettingType.BOOLEAN,
            lambda s: False,
            "Use the capacity suggested by the adaptive adjuster",
        ),
        SettingDefinition(
            SUGGESTED_MAX_CONCURRENT_PREPARATIONS,
            SettingType.INT,
            lambda s: None,
            "Advisory capacity computed from recent kitchen performance",
            min_value=1,
        ),
    )
}


class UnknownSettingError(KeyError):
    """Raised when writing a key that is not a canonical runtime setting."""


class SystemSettingsStore:
    """Typed access to runtime settings with fail-open reads."""

    def __init__(self, db: Session, app_settings: Optional[Settings] = None):
        self.db = db
        self.app_settings = app_settings or get_settings()

    def default_for(self, key: str) -> Any:
        definition = SETTING_DEFINITIONS.get(key)
        return definition.default(self.app_settings) if definition else None

    def _raw(self, key: str) -> Optional[str]:
        row = self.db.execute(
            select(SystemSetting.value).where(SystemSetting.key == key)
        ).scalar_one_or_none()
        return row

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """Read an integer setting, falling back to the default on any failure."""
        fallback = default if default is not None else self.default_for(key)
        try:
            raw = self._raw(key)
        except SQLAlchemyError as e:
            logger.warning(f"Could not read setting '{key}', using default {fallback}: {e}")
            return fallback
        if raw is None or str(raw).strip() == "":
            return fallback
        try:
            value = int(str(raw).strip())
        except (TypeError, ValueError):
            logger.warning(f"Setting '{key}' has non-integer value {raw!r}, using default {fallback}")
            return fallback

        definition = SETTING_DEFINITIONS.get(key)
        if definition and definition.min_value is not None and value < definition.min_value:
            logger.warning(f"Setting '{key}'={value} below minimum {definition.min_value}, using default {fallback}")
            return fallback
        return value

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        fallback = default if default is not None else bool(self.default_for(key))
        try:
            raw = self._raw(key)
        except SQLAlchemyError as e:
            logger.warning(f"Could not read setting '{key}', using default {fallback}: {e}")
            return fallback
        if raw is None:
            return fallback
        return str(raw).strip().lower() in ("1", "true", "yes", "on")

    def get_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            raw = self._raw(key)
        except SQLAlchemyError as e:
            logger.warning(f"Could not read setting '{key}': {e}")
            return default
        return raw if raw is not None else default

    def set_value(self, key: str, value: Any, commit: bool = True) -> SystemSetting:
        """Create or update a canonical setting. Raises on invalid input."""
        definition = SETTING_DEFINITIONS.get(key)
        if definition is None:
            raise UnknownSettingError(key)

        stored = self._serialize(definition, value)
        row = self.db.execute(
            select(SystemSetting).where(SystemSetting.key == key)
        ).scalar_one_or_none()
        previous = row.value if row else None
        if row is None:
            row = SystemSetting(
                key=key,
                value=stored,
                value_type=definition.value_type,
                description=definition.description,
            )
            self.db.add(row)
        else:
            row.value = stored

        if commit:
            self.db.commit()
            self.db.refresh(row)
        else:
            self.db.flush()

        if previous != stored:
            logger.info(f"Setting '{key}' changed: {previous} -> {stored}")
        return row

    def all(self) -> Dict[str, Any]:
        """Effective value of every canonical setting."""
        values: Dict[str, Any] = {}
        for key, definition in SETTING_DEFINITIONS.items():
            if definition.value_type == SettingType.INT:
                values[key] = self.get_int(key)
            elif definition.value_type == SettingType.BOOLEAN:
                values[key] = self.get_bool(key)
            else:
                values[key] = self.get_str(key, definition.default(self.app_settings))
        return values

    @staticmethod
    def _serialize(definition: SettingDefinition, value: Any) -> str:
        if definition.value_type == SettingType.INT:
            if isinstance(value, bool):
                raise ValueError(f"Setting '{definition.key}' expects an integer")
            try:
                number = int(value)
            except (TypeError, ValueError):
                raise ValueError(f"Setting '{definition.key}' expects an integer, got {value!r}")
            if definition.min_value is not None and number < definition.min_value:
                raise ValueError(
                    f"Setting '{definition.key}' must be >= {definition.min_value}"
                )
            return str(number)
        if definition.value_type == SettingType.BOOLEAN:
            if isinstance(value, str):
                return "true" if value.strip().lower() in ("1", "true", "yes", "on") else "false"
            return "true" if value else "false"
        if definition.value_type == SettingType.JSON:
            return json.dumps(value)
        return str(value)
