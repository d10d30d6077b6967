"""Runtime system settings (key-value store)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLEnum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, utc_now


class SettingType(str, Enum):
    INT = "INT"
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    JSON = "JSON"


class SystemSetting(Base):
    """A single runtime-mutable configuration value."""

    __tablename__ = "system_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    value_type: Mapped[SettingType] = mapped_column(
        SQLEnum(SettingType), default=SettingType.STRING, nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )
