"""SQLAlchemy models."""

from app.models.kitchen import (
    Order,
    OrderLine,
    KitchenTicket,
    KitchenTicketLine,
    OrderStatus,
    OrderPriority,
)
from app.models.settings import SystemSetting, SettingType

__all__ = [
    "Order",
    "OrderLine",
    "KitchenTicket",
    "KitchenTicketLine",
    "OrderStatus",
    "OrderPriority",
    "SystemSetting",
    "SettingType",
]
