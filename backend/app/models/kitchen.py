"""Kitchen queue models - orders, order lines, kitchen tickets."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, utc_now


class OrderStatus(str, Enum):
    """Lifecycle state of an order."""

    RECEIVED = "RECEIVED"
    IN_PREPARATION = "IN_PREPARATION"
    READY = "READY"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"


class OrderPriority(str, Enum):
    """Admission priority class. HIGH = as soon as possible."""

    HIGH = "HIGH"
    NORMAL = "NORMAL"


class Order(Base, TimestampMixin):
    """An accepted customer order as seen by the kitchen queue."""

    __tablename__ = "kitchen_queue_orders"
    __table_args__ = (
        Index("ix_kq_orders_status_priority_created", "status", "priority", "created_at"),
        Index("ix_kq_orders_status_prep_start", "status", "preparation_start_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus), default=OrderStatus.RECEIVED, nullable=False
    )
    priority: Mapped[OrderPriority] = mapped_column(
        SQLEnum(OrderPriority), default=OrderPriority.HIGH, nullable=False
    )

    # Scheduling
    requested_delivery_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    estimated_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    preparation_start_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expected_finish_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    auto_promote: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Customer / service info copied onto the kitchen ticket
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    service_mode: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)  # DELIVERY, TAKEAWAY, DINE_IN
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    lines: Mapped[List["OrderLine"]] = relationship(
        "OrderLine", back_populates="order", cascade="all, delete-orphan", order_by="OrderLine.id"
    )
    ticket: Mapped[Optional["KitchenTicket"]] = relationship(
        "KitchenTicket", back_populates="order", uselist=False
    )

    @property
    def is_asap(self) -> bool:
        return self.requested_delivery_time is None

    def to_snapshot(self) -> Dict[str, Any]:
        """JSON-safe representation used in realtime events."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "status": self.status.value if self.status else None,
            "priority": self.priority.value if self.priority else None,
            "created_at": _iso(self.created_at),
            "requested_delivery_time": _iso(self.requested_delivery_time),
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "preparation_start_at": _iso(self.preparation_start_at),
            "expected_finish_at": _iso(self.expected_finish_at),
            "auto_promote": self.auto_promote,
            "customer_name": self.customer_name,
            "service_mode": self.service_mode,
        }


class OrderLine(Base):
    """A single article line of an order."""

    __tablename__ = "kitchen_queue_order_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("kitchen_queue_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    article_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    article_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    customizations: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="lines")


class KitchenTicket(Base):
    """Kitchen-facing preparation ticket. At most one per order."""

    __tablename__ = "kitchen_tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("kitchen_queue_orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    service_mode: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    requested_delivery_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(50), default="SYSTEM", nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="ticket")
    lines: Mapped[List["KitchenTicketLine"]] = relationship(
        "KitchenTicketLine", back_populates="ticket", cascade="all, delete-orphan"
    )


class KitchenTicketLine(Base):
    """An article line printed on a kitchen ticket."""

    __tablename__ = "kitchen_ticket_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("kitchen_tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    article_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    article_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    customizations: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    ticket: Mapped["KitchenTicket"] = relationship("KitchenTicket", back_populates="lines")
