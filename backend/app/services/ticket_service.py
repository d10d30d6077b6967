"""Kitchen ticket generation for promoted orders."""

import json
import logging
from typing import Any, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.kitchen import KitchenTicket, KitchenTicketLine, Order

logger = logging.getLogger(__name__)

SYSTEM_USER = "SYSTEM"


def _normalize_customizations(value: Any) -> Any:
    """Customizations may arrive as a JSON string or as a structure."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return {"text": value}
    return value


class KitchenTicketService:
    """Creates the kitchen-facing ticket for an order.

    Does not commit: the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_for_order(self, order_id: int) -> Optional[KitchenTicket]:
        return self.db.execute(
            select(KitchenTicket).where(KitchenTicket.order_id == order_id)
        ).scalar_one_or_none()

    def create_for_order(self, order: Order) -> Tuple[KitchenTicket, bool]:
        """Create the ticket for ``order``.

        Idempotent: returns ``(existing_ticket, False)`` if one already exists.
        """
        existing = self.get_for_order(order.id)
        if existing:
            return existing, False

        ticket = KitchenTicket(
            order_id=order.id,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_address=order.customer_address,
            service_mode=order.service_mode,
            requested_delivery_time=order.requested_delivery_time,
            notes=order.notes,
            created_by=SYSTEM_USER,
        )
        for line in order.lines:
            ticket.lines.append(
                KitchenTicketLine(
                    article_id=line.article_id,
                    article_name=line.article_name,
                    quantity=line.quantity,
                    customizations=_normalize_customizations(line.customizations),
                    notes=line.notes,
                )
            )
        self.db.add(ticket)
        self.db.flush()

        logger.info(f"Kitchen ticket #{ticket.id} created for order #{order.id} ({len(ticket.lines)} lines)")
        return ticket, True
