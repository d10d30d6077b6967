"""
Realtime kitchen events.

The scheduling engine publishes three kinds of events:
- order.state_changed: an order moved to a new state
- capacity.updated: capacity snapshot after admissions
- orders.late: batch of orders past their expected finish

Delivery is fire-and-forget. A failing subscriber is logged and skipped and
never affects the caller.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.schemas.kitchen import CapacitySnapshot, LateOrder

logger = logging.getLogger(__name__)

Subscriber = Callable[[Dict[str, Any]], None]

ORDER_STATE_CHANGED = "order.state_changed"
CAPACITY_UPDATED = "capacity.updated"
ORDERS_LATE = "orders.late"


class KitchenEventPublisher:
    """Fans out kitchen events to registered subscribers."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        message = {
            "event": event,
            **payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception as e:
                logger.debug(f"Kitchen event subscriber failed for {event}: {e}")

    def order_state_changed(
        self,
        order_id: int,
        previous_state: str,
        new_state: str,
        order: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.publish(ORDER_STATE_CHANGED, {
            "order_id": order_id,
            "previous_state": previous_state,
            "new_state": new_state,
            "order": order,
        })
        logger.debug(f"Event {ORDER_STATE_CHANGED}: order #{order_id} {previous_state} -> {new_state}")

    def capacity_updated(self, snapshot: CapacitySnapshot) -> None:
        self.publish(CAPACITY_UPDATED, {"capacity": snapshot.model_dump()})

    def late_orders(self, orders: Iterable[LateOrder]) -> None:
        orders = list(orders)
        if not orders:
            return
        self.publish(ORDERS_LATE, {
            "orders": [
                {
                    "order_id": o.order_id,
                    "expected_finish_at": o.expected_finish_at.isoformat(),
                    "minutes_late": o.minutes_late,
                }
                for o in orders
            ],
            "count": len(orders),
        })


# Process-wide publisher; the WebSocket bridge subscribes to it at startup
kitchen_events = KitchenEventPublisher()
