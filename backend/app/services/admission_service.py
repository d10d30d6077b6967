"""
Kitchen Admission Service
Moves RECEIVED orders into IN_PREPARATION while the kitchen has free slots.

Features:
- Strict priority: ASAP (HIGH) orders before scheduled (NORMAL) orders, FIFO within a class
- Scheduled orders wait until their preparation start time
- Row locks plus compare-and-set promotion so concurrent passes never double-promote
- Kitchen ticket generated for every promoted order
- Late-order sweep over orders in preparation
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.alerting import alert_manager
from app.core.config import Settings, get_settings
from app.core.metrics import metrics
from app.db.base import utc_now
from app.models.kitchen import Order, OrderPriority, OrderStatus
from app.schemas.kitchen import AdmissionResult, LateOrder, PromotedOrder
from app.services.capacity_service import KitchenCapacityService
from app.services.notification_service import KitchenEventPublisher, kitchen_events
from app.services.settings_service import SystemSettingsStore
from app.services.ticket_service import KitchenTicketService
from app.services.timing_service import (
    Clock,
    TimingService,
    compute_expected_finish,
    minutes_late,
)
from app.services.tuning_service import DurationLearner

logger = logging.getLogger(__name__)


class AdmissionPassError(Exception):
    """Raised when an admission pass was rolled back because of a storage error."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class AdmissionService:
    """Admission engine for the kitchen queue."""

    def __init__(
        self,
        db: Session,
        publisher: Optional[KitchenEventPublisher] = None,
        settings_store: Optional[SystemSettingsStore] = None,
        clock: Clock = utc_now,
        app_settings: Optional[Settings] = None,
    ):
        self.db = db
        self.app_settings = app_settings or get_settings()
        self.settings_store = settings_store or SystemSettingsStore(db, self.app_settings)
        self.publisher = publisher if publisher is not None else kitchen_events
        self.clock = clock
        self.capacity = KitchenCapacityService(
            db, self.settings_store, clock=clock, app_settings=self.app_settings
        )
        self.timing = TimingService(
            db, self.settings_store, clock=clock, app_settings=self.app_settings
        )
        self.tickets = KitchenTicketService(db)

    def run_pass(self) -> AdmissionResult:
        """
        Run one admission pass.

        Promotes at most ``available_slots`` orders in a single transaction.
        Returns without any write when the kitchen is full.

        Raises:
            AdmissionPassError: the pass hit a storage error and was rolled back
        """
        before = self.capacity.snapshot()
        metrics.set_capacity(before.max_capacity, before.current_load)
        slots = before.available_slots
        if slots <= 0:
            logger.debug("Kitchen at capacity, admission pass skipped")
            return AdmissionResult(
                kitchen_full=True,
                available_slots=0,
                message="Kitchen at capacity",
            )

        now = self.clock()
        promoted: List[PromotedOrder] = []
        skipped: List[int] = []
        snapshots: List[Dict[str, Any]] = []

        try:
            candidates = self._lock_candidates(slots, now)

            # Another pass may have committed while we waited for the locks
            bound = min(slots, self.capacity.available_slots())

            for order in candidates:
                if len(promoted) >= bound:
                    break

                if order.priority == OrderPriority.NORMAL and not self.timing.ready_to_start(order, now):
                    skipped.append(order.id)
                    continue

                entry = self._promote(order, now)
                if entry is None:
                    continue
                promoted.append(entry)
                snapshots.append(order.to_snapshot())

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Admission pass rolled back: {e}", exc_info=True)
            raise AdmissionPassError("Admission pass failed", e) from e

        if promoted:
            logger.info(f"{len(promoted)} order(s) moved to IN_PREPARATION")
            metrics.record_admissions(len(promoted))
            self._publish(snapshots)

        return AdmissionResult(
            promoted=promoted,
            skipped_not_due=skipped,
            kitchen_full=False,
            available_slots=slots,
            message=f"{len(promoted)} order(s) promoted",
        )

    def _lock_candidates(self, slots: int, now: datetime) -> List[Order]:
        day_start, day_end = self.timing.today_bounds(now)
        priority_rank = case((Order.priority == OrderPriority.HIGH, 1), else_=2)
        stmt = (
            select(Order)
            .where(
                Order.status == OrderStatus.RECEIVED,
                Order.auto_promote.is_(True),
                Order.created_at >= day_start,
                Order.created_at < day_end,
            )
            .order_by(priority_rank, Order.created_at.asc(), Order.id.asc())
            .limit(slots)
            .with_for_update()
        )
        return list(self.db.execute(stmt).scalars().all())

    def _promote(self, order: Order, now: datetime) -> Optional[PromotedOrder]:
        duration = self.timing.estimated_duration(order)
        expected_finish = compute_expected_finish(now, duration)

        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.RECEIVED)
            .values(
                status=OrderStatus.IN_PREPARATION,
                preparation_start_at=now,
                expected_finish_at=expected_finish,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.info(f"Order #{order.id} already taken by another pass, skipping")
            return None
        self.db.refresh(order)

        ticket_created = self._create_ticket(order)
        logger.info(
            f"Order #{order.id} ({order.priority.value}) -> IN_PREPARATION, "
            f"expected finish {expected_finish.isoformat()}"
        )
        return PromotedOrder(
            order_id=order.id,
            priority=order.priority.value,
            preparation_start_at=now,
            expected_finish_at=expected_finish,
            ticket_created=ticket_created,
        )

    def _create_ticket(self, order: Order) -> bool:
        try:
            with self.db.begin_nested():
                _, created = self.tickets.create_for_order(order)
            return created
        except Exception:
            logger.exception(f"Kitchen ticket for order #{order.id} failed, promotion kept")
            return False

    def _publish(self, snapshots: List[Dict[str, Any]]) -> None:
        for snapshot in snapshots:
            self.publisher.order_state_changed(
                snapshot["id"],
                OrderStatus.RECEIVED.value,
                OrderStatus.IN_PREPARATION.value,
                snapshot,
            )
        try:
            snapshot = self.capacity.snapshot()
        except SQLAlchemyError as e:
            logger.warning(f"Capacity snapshot after admission failed: {e}")
            return
        metrics.set_capacity(snapshot.max_capacity, snapshot.current_load)
        self.publisher.capacity_updated(snapshot)

    # ---- Late orders ----

    def find_late_orders(self) -> List[LateOrder]:
        """IN_PREPARATION orders of today past their expected finish, most overdue first."""
        now = self.clock()
        day_start, day_end = self.timing.today_bounds(now)
        rows = self.db.execute(
            select(Order)
            .where(
                Order.status == OrderStatus.IN_PREPARATION,
                Order.expected_finish_at.is_not(None),
                Order.expected_finish_at < now,
                Order.created_at >= day_start,
                Order.created_at < day_end,
            )
            .order_by(Order.expected_finish_at.asc(), Order.id.asc())
        ).scalars().all()

        return [
            LateOrder(
                order_id=order.id,
                preparation_start_at=order.preparation_start_at,
                expected_finish_at=order.expected_finish_at,
                minutes_late=minutes_late(order.expected_finish_at, now),
            )
            for order in rows
        ]

    def detect_late_orders(self) -> List[LateOrder]:
        """Run the late sweep and notify about any late orders."""
        late = self.find_late_orders()
        metrics.set_late_orders(len(late))
        if not late:
            return late

        ids = ", ".join(f"#{o.order_id}" for o in late[:10])
        logger.warning(f"{len(late)} late order(s) in preparation: {ids}")
        alert_manager.alert(
            "warning",
            "Late orders",
            f"{len(late)} order(s) past their expected finish (worst: {late[0].minutes_late} min)",
        )
        self.publisher.late_orders(late)
        return late


def on_order_accepted(
    db: Session,
    order: Order,
    publisher: Optional[KitchenEventPublisher] = None,
    clock: Clock = utc_now,
) -> Optional[AdmissionResult]:
    """
    Hook for the order intake: try to admit right away.

    Orders without an estimate get one sized by their line count. Only ASAP
    auto-promotable orders trigger a pass; scheduled orders wait for the
    periodic scheduler. Admission problems never fail the intake.
    """
    if order.estimated_duration_minutes is None:
        estimate = DurationLearner(db, clock=clock).duration_for_line_count(len(order.lines))
        order.estimated_duration_minutes = estimate
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not store duration estimate for order #{order.id}: {e}")

    if not order.auto_promote or not order.is_asap:
        return None
    try:
        return AdmissionService(db, publisher=publisher, clock=clock).run_pass()
    except AdmissionPassError as e:
        logger.error(f"Immediate admission for order #{order.id} failed: {e}")
        return None

