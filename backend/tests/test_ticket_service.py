"""Tests for kitchen ticket generation."""

from app.models.kitchen import KitchenTicket, OrderLine
from app.services.ticket_service import SYSTEM_USER, KitchenTicketService


class TestKitchenTicketService:

    def test_ticket_copies_order_details(self, db_session, make_order):
        order = make_order(lines=2, customer_phone="600123123", notes="Ring twice")

        ticket, created = KitchenTicketService(db_session).create_for_order(order)

        assert created is True
        assert ticket.order_id == order.id
        assert ticket.customer_name == "Ana"
        assert ticket.customer_phone == "600123123"
        assert ticket.service_mode == "TAKEAWAY"
        assert ticket.notes == "Ring twice"
        assert ticket.created_by == SYSTEM_USER
        assert [(l.article_id, l.article_name) for l in ticket.lines] == [
            (100, "Pizza 1"),
            (101, "Pizza 2"),
        ]

    def test_idempotent(self, db_session, make_order):
        order = make_order()
        service = KitchenTicketService(db_session)

        first, _ = service.create_for_order(order)
        second, created = service.create_for_order(order)

        assert created is False
        assert second.id == first.id
        assert db_session.query(KitchenTicket).count() == 1

    def test_customizations_normalised(self, db_session, make_order):
        order = make_order(lines=0)
        order.lines.extend([
            OrderLine(article_name="Burger", quantity=1, customizations='{"extra": "cheese"}'),
            OrderLine(article_name="Salad", quantity=2, customizations="no onion"),
            OrderLine(article_name="Water", quantity=1, customizations=""),
            OrderLine(article_name="Wrap", quantity=1, customizations={"sauce": "mild"}),
        ])
        db_session.commit()

        ticket, _ = KitchenTicketService(db_session).create_for_order(order)

        assert [l.customizations for l in ticket.lines] == [
            {"extra": "cheese"},
            {"text": "no onion"},
            None,
            {"sauce": "mild"},
        ]

    def test_does_not_commit(self, db_session, make_order):
        order = make_order()

        KitchenTicketService(db_session).create_for_order(order)
        db_session.rollback()

        assert db_session.query(KitchenTicket).count() == 0
