# Overview: Pytest coverage for Z-reports and refunds.

import warnings
from decimal import Decimal

import pytest
from sqlalchemy.exc import SAWarning

from poscore.models import ZReport
from poscore.services import order_service, payment_service, report_service, return_service, session_service
from poscore.time_utils import date_stamp, utcnow
from poscore.validation import ConflictError, OrderStateError, SessionStateError, ValidationError


RICE = {"name": "Rice 5kg", "quantity": 2, "unit_price_cents": 50_000}
MILK = {"name": "Milk", "quantity": 1, "unit_price_cents": 20_000, "is_tax_exempt": True}


def _paid_cash(make_order, *lines, **kwargs):
    order = make_order(*lines, **kwargs)
    payment_service.add_payment(order.id, "cash", order.total_cents)
    return order


class TestRefunds:
    def test_cash_refund(self, db_session, open_session, make_order):
        order = _paid_cash(make_order, RICE)

        pos_return = return_service.refund_order(
            order.id, "cash", "Damaged bag", processed_by="Jane",
            session_id=open_session.id, reason_category="defective",
        )

        assert pos_return.return_number == f"RTN-{utcnow().year}-0001"
        assert pos_return.total_refund_cents == 115_000
        assert len(pos_return.items) == 1
        assert order_service.get_order(order.id).status == "refunded"
        assert all(p.status == "refunded" for p in order.payments)

        session = session_service.get_session(open_session.id)
        assert session.expected_cash_cents == 1_000_000
        assert session.expected_cash_cents == session_service.recompute_expected_cash(open_session.id)

    def test_refund_requires_completed_order(self, db_session, make_order):
        order = make_order(RICE)
        with pytest.raises(OrderStateError):
            return_service.refund_order(order.id, "card_visa", "Changed mind")

    def test_double_refund_conflicts(self, db_session, make_order):
        order = _paid_cash(make_order, RICE)
        return_service.refund_order(order.id, "store_credit", "Changed mind", reason_category="changed_mind")

        with pytest.raises(ConflictError):
            return_service.refund_order(order.id, "store_credit", "Again")

    def test_cash_refund_needs_session(self, db_session, make_order):
        order = _paid_cash(make_order, RICE)
        with pytest.raises(SessionStateError):
            return_service.refund_order(order.id, "cash", "No drawer")
        assert order_service.get_order(order.id).status == "completed"

    def test_refund_emits_no_orm_warnings(self, db_session, open_session, make_order):
        order = _paid_cash(make_order, RICE)

        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            pos_return = return_service.refund_order(order.id, "cash", "Damaged", session_id=open_session.id)

        assert [r.id for r in order_service.get_order(order.id).returns] == [pos_return.id]


class TestPartialReturns:
    def test_line_level_returns_until_fully_refunded(self, db_session, open_session, make_order):
        order = _paid_cash(make_order, RICE, MILK)
        rice, milk = order.items

        first = return_service.refund_order(
            order.id, "card_visa", "One bag torn", processed_by="Jane",
            items=[{"order_item_id": rice.id, "quantity": 1, "condition": "damaged"}],
        )

        assert first.total_refund_cents == 57_500
        assert first.is_full_refund is False
        assert first.items[0].restock is False
        reloaded = order_service.get_order(order.id)
        assert reloaded.status == "completed"
        assert reloaded.amount_refunded_cents == 57_500
        assert all(p.status == "completed" for p in reloaded.payments)
        assert return_service.get_returnable_quantity(order.id, rice.id) == Decimal("1")
        assert return_service.get_returnable_quantity(order.id, milk.id) == Decimal("1")

        rest = return_service.refund_order(order.id, "store_credit", "Customer returned the rest")

        assert rest.total_refund_cents == 57_500 + 20_000
        assert rest.is_full_refund is True
        assert all(item.restock for item in rest.items)
        reloaded = order_service.get_order(order.id)
        assert reloaded.status == "refunded"
        assert reloaded.amount_refunded_cents == reloaded.total_cents
        assert all(p.status == "refunded" for p in reloaded.payments)
        assert [r.id for r in return_service.get_returns_for_order(order.id)] == [first.id, rest.id]
        assert return_service.get_returnable_quantity(order.id, rice.id) == Decimal("0")

    def test_returns_add_up_to_discounted_total(self, db_session, open_session, make_order):
        soap = {"name": "Soap", "quantity": 3, "unit_price_cents": 33_333}
        order = _paid_cash(make_order, soap, MILK, order_discount=("percent", 1_000))
        soap_line = order.items[0]

        refunds = [
            return_service.refund_order(
                order.id, "card_visa", "Returned",
                items=[{"order_item_id": soap_line.id, "quantity": 1}],
            ).total_refund_cents
            for _ in range(3)
        ]
        refunds.append(return_service.refund_order(order.id, "card_visa", "Returned").total_refund_cents)

        assert sum(refunds) == order_service.get_order(order.id).total_cents
        assert order_service.get_order(order.id).status == "refunded"

    def test_invalid_return_lines_rejected(self, db_session, open_session, make_order):
        order = _paid_cash(make_order, RICE)
        rice = order.items[0]

        with pytest.raises(ValidationError):
            return_service.refund_order(
                order.id, "card_visa", "Too many", items=[{"order_item_id": rice.id, "quantity": 3}],
            )
        with pytest.raises(ValidationError):
            return_service.refund_order(
                order.id, "card_visa", "Not ours", items=[{"order_item_id": rice.id + 999, "quantity": 1}],
            )
        with pytest.raises(ValidationError):
            return_service.refund_order(
                order.id, "card_visa", "Odd condition",
                items=[{"order_item_id": rice.id, "quantity": 1, "condition": "sparkly"}],
            )
        with pytest.raises(ValidationError):
            return_service.refund_order(order.id, "card_visa", "Empty", items=[])

        assert return_service.get_returns_for_order(order.id) == []
        assert order_service.get_order(order.id).amount_refunded_cents == 0

    def test_partial_cash_return_hits_drawer(self, db_session, open_session, make_order):
        order = _paid_cash(make_order, RICE)

        return_service.refund_order(
            order.id, "cash", "One bag", session_id=open_session.id,
            items=[{"order_item_id": order.items[0].id, "quantity": "1"}],
        )

        session = session_service.get_session(open_session.id)
        assert session.expected_cash_cents == 1_000_000 + 115_000 - 57_500
        assert session.expected_cash_cents == session_service.recompute_expected_cash(open_session.id)


class TestZReport:
    def test_generate_for_closed_session(self, db_session, terminal, open_session, make_order):
        sale = _paid_cash(make_order, RICE, MILK, order_discount=("amount", 5_000))
        refunded = _paid_cash(make_order, RICE)
        return_service.refund_order(refunded.id, "cash", "Wrong brand", session_id=open_session.id)
        voided = make_order(MILK)
        order_service.void_order(voided.id, "Duplicate scan")
        session_service.add_cash_movement(open_session.id, "payout", -2_000, reason="Ice")
        session_service.add_cash_movement(open_session.id, "drop", 100_000, reason="Safe")

        expected = session_service.get_session(open_session.id).expected_cash_cents
        session_service.close_session(open_session.id, expected - 100)

        report = report_service.generate_z_report(open_session.id, generated_by="Manager")

        assert report.report_number == f"Z-{date_stamp(utcnow())}-1"
        assert report.terminal_name == "Front Counter"
        assert report.total_transactions == 3
        assert report.completed_transactions == 2
        assert report.voided_transactions == 1
        assert report.refunded_transactions == 1
        # The refunded order was sold in this session too; its refund is reported separately
        gross = sale.subtotal_cents + refunded.subtotal_cents
        assert report.gross_sales_cents == gross
        assert report.discounts_cents == 5_000
        assert report.refunds_cents == 115_000
        assert report.net_sales_cents == gross - 5_000 - 115_000
        assert report.tax_collected_cents == sale.tax_cents + refunded.tax_cents
        assert report.taxable_cents + report.exempt_cents == gross - 5_000
        assert report.payment_breakdown == [
            {"method": "cash", "count": 2, "total_cents": sale.total_cents + refunded.total_cents},
        ]
        assert report.breakdown_matches_session is True
        assert report.cash_sales_cents == sale.total_cents + refunded.total_cents
        assert report.cash_refunds_cents == 115_000
        assert report.cash_payouts_cents == 102_000
        assert report.variance_cents == -100
        assert report_service.get_z_report_for_session(open_session.id).id == report.id

    def test_second_generation_conflicts(self, db_session, open_session):
        session_service.close_session(open_session.id, 1_000_000)
        report_service.generate_z_report(open_session.id)

        with pytest.raises(ConflictError):
            report_service.generate_z_report(open_session.id)
        assert db_session.query(ZReport).count() == 1

    def test_open_session_needs_preview(self, db_session, open_session, make_order):
        _paid_cash(make_order, RICE)

        with pytest.raises(SessionStateError):
            report_service.generate_z_report(open_session.id)

        preview = report_service.preview_z_report(open_session.id)
        assert preview["report_number"] is None
        assert preview["session_status"] == "open"
        assert preview["gross_sales_cents"] == 100_000
        assert db_session.query(ZReport).count() == 0

    def test_daily_numbering_and_listing(self, db_session, terminal, open_session):
        session_service.close_session(open_session.id, 1_000_000)
        first = report_service.generate_z_report(open_session.id)

        second_session = session_service.open_session(terminal.id, "Evening Cashier", 500_000)
        session_service.close_session(second_session.id, 500_000)
        second = report_service.generate_z_report(second_session.id)

        assert first.report_number.endswith("-1")
        assert second.report_number.endswith("-2")

        today = utcnow().date().isoformat()
        listed = report_service.list_z_reports(start=today)
        assert [r.id for r in listed] == [first.id, second.id]
        assert report_service.list_z_reports(end=today) == []

    def test_list_rejects_unparseable_bounds(self, db_session):
        with pytest.raises(ValidationError):
            report_service.list_z_reports(start="last tuesday")

    def test_refund_in_later_session_reports_there(self, db_session, terminal, open_session, make_order):
        order = _paid_cash(make_order, RICE)
        session_service.close_session(open_session.id, 1_115_000)

        evening = session_service.open_session(terminal.id, "Evening Cashier", 1_000_000)
        return_service.refund_order(order.id, "cash", "Came back next shift", session_id=evening.id)
        assert session_service.get_session(evening.id).expected_cash_cents == 885_000
        session_service.close_session(evening.id, 885_000)

        morning_report = report_service.generate_z_report(open_session.id)
        assert morning_report.completed_transactions == 1
        assert morning_report.gross_sales_cents == 100_000
        assert morning_report.refunds_cents == 0
        assert morning_report.net_sales_cents == 100_000
        assert morning_report.payment_breakdown == [{"method": "cash", "count": 1, "total_cents": 115_000}]
        assert morning_report.breakdown_matches_session is True
        assert session_service.get_session(open_session.id).total_refunds_cents == 0

        evening_report = report_service.generate_z_report(evening.id)
        assert evening_report.completed_transactions == 0
        assert evening_report.refunded_transactions == 1
        assert evening_report.refunds_cents == 115_000
        assert evening_report.cash_refunds_cents == 115_000
        assert evening_report.net_sales_cents == -115_000
        assert evening_report.payment_breakdown == []
        assert evening_report.breakdown_matches_session is True
        assert evening_report.variance_cents == 0
        assert session_service.get_session(evening.id).total_refunds_cents == 115_000
