# Overview: Pytest coverage for cashier sessions and the cash drawer ledger.

"""
Session Tests

Covers:
- Open/close lifecycle and terminal binding
- Cash movement deltas (incremental vs replayed expected cash)
- Close aggregates and variance handling
- Suspend/resume rules
"""

import pytest

from poscore.models import CashCount, CashMovement, Terminal
from poscore.services import order_service, payment_service, session_service, terminal_service
from poscore.validation import ConflictError, SessionStateError, StateTransitionError, ValidationError


RICE = {"name": "Rice 5kg", "quantity": 2, "unit_price_cents": 50_000}


class TestOpenSession:
    def test_open_binds_terminal(self, db_session, terminal, open_session):
        assert open_session.status == "open"
        assert open_session.expected_cash_cents == 1_000_000
        assert db_session.get(Terminal, terminal.id).current_session_id == open_session.id
        assert session_service.get_current_session(terminal.id).id == open_session.id

        movements = session_service.get_session_movements(open_session.id)
        assert [(m.movement_type, m.amount_cents) for m in movements] == [("opening_float", 1_000_000)]

    def test_second_open_conflicts(self, db_session, terminal, open_session):
        with pytest.raises(ConflictError):
            session_service.open_session(terminal.id, "Other Cashier", 500_000)

    def test_inactive_terminal_rejected(self, db_session, terminal):
        terminal_service.deactivate_terminal(terminal.id)
        with pytest.raises(StateTransitionError):
            session_service.open_session(terminal.id, "Jane", 0)

    def test_bound_terminal_cannot_be_deactivated(self, db_session, terminal, open_session):
        with pytest.raises(StateTransitionError):
            terminal_service.deactivate_terminal(terminal.id)


class TestCashMovements:
    def test_session_close_scenario(self, db_session, terminal, open_session):
        session_service.add_cash_movement(open_session.id, "sale", 230_000, reason="Manual sale")
        session_service.add_cash_movement(open_session.id, "payout", -50_000, reason="Delivery man")

        assert session_service.get_session(open_session.id).expected_cash_cents == 1_180_000

        closed = session_service.close_session(open_session.id, 1_175_000, closed_by="Jane")

        assert closed.cash_variance_cents == -5_000
        assert closed.status == "closed"
        assert db_session.get(Terminal, terminal.id).current_session_id is None

        closing = db_session.query(CashCount).filter_by(session_id=open_session.id, count_type="CLOSING").one()
        assert closing.status == "SHORT"
        assert closing.variance_cents == -5_000

    def test_incremental_matches_replay(self, db_session, open_session):
        for movement_type, amount in [
            ("sale", 12_345),
            ("refund", 2_000),
            ("refund", -1_000),
            ("drop", 300_000),
            ("payout", -4_500),
            ("adjustment", 75),
            ("adjustment", -25),
        ]:
            session_service.add_cash_movement(open_session.id, movement_type, amount)

        incremental = session_service.get_session(open_session.id).expected_cash_cents
        assert incremental == session_service.recompute_expected_cash(open_session.id)
        assert incremental == 1_000_000 + 12_345 - 2_000 - 1_000 - 300_000 - 4_500 + 75 - 25

    def test_lifecycle_movements_not_accepted(self, db_session, open_session):
        with pytest.raises(ValidationError):
            session_service.add_cash_movement(open_session.id, "opening_float", 100)
        with pytest.raises(ValidationError):
            session_service.add_cash_movement(open_session.id, "closing_count", 100)
        with pytest.raises(ValidationError):
            session_service.add_cash_movement(open_session.id, "tip", 100)

    def test_closed_session_rejects_movements(self, db_session, open_session):
        session_service.close_session(open_session.id, 1_000_000)

        with pytest.raises(SessionStateError):
            session_service.add_cash_movement(open_session.id, "adjustment", 100)
        assert session_service.recompute_expected_cash(open_session.id) == 1_000_000

    def test_mid_day_count(self, db_session, open_session):
        count = session_service.record_cash_count(open_session.id, "MID_DAY", 1_000_500)

        assert count.variance_cents == 500
        assert count.status == "OVER"
        assert session_service.get_session(open_session.id).expected_cash_cents == 1_000_000


class TestSuspendResume:
    def test_suspend_blocks_manual_movements(self, db_session, open_session):
        session_service.suspend_session(open_session.id)

        with pytest.raises(SessionStateError):
            session_service.add_cash_movement(open_session.id, "drop", 10_000)

        # Sales from orders already in flight still land in the drawer
        session_service.add_cash_movement(open_session.id, "sale", 10_000)

        resumed = session_service.resume_session(open_session.id)
        assert resumed.status == "open"
        assert resumed.expected_cash_cents == 1_010_000

    def test_invalid_toggles(self, db_session, open_session):
        with pytest.raises(SessionStateError):
            session_service.resume_session(open_session.id)
        session_service.close_session(open_session.id, 1_000_000)
        with pytest.raises(SessionStateError):
            session_service.suspend_session(open_session.id)


class TestCloseAggregates:
    def test_close_aggregates_orders(self, db_session, open_session, make_order):
        paid = make_order(RICE)
        payment_service.add_payment(paid.id, "cash", 115_000, amount_tendered_cents=120_000)

        card = make_order(RICE)
        pending = payment_service.add_payment(card.id, "card_visa", 115_000)
        payment_service.process_payment_complete(card.id, pending.payment.id)

        voided = make_order(RICE)
        order_service.void_order(voided.id, "Customer left")

        closed = session_service.close_session(open_session.id, 1_115_000)

        assert closed.total_sales_cents == 230_000
        assert closed.total_refunds_cents == 0
        assert closed.total_voids == 1
        assert closed.net_sales_cents == 230_000
        assert closed.cash_variance_cents == 0
        assert closed.payment_breakdown == [
            {"method": "card_visa", "count": 1, "total_cents": 115_000},
            {"method": "cash", "count": 1, "total_cents": 115_000},
        ]
        assert session_service.get_session_order_ids(open_session.id) == [paid.id, card.id]

        closing = db_session.query(CashMovement).filter_by(movement_type="closing_count").one()
        assert closing.amount_cents == 1_115_000

    def test_close_rejected_with_pending_payment(self, db_session, open_session, make_order):
        order = make_order(RICE)
        payment_service.add_payment(order.id, "wipay", 115_000)

        with pytest.raises(SessionStateError):
            session_service.close_session(open_session.id, 1_000_000)
        assert session_service.get_session(open_session.id).status == "open"

    def test_double_close_rejected(self, db_session, open_session):
        session_service.close_session(open_session.id, 1_000_000)
        with pytest.raises(SessionStateError):
            session_service.close_session(open_session.id, 1_000_000)

    def test_shift_summary(self, db_session, open_session, make_order):
        order = make_order(RICE)
        payment_service.add_payment(order.id, "cash", 115_000)

        summary = session_service.get_shift_summary(open_session.id)

        assert summary["completed_count"] == 1
        assert summary["sales_cents"] == 115_000
        assert summary["expected_cash_cents"] == 1_115_000
        assert summary["movement_totals"]["sale"] == 115_000
