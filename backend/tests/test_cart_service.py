# Overview: Pytest coverage for the terminal's active cart.

import warnings

import pytest
from sqlalchemy.exc import SAWarning

from poscore.models import Cart
from poscore.services import cart_service, settings_service
from poscore.validation import NotFoundError, ValidationError


class TestCartMutations:
    def test_cart_created_on_first_use(self, db_session, terminal):
        cart = cart_service.get_active_cart(terminal.id)

        assert cart.terminal_id == terminal.id
        assert cart.items == []
        assert cart.customer_name == "Walk-in"

    def test_add_update_remove(self, db_session, terminal):
        first = cart_service.add_to_cart(terminal.id, name="Rice 5kg", quantity=2, unit_price_cents=1_250)
        second = cart_service.add_to_cart(terminal.id, name="Bread", quantity=1, unit_price_cents=450)

        assert (first.position, second.position) == (1, 2)

        cart_service.update_cart_item(terminal.id, first.id, quantity="3", discount_type="amount", discount_value=250)
        totals = cart_service.calculate_active_cart_totals(terminal.id)
        assert totals.subtotal_cents == 3 * 1_250 - 250 + 450

        cart = cart_service.remove_from_cart(terminal.id, second.id)
        assert [i.name for i in cart.items] == ["Rice 5kg"]

    def test_adding_lines_emits_no_orm_warnings(self, db_session, terminal):
        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            cart_service.add_to_cart(terminal.id, name="Rice 5kg", quantity=2, unit_price_cents=1_250)
            cart_service.add_to_cart(terminal.id, name="Bread", quantity=1, unit_price_cents=450)

        assert [i.name for i in cart_service.get_active_cart(terminal.id).items] == ["Rice 5kg", "Bread"]

    def test_unknown_item_not_found(self, db_session, terminal):
        cart_service.get_active_cart(terminal.id)
        with pytest.raises(NotFoundError):
            cart_service.remove_from_cart(terminal.id, 9999)

    def test_unknown_update_field_rejected(self, db_session, terminal):
        item = cart_service.add_to_cart(terminal.id, name="Soap", quantity=1, unit_price_cents=300)
        with pytest.raises(ValidationError):
            cart_service.update_cart_item(terminal.id, item.id, colour="red")

    def test_discount_over_line_rejected_without_writing(self, db_session, terminal):
        with pytest.raises(ValidationError):
            cart_service.add_to_cart(
                terminal.id, name="Soap", quantity=1, unit_price_cents=300,
                discount_type="amount", discount_value=301,
            )

        cart = db_session.query(Cart).filter_by(terminal_id=terminal.id).first()
        assert cart is None or cart.items == []

    def test_discount_cap_from_settings(self, db_session, terminal):
        settings_service.update_settings(max_discount_percent_bps=2000)

        with pytest.raises(ValidationError):
            cart_service.add_to_cart(
                terminal.id, name="TV", quantity=1, unit_price_cents=100_000,
                discount_type="percent", discount_value=2500,
            )

    def test_order_discount_validated_against_cart(self, db_session, terminal):
        cart_service.add_to_cart(terminal.id, name="Soap", quantity=1, unit_price_cents=300)

        with pytest.raises(ValidationError):
            cart_service.set_cart_discount(terminal.id, "amount", 400)

        cart = cart_service.set_cart_discount(terminal.id, "amount", 100, reason="Loyalty")
        assert cart.order_discount_reason == "Loyalty"

        cart = cart_service.set_cart_discount(terminal.id, None, None)
        assert cart.order_discount_type is None
        assert cart.order_discount_reason is None

    def test_clear_cart(self, db_session, terminal):
        cart_service.add_to_cart(terminal.id, name="Soap", quantity=1, unit_price_cents=300)
        cart_service.set_cart_customer(terminal.id, "C-1", "Marcia")
        cart_service.set_cart_notes(terminal.id, "Deliver")

        cart = cart_service.clear_cart(terminal.id)

        assert cart.items == []
        assert cart.customer_id is None
        assert cart.customer_name == "Walk-in"
        assert cart.notes is None

    def test_blank_customer_name_falls_back(self, db_session, terminal):
        cart = cart_service.set_cart_customer(terminal.id, None, "   ")
        assert cart.customer_name == "Walk-in"
