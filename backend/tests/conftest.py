"""
Pytest fixtures for poscore engine tests.

Provides an in-memory application, a per-test clean database, and the
terminal/session fixtures most tests start from.
"""

import pytest

from poscore import create_app
from poscore.extensions import db
from poscore.services import cart_service, order_service, session_service, terminal_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POS_TAX_RATE_BPS': 1500,
        'POS_REQUIRE_OPEN_SESSION': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def terminal(db_session):
    """An active terminal with no session bound."""
    return terminal_service.create_terminal("TILL-01", "Front Counter", location="Main Floor")


@pytest.fixture(scope='function')
def open_session(terminal):
    """A session opened on `terminal` with a 10,000.00 float."""
    return session_service.open_session(terminal.id, "Jane Cashier", 1_000_000)


@pytest.fixture(scope='function')
def make_order(terminal, open_session):
    """
    Build a pending order on the fixture terminal.

    Each line is a dict of add_to_cart keyword arguments.
    """
    def _make(*lines, order_discount=None):
        for line in lines:
            cart_service.add_to_cart(terminal.id, **line)
        if order_discount:
            cart_service.set_cart_discount(terminal.id, *order_discount)
        return order_service.create_order_from_cart(terminal.id, created_by="Jane Cashier")

    return _make
