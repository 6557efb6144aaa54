from .terminals import Terminal, PosSettings, DocumentSequence
from .carts import Cart, CartItem
from .orders import Order, OrderItem, Payment, OrderEvent
from .sessions import PosSession, SessionOrderLink, CashMovement, CashCount
from .reports import ZReport
from .returns import PosReturn, PosReturnItem

__all__ = [
    'Terminal', 'PosSettings', 'DocumentSequence',
    'Cart', 'CartItem',
    'Order', 'OrderItem', 'Payment', 'OrderEvent',
    'PosSession', 'SessionOrderLink', 'CashMovement', 'CashCount',
    'ZReport',
    'PosReturn', 'PosReturnItem',
]
