from .catalog import Product, ProductVariant
from .carts import Cart, CartItem, AbandonedCart
from .orders import Order, OrderItem, OrderStatusHistory, OrderSequence, ORDER_STATUSES
from .promotions import PromoCode
from .ledger import LedgerEvent

__all__ = [
    'Product', 'ProductVariant',
    'Cart', 'CartItem', 'AbandonedCart',
    'Order', 'OrderItem', 'OrderStatusHistory', 'OrderSequence', 'ORDER_STATUSES',
    'PromoCode',
    'LedgerEvent',
]
