from .catalog import Product
from .cart import Cart, CartItem
from .orders import Order, OrderItem, OrderStatusHistory
from .inventory import InventoryTransaction
from .documents import DocumentSequence

__all__ = [
    'Product',
    'Cart', 'CartItem',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'InventoryTransaction',
    'DocumentSequence',
]
