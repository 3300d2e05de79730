from .auth import User, SessionToken
from .catalog import Category, Product, Customer
from .discounts import Discount
from .sales import Sale, SaleItem, Payment, SaleReturn, DocumentSequence
from .inventory import InventoryTransaction

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product', 'Customer',
    'Discount',
    'Sale', 'SaleItem', 'Payment', 'SaleReturn', 'DocumentSequence',
    'InventoryTransaction',
]
