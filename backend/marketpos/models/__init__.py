from .auth import User, SessionToken, ROLES
from .inventory import Product
from .sales import Sale, SaleItem, DailySalesSummary, PAYMENT_METHODS
from .audit import AuditLog

__all__ = [
    'User', 'SessionToken', 'ROLES',
    'Product',
    'Sale', 'SaleItem', 'DailySalesSummary', 'PAYMENT_METHODS',
    'AuditLog',
]
