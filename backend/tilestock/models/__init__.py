from .tenancy import Shop, Sequence
from .inventory import Tile, TileImage, StockTransaction, TRANSACTION_TYPES
from .sales import Sale, SaleItem, SALE_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES
from .auth import User, SessionToken, ROLES, ROLE_GRAND_ADMIN, ROLE_SHOP_ADMIN, ROLE_STAFF

__all__ = [
    'Shop', 'Sequence',
    'Tile', 'TileImage', 'StockTransaction', 'TRANSACTION_TYPES',
    'Sale', 'SaleItem', 'SALE_STATUSES', 'PAYMENT_METHODS', 'PAYMENT_STATUSES',
    'User', 'SessionToken', 'ROLES', 'ROLE_GRAND_ADMIN', 'ROLE_SHOP_ADMIN', 'ROLE_STAFF',
]
