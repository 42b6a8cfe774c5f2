from .staff import Store, Staff, STAFF_ROLES
from .inventory import StockItem
from .requests import UniformRequest, Delivery

__all__ = [
    'Store', 'Staff', 'STAFF_ROLES',
    'StockItem',
    'UniformRequest', 'Delivery',
]
