from .catalog import Product, Service, StaffMember, Customer
from .inventory import StockMovement
from .sales import Sale, SaleLine, LoyaltyClaim
from .commissions import CommissionAccrual, CommissionPayout
from .shifts import Shift, CashMovement

__all__ = [
    'Product', 'Service', 'StaffMember', 'Customer',
    'StockMovement',
    'Sale', 'SaleLine', 'LoyaltyClaim',
    'CommissionAccrual', 'CommissionPayout',
    'Shift', 'CashMovement',
]
