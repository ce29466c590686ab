from .base import RecordMixin, new_id
from .users import User, Transaction
from .catalog import Product, ProductOption, SupplierInfo, Category, UNCATEGORIZED_SLUG
from .orders import Order
from .topups import TopupRequest, BankInfo
from .finance import Expense, ProfitAlert
from .activity import ActivityLog
from .snapshots import SnapshotDocument

__all__ = [
    'RecordMixin', 'new_id',
    'User', 'Transaction',
    'Product', 'ProductOption', 'SupplierInfo', 'Category', 'UNCATEGORIZED_SLUG',
    'Order',
    'TopupRequest', 'BankInfo',
    'Expense', 'ProfitAlert',
    'ActivityLog',
    'SnapshotDocument',
]
