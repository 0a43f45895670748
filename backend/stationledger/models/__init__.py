from .stations import Station, Product
from .inventory import Tank, StockMovement
from .sales import SalesTransaction, SalesTransactionItem
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .accounts import Customer, Supplier, Payment, PaymentAllocation
from .expenses import Expense
from .documents import DocumentSequence, LedgerEvent

__all__ = [
    'Station', 'Product',
    'Tank', 'StockMovement',
    'SalesTransaction', 'SalesTransactionItem',
    'PurchaseOrder', 'PurchaseOrderItem',
    'Customer', 'Supplier', 'Payment', 'PaymentAllocation',
    'Expense',
    'DocumentSequence', 'LedgerEvent',
]
