from .tenancy import Business, DocumentSequence
from .inventory import Product, Supplier, InventoryReceipt, InventoryMovement, StockConversion
from .sales import SaleEvent, SaleReversal
from .finance import Expense
from .analytics import ProductMetricSnapshot, SupplyChainInsight

__all__ = [
    'Business', 'DocumentSequence',
    'Product', 'Supplier', 'InventoryReceipt', 'InventoryMovement', 'StockConversion',
    'SaleEvent', 'SaleReversal',
    'Expense',
    'ProductMetricSnapshot', 'SupplyChainInsight',
]
