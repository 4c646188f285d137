from .catalog import Product, WarehouseLocation
from .inventory import ProductLot, InventoryBalance, StockMovement, ReceiptPosting
from .stock_takes import StockTake, StockTakeItem

__all__ = [
    'Product', 'WarehouseLocation',
    'ProductLot', 'InventoryBalance', 'StockMovement', 'ReceiptPosting',
    'StockTake', 'StockTakeItem',
]
