from .inventory import Product, StockMovement
from .ledger import LedgerTransaction, LedgerRecord
from .approvals import VoidRequest

__all__ = [
    'Product', 'StockMovement',
    'LedgerTransaction', 'LedgerRecord',
    'VoidRequest',
]
