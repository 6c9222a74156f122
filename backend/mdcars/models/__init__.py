from .auth import User, SessionToken
from .inventory import Category, Product, StockMovement, SupplierPayable
from .customers import Customer
from .sales import Sale, SaleItem
from .cashbox import Cashbox, CashboxTransaction
from .finance import Expense, Revenue, Partner, PartnerTransaction
from .treasury import Safe, SafeTransaction, Bank, BankTransaction
from .settings import Setting, Sequence

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product', 'StockMovement', 'SupplierPayable',
    'Customer',
    'Sale', 'SaleItem',
    'Cashbox', 'CashboxTransaction',
    'Expense', 'Revenue', 'Partner', 'PartnerTransaction',
    'Safe', 'SafeTransaction', 'Bank', 'BankTransaction',
    'Setting', 'Sequence',
]
