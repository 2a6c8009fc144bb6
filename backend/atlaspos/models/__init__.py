from .tenancy import Tenant, Store, User, Register
from .catalog import (
    Category, Tax, Product, Variant, OptionGroup, Option, Promotion, Customer,
    product_categories, product_taxes,
)
from .sales import Order, OrderItem, OrderItemOption, Payment, Refund, CustomerOrder
from .inventory import StockLevel, InventoryLedgerEntry, AppendOnlyViolation
from .registers import Shift, CashMovement

__all__ = [
    'Tenant', 'Store', 'User', 'Register',
    'Category', 'Tax', 'Product', 'Variant', 'OptionGroup', 'Option', 'Promotion', 'Customer',
    'product_categories', 'product_taxes',
    'Order', 'OrderItem', 'OrderItemOption', 'Payment', 'Refund', 'CustomerOrder',
    'StockLevel', 'InventoryLedgerEntry', 'AppendOnlyViolation',
    'Shift', 'CashMovement',
]
