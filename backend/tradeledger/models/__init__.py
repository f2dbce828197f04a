from .parties import Client, Supplier
from .inventory import Category, Product, StockMovement
from .documents import (
    Invoice,
    InvoiceItem,
    InvoicePayment,
    Purchase,
    PurchaseItem,
    PurchasePayment,
    DocumentSequence,
)
from .quotations import Quotation, QuotationItem

__all__ = [
    'Client', 'Supplier',
    'Category', 'Product', 'StockMovement',
    'Invoice', 'InvoiceItem', 'InvoicePayment',
    'Purchase', 'PurchaseItem', 'PurchasePayment',
    'DocumentSequence',
    'Quotation', 'QuotationItem',
]
