from .tenancy import Company, User
from .customers import Customer
from .inventory import Product, Movement
from .sales import Sale, SaleItem
from .quotations import Quotation, QuotationItem
from .invoices import Invoice, InvoiceItem
from .audit import AuditEvent

__all__ = [
    'Company', 'User',
    'Customer',
    'Product', 'Movement',
    'Sale', 'SaleItem',
    'Quotation', 'QuotationItem',
    'Invoice', 'InvoiceItem',
    'AuditEvent',
]
