"""ORM models exposed for easy imports."""

from .invoice import Invoice
from .line_item import InvoiceLineItem
from .payment_mode import InvoicePaymentMode
from .sequence import InvoiceSequence

__all__ = [
    "Invoice",
    "InvoiceLineItem",
    "InvoicePaymentMode",
    "InvoiceSequence",
]
