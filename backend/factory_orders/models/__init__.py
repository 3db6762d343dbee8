from .parties import Client, Manufacturer
from .orders import (
    Order,
    OrderProduct,
    OrderItem,
    OrderMargin,
    OrderMedia,
    ClientNote,
    OrderSequence,
)
from .billing import Invoice, InvoiceItem
from .settings import SystemConfig
from .audit import AuditLogEntry
from .notifications import Notification

__all__ = [
    'Client', 'Manufacturer',
    'Order', 'OrderProduct', 'OrderItem', 'OrderMargin', 'OrderMedia', 'ClientNote', 'OrderSequence',
    'Invoice', 'InvoiceItem',
    'SystemConfig',
    'AuditLogEntry',
    'Notification',
]
