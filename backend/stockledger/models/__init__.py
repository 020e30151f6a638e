from .tenancy import Business, NotificationSettings
from .inventory import Product, InventoryTransaction, ImmutableRecordError
from .sales import Sale, SaleLine
from .returns import ReturnExchange, ReturnPayment, ReturnSequence

__all__ = [
    'Business', 'NotificationSettings',
    'Product', 'InventoryTransaction', 'ImmutableRecordError',
    'Sale', 'SaleLine',
    'ReturnExchange', 'ReturnPayment', 'ReturnSequence',
]
