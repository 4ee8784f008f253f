from .tenancy import Store
from .inventory import Product, InventoryAdjustment
from .sales import Order, OrderLineItem, Payment
from .documents import ReturnRecord, ReturnRecordLine, DocumentSequence, AuditEvent
from .auth import User, SessionToken
from .settings import StoreSetting

__all__ = [
    'Store',
    'Product', 'InventoryAdjustment',
    'Order', 'OrderLineItem', 'Payment',
    'ReturnRecord', 'ReturnRecordLine', 'DocumentSequence', 'AuditEvent',
    'User', 'SessionToken',
    'StoreSetting',
]
