from .inventory import Product, Inventory, InventoryHistory
from .alerts import Alert, AlertQueueMessage, ALERT_TYPES, ALERT_STATUSES, QUEUE_STATUSES

__all__ = [
    'Product', 'Inventory', 'InventoryHistory',
    'Alert', 'AlertQueueMessage',
    'ALERT_TYPES', 'ALERT_STATUSES', 'QUEUE_STATUSES',
]
