# noqa: F401 to ensure models are imported for metadata
from restohub.models.audit import AuditLog
from restohub.models.ownership import OwnershipTransfer
from restohub.models.resources import MenuItem, Order, Table
from restohub.models.store import Store, User, UserStore
from restohub.models.subscription import (
    PaymentRequest,
    PaymentTransaction,
    RefundRequest,
    Subscription,
    UserTrialUsage,
)

__all__ = [
    "AuditLog",
    "OwnershipTransfer",
    "MenuItem",
    "Order",
    "Table",
    "Store",
    "User",
    "UserStore",
    "PaymentRequest",
    "PaymentTransaction",
    "RefundRequest",
    "Subscription",
    "UserTrialUsage",
]
