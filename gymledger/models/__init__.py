from gymledger.core.db import Base

from .enums import (
    DurationUnit,
    NotificationType,
    PaymentMethod,
    PaymentStatus,
    Role,
    SettlementStatus,
    SubscriptionSource,
    SubscriptionStatus,
)
from .user import User
from .gym import Gym
from .plan import Plan
from .subscription import Subscription
from .payment import Payment
from .settlement import Settlement
from .notification import Notification
from .audit_log import AuditLog

__all__ = [
    "Base",
    "User",
    "Gym",
    "Plan",
    "Subscription",
    "Payment",
    "Settlement",
    "Notification",
    "AuditLog",
    "DurationUnit",
    "NotificationType",
    "PaymentMethod",
    "PaymentStatus",
    "Role",
    "SettlementStatus",
    "SubscriptionSource",
    "SubscriptionStatus",
]
