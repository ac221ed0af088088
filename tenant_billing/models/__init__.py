from .pending_checkout import CheckoutKind, PendingCheckout
from .plan import Plan, PlanAudience
from .subscription import (
    Subscription,
    SubscriptionAction,
    SubscriptionHistory,
    SubscriptionStatus,
    TriggeredBy,
)
from .tenant import Tenant, TenantKind
from .user import User, UserRole
from .webhook_event import ProcessedWebhookEvent

__all__ = [
    "CheckoutKind",
    "PendingCheckout",
    "Plan",
    "PlanAudience",
    "ProcessedWebhookEvent",
    "Subscription",
    "SubscriptionAction",
    "SubscriptionHistory",
    "SubscriptionStatus",
    "Tenant",
    "TenantKind",
    "TriggeredBy",
    "User",
    "UserRole",
]
