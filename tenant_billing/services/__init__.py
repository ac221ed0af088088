from .checkout_store import PendingCheckoutStore
from .identity_service import IdentityService
from .plan_catalog import PlanCatalog, seed_default_plans
from .signup_service import SignupResult, SignupService
from .stripe_service import StripeService, get_stripe_service
from .subscription_service import CommandResult, SubscriptionCommandService
from .subscription_store import SubscriptionStore

__all__ = [
    "CommandResult",
    "IdentityService",
    "PendingCheckoutStore",
    "PlanCatalog",
    "SignupResult",
    "SignupService",
    "StripeService",
    "SubscriptionCommandService",
    "SubscriptionStore",
    "get_stripe_service",
    "seed_default_plans",
]
