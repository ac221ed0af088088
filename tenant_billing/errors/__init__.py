from .domain import (
    AlreadyInState,
    BillingPortalUnavailable,
    CheckoutNotFound,
    ConflictError,
    DomainError,
    ExternalIdentityConflict,
    GatewayError,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    PlanConfigurationError,
    PlanNotFound,
    SubscriptionNotFound,
    ValidationError,
    WebhookSignatureError,
)

__all__ = [
    "AlreadyInState",
    "BillingPortalUnavailable",
    "CheckoutNotFound",
    "ConflictError",
    "DomainError",
    "ExternalIdentityConflict",
    "GatewayError",
    "InvalidStateTransition",
    "NotFoundError",
    "PermissionDenied",
    "PlanConfigurationError",
    "PlanNotFound",
    "SubscriptionNotFound",
    "ValidationError",
    "WebhookSignatureError",
]
