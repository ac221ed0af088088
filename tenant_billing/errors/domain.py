class DomainError(Exception):
    """Base class for errors the caller can act on (as opposed to infrastructure failures)."""

    status_code = 400
    error = "Bad request"

    def __init__(self, message=None, **context):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.context = context

    def to_dict(self):
        return {"error": self.error, "message": self.message}


class ValidationError(DomainError):
    pass


class PermissionDenied(DomainError):
    status_code = 403
    error = "Forbidden"


class NotFoundError(DomainError):
    status_code = 404
    error = "Not found"


class PlanNotFound(NotFoundError):
    error = "Plan not found"


class SubscriptionNotFound(NotFoundError):
    error = "Subscription not found"


class CheckoutNotFound(NotFoundError):
    error = "Checkout not found"


class ConflictError(DomainError):
    status_code = 409
    error = "Conflict"


class InvalidStateTransition(ConflictError):
    error = "Invalid transition"


class AlreadyInState(InvalidStateTransition):
    error = "Already in state"


class ExternalIdentityConflict(ConflictError):
    error = "External identity conflict"


class PlanConfigurationError(DomainError):
    """Internal plan table and gateway prices have drifted apart."""

    status_code = 422
    error = "Plan misconfigured"


class GatewayError(DomainError):
    status_code = 502
    error = "Payment gateway error"


class BillingPortalUnavailable(DomainError):
    error = "Billing portal unavailable"


class WebhookSignatureError(DomainError):
    error = "Invalid webhook"
