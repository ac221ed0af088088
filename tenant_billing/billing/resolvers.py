"""
Ordered strategies that map a gateway event to the tenant subscription it
concerns. Each strategy answers a Resolution or None ("not applicable");
ResolverChain returns the first hit so precedence is explicit.
"""

import logging
from dataclasses import dataclass

import stripe

from tenant_billing.models.pending_checkout import PendingCheckout
from tenant_billing.models.subscription import Subscription
from tenant_billing.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

TENANT_METADATA_KEY = "tenant_id"
CHECKOUT_TOKEN_METADATA_KEY = "checkout_token"


@dataclass
class Resolution:
    subscription: Subscription
    strategy: str


class SubscriptionResolver:
    name = "base"

    def __init__(self, store: SubscriptionStore = None):
        self.store = store or SubscriptionStore()

    def resolve(self, event):
        raise NotImplementedError

    def _hit(self, subscription):
        if subscription is None:
            return None
        return Resolution(subscription=subscription, strategy=self.name)


class ByExternalSubscriptionId(SubscriptionResolver):
    name = "external_subscription_id"

    def resolve(self, event):
        return self._hit(self.store.by_external_subscription_id(getattr(event, "subscription_id", None)))


class ByExternalCustomerId(SubscriptionResolver):
    name = "external_customer_id"

    def resolve(self, event):
        return self._hit(self.store.by_external_customer_id(getattr(event, "customer_id", None)))


def _tenant_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ByTenantMetadata(SubscriptionResolver):
    """
    Tenant id carried in the event's own metadata, else in the Stripe
    customer's metadata (fetched through the gateway).
    """

    name = "tenant_metadata"

    def __init__(self, gateway=None, store: SubscriptionStore = None):
        super().__init__(store)
        self.gateway = gateway

    def resolve(self, event):
        tenant_id = _tenant_id((getattr(event, "metadata", None) or {}).get(TENANT_METADATA_KEY))

        if tenant_id is None and self.gateway is not None and getattr(event, "customer_id", None):
            try:
                customer = self.gateway.retrieve_customer(event.customer_id)
            except stripe.StripeError:
                logger.warning(
                    "Could not load Stripe customer for tenant lookup",
                    extra={"customer_id": event.customer_id},
                )
                return None
            tenant_id = _tenant_id((customer.get("metadata") or {}).get(TENANT_METADATA_KEY))

        if tenant_id is None:
            return None
        return self._hit(self.store.for_tenant(tenant_id, lock=True))


class ByPendingCheckoutToken(SubscriptionResolver):
    """Signups: the checkout token in subscription metadata points at the tenant the checkout produced."""

    name = "pending_checkout_token"

    def resolve(self, event):
        token = (getattr(event, "metadata", None) or {}).get(CHECKOUT_TOKEN_METADATA_KEY)
        if not token:
            return None

        checkout = PendingCheckout.query.filter_by(token=token).first()
        if checkout is None or not checkout.completed or checkout.tenant_id is None:
            # Not completed yet: checkout.session.completed owns this signup
            return None
        return self._hit(self.store.for_tenant(checkout.tenant_id, lock=True))


class ResolverChain:
    def __init__(self, resolvers):
        self.resolvers = list(resolvers)

    def resolve(self, event):
        for resolver in self.resolvers:
            resolution = resolver.resolve(event)
            if resolution is not None:
                logger.debug(
                    "Event resolved",
                    extra={
                        "event_id": event.event_id,
                        "strategy": resolution.strategy,
                        "tenant_id": resolution.subscription.tenant_id,
                    },
                )
                return resolution
        return None

    @property
    def strategies(self):
        return [resolver.name for resolver in self.resolvers]
