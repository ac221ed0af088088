from collections import Counter

from tenant_billing.errors import SubscriptionNotFound
from tenant_billing.models.subscription import Subscription, SubscriptionHistory


class SubscriptionStore:
    """
    Reads of the per-tenant subscription row and its history.

    Writes go through SubscriptionStateMachine.apply(); this class only
    finds (and optionally row-locks) the records it operates on.
    """

    def for_tenant(self, tenant_id, lock=False):
        return Subscription.find_by_tenant_id(tenant_id, lock=lock)

    def require_for_tenant(self, tenant_id, lock=False) -> Subscription:
        subscription = self.for_tenant(tenant_id, lock=lock)
        if subscription is None:
            raise SubscriptionNotFound(f"No subscription for tenant {tenant_id}")
        return subscription

    def for_tenant_or_new(self, tenant_id, lock=False) -> Subscription:
        """Existing row, or an unsaved one the state machine will insert."""
        return self.for_tenant(tenant_id, lock=lock) or Subscription(tenant_id=tenant_id)

    def by_external_subscription_id(self, stripe_subscription_id, lock=True):
        if not stripe_subscription_id:
            return None
        return Subscription.find_by_stripe_id(stripe_subscription_id, lock=lock)

    def by_external_customer_id(self, stripe_customer_id, lock=True):
        if not stripe_customer_id:
            return None
        query = Subscription.query.filter_by(stripe_customer_id=stripe_customer_id)
        if lock:
            query = query.with_for_update()
        return query.order_by(Subscription.id.asc()).first()

    def history(self, tenant_id, limit=None):
        query = (
            SubscriptionHistory.query
            .filter_by(tenant_id=tenant_id)
            .order_by(SubscriptionHistory.created_at.desc(), SubscriptionHistory.id.desc())
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def history_summary(self, tenant_id):
        counts = Counter(row.action for row in self.history(tenant_id))
        return {
            "total_changes": sum(counts.values()),
            "by_action": dict(counts),
        }
