import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

import sentry_sdk
from sqlalchemy.exc import SQLAlchemyError

from tenant_billing.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from tenant_billing.billing.resolvers import (
    ByExternalCustomerId,
    ByExternalSubscriptionId,
    ByPendingCheckoutToken,
    ByTenantMetadata,
    ResolverChain,
)
from tenant_billing.billing.state_machine import SubscriptionStateMachine, Transition
from tenant_billing.errors import ConflictError, PlanConfigurationError, PlanNotFound
from tenant_billing.extensions import db
from tenant_billing.models.subscription import SubscriptionAction, SubscriptionStatus, TriggeredBy
from tenant_billing.models.user import UserRole
from tenant_billing.models.webhook_event import ProcessedWebhookEvent
from tenant_billing.notifications.messages import UpgradeNotification, WelcomeNotification
from tenant_billing.services.checkout_store import PendingCheckoutStore
from tenant_billing.services.identity_service import IdentityService
from tenant_billing.services.plan_catalog import PlanCatalog
from tenant_billing.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"
    MISCONFIGURED = "misconfigured"


@dataclass
class ReconciliationResult:
    event_id: Optional[str]
    event_type: str
    outcome: Outcome
    tenant_id: Optional[int] = None
    detail: Optional[str] = None
    notifications: List = field(default_factory=list)


EXTERNAL_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.CANCELED,
}


def map_external_status(status):
    """Stripe subscription status -> internal status; anything unlisted reads as ACTIVE."""
    return EXTERNAL_STATUS_MAP.get(status, SubscriptionStatus.ACTIVE)


class ReconciliationEngine:
    """
    Applies verified Stripe events to local billing state.

    Every event runs in one transaction: either all of its writes commit
    (with the event id recorded as processed) or none do. Handlers decide
    from the current persisted state plus the event, so duplicates and
    out-of-order deliveries converge. Notifications are returned in the
    result, never sent from here.
    """

    def __init__(self, gateway=None, catalog=None, checkouts=None, store=None, identity=None):
        self.gateway = gateway
        self.catalog = catalog or PlanCatalog()
        self.checkouts = checkouts or PendingCheckoutStore()
        self.store = store or SubscriptionStore()
        self.identity = identity or IdentityService()

        self.created_resolvers = ResolverChain([
            ByExternalSubscriptionId(self.store),
            ByExternalCustomerId(self.store),
            ByTenantMetadata(gateway, self.store),
            ByPendingCheckoutToken(self.store),
        ])
        self.existing_resolvers = ResolverChain([ByExternalSubscriptionId(self.store)])

        self._handlers = {
            CheckoutCompleted: self._checkout_completed,
            SubscriptionCreated: self._subscription_created,
            SubscriptionUpdated: self._subscription_updated,
            SubscriptionDeleted: self._subscription_deleted,
            InvoicePaymentSucceeded: self._invoice_payment_succeeded,
            InvoicePaymentFailed: self._invoice_payment_failed,
        }

    def handle(self, event: BillingEvent) -> ReconciliationResult:
        log_extra = {"event_id": event.event_id, "event_type": event.event_type}

        handler = self._handlers.get(type(event))
        if handler is None:
            logger.info("Ignoring unhandled Stripe event type", extra=log_extra)
            return self._result(event, Outcome.IGNORED)

        if event.event_id and ProcessedWebhookEvent.is_processed(event.event_id):
            logger.info("Stripe event already processed", extra=log_extra)
            return self._result(event, Outcome.DUPLICATE)

        try:
            result = handler(event)
            if result.outcome == Outcome.APPLIED and event.event_id:
                ProcessedWebhookEvent.mark_processed(event.event_id, event.event_type)
            db.session.commit()

        except PlanConfigurationError as e:
            db.session.rollback()
            logger.error(
                "Plan catalog does not match Stripe",
                extra={**log_extra, "error_message": e.message, **e.context},
            )
            sentry_sdk.capture_message(f"Plan misconfigured: {e.message}", level="error")
            return self._result(event, Outcome.MISCONFIGURED, detail=e.message)

        except ConflictError as e:
            db.session.rollback()
            logger.warning(
                "Stripe event rejected by subscription state machine",
                extra={**log_extra, "error_message": e.message, **e.context},
            )
            return self._result(event, Outcome.REJECTED, detail=e.message)

        except SQLAlchemyError:
            db.session.rollback()
            logger.error("Storage failure while reconciling Stripe event", exc_info=True, extra=log_extra)
            raise

        logger.info(
            "Stripe event reconciled",
            extra={**log_extra, "outcome": result.outcome.value, "tenant_id": result.tenant_id},
        )
        return result

    # ============ HANDLERS ============

    def _checkout_completed(self, event: CheckoutCompleted):
        checkout = self.checkouts.find_by_external_session_id(event.session_id, lock=True)
        if checkout is None:
            # Upgrade checkouts of existing tenants have no pending record;
            # customer.subscription.created covers them.
            return self._result(event, Outcome.NOOP, detail="no pending checkout")
        if checkout.completed:
            return self._result(event, Outcome.NOOP, detail="checkout already completed")

        plan = checkout.plan
        if checkout.is_candidate:
            tenant = self.identity.candidates_tenant()
            role = UserRole.CANDIDATE
        else:
            tenant = self.identity.create_company_tenant(
                checkout.company_name or checkout.contact_name, checkout.domain
            )
            role = UserRole.ADMIN

        user, password = self.identity.provision_user(
            tenant, name=checkout.contact_name, email=checkout.contact_email, role=role
        )

        subscription = self.store.for_tenant_or_new(tenant.id, lock=True)
        transition = (
            Transition.ACTIVATE
            if subscription.status in (None, SubscriptionStatus.PENDING.value)
            else Transition.RESUBSCRIBE
        )
        now = datetime.utcnow()
        SubscriptionStateMachine.apply(
            subscription,
            transition,
            status=SubscriptionStatus.ACTIVE,
            plan=plan,
            triggered_by=TriggeredBy.STRIPE,
            action=SubscriptionAction.CREATED,
            reason="Checkout completed",
            stripe_customer_id=checkout.stripe_customer_id or event.customer_id,
            stripe_subscription_id=event.subscription_id or subscription.stripe_subscription_id,
            started_at=now,
            expires_at=plan.compute_expiry(now),
        )

        self.checkouts.mark_completed(checkout, tenant_id=tenant.id)

        welcome = WelcomeNotification(
            contact_email=user.email,
            contact_name=user.name,
            plan_name=plan.name,
            company_name=checkout.company_name,
            temporary_password=password,
        )
        return self._result(event, Outcome.APPLIED, tenant_id=tenant.id, notifications=[welcome])

    def _subscription_created(self, event: SubscriptionCreated):
        try:
            plan = self.catalog.find_by_external_price_id(event.price_id)
        except PlanNotFound as e:
            raise PlanConfigurationError(
                e.message, price_id=event.price_id, stripe_subscription_id=event.subscription_id
            ) from e

        resolution = self.created_resolvers.resolve(event)
        if resolution is None:
            # Signup still in flight; checkout.session.completed will create it
            return self._result(event, Outcome.NOOP, detail="subscription not resolved")

        subscription = resolution.subscription
        if subscription.stripe_subscription_id == event.subscription_id:
            # Plan changes on a tracked subscription arrive as updates, never as a replayed create
            if event.customer_id and not subscription.stripe_customer_id:
                SubscriptionStateMachine.link_customer(subscription, event.customer_id)
            return self._result(event, Outcome.NOOP, tenant_id=subscription.tenant_id, detail="already tracked")

        previous_plan = subscription.plan
        now = datetime.utcnow()
        fields = {
            "stripe_subscription_id": event.subscription_id,
            "started_at": now,
            "expires_at": plan.compute_expiry(now),
        }
        if event.customer_id:
            # Remember the customer for the fast path next time
            fields["stripe_customer_id"] = event.customer_id

        history = SubscriptionStateMachine.apply(
            subscription,
            Transition.RESUBSCRIBE,
            status=SubscriptionStatus.ACTIVE if event.status == "active" else SubscriptionStatus.PENDING,
            plan=plan,
            triggered_by=TriggeredBy.STRIPE,
            reason=f"Stripe subscription created (resolved by {resolution.strategy})",
            **fields,
        )

        notifications = []
        if history is not None and history.action == SubscriptionAction.UPGRADED.value:
            notice = self._upgrade_notice(subscription.tenant_id, previous_plan, plan)
            if notice is not None:
                notifications.append(notice)

        return self._result(
            event,
            Outcome.APPLIED if history is not None else Outcome.NOOP,
            tenant_id=subscription.tenant_id,
            notifications=notifications,
        )

    def _subscription_updated(self, event: SubscriptionUpdated):
        resolution = self.existing_resolvers.resolve(event)
        if resolution is None:
            return self._result(event, Outcome.NOOP, detail="subscription not tracked yet")

        subscription = resolution.subscription
        history = SubscriptionStateMachine.apply(
            subscription,
            Transition.SYNC_STATUS,
            status=map_external_status(event.status),
            triggered_by=TriggeredBy.STRIPE,
            reason=f"Stripe status {event.status}",
        )
        return self._applied_or_noop(event, subscription, history)

    def _subscription_deleted(self, event: SubscriptionDeleted):
        resolution = self.existing_resolvers.resolve(event)
        if resolution is None:
            return self._result(event, Outcome.NOOP, detail="subscription not tracked")

        subscription = resolution.subscription
        if subscription.status == SubscriptionStatus.CANCELED.value:
            return self._result(event, Outcome.NOOP, tenant_id=subscription.tenant_id, detail="already canceled")

        history = SubscriptionStateMachine.apply(
            subscription,
            Transition.CANCEL,
            status=SubscriptionStatus.CANCELED,
            triggered_by=TriggeredBy.STRIPE,
            reason="Stripe subscription deleted",
            canceled_at=datetime.utcnow(),
        )
        return self._applied_or_noop(event, subscription, history)

    def _invoice_payment_succeeded(self, event: InvoicePaymentSucceeded):
        return self._invoice(event, Transition.PAYMENT_SUCCEEDED, SubscriptionStatus.ACTIVE, "Invoice paid")

    def _invoice_payment_failed(self, event: InvoicePaymentFailed):
        return self._invoice(event, Transition.PAYMENT_FAILED, SubscriptionStatus.PAST_DUE, "Invoice payment failed")

    def _invoice(self, event, transition, status, reason):
        resolution = self.existing_resolvers.resolve(event) if event.subscription_id else None
        if resolution is None:
            return self._result(event, Outcome.NOOP, detail="invoice for untracked subscription")

        subscription = resolution.subscription
        history = SubscriptionStateMachine.apply(
            subscription,
            transition,
            status=status,
            triggered_by=TriggeredBy.STRIPE,
            reason=f"{reason} ({event.invoice_id})" if event.invoice_id else reason,
        )
        return self._applied_or_noop(event, subscription, history)

    # ============ HELPERS ============

    def _upgrade_notice(self, tenant_id, old_plan, new_plan):
        tenant, admin = self.identity.contact_for(tenant_id)
        if admin is None:
            return None
        return UpgradeNotification(
            contact_email=admin.email,
            contact_name=admin.name,
            company_name=tenant.name,
            old_plan_name=old_plan.name if old_plan else "-",
            new_plan_name=new_plan.name,
            new_plan_price=new_plan.price,
            currency=new_plan.currency,
        )

    def _applied_or_noop(self, event, subscription, history):
        outcome = Outcome.APPLIED if history is not None else Outcome.NOOP
        return self._result(event, outcome, tenant_id=subscription.tenant_id)

    @staticmethod
    def _result(event, outcome, **kwargs):
        return ReconciliationResult(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome,
            **kwargs,
        )
