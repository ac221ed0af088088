import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List

import sentry_sdk
import stripe
from flask import current_app

from tenant_billing.billing.state_machine import SubscriptionStateMachine, Transition
from tenant_billing.errors import (
    AlreadyInState,
    BillingPortalUnavailable,
    GatewayError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from tenant_billing.extensions import session_scope
from tenant_billing.models.subscription import Subscription, SubscriptionAction, SubscriptionStatus, TriggeredBy
from tenant_billing.notifications.messages import (
    CancellationNotification,
    ReactivationNotification,
    UpgradeNotification,
    WelcomeNotification,
)
from tenant_billing.services.identity_service import IdentityService
from tenant_billing.services.plan_catalog import PlanCatalog
from tenant_billing.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

DEFAULT_REACTIVATION_DAYS = 30


@dataclass
class CommandResult:
    subscription: Subscription
    notifications: List = field(default_factory=list)


def _gateway_error(error):
    message = getattr(error, "user_message", None) or "The payment provider rejected the request"
    return GatewayError(message, stripe_error=type(error).__name__)


class SubscriptionCommandService:
    """
    Synchronous tenant actions on the subscription.

    Each command locks the tenant's subscription row, validates against the
    state machine before touching Stripe, and commits its own transaction.
    Webhooks for changes applied here arrive later and find nothing to do.
    """

    def __init__(self, gateway, catalog=None, store=None, identity=None):
        self.gateway = gateway
        self.catalog = catalog or PlanCatalog()
        self.store = store or SubscriptionStore()
        self.identity = identity or IdentityService()

    # ============ READS ============

    def validate(self, tenant_id) -> bool:
        """True iff the tenant has an ACTIVE, unexpired subscription. Used by access control."""
        subscription = self.store.for_tenant(tenant_id)
        return bool(subscription and subscription.is_valid())

    def current(self, tenant_id):
        return self.store.require_for_tenant(tenant_id)

    def plan_history(self, tenant_id):
        subscription = self.store.require_for_tenant(tenant_id)
        return {
            "current_plan": subscription.plan.name,
            "current_status": subscription.effective_status().value,
            "history": [row.to_dict() for row in self.store.history(tenant_id)],
            "summary": self.store.history_summary(tenant_id),
        }

    # ============ COMMANDS ============

    def upgrade(self, tenant_id, *, price_id=None, plan_name=None) -> CommandResult:
        """
        Move to a strictly higher plan.

        ``price_id`` goes through Stripe (immediate proration invoice) and is
        applied locally as soon as Stripe accepts it. ``plan_name`` is the
        manual path and extends the remaining period by the new plan's length.
        """
        if not price_id and not plan_name:
            raise ValidationError("Provide either price_id or plan")

        with session_scope():
            subscription = self.store.require_for_tenant(tenant_id, lock=True)
            current_plan = subscription.plan
            if price_id:
                new_plan = self.catalog.find_by_external_price_id(price_id)
            else:
                new_plan = self.catalog.find_by_name(plan_name)

            if new_plan.audience != current_plan.audience:
                raise ValidationError(f"{new_plan.name} is not available for this account")
            if new_plan.level <= current_plan.level:
                raise InvalidStateTransition(
                    f"{new_plan.name} is not an upgrade from {current_plan.name}",
                    current_plan=current_plan.name,
                    target_plan=new_plan.name,
                )
            SubscriptionStateMachine.ensure_allowed(subscription, Transition.CHANGE_PLAN, subscription.status)

            now = datetime.utcnow()
            if price_id:
                if not subscription.stripe_subscription_id:
                    raise ValidationError("No Stripe subscription on file; start a checkout instead")
                try:
                    self.gateway.update_subscription_item(subscription.stripe_subscription_id, price_id)
                except stripe.StripeError as e:
                    raise _gateway_error(e) from e
                expires_at = new_plan.compute_expiry(now)
                reason = "Upgrade via Stripe"
            else:
                remaining = timedelta(0)
                if subscription.expires_at and subscription.expires_at > now:
                    remaining = subscription.expires_at - now
                expires_at = new_plan.compute_expiry(now + remaining)
                reason = "Manual upgrade"

            try:
                SubscriptionStateMachine.apply(
                    subscription,
                    Transition.CHANGE_PLAN,
                    plan=new_plan,
                    triggered_by=TriggeredBy.USER,
                    action=SubscriptionAction.UPGRADED,
                    reason=reason,
                    expires_at=expires_at,
                    renewed_at=now,
                )
            except Exception:
                if price_id:
                    # Stripe already bills the new price; the local plan stays behind until fixed
                    logger.error(
                        "Stripe accepted upgrade but local update failed",
                        exc_info=True,
                        extra={
                            "tenant_id": tenant_id,
                            "stripe_subscription_id": subscription.stripe_subscription_id,
                            "price_id": price_id,
                        },
                    )
                    sentry_sdk.capture_message(
                        f"Upgrade out of sync with Stripe for tenant {tenant_id}", level="error"
                    )
                raise

            tenant, admin = self.identity.contact_for(tenant_id)
            notifications = []
            if admin is not None:
                notifications.append(UpgradeNotification(
                    contact_email=admin.email,
                    contact_name=admin.name,
                    company_name=tenant.name,
                    old_plan_name=current_plan.name,
                    new_plan_name=new_plan.name,
                    new_plan_price=new_plan.price,
                    currency=new_plan.currency,
                ))

        return CommandResult(subscription, notifications)

    def cancel(self, tenant_id) -> CommandResult:
        with session_scope():
            subscription = self.store.require_for_tenant(tenant_id, lock=True)
            if subscription.status == SubscriptionStatus.CANCELED.value:
                raise AlreadyInState("Subscription is already canceled")
            SubscriptionStateMachine.ensure_allowed(subscription, Transition.CANCEL, SubscriptionStatus.CANCELED)

            if subscription.stripe_subscription_id:
                # Local cancellation governs access even if Stripe is unreachable
                try:
                    self.gateway.cancel_subscription(subscription.stripe_subscription_id)
                except stripe.StripeError:
                    logger.warning(
                        "Stripe cancellation failed; canceling locally",
                        exc_info=True,
                        extra={
                            "tenant_id": tenant_id,
                            "stripe_subscription_id": subscription.stripe_subscription_id,
                        },
                    )

            SubscriptionStateMachine.apply(
                subscription,
                Transition.CANCEL,
                status=SubscriptionStatus.CANCELED,
                triggered_by=TriggeredBy.USER,
                reason="Canceled by user",
                canceled_at=datetime.utcnow(),
            )

            tenant, admin = self.identity.contact_for(tenant_id)
            notifications = []
            if admin is not None:
                notifications.append(CancellationNotification(
                    contact_email=admin.email,
                    contact_name=admin.name,
                    company_name=tenant.name,
                    plan_name=subscription.plan.name,
                    access_until=subscription.expires_at,
                ))

        return CommandResult(subscription, notifications)

    def reactivate(self, tenant_id) -> CommandResult:
        with session_scope():
            subscription = self.store.require_for_tenant(tenant_id, lock=True)
            if subscription.status != SubscriptionStatus.CANCELED.value:
                raise InvalidStateTransition("Only canceled subscriptions can be reactivated")

            days = current_app.config.get("REACTIVATION_PERIOD_DAYS", DEFAULT_REACTIVATION_DAYS)
            now = datetime.utcnow()
            # TODO: recreate the Stripe subscription once product decides how a
            # reactivated tenant is billed; until then this is local only.
            SubscriptionStateMachine.apply(
                subscription,
                Transition.REACTIVATE,
                status=SubscriptionStatus.ACTIVE,
                triggered_by=TriggeredBy.USER,
                reason="Reactivated by user",
                expires_at=now + timedelta(days=days),
                renewed_at=now,
                canceled_at=None,
            )
            logger.info(
                "Subscription reactivated locally",
                extra={"tenant_id": tenant_id, "stripe_subscription_id": subscription.stripe_subscription_id},
            )

            tenant, admin = self.identity.contact_for(tenant_id)
            notifications = []
            if admin is not None:
                notifications.append(ReactivationNotification(
                    contact_email=admin.email,
                    contact_name=admin.name,
                    company_name=tenant.name,
                    plan_name=subscription.plan.name,
                    expires_at=subscription.expires_at,
                ))

        return CommandResult(subscription, notifications)

    def activate_pending(self, tenant_id) -> CommandResult:
        """Staff activation of a sales-assisted (PENDING) subscription."""
        with session_scope():
            subscription = self.store.require_for_tenant(tenant_id, lock=True)
            if subscription.status != SubscriptionStatus.PENDING.value:
                raise InvalidStateTransition("Only pending subscriptions can be activated manually")

            now = datetime.utcnow()
            SubscriptionStateMachine.apply(
                subscription,
                Transition.ACTIVATE,
                status=SubscriptionStatus.ACTIVE,
                triggered_by=TriggeredBy.USER,
                reason="Manual activation",
                started_at=now,
                expires_at=subscription.plan.compute_expiry(now),
            )

            tenant = subscription.tenant
            tenant.is_active = True
            notifications = [
                WelcomeNotification(
                    contact_email=user.email,
                    contact_name=user.name,
                    plan_name=subscription.plan.name,
                    company_name=tenant.name,
                    temporary_password=password,
                )
                for user, password in self.identity.activate_users(tenant)
            ]

        return CommandResult(subscription, notifications)

    def create_checkout_session(self, tenant_id, price_id, success_url, cancel_url) -> str:
        """
        Start a Stripe checkout for an existing tenant; returns the redirect URL.

        The resulting customer.subscription.created webhook applies the plan.
        """
        plan = self.catalog.find_by_external_price_id(price_id)

        with session_scope():
            subscription = self.store.for_tenant(tenant_id, lock=True)
            if subscription is not None and subscription.is_valid() and subscription.plan.is_priced:
                raise AlreadyInState("An active paid subscription already exists; upgrade it instead")

            customer_id = subscription.stripe_customer_id if subscription is not None else None
            if not customer_id:
                tenant, admin = self.identity.contact_for(tenant_id)
                if tenant is None:
                    raise NotFoundError("Tenant not found")
                if admin is None:
                    raise ValidationError("Tenant has no active administrator to bill")
                try:
                    customer_id = self.gateway.create_customer(admin.email, tenant.name, tenant_id=tenant_id)
                except stripe.StripeError as e:
                    raise _gateway_error(e) from e
                if subscription is not None:
                    SubscriptionStateMachine.link_customer(subscription, customer_id)

            try:
                session = self.gateway.create_checkout_session(
                    customer_id,
                    price_id,
                    success_url,
                    cancel_url,
                    metadata={"tenant_id": tenant_id},
                )
            except stripe.StripeError as e:
                raise _gateway_error(e) from e

        logger.info(
            "Checkout started for existing tenant",
            extra={"tenant_id": tenant_id, "plan": plan.name, "session_id": session.id},
        )
        return session.url

    def create_billing_portal_session(self, tenant_id, return_url) -> str:
        subscription = self.store.require_for_tenant(tenant_id)
        if not subscription.stripe_customer_id:
            raise BillingPortalUnavailable("No billing account on file yet")

        try:
            return self.gateway.create_billing_portal_session(subscription.stripe_customer_id, return_url)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise BillingPortalUnavailable("The billing account was not found at the payment provider") from e
            raise _gateway_error(e) from e
        except stripe.StripeError as e:
            raise _gateway_error(e) from e
