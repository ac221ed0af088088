import logging
from collections import namedtuple
from datetime import datetime
from enum import Enum

from tenant_billing.errors import ExternalIdentityConflict, InvalidStateTransition
from tenant_billing.extensions import db
from tenant_billing.models.subscription import (
    Subscription,
    SubscriptionAction,
    SubscriptionHistory,
    SubscriptionStatus,
    TriggeredBy,
)

logger = logging.getLogger(__name__)

PENDING = SubscriptionStatus.PENDING
ACTIVE = SubscriptionStatus.ACTIVE
PAST_DUE = SubscriptionStatus.PAST_DUE
CANCELED = SubscriptionStatus.CANCELED


class Transition(str, Enum):
    OPEN_PENDING = "open_pending"            # enterprise signup awaiting contact
    ACTIVATE = "activate"                    # first payment, free tier, manual activation
    RESUBSCRIBE = "resubscribe"              # a new gateway subscription replaces the current one
    CHANGE_PLAN = "change_plan"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    SYNC_STATUS = "sync_status"              # mirror the gateway's subscription status
    CANCEL = "cancel"
    REACTIVATE = "reactivate"


Rule = namedtuple("Rule", ["sources", "targets"])

# None stands for "no subscription row yet"
RULES = {
    Transition.OPEN_PENDING: Rule({None}, {PENDING}),
    Transition.ACTIVATE: Rule({None, PENDING}, {ACTIVE}),
    Transition.RESUBSCRIBE: Rule({None, PENDING, ACTIVE, PAST_DUE, CANCELED}, {ACTIVE, PENDING}),
    Transition.CHANGE_PLAN: Rule({ACTIVE, PAST_DUE}, {ACTIVE, PAST_DUE}),
    Transition.PAYMENT_FAILED: Rule({ACTIVE}, {PAST_DUE}),
    Transition.PAYMENT_SUCCEEDED: Rule({PENDING, PAST_DUE}, {ACTIVE}),
    Transition.SYNC_STATUS: Rule({PENDING, ACTIVE, PAST_DUE}, {ACTIVE, PAST_DUE, CANCELED}),
    Transition.CANCEL: Rule({ACTIVE, PAST_DUE}, {CANCELED}),
    Transition.REACTIVATE: Rule({CANCELED}, {ACTIVE}),
}

MUTABLE_FIELDS = (
    "stripe_customer_id",
    "stripe_subscription_id",
    "started_at",
    "expires_at",
    "renewed_at",
    "canceled_at",
)


def _status(value):
    return SubscriptionStatus(value) if value is not None else None


def _level_action(previous_plan, new_plan):
    if previous_plan is None:
        return SubscriptionAction.CREATED
    if new_plan.level > previous_plan.level:
        return SubscriptionAction.UPGRADED
    if new_plan.level < previous_plan.level:
        return SubscriptionAction.DOWNGRADED
    return SubscriptionAction.RENEWED


def _default_action(transition, target, previous_plan, new_plan):
    if transition in (Transition.OPEN_PENDING, Transition.ACTIVATE):
        return SubscriptionAction.CREATED
    if transition in (Transition.RESUBSCRIBE, Transition.CHANGE_PLAN):
        return _level_action(previous_plan, new_plan)
    if transition == Transition.REACTIVATE:
        return SubscriptionAction.REACTIVATED
    if target == CANCELED:
        return SubscriptionAction.CANCELED
    if target == PAST_DUE:
        return SubscriptionAction.PAYMENT_FAILED
    return SubscriptionAction.RENEWED


class SubscriptionStateMachine:
    """
    Authoritative subscription state machine.

    This class is the ONLY place where a Subscription changes status, plan,
    external identifiers or period dates, and where history rows are written.
    Webhook reconciliation and user commands both come through apply().

    apply() flushes but never commits; the caller owns the transaction.
    """

    @staticmethod
    def ensure_allowed(subscription, transition, target):
        """Raise InvalidStateTransition unless a rule allows ``transition`` into ``target``."""
        current = _status(subscription.status)
        target = SubscriptionStatus(target)
        rule = RULES[transition]
        if current not in rule.sources or target not in rule.targets:
            raise InvalidStateTransition(
                f"Cannot {transition.value.replace('_', ' ')} a subscription "
                f"from {current.value if current else 'none'} to {target.value}",
                transition=transition.value,
                current=current.value if current else None,
                target=target.value,
            )

    @staticmethod
    def link_customer(subscription, stripe_customer_id):
        """Record the Stripe customer; identifiers only, so no history row."""
        if subscription.id is None:
            raise InvalidStateTransition("Cannot link a customer to an unsaved subscription")
        if subscription.stripe_customer_id != stripe_customer_id:
            subscription.stripe_customer_id = stripe_customer_id
            db.session.flush()
            logger.info(
                "Stripe customer linked",
                extra={"tenant_id": subscription.tenant_id, "customer_id": stripe_customer_id},
            )
        return subscription

    @staticmethod
    def apply(
        subscription: Subscription,
        transition: Transition,
        *,
        triggered_by: TriggeredBy,
        status: SubscriptionStatus = None,
        plan=None,
        reason: str = None,
        action: SubscriptionAction = None,
        **fields,
    ):
        """
        Move ``subscription`` along ``transition``.

        Returns the new SubscriptionHistory row, or None when the requested
        state is already the persisted state (replays are no-ops).
        Raises InvalidStateTransition when no rule allows the move.
        """
        unknown = set(fields) - set(MUTABLE_FIELDS)
        if unknown:
            raise TypeError(f"Unsupported subscription fields: {sorted(unknown)}")

        current = _status(subscription.status)
        target = SubscriptionStatus(status) if status is not None else current
        if target is None:
            raise InvalidStateTransition("A new subscription needs a target status")

        previous_plan = subscription.plan
        new_plan = plan or previous_plan
        if new_plan is None:
            raise InvalidStateTransition("A new subscription needs a plan")

        changes = {
            name: value
            for name, value in fields.items()
            if getattr(subscription, name) != value
        }
        plan_changed = previous_plan is None or new_plan.id != previous_plan.id

        if current == target and not plan_changed and not changes:
            logger.debug(
                "Subscription already in requested state",
                extra={"tenant_id": subscription.tenant_id, "transition": transition.value},
            )
            return None

        SubscriptionStateMachine.ensure_allowed(subscription, transition, target)

        external_id = changes.get("stripe_subscription_id")
        if external_id:
            owner = Subscription.find_by_stripe_id(external_id)
            if owner is not None and owner.id != subscription.id:
                raise ExternalIdentityConflict(
                    f"Stripe subscription {external_id} already belongs to another tenant",
                    stripe_subscription_id=external_id,
                )

        previous_expires_at = subscription.expires_at

        subscription.status = target.value
        subscription.plan = new_plan
        for name, value in changes.items():
            setattr(subscription, name, value)
        if subscription.started_at is None:
            subscription.started_at = datetime.utcnow()

        if subscription.id is None:
            db.session.add(subscription)
        db.session.flush()

        history = SubscriptionHistory(
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            action=(action or _default_action(transition, target, previous_plan, new_plan)).value,
            previous_status=current.value if current else None,
            new_status=target.value,
            previous_plan_id=previous_plan.id if previous_plan else None,
            previous_plan_name=previous_plan.name if previous_plan else None,
            previous_plan_price=previous_plan.price if previous_plan else None,
            new_plan_id=new_plan.id,
            new_plan_name=new_plan.name,
            new_plan_price=new_plan.price,
            previous_expires_at=previous_expires_at,
            new_expires_at=subscription.expires_at,
            reason=reason,
            triggered_by=TriggeredBy(triggered_by).value,
        )
        db.session.add(history)
        db.session.flush()

        logger.info(
            "Subscription transition applied",
            extra={
                "tenant_id": subscription.tenant_id,
                "transition": transition.value,
                "from_status": current.value if current else None,
                "to_status": target.value,
                "plan": new_plan.name,
                "action": history.action,
                "triggered_by": history.triggered_by,
            },
        )
        return history
