from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from tenant_billing.billing.events import (
    CheckoutCompleted,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    Unrecognized,
)
from tenant_billing.billing.reconciliation import Outcome, ReconciliationEngine, map_external_status
from tenant_billing.extensions import db
from tenant_billing.models import (
    CheckoutKind,
    PendingCheckout,
    ProcessedWebhookEvent,
    Subscription,
    SubscriptionHistory,
    SubscriptionStatus,
    Tenant,
    User,
    UserRole,
)
from tenant_billing.notifications import UpgradeNotification, WelcomeNotification
from tenant_billing.services.checkout_store import PendingCheckoutStore
from tenant_billing.services.subscription_service import SubscriptionCommandService

from conftest import fake

pytestmark = [pytest.mark.db, pytest.mark.payment]


@pytest.fixture()
def engine(app, mock_gateway):
    return ReconciliationEngine(gateway=mock_gateway)


@pytest.fixture()
def pending_checkout(plans):
    """Paid signup waiting on Stripe, attached to session cs_test_1"""
    def _pending_checkout(plan_name="PRO", session_id="cs_test_1", **identity):
        store = PendingCheckoutStore()
        checkout = store.create(
            identity.pop("contact_email", fake.unique.email()),
            plans[plan_name].id,
            contact_name=identity.pop("contact_name", fake.name()),
            stripe_customer_id="cus_signup",
            **identity,
        )
        store.attach_external_session(checkout.token, session_id)
        db.session.commit()
        return checkout

    return _pending_checkout


def _checkout_completed(session_id="cs_test_1", event_id="evt_checkout_1", subscription_id="sub_signup"):
    return CheckoutCompleted(
        event_id=event_id,
        event_type="checkout.session.completed",
        session_id=session_id,
        customer_id="cus_signup",
        subscription_id=subscription_id,
    )


def _history_actions(tenant_id):
    return [
        row.action
        for row in SubscriptionHistory.query.filter_by(tenant_id=tenant_id).order_by(SubscriptionHistory.id)
    ]


# ============ CHECKOUT COMPLETED ============

def test_pro_checkout_activates_for_thirty_days(engine, pending_checkout):
    checkout = pending_checkout(plan_name="PRO")
    email = checkout.contact_email

    result = engine.handle(_checkout_completed())

    assert result.outcome == Outcome.APPLIED
    subscription = Subscription.query.filter_by(tenant_id=result.tenant_id).one()
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert subscription.plan.name == "PRO"
    assert abs(subscription.expires_at - (datetime.utcnow() + timedelta(days=30))) < timedelta(minutes=1)
    assert subscription.stripe_customer_id == "cus_signup"
    assert subscription.stripe_subscription_id == "sub_signup"
    assert _history_actions(result.tenant_id) == ["CREATED"]

    checkout = PendingCheckout.query.filter_by(stripe_session_id="cs_test_1").one()
    assert checkout.completed is True
    assert checkout.tenant_id == result.tenant_id

    user = User.find_by_email(email)
    assert user.role == UserRole.CANDIDATE
    assert user.tenant.slug == "candidates"
    assert user.check_password(result.notifications[0].temporary_password)

    (welcome,) = result.notifications
    assert isinstance(welcome, WelcomeNotification)
    assert welcome.contact_email == email
    assert welcome.plan_name == "PRO"


def test_company_checkout_creates_dedicated_tenant(engine, pending_checkout):
    pending_checkout(
        plan_name="BUSINESS",
        kind=CheckoutKind.COMPANY,
        company_name="Acme Recruiting",
        domain="acme-recruiting.test",
    )

    result = engine.handle(_checkout_completed())

    tenant = db.session.get(Tenant, result.tenant_id)
    assert tenant.name == "Acme Recruiting"
    assert tenant.domain == "acme-recruiting.test"
    assert User.active_admin_for(tenant.id) is not None
    assert tenant.subscription.plan.name == "BUSINESS"


def test_replayed_checkout_completed_is_idempotent(engine, pending_checkout):
    pending_checkout()

    first = engine.handle(_checkout_completed())
    replay = engine.handle(_checkout_completed())
    redelivered_with_new_id = engine.handle(_checkout_completed(event_id="evt_checkout_2"))

    assert first.outcome == Outcome.APPLIED
    assert replay.outcome == Outcome.DUPLICATE
    assert redelivered_with_new_id.outcome == Outcome.NOOP
    assert redelivered_with_new_id.notifications == []
    assert Subscription.query.count() == 1
    assert User.query.count() == 1
    assert _history_actions(first.tenant_id) == ["CREATED"]


def test_checkout_without_pending_record_is_noop(engine, app):
    result = engine.handle(_checkout_completed(session_id="cs_upgrade_existing_tenant"))

    assert result.outcome == Outcome.NOOP
    assert not ProcessedWebhookEvent.is_processed("evt_checkout_1")


# ============ SUBSCRIPTION CREATED ============

def test_subscription_created_upgrades_tenant_found_by_customer(engine, make_subscription):
    subscription = make_subscription(plan_name="STARTUP", stripe_customer_id="cus_existing")
    tenant_id = subscription.tenant_id

    result = engine.handle(SubscriptionCreated(
        event_id="evt_created_1",
        event_type="customer.subscription.created",
        subscription_id="sub_business",
        customer_id="cus_existing",
        status="active",
        price_id="price_business_test",
    ))

    assert result.outcome == Outcome.APPLIED
    subscription = Subscription.query.filter_by(tenant_id=tenant_id).one()
    assert subscription.plan.name == "BUSINESS"
    assert subscription.stripe_subscription_id == "sub_business"
    assert _history_actions(tenant_id) == ["UPGRADED"]
    assert isinstance(result.notifications[0], UpgradeNotification)
    assert result.notifications[0].new_plan_name == "BUSINESS"
    assert ProcessedWebhookEvent.is_processed("evt_created_1")


def test_subscription_created_persists_customer_found_through_metadata(engine, make_subscription, mock_gateway):
    subscription = make_subscription(plan_name="STARTUP", status=SubscriptionStatus.CANCELED)
    tenant_id = subscription.tenant_id
    mock_gateway.retrieve_customer.return_value = {"id": "cus_new", "metadata": {"tenant_id": str(tenant_id)}}

    result = engine.handle(SubscriptionCreated(
        event_id="evt_created_2",
        event_type="customer.subscription.created",
        subscription_id="sub_restart",
        customer_id="cus_new",
        status="incomplete",
        price_id="price_startup_test",
    ))

    assert result.outcome == Outcome.APPLIED
    subscription = Subscription.query.filter_by(tenant_id=tenant_id).one()
    assert subscription.stripe_customer_id == "cus_new"
    assert subscription.status == SubscriptionStatus.PENDING.value


def test_subscription_created_for_unknown_price_is_misconfiguration(engine, make_subscription):
    subscription = make_subscription(stripe_customer_id="cus_existing")

    with patch("tenant_billing.billing.reconciliation.sentry_sdk.capture_message") as capture:
        result = engine.handle(SubscriptionCreated(
            event_id="evt_bad_price",
            event_type="customer.subscription.created",
            subscription_id="sub_x",
            customer_id="cus_existing",
            status="active",
            price_id="price_not_in_catalog",
        ))

    assert result.outcome == Outcome.MISCONFIGURED
    assert "price_not_in_catalog" in result.detail
    capture.assert_called_once()
    assert not ProcessedWebhookEvent.is_processed("evt_bad_price")
    assert db.session.get(Subscription, subscription.id).stripe_subscription_id is None


def test_subscription_created_for_unresolvable_tenant_is_noop(engine, plans):
    result = engine.handle(SubscriptionCreated(
        event_id="evt_orphan",
        event_type="customer.subscription.created",
        subscription_id="sub_orphan",
        customer_id="cus_orphan",
        status="active",
        price_id="price_pro_test",
    ))

    assert result.outcome == Outcome.NOOP
    assert Subscription.query.count() == 0


def test_subscription_created_after_checkout_is_absorbed(engine, pending_checkout):
    checkout = pending_checkout(plan_name="PRO")
    engine.handle(_checkout_completed())

    result = engine.handle(SubscriptionCreated(
        event_id="evt_created_after_checkout",
        event_type="customer.subscription.created",
        subscription_id="sub_signup",
        customer_id="cus_signup",
        status="active",
        price_id="price_pro_test",
        metadata={"checkout_token": checkout.token},
    ))

    assert result.outcome == Outcome.NOOP
    assert _history_actions(result.tenant_id) == ["CREATED"]


def test_redelivered_create_cannot_revert_later_upgrade(engine, make_subscription, mock_gateway):
    subscription = make_subscription(
        plan_name="STARTUP", stripe_subscription_id="sub_tracked", stripe_customer_id="cus_tracked"
    )
    tenant_id = subscription.tenant_id
    created = SubscriptionCreated(
        event_id="evt_created_tracked",
        event_type="customer.subscription.created",
        subscription_id="sub_tracked",
        customer_id="cus_tracked",
        status="active",
        price_id="price_startup_test",
    )

    first = engine.handle(created)
    SubscriptionCommandService(mock_gateway).upgrade(tenant_id, price_id="price_business_test")
    replay = engine.handle(created)

    assert first.outcome == Outcome.NOOP
    assert replay.outcome == Outcome.NOOP
    subscription = Subscription.query.filter_by(tenant_id=tenant_id).one()
    assert subscription.plan.name == "BUSINESS"
    assert _history_actions(tenant_id) == ["UPGRADED"]
    assert not ProcessedWebhookEvent.is_processed("evt_created_tracked")


def test_create_for_tracked_subscription_only_links_customer(engine, make_subscription):
    subscription = make_subscription(plan_name="STARTUP", stripe_subscription_id="sub_no_customer")
    tenant_id = subscription.tenant_id

    result = engine.handle(SubscriptionCreated(
        event_id="evt_created_link",
        event_type="customer.subscription.created",
        subscription_id="sub_no_customer",
        customer_id="cus_linked",
        status="active",
        price_id="price_business_test",
    ))

    assert result.outcome == Outcome.NOOP
    subscription = Subscription.query.filter_by(tenant_id=tenant_id).one()
    assert subscription.stripe_customer_id == "cus_linked"
    assert subscription.plan.name == "STARTUP"
    assert _history_actions(tenant_id) == []


# ============ ORDERING ============

def test_update_before_create_does_not_corrupt_state(engine, make_subscription):
    subscription = make_subscription(plan_name="STARTUP", stripe_customer_id="cus_race")
    tenant_id = subscription.tenant_id
    update = SubscriptionUpdated(
        event_id="evt_update_early",
        event_type="customer.subscription.updated",
        subscription_id="sub_race",
        customer_id="cus_race",
        status="active",
        price_id="price_business_test",
    )

    early = engine.handle(update)
    created = engine.handle(SubscriptionCreated(
        event_id="evt_create_late",
        event_type="customer.subscription.created",
        subscription_id="sub_race",
        customer_id="cus_race",
        status="active",
        price_id="price_business_test",
    ))
    redelivered = engine.handle(update)

    assert early.outcome == Outcome.NOOP
    assert created.outcome == Outcome.APPLIED
    assert redelivered.outcome == Outcome.NOOP
    subscription = Subscription.query.filter_by(tenant_id=tenant_id).one()
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert subscription.plan.name == "BUSINESS"
    assert _history_actions(tenant_id) == ["UPGRADED"]


def test_late_active_update_cannot_undo_local_cancel(engine, make_subscription):
    subscription = make_subscription(status=SubscriptionStatus.CANCELED, stripe_subscription_id="sub_gone")

    result = engine.handle(SubscriptionUpdated(
        event_id="evt_stale",
        event_type="customer.subscription.updated",
        subscription_id="sub_gone",
        status="active",
    ))

    assert result.outcome == Outcome.REJECTED
    assert db.session.get(Subscription, subscription.id).status == SubscriptionStatus.CANCELED.value


# ============ UPDATED / DELETED / INVOICES ============

@pytest.mark.parametrize(
    "external, expected",
    [
        ("active", SubscriptionStatus.ACTIVE),
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("canceled", SubscriptionStatus.CANCELED),
        ("unpaid", SubscriptionStatus.CANCELED),
        ("trialing", SubscriptionStatus.ACTIVE),
        (None, SubscriptionStatus.ACTIVE),
    ],
)
def test_external_status_mapping(external, expected):
    assert map_external_status(external) == expected


def test_subscription_updated_writes_status_only(engine, make_subscription):
    subscription = make_subscription(stripe_subscription_id="sub_sync")
    expires_at = subscription.expires_at

    result = engine.handle(SubscriptionUpdated(
        event_id="evt_past_due",
        event_type="customer.subscription.updated",
        subscription_id="sub_sync",
        status="past_due",
        price_id="price_business_test",
    ))

    subscription = db.session.get(Subscription, subscription.id)
    assert result.outcome == Outcome.APPLIED
    assert subscription.status == SubscriptionStatus.PAST_DUE.value
    assert subscription.plan.name == "STARTUP"
    assert subscription.expires_at == expires_at


def test_subscription_deleted_cancels_once(engine, make_subscription):
    subscription = make_subscription(stripe_subscription_id="sub_del")
    event = SubscriptionDeleted(
        event_id="evt_del_1",
        event_type="customer.subscription.deleted",
        subscription_id="sub_del",
    )

    first = engine.handle(event)
    again = engine.handle(SubscriptionDeleted(
        event_id="evt_del_2",
        event_type="customer.subscription.deleted",
        subscription_id="sub_del",
    ))

    subscription = db.session.get(Subscription, subscription.id)
    assert first.outcome == Outcome.APPLIED
    assert again.outcome == Outcome.NOOP
    assert subscription.status == SubscriptionStatus.CANCELED.value
    assert subscription.canceled_at is not None
    assert _history_actions(subscription.tenant_id) == ["CANCELED"]


def test_invoice_failure_then_success_round_trip(engine, make_subscription):
    subscription = make_subscription(stripe_subscription_id="sub_inv")
    expires_at = subscription.expires_at

    failed = engine.handle(InvoicePaymentFailed(
        event_id="evt_inv_failed",
        event_type="invoice.payment_failed",
        invoice_id="in_1",
        subscription_id="sub_inv",
    ))
    assert db.session.get(Subscription, subscription.id).status == SubscriptionStatus.PAST_DUE.value

    succeeded = engine.handle(InvoicePaymentSucceeded(
        event_id="evt_inv_paid",
        event_type="invoice.payment_succeeded",
        invoice_id="in_2",
        subscription_id="sub_inv",
    ))

    subscription = db.session.get(Subscription, subscription.id)
    assert (failed.outcome, succeeded.outcome) == (Outcome.APPLIED, Outcome.APPLIED)
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert subscription.expires_at == expires_at
    assert _history_actions(subscription.tenant_id) == ["PAYMENT_FAILED", "RENEWED"]


def test_invoice_for_untracked_subscription_is_noop(engine, app):
    result = engine.handle(InvoicePaymentFailed(
        event_id="evt_inv_other",
        event_type="invoice.payment_failed",
        invoice_id="in_9",
        subscription_id="sub_someone_else",
    ))

    assert result.outcome == Outcome.NOOP


def test_invoice_paid_for_active_subscription_is_noop(engine, make_subscription):
    make_subscription(stripe_subscription_id="sub_ok")

    result = engine.handle(InvoicePaymentSucceeded(
        event_id="evt_renewal",
        event_type="invoice.paid",
        invoice_id="in_3",
        subscription_id="sub_ok",
    ))

    assert result.outcome == Outcome.NOOP


# ============ DISPATCH ============

def test_unrecognized_events_are_ignored(engine, app):
    result = engine.handle(Unrecognized(event_id="evt_new_type", event_type="customer.discount.created"))

    assert result.outcome == Outcome.IGNORED
    assert not ProcessedWebhookEvent.is_processed("evt_new_type")


def test_storage_failure_rolls_back_and_propagates(engine, make_subscription):
    subscription = make_subscription(stripe_subscription_id="sub_db")
    failing = Mock(side_effect=OperationalError("UPDATE subscriptions", {}, Exception("database is locked")))
    event = InvoicePaymentFailed(
        event_id="evt_db_down",
        event_type="invoice.payment_failed",
        invoice_id="in_4",
        subscription_id="sub_db",
    )

    with patch.dict(engine._handlers, {InvoicePaymentFailed: failing}):
        with pytest.raises(SQLAlchemyError):
            engine.handle(event)

    assert db.session.get(Subscription, subscription.id).status == SubscriptionStatus.ACTIVE.value
    assert not ProcessedWebhookEvent.is_processed("evt_db_down")
