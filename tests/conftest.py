import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
from faker import Faker
from flask_jwt_extended import create_access_token

from tenant_billing import create_app
from tenant_billing.extensions import db
from tenant_billing.models import (
    Plan,
    Subscription,
    SubscriptionStatus,
    Tenant,
    TenantKind,
    User,
    UserRole,
)
from tenant_billing.services.identity_service import slugify
from tenant_billing.services.plan_catalog import seed_default_plans
from tenant_billing.services.stripe_service import StripeService

# Initialize Faker for generating test data
fake = Faker()

WEBHOOK_SECRET = "whsec_test_secret"

PRICE_IDS = {
    "PRO": "price_pro_test",
    "PREMIUM": "price_premium_test",
    "STARTUP": "price_startup_test",
    "BUSINESS": "price_business_test",
}


# Custom pytest marks for organizing tests
def pytest_configure(config):
    config.addinivalue_line("markers", "db: mark test as database-intensive")
    config.addinivalue_line("markers", "payment: mark test as payment-related")
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (exercises several layers together)",
    )


@pytest.fixture()
def app():
    """Fresh application and in-memory database per test"""
    app = create_app("testing")

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def plans(app):
    """Default catalog with test Stripe prices, keyed by plan name"""
    seed_default_plans(PRICE_IDS)
    return {plan.name: plan for plan in Plan.query.all()}


@pytest.fixture()
def make_tenant(app):
    def _make_tenant(kind=TenantKind.COMPANY, name=None, with_admin=True, is_active=True):
        name = name or fake.company()
        domain = fake.unique.domain_name()
        tenant = Tenant(name=name, slug=slugify(domain), domain=domain, kind=kind, is_active=is_active)
        db.session.add(tenant)
        db.session.flush()

        if with_admin:
            db.session.add(User(
                tenant_id=tenant.id,
                name=fake.name(),
                email=fake.unique.email(),
                role=UserRole.ADMIN,
                is_active=True,
            ))

        db.session.commit()
        return tenant

    return _make_tenant


@pytest.fixture()
def make_subscription(plans, make_tenant):
    """Persist a subscription row directly, bypassing the state machine (test setup only)"""
    def _make_subscription(
        plan_name="STARTUP",
        status=SubscriptionStatus.ACTIVE,
        tenant=None,
        expires_in_days=30,
        **fields,
    ):
        tenant = tenant or make_tenant()
        now = datetime.utcnow()
        subscription = Subscription(
            tenant_id=tenant.id,
            plan_id=plans[plan_name].id,
            status=SubscriptionStatus(status).value,
            started_at=now,
            expires_at=now + timedelta(days=expires_in_days) if expires_in_days is not None else None,
            **fields,
        )
        db.session.add(subscription)
        db.session.commit()
        return subscription

    return _make_subscription


@pytest.fixture()
def mock_gateway():
    """Stripe gateway double with realistic return values"""
    gateway = Mock(spec=StripeService)
    gateway.create_customer.return_value = "cus_test_123"
    gateway.retrieve_customer.return_value = {"id": "cus_test_123", "metadata": {}}
    gateway.create_checkout_session.return_value = Mock(
        id="cs_test_123",
        url="https://checkout.stripe.test/pay/cs_test_123",
    )
    gateway.create_billing_portal_session.return_value = "https://billing.stripe.test/session/bps_123"
    return gateway


@pytest.fixture()
def auth_headers(app):
    """Bearer headers for a token carrying the tenant_id (and optionally is_staff) claim"""
    def _auth_headers(tenant_id, is_staff=False):
        token = create_access_token(
            identity=str(tenant_id),
            additional_claims={"tenant_id": tenant_id, "is_staff": is_staff},
        )
        return {
            "Authorization": f"Bearer {token}",
            "X-Request-ID": fake.uuid4(),
        }

    return _auth_headers


@pytest.fixture()
def stripe_event():
    """Build a Stripe event body"""
    def _stripe_event(event_type, obj, event_id=None):
        return {
            "id": event_id or f"evt_{fake.uuid4().replace('-', '')[:24]}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": obj},
        }

    return _stripe_event


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Stripe-Signature header value for ``payload`` (v1 scheme, HMAC-SHA256)"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture()
def signed_webhook(client):
    """POST a correctly signed event to the webhook endpoint"""
    def _signed_webhook(event):
        payload = json.dumps(event)
        return client.post(
            "/api/stripe/webhook",
            data=payload,
            headers={"Stripe-Signature": sign_payload(payload), "Content-Type": "application/json"},
        )

    return _signed_webhook


@pytest.fixture()
def webhook_signature():
    return sign_payload
