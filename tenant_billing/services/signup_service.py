import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import stripe
from flask import current_app

from tenant_billing.billing.events import parse_event
from tenant_billing.billing.reconciliation import ReconciliationEngine
from tenant_billing.billing.state_machine import SubscriptionStateMachine, Transition
from tenant_billing.errors import CheckoutNotFound, GatewayError, PlanNotFound, ValidationError
from tenant_billing.extensions import session_scope
from tenant_billing.models.pending_checkout import CheckoutKind
from tenant_billing.models.plan import PlanAudience
from tenant_billing.models.subscription import SubscriptionStatus, TriggeredBy
from tenant_billing.models.user import UserRole
from tenant_billing.notifications.messages import WelcomeNotification
from tenant_billing.services.checkout_store import PendingCheckoutStore
from tenant_billing.services.identity_service import IdentityService
from tenant_billing.services.plan_catalog import PlanCatalog
from tenant_billing.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

PAID_SESSION_STATES = ("paid", "no_payment_required")


@dataclass
class SignupResult:
    kind: str
    tenant_id: Optional[int] = None
    checkout_url: Optional[str] = None
    checkout_token: Optional[str] = None
    notifications: List = field(default_factory=list)

    def to_dict(self):
        return {
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            "checkout_url": self.checkout_url,
            "checkout_token": self.checkout_token,
        }


class SignupService:
    """
    Entry points that create accounts (free tier), pending subscriptions
    (sales-assisted plans) or pending checkouts (paid plans).
    """

    ACCOUNT_CREATED = "account_created"
    CHECKOUT = "checkout"
    PENDING_ACTIVATION = "pending_activation"

    def __init__(self, gateway, catalog=None, checkouts=None, store=None, identity=None, engine=None):
        self.gateway = gateway
        self.catalog = catalog or PlanCatalog()
        self.checkouts = checkouts or PendingCheckoutStore()
        self.store = store or SubscriptionStore()
        self.identity = identity or IdentityService()
        self.engine = engine or ReconciliationEngine(
            gateway=gateway,
            catalog=self.catalog,
            checkouts=self.checkouts,
            store=self.store,
            identity=self.identity,
        )

    def signup_candidate(self, *, name, email, plan_name) -> SignupResult:
        plan = self.catalog.find_by_name(plan_name)
        if plan.audience != PlanAudience.CANDIDATE:
            raise ValidationError(f"{plan.name} is not a candidate plan")
        self.identity.ensure_email_available(email)

        if plan.is_priced:
            return self._start_checkout(plan, kind=CheckoutKind.CANDIDATE, contact_name=name, contact_email=email)
        if plan.price:
            raise PlanNotFound(f"{plan.name} is not available for online purchase")

        with session_scope():
            tenant = self.identity.candidates_tenant()
            user, password = self.identity.provision_user(
                tenant, name=name, email=email, role=UserRole.CANDIDATE
            )
            subscription = self.store.for_tenant_or_new(tenant.id, lock=True)
            if subscription.status is None:
                SubscriptionStateMachine.apply(
                    subscription,
                    Transition.ACTIVATE,
                    status=SubscriptionStatus.ACTIVE,
                    plan=plan,
                    triggered_by=TriggeredBy.SYSTEM,
                    reason="Free signup",
                    started_at=datetime.utcnow(),
                    expires_at=None,
                )

        logger.info("Free candidate account created", extra={"tenant_id": tenant.id, "user_id": user.id})
        welcome = WelcomeNotification(
            contact_email=user.email,
            contact_name=user.name,
            plan_name=plan.name,
            temporary_password=password,
        )
        return SignupResult(self.ACCOUNT_CREATED, tenant_id=tenant.id, notifications=[welcome])

    def signup_company(self, *, company_name, contact_name, contact_email, domain, plan_name) -> SignupResult:
        plan = self.catalog.find_by_name(plan_name)
        if plan.audience != PlanAudience.COMPANY:
            raise ValidationError(f"{plan.name} is not a company plan")
        self.identity.ensure_domain_available(domain)
        self.identity.ensure_email_available(contact_email)

        if plan.requires_manual_activation:
            with session_scope():
                tenant = self.identity.create_company_tenant(company_name, domain)
                tenant.is_active = False
                self.identity.provision_user(
                    tenant, name=contact_name, email=contact_email, role=UserRole.ADMIN, active=False
                )
                SubscriptionStateMachine.apply(
                    self.store.for_tenant_or_new(tenant.id),
                    Transition.OPEN_PENDING,
                    status=SubscriptionStatus.PENDING,
                    plan=plan,
                    triggered_by=TriggeredBy.USER,
                    reason="Awaiting sales contact",
                    expires_at=None,
                )
            logger.info("Sales-assisted signup registered", extra={"tenant_id": tenant.id, "plan": plan.name})
            return SignupResult(self.PENDING_ACTIVATION, tenant_id=tenant.id)

        if not plan.is_priced:
            raise PlanNotFound(f"{plan.name} is not available for online purchase")

        return self._start_checkout(
            plan,
            kind=CheckoutKind.COMPANY,
            contact_name=contact_name,
            contact_email=contact_email,
            company_name=company_name,
            domain=domain.strip().lower(),
        )

    def _start_checkout(self, plan, *, kind, contact_name, contact_email, company_name=None, domain=None):
        app_url = current_app.config["APP_URL"].rstrip("/")

        with session_scope():
            try:
                customer_id = self.gateway.create_customer(contact_email, company_name or contact_name)
            except stripe.StripeError as e:
                raise GatewayError("Could not register the customer with the payment provider") from e

            checkout = self.checkouts.create(
                contact_email,
                plan.id,
                contact_name=contact_name,
                kind=kind,
                company_name=company_name,
                domain=domain,
                stripe_customer_id=customer_id,
            )

            try:
                session = self.gateway.create_checkout_session(
                    customer_id,
                    plan.stripe_price_id,
                    success_url=f"{app_url}/auth/success?token={checkout.token}",
                    cancel_url=f"{app_url}/auth/sign-up?canceled=true",
                    metadata={"checkout_token": checkout.token},
                )
            except stripe.StripeError as e:
                raise GatewayError("Could not start the checkout") from e

            self.checkouts.attach_external_session(checkout.token, session.id)

        logger.info(
            "Signup checkout started",
            extra={"kind": kind, "plan": plan.name, "session_id": session.id},
        )
        return SignupResult(self.CHECKOUT, checkout_url=session.url, checkout_token=checkout.token)

    def checkout_status(self, token):
        checkout = self.checkouts.find_by_token(token, include_expired=True)
        if checkout is None:
            raise CheckoutNotFound("Checkout not found")
        return checkout.to_dict()

    def verify_and_sync_checkout(self, session_id):
        """
        Fallback for a lost checkout.session.completed webhook: ask Stripe
        directly and run the same reconciliation.
        """
        try:
            session = self.gateway.retrieve_checkout_session(session_id)
        except stripe.StripeError as e:
            raise GatewayError("Could not load the checkout from the payment provider") from e

        if session.get("status") != "complete" or session.get("payment_status") not in PAID_SESSION_STATES:
            raise ValidationError("The checkout has not been paid yet")

        event = parse_event({
            "id": None,
            "type": "checkout.session.completed",
            "data": {"object": dict(session)},
        })
        return self.engine.handle(event)
