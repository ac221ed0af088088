# stripe_service.py
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import sentry_sdk
import stripe
from flask import current_app

from tenant_billing.billing.events import BillingEvent, parse_event
from tenant_billing.errors import WebhookSignatureError

# Configure logging
logger = logging.getLogger(__name__)


# ==================== CUSTOM EXCEPTIONS ====================

class StripeMisconfiguredError(RuntimeError):
    """Raised when a Stripe call is attempted without the required settings."""
    def __init__(self, missing_config: str = None):
        self.missing_config = missing_config
        msg = "Stripe is misconfigured"
        if missing_config:
            msg = f"Stripe misconfigured: Missing {missing_config}"
        super().__init__(msg)
        self.code = "STRIPE_MISCONFIGURED"


@contextmanager
def stripe_operation_context(operation_name: str, **context_vars):
    """
    Wrap a Stripe call with structured logging and Sentry context.

    Example:
        with stripe_operation_context("create_checkout_session", price_id=price_id):
            stripe.checkout.Session.create(...)
    """
    start_time = datetime.now()
    sentry_sdk.set_tag("stripe_operation", operation_name)
    sentry_sdk.set_context("stripe_context", context_vars)

    logger.info(
        f"Starting Stripe operation: {operation_name}",
        extra={"operation": operation_name, **context_vars}
    )

    try:
        yield
    except Exception as e:
        duration = (datetime.now() - start_time).total_seconds()
        logger.error(
            f"Stripe operation failed: {operation_name}",
            exc_info=True,
            extra={
                "operation": operation_name,
                "duration_seconds": duration,
                "error_type": type(e).__name__,
                "error_message": str(e),
                **context_vars
            }
        )
        raise

    duration = (datetime.now() - start_time).total_seconds()
    logger.info(
        f"Completed Stripe operation: {operation_name}",
        extra={"operation": operation_name, "duration_seconds": duration, **context_vars}
    )


# ==================== CONFIGURATION ====================

@dataclass
class StripeConfig:
    api_key: Optional[str]
    webhook_secret: Optional[str]
    webhook_tolerance: int = 300
    max_network_retries: int = 2

    @classmethod
    def from_app(cls, config) -> "StripeConfig":
        return cls(
            api_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            webhook_tolerance=config.get("STRIPE_WEBHOOK_TOLERANCE", 300),
            max_network_retries=config.get("STRIPE_MAX_NETWORK_RETRIES", 2),
        )


# ==================== STRIPE SERVICE ====================

class StripeService:
    """
    Thin wrapper over the Stripe SDK for customers, checkout, subscription
    changes, the billing portal and webhook verification.

    Stripe errors are logged and re-raised unchanged; callers decide whether
    a failure is fatal.
    """

    def __init__(self, config: StripeConfig = None):
        self.config = config or StripeConfig.from_app(current_app.config)

        if self.config.api_key:
            stripe.api_key = self.config.api_key
            stripe.max_network_retries = self.config.max_network_retries

    def _require_api_key(self):
        if not self.config.api_key:
            raise StripeMisconfiguredError("STRIPE_SECRET_KEY")

    # ============ CUSTOMERS & CHECKOUT ============

    def create_customer(self, email: str, name: Optional[str] = None, tenant_id=None) -> str:
        """Create a customer and return its id. ``tenant_id`` lands in metadata for later resolution."""
        self._require_api_key()
        metadata = {"tenant_id": str(tenant_id)} if tenant_id is not None else {}

        with stripe_operation_context("create_customer", email=email, tenant_id=tenant_id):
            customer = stripe.Customer.create(email=email, name=name, metadata=metadata)

        logger.info(
            "Stripe customer created",
            extra={"customer_id": customer.id, "tenant_id": tenant_id}
        )
        return customer.id

    def retrieve_customer(self, customer_id: str):
        self._require_api_key()
        with stripe_operation_context("retrieve_customer", customer_id=customer_id):
            return stripe.Customer.retrieve(customer_id)

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Create a subscription-mode checkout session; returns the session (``id``, ``url``)."""
        self._require_api_key()
        metadata = {key: str(value) for key, value in (metadata or {}).items()}

        with stripe_operation_context(
            "create_checkout_session",
            customer_id=customer_id,
            price_id=price_id,
        ):
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )

        logger.info(
            "Stripe checkout session created",
            extra={"session_id": session.id, "customer_id": customer_id, "price_id": price_id}
        )
        return session

    def retrieve_checkout_session(self, session_id: str):
        self._require_api_key()
        with stripe_operation_context("retrieve_checkout_session", session_id=session_id):
            return stripe.checkout.Session.retrieve(session_id)

    # ============ SUBSCRIPTIONS ============

    def update_subscription_item(self, subscription_id: str, new_price_id: str):
        """
        Swap the subscription's price, invoicing the proration immediately.

        Fails synchronously (stripe.CardError and friends) when the payment
        for the change cannot complete.
        """
        self._require_api_key()
        with stripe_operation_context(
            "update_subscription_item",
            subscription_id=subscription_id,
            price_id=new_price_id,
        ):
            subscription = stripe.Subscription.retrieve(subscription_id)
            item_id = subscription["items"]["data"][0]["id"]
            return stripe.Subscription.modify(
                subscription_id,
                items=[{"id": item_id, "price": new_price_id}],
                proration_behavior="always_invoice",
                payment_behavior="error_if_incomplete",
            )

    def cancel_subscription(self, subscription_id: str):
        self._require_api_key()
        with stripe_operation_context("cancel_subscription", subscription_id=subscription_id):
            subscription = stripe.Subscription.cancel(subscription_id)

        logger.info("Stripe subscription cancelled", extra={"subscription_id": subscription_id})
        return subscription

    def create_billing_portal_session(self, customer_id: str, return_url: str) -> str:
        self._require_api_key()
        with stripe_operation_context("create_billing_portal_session", customer_id=customer_id):
            session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
        return session.url

    # ============ WEBHOOK HANDLING ============

    def verify_and_parse_webhook(
        self,
        payload: bytes,
        sig_header: str,
        webhook_secret: Optional[str] = None,
    ) -> BillingEvent:
        """Verify the Stripe-Signature header and return the typed event."""
        secret = webhook_secret or self.config.webhook_secret
        if not secret:
            raise StripeMisconfiguredError("STRIPE_WEBHOOK_SECRET")

        if hasattr(payload, "decode"):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning("Invalid webhook payload", extra={"reason": str(e)})
                raise WebhookSignatureError("Malformed Stripe event") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, sig_header, secret, self.config.webhook_tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature", extra={"reason": str(e)})
            raise WebhookSignatureError("Invalid Stripe signature") from e

        try:
            event = parse_event(json.loads(payload))
        except ValueError as e:
            logger.warning("Invalid webhook payload", extra={"reason": str(e)})
            raise WebhookSignatureError("Malformed Stripe event") from e

        logger.info(
            "Stripe webhook received",
            extra={"event_id": event.event_id, "event_type": event.event_type}
        )
        return event


# ==================== FACTORY FUNCTION ====================

def get_stripe_service() -> StripeService:
    """
    Factory function to get a Stripe service bound to the current app config.
    This allows for dependency injection and testing.
    """
    return StripeService()
