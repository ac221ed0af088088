import logging
import secrets
from datetime import datetime, timedelta

from flask import current_app

from tenant_billing.errors import CheckoutNotFound, ConflictError
from tenant_billing.extensions import db
from tenant_billing.models.pending_checkout import CheckoutKind, PendingCheckout

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24


def generate_checkout_token():
    return secrets.token_urlsafe(32)


class PendingCheckoutStore:
    """
    Signups waiting on gateway payment confirmation.

    Methods flush but never commit; callers own the transaction.
    """

    def __init__(self, ttl_hours=None):
        self.ttl_hours = ttl_hours

    def _ttl(self):
        if self.ttl_hours is not None:
            return timedelta(hours=self.ttl_hours)
        return timedelta(hours=current_app.config.get("PENDING_CHECKOUT_TTL_HOURS", DEFAULT_TTL_HOURS))

    def create(
        self,
        contact_email,
        plan_id,
        *,
        contact_name,
        kind=CheckoutKind.CANDIDATE,
        company_name=None,
        domain=None,
        stripe_customer_id=None,
    ) -> PendingCheckout:
        """Replace any uncompleted checkout for this email with a fresh one."""
        email = contact_email.strip().lower()

        purged = (
            PendingCheckout.query
            .filter_by(contact_email=email, completed=False)
            .delete(synchronize_session=False)
        )
        if purged:
            logger.info(
                "Discarded previous uncompleted checkouts",
                extra={"contact_email": email, "count": purged},
            )

        checkout = PendingCheckout(
            token=generate_checkout_token(),
            stripe_session_id=None,
            stripe_customer_id=stripe_customer_id,
            kind=kind,
            contact_name=contact_name,
            contact_email=email,
            company_name=company_name,
            domain=domain,
            plan_id=plan_id,
            expires_at=datetime.utcnow() + self._ttl(),
            completed=False,
        )
        db.session.add(checkout)
        db.session.flush()
        return checkout

    def attach_external_session(self, token, stripe_session_id) -> PendingCheckout:
        checkout = PendingCheckout.query.filter_by(token=token).with_for_update().first()
        if checkout is None:
            raise CheckoutNotFound("Checkout not found")
        if checkout.stripe_session_id and checkout.stripe_session_id != stripe_session_id:
            raise ConflictError("Checkout is already linked to a Stripe session")

        checkout.stripe_session_id = stripe_session_id
        db.session.flush()
        return checkout

    def find_by_external_session_id(self, stripe_session_id, lock=False):
        # No expiry filter: a confirmed payment must still complete its checkout
        query = PendingCheckout.query.filter_by(stripe_session_id=stripe_session_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def find_by_token(self, token, include_expired=False):
        checkout = PendingCheckout.query.filter_by(token=token).first()
        if checkout is None:
            return None
        if not include_expired and not checkout.completed and checkout.is_expired():
            return None
        return checkout

    def mark_completed(self, checkout, tenant_id=None):
        """Must be the last write of the completion transaction."""
        if checkout.completed:
            raise ConflictError("Checkout already completed")

        checkout.completed = True
        checkout.completed_at = datetime.utcnow()
        checkout.tenant_id = tenant_id
        db.session.flush()
        return checkout

    def purge_expired(self, now=None):
        """Delete uncompleted checkouts past their expiry. Returns the count."""
        return (
            PendingCheckout.query
            .filter(PendingCheckout.completed.is_(False))
            .filter(PendingCheckout.expires_at < (now or datetime.utcnow()))
            .delete(synchronize_session=False)
        )
