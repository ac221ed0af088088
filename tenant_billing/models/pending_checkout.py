from datetime import datetime

from sqlalchemy import Index

from tenant_billing.extensions import db


class CheckoutKind:
    CANDIDATE = "CANDIDATE"
    COMPANY = "COMPANY"


class PendingCheckout(db.Model):
    """
    A paid signup waiting for the gateway to confirm payment.

    Completed exactly once by the reconciliation engine, never reopened.
    """

    __tablename__ = "pending_checkouts"

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(128), nullable=False, unique=True, index=True)

    # Empty until the gateway returns the checkout session
    stripe_session_id = db.Column(db.String(255), nullable=True, unique=True, index=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True)

    kind = db.Column(db.String(20), nullable=False, default=CheckoutKind.CANDIDATE)
    contact_name = db.Column(db.String(255), nullable=False)
    contact_email = db.Column(db.String(255), nullable=False, index=True)
    company_name = db.Column(db.String(255), nullable=True)
    domain = db.Column(db.String(255), nullable=True)

    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False)

    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    plan = db.relationship("Plan")

    __table_args__ = (
        Index("idx_pending_checkout_email_completed", "contact_email", "completed"),
    )

    @property
    def is_candidate(self):
        return self.kind == CheckoutKind.CANDIDATE

    def is_expired(self, now=None):
        return self.expires_at < (now or datetime.utcnow())

    def to_dict(self):
        return {
            "token": self.token,
            "kind": self.kind,
            "contact_email": self.contact_email,
            "plan": self.plan.name if self.plan else None,
            "completed": self.completed,
            "expired": not self.completed and self.is_expired(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
