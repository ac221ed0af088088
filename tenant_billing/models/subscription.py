# subscription.py
from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Index

from tenant_billing.extensions import db


class SubscriptionStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class SubscriptionAction(str, Enum):
    CREATED = "CREATED"
    UPGRADED = "UPGRADED"
    DOWNGRADED = "DOWNGRADED"
    RENEWED = "RENEWED"
    CANCELED = "CANCELED"
    REACTIVATED = "REACTIVATED"
    EXPIRED = "EXPIRED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class TriggeredBy(str, Enum):
    USER = "user"
    SYSTEM = "system"
    STRIPE = "stripe"


def _sql_in(values):
    return ", ".join(f"'{v.value}'" for v in values)


class Subscription(db.Model):
    """
    One billing record per tenant.

    Never assign status/plan/dates directly: every change goes through
    SubscriptionStateMachine.apply() so the history log stays complete.
    """

    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, index=True)

    # Stripe IDs; a subscription id belongs to exactly one tenant
    stripe_customer_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_subscription_id = db.Column(db.String(255), unique=True, nullable=True, index=True)

    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=True, index=True)
    renewed_at = db.Column(db.DateTime, nullable=True)
    canceled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    plan = db.relationship("Plan", lazy="joined")
    tenant = db.relationship("Tenant", backref=db.backref("subscription", uselist=False))
    history = db.relationship(
        "SubscriptionHistory",
        backref="subscription",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="desc(SubscriptionHistory.created_at), desc(SubscriptionHistory.id)",
    )

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_sql_in(SubscriptionStatus)})",
            name="valid_subscription_status",
        ),
        Index("idx_subscription_status_expires", "status", "expires_at"),
    )

    def __repr__(self):
        return f"<Subscription tenant={self.tenant_id} status={self.status}>"

    def is_expired(self, now=None):
        """ACTIVE with a past expiry reads as expired even though the row still says ACTIVE."""
        if self.status != SubscriptionStatus.ACTIVE.value or self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.utcnow())

    def effective_status(self, now=None):
        if self.is_expired(now):
            return SubscriptionStatus.EXPIRED
        return SubscriptionStatus(self.status)

    def is_valid(self, now=None):
        return self.status == SubscriptionStatus.ACTIVE.value and not self.is_expired(now)

    def to_dict(self, include_sensitive=False):
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "plan": self.plan.to_dict() if self.plan else None,
            "status": self.status,
            "effective_status": self.effective_status().value,
            "is_valid": self.is_valid(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "renewed_at": self.renewed_at.isoformat() if self.renewed_at else None,
            "canceled_at": self.canceled_at.isoformat() if self.canceled_at else None,
        }

        if include_sensitive:
            data.update({
                "stripe_customer_id": self.stripe_customer_id,
                "stripe_subscription_id": self.stripe_subscription_id,
            })

        return data

    @classmethod
    def find_by_stripe_id(cls, stripe_subscription_id, lock=False):
        query = cls.query.filter_by(stripe_subscription_id=stripe_subscription_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    @classmethod
    def find_by_tenant_id(cls, tenant_id, lock=False):
        query = cls.query.filter_by(tenant_id=tenant_id)
        if lock:
            query = query.with_for_update()
        return query.first()


class SubscriptionHistory(db.Model):
    """Append-only audit trail. Rows are never updated or deleted."""

    __tablename__ = "subscription_history"

    id = db.Column(db.Integer, primary_key=True)

    subscription_id = db.Column(
        db.Integer,
        db.ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    previous_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=False)

    previous_plan_id = db.Column(db.Integer, nullable=True)
    previous_plan_name = db.Column(db.String(50), nullable=True)
    previous_plan_price = db.Column(db.Numeric(10, 2, asdecimal=False), nullable=True)
    new_plan_id = db.Column(db.Integer, nullable=True)
    new_plan_name = db.Column(db.String(50), nullable=True)
    new_plan_price = db.Column(db.Numeric(10, 2, asdecimal=False), nullable=True)

    previous_expires_at = db.Column(db.DateTime, nullable=True)
    new_expires_at = db.Column(db.DateTime, nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    triggered_by = db.Column(db.String(20), nullable=False, default=TriggeredBy.SYSTEM.value)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(f"action IN ({_sql_in(SubscriptionAction)})", name="valid_history_action"),
        CheckConstraint(f"triggered_by IN ({_sql_in(TriggeredBy)})", name="valid_history_trigger"),
        Index("idx_history_subscription_created", "subscription_id", "created_at"),
    )

    def to_dict(self):
        """Convert history record to dictionary"""
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "previous_plan": {"id": self.previous_plan_id, "name": self.previous_plan_name, "price": self.previous_plan_price},
            "new_plan": {"id": self.new_plan_id, "name": self.new_plan_name, "price": self.new_plan_price},
            "previous_expires_at": self.previous_expires_at.isoformat() if self.previous_expires_at else None,
            "new_expires_at": self.new_expires_at.isoformat() if self.new_expires_at else None,
            "reason": self.reason,
            "triggered_by": self.triggered_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
