# plan.py
from datetime import datetime, timedelta

from sqlalchemy import CheckConstraint

from tenant_billing.extensions import db


class PlanAudience:
    CANDIDATE = "CANDIDATE"
    COMPANY = "COMPANY"


class Plan(db.Model):
    """Catalog entry. Read-only to the billing core."""

    __tablename__ = "plans"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    price = db.Column(db.Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="BRL")

    # Unpriced plans (free tier, manual enterprise deals) have no gateway counterpart
    stripe_price_id = db.Column(db.String(255), nullable=True, unique=True, index=True)

    # 0 means the subscription never expires
    billing_period_days = db.Column(db.Integer, nullable=False, default=30)

    # Upgrade ordering; upgrades must strictly increase it
    level = db.Column(db.Integer, nullable=False, default=0)
    audience = db.Column(db.String(20), nullable=False, default=PlanAudience.COMPANY)
    requires_manual_activation = db.Column(db.Boolean, nullable=False, default=False)

    # Feature limits
    max_users = db.Column(db.Integer, nullable=True)
    max_contacts = db.Column(db.Integer, nullable=True)
    has_api = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("price >= 0", name="non_negative_price"),
        CheckConstraint("billing_period_days >= 0", name="non_negative_billing_period"),
        CheckConstraint("audience IN ('CANDIDATE', 'COMPANY')", name="valid_plan_audience"),
    )

    def __repr__(self):
        return f"<Plan {self.name} level={self.level}>"

    @property
    def is_priced(self):
        return bool(self.stripe_price_id)

    def compute_expiry(self, start=None):
        """Expiry for a period starting at ``start``; None for non-expiring plans."""
        if not self.billing_period_days:
            return None
        return (start or datetime.utcnow()) + timedelta(days=self.billing_period_days)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "price": self.price,
            "currency": self.currency,
            "stripe_price_id": self.stripe_price_id,
            "billing_period_days": self.billing_period_days,
            "level": self.level,
            "audience": self.audience,
            "requires_manual_activation": self.requires_manual_activation,
            "max_users": self.max_users,
            "max_contacts": self.max_contacts,
            "has_api": self.has_api,
        }
