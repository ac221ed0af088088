import logging

from tenant_billing.errors import PlanNotFound
from tenant_billing.extensions import db
from tenant_billing.models.plan import Plan, PlanAudience

logger = logging.getLogger(__name__)


DEFAULT_PLANS = [
    {
        "name": "FREE",
        "description": "Free profile for candidates",
        "price": 0,
        "billing_period_days": 0,
        "level": 0,
        "audience": PlanAudience.CANDIDATE,
        "max_users": 1,
        "max_contacts": 10,
        "has_api": False,
    },
    {
        "name": "PRO",
        "description": "Highlighted profile and unlimited applications",
        "price": 29.90,
        "billing_period_days": 30,
        "level": 1,
        "audience": PlanAudience.CANDIDATE,
        "max_users": 1,
        "max_contacts": 100,
        "has_api": False,
    },
    {
        "name": "PREMIUM",
        "description": "Everything in PRO plus career coaching",
        "price": 59.90,
        "billing_period_days": 30,
        "level": 2,
        "audience": PlanAudience.CANDIDATE,
        "max_users": 1,
        "max_contacts": 500,
        "has_api": False,
    },
    {
        "name": "STARTUP",
        "description": "For small hiring teams",
        "price": 149.99,
        "billing_period_days": 30,
        "level": 1,
        "audience": PlanAudience.COMPANY,
        "max_users": 5,
        "max_contacts": 1000,
        "has_api": False,
    },
    {
        "name": "BUSINESS",
        "description": "For growing companies",
        "price": 299.99,
        "billing_period_days": 30,
        "level": 2,
        "audience": PlanAudience.COMPANY,
        "max_users": 25,
        "max_contacts": 10000,
        "has_api": True,
    },
    {
        "name": "ENTERPRISE",
        "description": "Custom contract, activated by our sales team",
        "price": 599.99,
        "billing_period_days": 30,
        "level": 3,
        "audience": PlanAudience.COMPANY,
        "requires_manual_activation": True,
        "max_users": None,
        "max_contacts": None,
        "has_api": True,
    },
]


class PlanCatalog:
    """Read-only plan lookups."""

    def get(self, plan_id) -> Plan:
        plan = db.session.get(Plan, plan_id)
        if plan is None:
            raise PlanNotFound(f"Plan {plan_id} not found")
        return plan

    def find_by_name(self, name: str) -> Plan:
        plan = Plan.query.filter_by(name=(name or "").strip().upper()).first()
        if plan is None:
            raise PlanNotFound(f"Plan {name!r} not found")
        return plan

    def find_by_external_price_id(self, price_id: str) -> Plan:
        """
        Callers must surface a miss: an unknown price means the catalog and
        Stripe disagree, never that the event can be skipped.
        """
        plan = Plan.query.filter_by(stripe_price_id=price_id).first() if price_id else None
        if plan is None:
            raise PlanNotFound(f"No plan is configured for Stripe price {price_id!r}")
        return plan

    def list_all(self, audience=None):
        query = Plan.query
        if audience:
            query = query.filter_by(audience=audience)
        return query.order_by(Plan.price.asc(), Plan.level.asc()).all()


def seed_default_plans(price_ids=None):
    """
    Insert or update the default catalog. Idempotent.

    ``price_ids`` maps plan name to Stripe price id (STRIPE_PRICE_<NAME>).
    Returns the number of plans created.
    """
    price_ids = price_ids or {}
    created = 0

    for definition in DEFAULT_PLANS:
        plan = Plan.query.filter_by(name=definition["name"]).first()
        if plan is None:
            plan = Plan(name=definition["name"])
            db.session.add(plan)
            created += 1

        for key, value in definition.items():
            setattr(plan, key, value)
        plan.requires_manual_activation = definition.get("requires_manual_activation", False)

        price_id = price_ids.get(definition["name"])
        if price_id:
            plan.stripe_price_id = price_id
        elif plan.price == 0:
            plan.stripe_price_id = None

    db.session.commit()
    logger.info("Plan catalog seeded", extra={"plans_created": created, "total": len(DEFAULT_PLANS)})
    return created
