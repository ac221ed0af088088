from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from tenant_billing.errors import PermissionDenied, ValidationError
from tenant_billing.notifications import NotificationService
from tenant_billing.routes.auth import current_tenant_id, is_staff, staff_required
from tenant_billing.services.plan_catalog import PlanCatalog
from tenant_billing.services.stripe_service import get_stripe_service
from tenant_billing.services.subscription_service import SubscriptionCommandService

bp = Blueprint("billing", __name__, url_prefix="/api/billing")


def _commands():
    return SubscriptionCommandService(get_stripe_service())


def _json():
    return request.get_json(silent=True) or {}


def _app_url(path):
    return f"{current_app.config['APP_URL'].rstrip('/')}{path}"


@bp.route("/plans", methods=["GET"])
def list_plans():
    """Plan catalog, cheapest first. Optional ?audience=CANDIDATE|COMPANY."""
    audience = request.args.get("audience")
    plans = PlanCatalog().list_all(audience=audience.upper() if audience else None)
    return jsonify({"plans": [plan.to_dict() for plan in plans]}), 200


@bp.route("/subscription", methods=["GET"])
@jwt_required()
def get_subscription():
    subscription = _commands().current(current_tenant_id())
    return jsonify({"subscription": subscription.to_dict(include_sensitive=is_staff())}), 200


@bp.route("/validate", methods=["GET"])
@jwt_required()
def validate_subscription():
    tenant_id = current_tenant_id()
    return jsonify({"tenant_id": tenant_id, "valid": _commands().validate(tenant_id)}), 200


@bp.route("/history", methods=["GET"])
@jwt_required()
def plan_history():
    return jsonify(_commands().plan_history(current_tenant_id())), 200


@bp.route("/upgrade", methods=["POST"])
@jwt_required()
def upgrade():
    data = _json()
    price_id = data.get("price_id")
    plan_name = data.get("plan")

    if not price_id and not plan_name:
        raise ValidationError("price_id or plan is required")
    if plan_name and not price_id and not is_staff():
        # Plan changes without a Stripe price bypass payment
        raise PermissionDenied("Manual plan changes are restricted to staff")

    result = _commands().upgrade(current_tenant_id(), price_id=price_id, plan_name=plan_name)
    NotificationService.dispatch(result.notifications)

    return jsonify({
        "message": f"Upgraded to {result.subscription.plan.name}",
        "subscription": result.subscription.to_dict(),
    }), 200


@bp.route("/cancel", methods=["POST"])
@jwt_required()
def cancel():
    result = _commands().cancel(current_tenant_id())
    NotificationService.dispatch(result.notifications)

    return jsonify({
        "message": "Subscription canceled",
        "subscription": result.subscription.to_dict(),
    }), 200


@bp.route("/reactivate", methods=["POST"])
@jwt_required()
def reactivate():
    result = _commands().reactivate(current_tenant_id())
    NotificationService.dispatch(result.notifications)

    return jsonify({
        "message": "Subscription reactivated",
        "subscription": result.subscription.to_dict(),
    }), 200


@bp.route("/checkout", methods=["POST"])
@jwt_required()
def create_checkout():
    data = _json()
    price_id = data.get("price_id")
    if not price_id:
        raise ValidationError("price_id is required")

    url = _commands().create_checkout_session(
        current_tenant_id(),
        price_id,
        success_url=data.get("success_url") or _app_url("/billing/success"),
        cancel_url=data.get("cancel_url") or _app_url("/billing?canceled=true"),
    )
    return jsonify({"checkout_url": url}), 200


@bp.route("/portal", methods=["POST"])
@jwt_required()
def billing_portal():
    return_url = _json().get("return_url") or _app_url("/billing")
    url = _commands().create_billing_portal_session(current_tenant_id(), return_url)
    return jsonify({"url": url}), 200


@bp.route("/tenants/<int:tenant_id>/activate", methods=["POST"])
@staff_required
def activate_tenant(tenant_id):
    """Sales-assisted plans: staff confirms the contract and opens access."""
    result = _commands().activate_pending(tenant_id)
    delivered = NotificationService.dispatch(result.notifications)

    return jsonify({
        "message": "Subscription activated",
        "subscription": result.subscription.to_dict(),
        "users_notified": delivered,
    }), 200
