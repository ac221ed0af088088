from flask import Blueprint, jsonify, request

from tenant_billing.errors import ValidationError
from tenant_billing.notifications import NotificationService
from tenant_billing.services.signup_service import SignupService
from tenant_billing.services.stripe_service import get_stripe_service

bp = Blueprint("signup", __name__, url_prefix="/api/signup")


def _service():
    return SignupService(get_stripe_service())


def _require(data, *fields):
    missing = [name for name in fields if not str(data.get(name) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return [str(data[name]).strip() for name in fields]


@bp.route("/candidate", methods=["POST"])
def signup_candidate():
    data = request.get_json(silent=True) or {}
    name, email = _require(data, "name", "email")

    result = _service().signup_candidate(name=name, email=email, plan_name=data.get("plan") or "FREE")
    NotificationService.dispatch(result.notifications)
    return jsonify(result.to_dict()), 201


@bp.route("/company", methods=["POST"])
def signup_company():
    data = request.get_json(silent=True) or {}
    company_name, contact_name, contact_email, domain, plan_name = _require(
        data, "company_name", "contact_name", "contact_email", "domain", "plan"
    )

    result = _service().signup_company(
        company_name=company_name,
        contact_name=contact_name,
        contact_email=contact_email,
        domain=domain,
        plan_name=plan_name,
    )
    NotificationService.dispatch(result.notifications)
    return jsonify(result.to_dict()), 201


@bp.route("/checkout/<token>", methods=["GET"])
def checkout_status(token):
    return jsonify(_service().checkout_status(token)), 200


@bp.route("/checkout/sync", methods=["POST"])
def sync_checkout():
    """Used by the success page when the webhook has not landed yet."""
    (session_id,) = _require(request.get_json(silent=True) or {}, "session_id")

    result = _service().verify_and_sync_checkout(session_id)
    NotificationService.dispatch(result.notifications)
    return jsonify({"outcome": result.outcome.value, "tenant_id": result.tenant_id}), 200
