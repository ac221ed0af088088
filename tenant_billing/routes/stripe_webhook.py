# tenant_billing/routes/stripe_webhook.py
import logging

from flask import Blueprint, jsonify, request

from tenant_billing.billing.reconciliation import ReconciliationEngine
from tenant_billing.notifications import NotificationService
from tenant_billing.services.stripe_service import get_stripe_service

logger = logging.getLogger(__name__)

bp = Blueprint("stripe_webhook", __name__, url_prefix="/api/stripe")


@bp.route("/webhook", methods=["POST"])
def stripe_webhook():
    """
    Stripe webhook endpoint.

    400: missing body or signature, or verification failed (nothing processed)
    200: event verified; applied, duplicate, ignored or rejected alike
    503: storage failure; Stripe retries and replay is safe
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    if not payload or not sig_header:
        logger.warning(
            "Webhook request without payload or signature",
            extra={"has_payload": bool(payload), "has_signature": bool(sig_header)},
        )
        return jsonify({
            "error": "Bad request",
            "message": "Missing payload or Stripe-Signature header",
            "path": request.path,
        }), 400

    gateway = get_stripe_service()
    event = gateway.verify_and_parse_webhook(payload, sig_header)

    result = ReconciliationEngine(gateway=gateway).handle(event)

    # Committed by now
    NotificationService.dispatch(result.notifications)

    return jsonify({"received": True, "outcome": result.outcome.value}), 200
