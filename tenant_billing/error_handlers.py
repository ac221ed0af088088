# tenant_billing/error_handlers.py
import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from tenant_billing.errors import DomainError
from tenant_billing.extensions import db
from tenant_billing.services.stripe_service import StripeMisconfiguredError

logger = logging.getLogger(__name__)


def _error_response(error, message, status_code, **extra):
    return jsonify({"error": error, "message": message, "path": request.path, **extra}), status_code


def register_error_handlers(app):
    """Register all error handlers for the application"""

    @app.errorhandler(DomainError)
    def handle_domain_error(error):
        log = logger.warning if error.status_code < 500 else logger.error
        log(
            f"{type(error).__name__}: {error.message} - Path: {request.path}",
            extra={"status_code": error.status_code, **error.context},
        )
        return _error_response(error.error, error.message, error.status_code)

    @app.errorhandler(StripeMisconfiguredError)
    def handle_stripe_misconfigured(error):
        logger.error(f"Stripe misconfigured - Path: {request.path}", extra={"missing": error.missing_config})
        return _error_response(
            "Service unavailable", "Payments are not configured on this server.", 503
        )

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(error):
        db.session.rollback()
        logger.error(f"Storage failure - Path: {request.path}", exc_info=error)
        return _error_response(
            "Service unavailable", "The storage backend is unavailable. Please retry later.", 503
        )

    @app.errorhandler(400)
    def bad_request(e):
        logger.warning(f"Bad request: {str(e)} - Path: {request.path}")
        return _error_response(
            "Bad request",
            "The request could not be understood or was missing required parameters.",
            400,
        )

    @app.errorhandler(404)
    def not_found(e):
        logger.info(f"Not found: {request.path}")
        return _error_response("Not found", "The requested resource was not found on the server.", 404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        logger.warning(f"Method not allowed: {request.method} {request.path}")
        return _error_response(
            "Method not allowed",
            f"The {request.method} method is not supported for this endpoint.",
            405,
        )

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f"Server error: {str(e)} - Path: {request.path}")
        return _error_response(
            "Server error", "An internal server error occurred. Please try again later.", 500
        )
