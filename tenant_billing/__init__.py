"""
Tenant billing service: subscription lifecycle and Stripe webhook reconciliation.
"""

import logging
from typing import Optional

import sentry_sdk
from flask import Flask, jsonify
from sentry_sdk.integrations.flask import FlaskIntegration

from tenant_billing.config import get_config
from tenant_billing.error_handlers import register_error_handlers
from tenant_billing.extensions import init_extensions
from tenant_billing.logging_config import setup_logging
from tenant_billing.workers.celery_app import celery_init_app

logger = logging.getLogger(__name__)


def setup_sentry(app: Flask) -> None:
    """Initialize Sentry error tracking"""
    sentry_dsn = app.config.get("SENTRY_DSN")

    if sentry_dsn and app.config.get("ENVIRONMENT") == "production":
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment="production",
            release=app.config.get("APP_VERSION", "1.0.0"),
            send_default_pii=False,
        )
        logger.info("Sentry error tracking initialized")


def register_blueprints(app: Flask) -> None:
    from tenant_billing.routes.billing_routes import bp as billing_bp
    from tenant_billing.routes.signup_routes import bp as signup_bp
    from tenant_billing.routes.stripe_webhook import bp as stripe_webhook_bp

    app.register_blueprint(billing_bp)
    app.register_blueprint(signup_bp)
    app.register_blueprint(stripe_webhook_bp)

    @app.route("/health")
    def health_check():
        return jsonify({"status": "ok", "environment": app.config.get("ENVIRONMENT")}), 200


def create_app(config_name: Optional[str] = None) -> Flask:
    """
    Application factory.

    Args:
        config_name: development, production or testing; defaults to APP_ENV.

    Raises:
        ConfigurationError: unknown environment or a required setting is missing.
    """
    app = Flask(__name__)

    config = get_config(config_name)
    config.validate()
    app.config.from_object(config)

    setup_logging(app)
    logger.info(f"Starting tenant billing in {app.config.get('ENVIRONMENT')} mode")

    setup_sentry(app)

    # Models must be imported before create_all()
    from tenant_billing import models  # noqa: F401

    init_extensions(app)
    celery_init_app(app)

    register_error_handlers(app)
    register_blueprints(app)

    return app
