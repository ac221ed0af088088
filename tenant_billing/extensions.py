# tenant_billing/extensions.py
"""
Flask extensions initialization module.
Extensions are created unbound here and attached to the app in init_extensions().
"""

import logging
from contextlib import contextmanager

from flask_jwt_extended import JWTManager
from flask_mail import Mail
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
mail = Mail()

logger = logging.getLogger(__name__)


def init_extensions(app):
    """Initialize all Flask extensions used by the billing service."""

    # Initialize SQLAlchemy
    db.init_app(app)
    logger.info("SQLAlchemy initialized")

    # Initialize Flask-Migrate
    migrate.init_app(app, db)
    logger.info("Flask-Migrate initialized")

    # JWT is only consumed here (tenant_id claim), never issued
    jwt.init_app(app)
    logger.info("JWT Manager initialized")

    # Initialize Flask-Mail
    mail.init_app(app)
    logger.info("Flask-Mail initialized")

    if app.config.get("CREATE_TABLES_ON_START", False):
        with app.app_context():
            db.create_all()
            logger.info("Database tables created")

    logger.info("All extensions initialized successfully")
    return app


@contextmanager
def session_scope():
    """Commit on success, roll back on any error and re-raise."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
