from .base import BaseConfig


class ProductionConfig(BaseConfig):
    """
    Production configuration.
    """

    ENVIRONMENT = "production"
    DEBUG = False

    # MUST be set via environment variables in real production
    REQUIRED_SETTINGS = (
        "SECRET_KEY",
        "JWT_SECRET_KEY",
        "SQLALCHEMY_DATABASE_URI",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    )
