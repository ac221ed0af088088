import os


class ConfigurationError(Exception):
    """
    Raised when an invalid or unsupported configuration is requested.
    """
    pass


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _stripe_price_ids():
    """Collect STRIPE_PRICE_<PLAN> variables into {"PLAN": "price_..."}."""
    prefix = "STRIPE_PRICE_"
    return {
        key[len(prefix):].upper(): value
        for key, value in os.environ.items()
        if key.startswith(prefix) and value
    }


class BaseConfig:
    """
    Base configuration shared by all environments.
    """

    ENVIRONMENT = "base"

    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv("SECRET_KEY")

    # Application
    APP_NAME = "Tenant Billing"
    APP_URL = os.getenv("APP_URL", "http://localhost:3000")

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///tenant_billing.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CREATE_TABLES_ON_START = False

    # JWT (tokens are issued by the identity service, only verified here)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY") or os.getenv("SECRET_KEY")
    JWT_TOKEN_LOCATION = ["headers"]
    JWT_ERROR_MESSAGE_KEY = "error"

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))
    STRIPE_MAX_NETWORK_RETRIES = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2"))
    STRIPE_PRICE_IDS = _stripe_price_ids()

    # Subscription lifecycle
    PENDING_CHECKOUT_TTL_HOURS = int(os.getenv("PENDING_CHECKOUT_TTL_HOURS", "24"))
    REACTIVATION_PERIOD_DAYS = int(os.getenv("REACTIVATION_PERIOD_DAYS", "30"))
    CANDIDATES_TENANT_SLUG = os.getenv("CANDIDATES_TENANT_SLUG", "candidates")
    CANDIDATES_TENANT_NAME = os.getenv("CANDIDATES_TENANT_NAME", "Candidates")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_REQUESTS = _env_bool("LOG_REQUESTS")

    # Error tracking
    SENTRY_DSN = os.getenv("SENTRY_DSN")
    APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

    # Mail
    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "billing@localhost")
    MAIL_SUPPRESS_SEND = _env_bool("MAIL_SUPPRESS_SEND")

    # Celery
    CELERY = {
        "broker_url": os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
        "result_backend": os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
        "task_ignore_result": True,
        "task_serializer": "json",
        "accept_content": ["json"],
        "timezone": "UTC",
        "enable_utc": True,
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
    }

    REQUIRED_SETTINGS = ()

    @classmethod
    def validate(cls):
        """Fail fast when a required setting is missing."""
        missing = [name for name in cls.REQUIRED_SETTINGS if not getattr(cls, name, None)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )
