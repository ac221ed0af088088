from .base import BaseConfig


class TestingConfig(BaseConfig):
    ENVIRONMENT = "testing"
    TESTING = True

    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"

    STRIPE_SECRET_KEY = "sk_test_mock"
    STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
    STRIPE_MAX_NETWORK_RETRIES = 0

    APP_URL = "https://app.test"
    MAIL_SUPPRESS_SEND = True
    SENTRY_DSN = None

    CELERY = dict(
        BaseConfig.CELERY,
        broker_url="memory://",
        result_backend="cache+memory://",
        task_always_eager=True,
    )
