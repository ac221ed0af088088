"""
Celery entry point:

    celery -A tenant_billing.workers.worker worker -l info
    celery -A tenant_billing.workers.worker beat -l info
"""

import logging

from celery.signals import setup_logging, task_failure

from tenant_billing import create_app
from tenant_billing.logging_config import configure_worker_logging

logger = logging.getLogger(__name__)

flask_app = create_app()
celery_app = flask_app.extensions["celery"]


@setup_logging.connect
def use_json_logging(**kwargs):
    # Connected handler stops Celery from installing its own root handlers
    configure_worker_logging(flask_app.config.get("LOG_LEVEL", "INFO"))


@task_failure.connect
def log_failed_task(sender=None, task_id=None, exception=None, **kwargs):
    logger.error(
        "Celery task failed",
        extra={
            "task": sender.name if sender else None,
            "task_id": task_id,
            "error_type": type(exception).__name__ if exception else None,
        },
    )
