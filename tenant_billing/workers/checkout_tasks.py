import logging
from datetime import datetime

from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError

from tenant_billing.extensions import session_scope
from tenant_billing.services.checkout_store import PendingCheckoutStore

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(SQLAlchemyError,),
    retry_backoff=30,
    retry_kwargs={"max_retries": 5},
    retry_jitter=True,
)
def purge_expired_checkouts(self):
    """Delete signups whose checkout window closed without payment."""
    with session_scope():
        purged = PendingCheckoutStore().purge_expired(datetime.utcnow())

    logger.info("Expired pending checkouts purged", extra={"count": purged, "task_id": self.request.id})
    return purged
