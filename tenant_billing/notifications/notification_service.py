# tenant_billing/notifications/notification_service.py
import logging

from flask_mail import Message

from tenant_billing.extensions import mail
from tenant_billing.notifications.email_templates import EmailTemplates
from tenant_billing.notifications.messages import (
    CancellationNotification,
    ReactivationNotification,
    UpgradeNotification,
    WelcomeNotification,
)

logger = logging.getLogger(__name__)

TEMPLATES = {
    WelcomeNotification: EmailTemplates.welcome,
    UpgradeNotification: EmailTemplates.upgrade,
    CancellationNotification: EmailTemplates.cancellation,
    ReactivationNotification: EmailTemplates.reactivation,
}


class NotificationService:
    """Best-effort delivery of the notification outbox."""

    @staticmethod
    def send_email(to_email, subject, body):
        mail.send(Message(subject=subject, recipients=[to_email], body=body))
        logger.info("Email sent", extra={"to": to_email, "subject": subject})

    @classmethod
    def dispatch(cls, notifications):
        """
        Send every notification; a failure is logged and never raised.

        Only call after the transaction that produced the outbox committed.
        Returns the number delivered.
        """
        delivered = 0
        for notification in notifications or ():
            render = TEMPLATES.get(type(notification))
            if render is None:
                logger.error(
                    "No template for notification",
                    extra={"notification": type(notification).__name__},
                )
                continue
            try:
                subject, body = render(notification)
                cls.send_email(notification.contact_email, subject, body)
                delivered += 1
            except Exception:
                logger.error(
                    "Failed to send notification",
                    exc_info=True,
                    extra={
                        "notification": type(notification).__name__,
                        "to": notification.contact_email,
                    },
                )
        return delivered
