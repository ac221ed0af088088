# tenant_billing/notifications/email_templates.py
from flask import current_app


def _app_name():
    return current_app.config.get("APP_NAME", "Tenant Billing")


def _date(value):
    return value.strftime("%Y-%m-%d") if value else "no expiry"


class EmailTemplates:
    """Plain-text bodies for billing notices. Each returns (subject, body)."""

    @staticmethod
    def welcome(notification):
        subject = f"Welcome to {_app_name()}"
        lines = [
            f"Hi {notification.contact_name},",
            "",
            f"Your account is ready on the {notification.plan_name} plan.",
        ]
        if notification.company_name:
            lines.append(f"Company: {notification.company_name}")
        if notification.temporary_password:
            lines += [
                "",
                f"Sign in with {notification.contact_email} and this temporary password:",
                f"    {notification.temporary_password}",
                "You will be asked to change it on first login.",
            ]
        return subject, "\n".join(lines)

    @staticmethod
    def upgrade(notification):
        subject = f"Your plan is now {notification.new_plan_name}"
        body = "\n".join([
            f"Hi {notification.contact_name},",
            "",
            f"{notification.company_name} moved from {notification.old_plan_name} "
            f"to {notification.new_plan_name} "
            f"({notification.currency} {notification.new_plan_price:.2f}).",
        ])
        return subject, body

    @staticmethod
    def cancellation(notification):
        subject = "Your subscription was canceled"
        body = "\n".join([
            f"Hi {notification.contact_name},",
            "",
            f"The {notification.plan_name} subscription of {notification.company_name} was canceled.",
            f"Paid access ends on: {_date(notification.access_until)}.",
        ])
        return subject, body

    @staticmethod
    def reactivation(notification):
        subject = f"{notification.plan_name} reactivated"
        body = "\n".join([
            f"Hi {notification.contact_name},",
            "",
            f"The {notification.plan_name} subscription of {notification.company_name} is active again.",
            f"Current period ends on: {_date(notification.expires_at)}.",
        ])
        return subject, body
