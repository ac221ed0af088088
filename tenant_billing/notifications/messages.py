"""
Post-commit outbox entries.

Transactional code returns these instead of sending mail; the caller hands
them to NotificationService.dispatch() once the transaction has committed.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Notification:
    contact_email: str
    contact_name: str


@dataclass(frozen=True)
class WelcomeNotification(Notification):
    plan_name: str
    company_name: Optional[str] = None
    temporary_password: Optional[str] = None


@dataclass(frozen=True)
class UpgradeNotification(Notification):
    company_name: str
    old_plan_name: str
    new_plan_name: str
    new_plan_price: float
    currency: str


@dataclass(frozen=True)
class CancellationNotification(Notification):
    company_name: str
    plan_name: str
    access_until: Optional[datetime] = None


@dataclass(frozen=True)
class ReactivationNotification(Notification):
    company_name: str
    plan_name: str
    expires_at: Optional[datetime] = None
