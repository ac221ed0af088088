from datetime import datetime

from tenant_billing.extensions import db


class ProcessedWebhookEvent(db.Model):
    """Gateway event ids whose effect has been committed."""

    __tablename__ = "processed_webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    event_type = db.Column(db.String(100), nullable=False)
    processed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ProcessedWebhookEvent {self.event_id} {self.event_type}>"

    @classmethod
    def is_processed(cls, event_id):
        return cls.query.filter_by(event_id=event_id).first() is not None

    @classmethod
    def mark_processed(cls, event_id, event_type):
        """Adds the ledger row to the current transaction; the caller commits."""
        record = cls(event_id=event_id, event_type=event_type)
        db.session.add(record)
        return record
