from datetime import datetime

from tenant_billing.extensions import db


class TenantKind:
    CANDIDATE = "CANDIDATE"
    COMPANY = "COMPANY"


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    domain = db.Column(db.String(255), nullable=True, unique=True)
    kind = db.Column(db.String(20), nullable=False, default=TenantKind.COMPANY)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    users = db.relationship("User", backref="tenant", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "domain": self.domain,
            "kind": self.kind,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
