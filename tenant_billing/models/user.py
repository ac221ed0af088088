from datetime import datetime

from werkzeug.security import check_password_hash, generate_password_hash

from tenant_billing.extensions import db


class UserRole:
    ADMIN = "ADMIN"
    CANDIDATE = "CANDIDATE"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(20), nullable=False, default=UserRole.ADMIN)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)

    @classmethod
    def find_by_email(cls, email):
        return cls.query.filter(db.func.lower(cls.email) == email.strip().lower()).first()

    @classmethod
    def active_admin_for(cls, tenant_id):
        return (
            cls.query
            .filter_by(tenant_id=tenant_id, role=UserRole.ADMIN, is_active=True)
            .order_by(cls.created_at.asc())
            .first()
        )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }
