import logging
import re
import secrets
import string

from flask import current_app

from tenant_billing.errors import ConflictError
from tenant_billing.extensions import db
from tenant_billing.models.tenant import Tenant, TenantKind
from tenant_billing.models.user import User, UserRole

logger = logging.getLogger(__name__)

PASSWORD_SYMBOLS = "!@#$%&*"
PASSWORD_LENGTH = 12


def generate_temporary_password(length=PASSWORD_LENGTH):
    """Random password with at least one upper, lower, digit and symbol."""
    required = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice(PASSWORD_SYMBOLS),
    ]
    alphabet = string.ascii_letters + string.digits + PASSWORD_SYMBOLS
    rest = [secrets.choice(alphabet) for _ in range(length - len(required))]
    chars = required + rest
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def slugify(value):
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").strip().lower()).strip("-")
    return slug or secrets.token_hex(4)


class IdentityService:
    """
    Tenant and user provisioning for newly activated subscriptions.

    Role management and authentication live elsewhere; this only creates the
    records billing needs to exist. Flushes, never commits.
    """

    def candidates_tenant(self) -> Tenant:
        slug = current_app.config.get("CANDIDATES_TENANT_SLUG", "candidates")
        tenant = Tenant.query.filter_by(slug=slug).first()
        if tenant is None:
            tenant = Tenant(
                name=current_app.config.get("CANDIDATES_TENANT_NAME", "Candidates"),
                slug=slug,
                kind=TenantKind.CANDIDATE,
            )
            db.session.add(tenant)
            db.session.flush()
            logger.info("Shared candidates tenant created", extra={"tenant_id": tenant.id})
        return tenant

    def ensure_domain_available(self, domain):
        if Tenant.query.filter_by(domain=domain.strip().lower()).first() is not None:
            raise ConflictError(f"A company with domain {domain} is already registered")

    def ensure_email_available(self, email):
        if User.find_by_email(email) is not None:
            raise ConflictError(f"{email} is already registered")

    def create_company_tenant(self, company_name, domain) -> Tenant:
        domain = domain.strip().lower()
        self.ensure_domain_available(domain)
        tenant = Tenant(name=company_name, slug=slugify(domain), domain=domain, kind=TenantKind.COMPANY)
        db.session.add(tenant)
        db.session.flush()
        return tenant

    def provision_user(self, tenant, *, name, email, role=UserRole.ADMIN, active=True):
        """
        Create the user for ``tenant`` with a temporary credential.

        Returns (user, temporary_password). When the email already belongs to
        a user of the same tenant it is reused and no credential is issued.
        """
        existing = User.find_by_email(email)
        if existing is not None:
            if existing.tenant_id != tenant.id:
                raise ConflictError(f"{email} is already registered")
            return existing, None

        password = generate_temporary_password()
        user = User(
            tenant_id=tenant.id,
            name=name,
            email=email.strip().lower(),
            role=role,
            is_active=active,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.flush()

        logger.info(
            "User provisioned",
            extra={"tenant_id": tenant.id, "user_id": user.id, "role": role, "active": active},
        )
        return user, password

    def contact_for(self, tenant_id):
        """(tenant, active admin user) for notifications; admin may be None."""
        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            return None, None
        return tenant, User.active_admin_for(tenant_id)

    def activate_users(self, tenant):
        """Activate the tenant's inactive users, issuing each a new temporary credential."""
        activated = []
        for user in tenant.users.filter_by(is_active=False).all():
            password = generate_temporary_password()
            user.set_password(password)
            user.is_active = True
            activated.append((user, password))
        db.session.flush()
        return activated
