import logging
import string
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from tenant_billing.errors import ConflictError, PlanNotFound
from tenant_billing.extensions import db
from tenant_billing.models import Plan, PlanAudience, TenantKind, User, UserRole
from tenant_billing.services import plan_catalog
from tenant_billing.services.identity_service import (
    PASSWORD_SYMBOLS,
    IdentityService,
    generate_temporary_password,
    slugify,
)
from tenant_billing.services.plan_catalog import DEFAULT_PLANS, PlanCatalog, seed_default_plans

from conftest import PRICE_IDS, fake

pytestmark = pytest.mark.db


class TestPlanCatalog:
    def test_seeding_is_idempotent(self, plans):
        assert seed_default_plans(PRICE_IDS) == 0
        assert Plan.query.count() == len(plans)

    def test_seeding_logs_count_at_info(self, app):
        seed_logger = plan_catalog.logger
        previous_level = seed_logger.level
        seed_logger.setLevel(logging.INFO)
        try:
            with patch.object(seed_logger, "handle") as handle:
                created = seed_default_plans(PRICE_IDS)
        finally:
            seed_logger.setLevel(previous_level)

        assert created == len(DEFAULT_PLANS)
        (record,) = [call.args[0] for call in handle.call_args_list if call.args[0].msg == "Plan catalog seeded"]
        assert record.levelno == logging.INFO
        assert record.plans_created == len(DEFAULT_PLANS)

    def test_unpriced_plans_have_no_stripe_price(self, plans):
        assert plans["FREE"].stripe_price_id is None
        assert plans["ENTERPRISE"].stripe_price_id is None
        assert plans["ENTERPRISE"].requires_manual_activation is True
        assert plans["PRO"].stripe_price_id == "price_pro_test"

    def test_lookup_by_name_ignores_case(self, plans):
        assert PlanCatalog().find_by_name(" business ").id == plans["BUSINESS"].id

    @pytest.mark.parametrize("price_id", [None, "", "price_unknown"])
    def test_unknown_price_is_an_error(self, plans, price_id):
        with pytest.raises(PlanNotFound):
            PlanCatalog().find_by_external_price_id(price_id)

    def test_list_by_audience_cheapest_first(self, plans):
        names = [plan.name for plan in PlanCatalog().list_all(audience=PlanAudience.COMPANY)]

        assert names == ["STARTUP", "BUSINESS", "ENTERPRISE"]

    def test_expiry(self, plans):
        start = datetime(2030, 1, 1)

        assert plans["PRO"].compute_expiry(start) == start + timedelta(days=30)
        assert plans["FREE"].compute_expiry(start) is None


class TestIdentity:
    def test_temporary_password_mixes_character_classes(self):
        password = generate_temporary_password()

        assert len(password) == 12
        assert any(c in string.ascii_uppercase for c in password)
        assert any(c in string.ascii_lowercase for c in password)
        assert any(c in string.digits for c in password)
        assert any(c in PASSWORD_SYMBOLS for c in password)

    @pytest.mark.parametrize(
        "value, expected",
        [("Acme.COM", "acme-com"), ("  my--company.io ", "my-company-io")],
    )
    def test_slugify(self, value, expected):
        assert slugify(value) == expected

    def test_candidates_tenant_is_created_once(self, app):
        identity = IdentityService()

        first = identity.candidates_tenant()
        second = identity.candidates_tenant()

        assert first.id == second.id
        assert first.kind == TenantKind.CANDIDATE

    def test_provision_user_reuses_same_tenant_email(self, make_tenant):
        tenant = make_tenant(with_admin=False)
        identity = IdentityService()
        email = fake.unique.email()

        user, password = identity.provision_user(tenant, name="Ana", email=email)
        again, no_password = identity.provision_user(tenant, name="Ana", email=email.upper())

        assert user.id == again.id
        assert user.check_password(password)
        assert no_password is None

    def test_provision_user_rejects_email_of_other_tenant(self, make_tenant):
        owner = make_tenant()
        admin = User.active_admin_for(owner.id)

        with pytest.raises(ConflictError):
            IdentityService().provision_user(make_tenant(with_admin=False), name="Bo", email=admin.email)

    def test_activate_users(self, make_tenant):
        tenant = make_tenant(with_admin=False)
        user, _ = IdentityService().provision_user(tenant, name="Cy", email=fake.unique.email(), active=False)
        db.session.commit()

        activated = IdentityService().activate_users(tenant)

        assert [(u.id, u.is_active) for u, _ in activated] == [(user.id, True)]
        assert user.role == UserRole.ADMIN
        assert user.check_password(activated[0][1])
