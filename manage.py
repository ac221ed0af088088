"""Management script for database setup and billing maintenance tasks"""

import click
from flask import current_app
from flask.cli import FlaskGroup

from tenant_billing import create_app
from tenant_billing.extensions import db, session_scope
from tenant_billing.services.checkout_store import PendingCheckoutStore
from tenant_billing.services.plan_catalog import seed_default_plans

cli = FlaskGroup(create_app=create_app)


@cli.command("init-db")
def init_db():
    """Create all tables"""
    db.create_all()
    click.echo("✅ Database initialized successfully!")


@cli.command("seed-plans")
def seed_plans():
    """Insert or update the default plan catalog (price ids from STRIPE_PRICE_<PLAN>)"""
    price_ids = current_app.config.get("STRIPE_PRICE_IDS", {})
    created = seed_default_plans(price_ids)
    click.echo(f"✅ Plan catalog seeded ({created} created, {len(price_ids)} Stripe prices linked)")


@cli.command("purge-checkouts")
def purge_checkouts():
    """Delete uncompleted checkouts past their expiry"""
    with session_scope():
        purged = PendingCheckoutStore().purge_expired()
    click.echo(f"✅ Purged {purged} expired checkouts")


if __name__ == "__main__":
    cli()
