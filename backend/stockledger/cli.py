# Overview: Flask CLI command groups for bootstrap, ledger verification, and alert polling.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to stockledger (PowerShell: $env:FLASK_APP="stockledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--name "Shop"] [--code "SHOP"]
#   Create tables (if missing) and a default business with notification settings.
# - python -m flask system businesses
#   List businesses.
#
# Ledger verification/repair:
# - python -m flask stock verify --business-id 1 [--product-id 12]
#   Compare cached current_stock with the ledger projection; exits 1 on drift.
# - python -m flask stock rebuild --business-id 1
#   Rewrite drifted caches from the ledger.
#
# Alerts:
# - python -m flask alerts check --business-id 1 [--dispatch]
#   Print critical/low products; --dispatch hands the batch to the dispatcher.

import sys

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Business, NotificationSettings
from .services import alert_service, inventory_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--name', 'business_name', default='Default Business', help='Business name')
@click.option('--code', 'business_code', default='DEFAULT', help='Business code')
@with_appcontext
def init_system(business_name, business_code):
    """
    Idempotent bootstrap: tables, a default business and its notification settings.

    Thresholds start from LOW_STOCK_THRESHOLD / LOW_STOCK_CRITICAL_THRESHOLD.
    """
    click.echo("START Initializing stock ledger...")
    db.create_all()

    business = db.session.query(Business).filter_by(code=business_code).first()
    if not business:
        business = Business(name=business_name, code=business_code, is_active=True)
        db.session.add(business)
        db.session.commit()
        click.echo(f"PASS Created business: {business.name} (ID: {business.id}, Code: {business.code})")
    else:
        click.echo(f"PASS Using existing business: {business.name} (ID: {business.id})")

    settings = db.session.query(NotificationSettings).filter_by(business_id=business.id).first()
    if not settings:
        settings = NotificationSettings(
            business_id=business.id,
            threshold=current_app.config["LOW_STOCK_THRESHOLD"],
            critical_threshold=current_app.config["LOW_STOCK_CRITICAL_THRESHOLD"],
        )
        db.session.add(settings)
        db.session.commit()
        click.echo(
            f"PASS Created notification settings (threshold={settings.threshold}, "
            f"critical={settings.critical_threshold})"
        )

    click.echo("DONE Stock ledger initialized")


@system_group.command('businesses')
@with_appcontext
def list_businesses():
    """List all businesses."""
    businesses = db.session.query(Business).order_by(Business.id).all()
    if not businesses:
        click.echo("No businesses found.")
        return

    click.echo("\n" + "=" * 60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active'}")
    click.echo("=" * 60)
    for business in businesses:
        click.echo(f"{business.id:<5} {business.name:<30} {business.code or '-':<15} {business.is_active}")
    click.echo("=" * 60 + "\n")


@click.group('stock')
def stock_group():
    """Ledger projection checks."""


@stock_group.command('verify')
@click.option('--business-id', type=int, required=True)
@click.option('--product-id', type=int, default=None)
@with_appcontext
def verify_stock(business_id, product_id):
    """Report products whose cached stock disagrees with the ledger."""
    drift = inventory_service.verify_stock(business_id, product_id)
    if not drift:
        click.echo("PASS All cached stock matches the ledger")
        return

    for row in drift:
        click.echo(
            f"FAIL Product {row.product_id}: cached={row.cached} projected={row.projected} delta={row.delta}"
        )
    sys.exit(1)


@stock_group.command('rebuild')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def rebuild_stock(business_id):
    """Rewrite drifted current_stock values from the ledger."""
    repaired = inventory_service.rebuild_stock_cache(business_id)
    if not repaired:
        click.echo("PASS Nothing to repair")
        return
    for row in repaired:
        click.echo(f"FIXED Product {row.product_id}: {row.cached} -> {row.projected}")


@click.group('alerts')
def alerts_group():
    """Low-stock alert commands."""


@alerts_group.command('check')
@click.option('--business-id', type=int, required=True)
@click.option('--dispatch', is_flag=True, help='Send the batch through the configured dispatcher')
@with_appcontext
def check_alerts(business_id, dispatch):
    """Classify products and optionally dispatch an alert batch."""
    if dispatch:
        dispatcher = current_app.config.get("ALERT_DISPATCHER") or alert_service.LoggingAlertDispatcher()
        outcome = alert_service.dispatch_low_stock_alerts(business_id, dispatcher)
        result = outcome.result
    else:
        outcome = None
        result = alert_service.evaluate_business(business_id)

    for product in result.critical:
        click.echo(f"CRITICAL {product.sku:<20} {product.name:<30} stock={product.current_stock}")
    for product in result.low:
        click.echo(f"LOW      {product.sku:<20} {product.name:<30} stock={product.current_stock}")
    if not result.needs_alert:
        click.echo("PASS No products below threshold")

    if outcome is not None:
        if outcome.sent:
            click.echo("SENT Alert batch dispatched")
        else:
            click.echo(f"SKIP {outcome.skipped_reason}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(alerts_group)
