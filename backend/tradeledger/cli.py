# Overview: Flask CLI command groups for database bootstrap, ledger checks and quotation maintenance.

# backend/tradeledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection:
# - python -m flask ledger verify [--product-id 1]
#   Check stock == sum(movements) and the previous/new stock chain; exit 1 on any break.
#
# Quotation maintenance:
# - python -m flask quotations expire [--as-of 2026-01-31]
#   Expire draft/sent quotations whose valid_until has passed.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import quotation_service, stock_service
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Verify a single product')
@with_appcontext
def verify_ledger(product_id):
    """Verify the stock ledger against product aggregates."""
    if product_id is not None:
        reports = [stock_service.verify_product_ledger(product_id)]
    else:
        reports = stock_service.verify_all_products()

    failures = 0
    for report in reports:
        if report["consistent"]:
            click.echo(f"PASS {report['sku']}: stock {report['current_stock']}")
            continue
        failures += 1
        click.echo(
            f"FAIL {report['sku']}: stock {report['current_stock']} "
            f"!= ledger {report['ledger_sum']} ({len(report['breaks'])} chain breaks)"
        )
        for brk in report["breaks"]:
            click.echo(f"  movement {brk['movement_id']}: {brk['problem']}")

    click.echo(f"\n{len(reports)} products checked, {failures} inconsistent")
    if failures:
        raise SystemExit(1)


@click.group('quotations')
def quotations_group():
    """Quotation maintenance commands."""


@quotations_group.command('expire')
@click.option('--as-of', 'as_of', default=None, help='ISO-8601 cutoff (default: now)')
@with_appcontext
def expire_quotations(as_of):
    """Expire draft/sent quotations past their valid_until."""
    try:
        cutoff = parse_iso_datetime(as_of)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--as-of")
    expired = quotation_service.expire_quotations(as_of=cutoff)
    for number in expired:
        click.echo(f"EXPIRED {number}")
    click.echo(f"{len(expired)} quotations expired")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(quotations_group)
