# Overview: Flask CLI command groups for tenant bootstrap and scheduled ledger maintenance.

# backend/studio_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
# - python -m flask orgs create --name "Studio Zurich" --code "ZRH" [--currency CHF]
#
# Ledger maintenance (schedule these):
# - python -m flask ledger verify --org-id 1
#   Recompute every cached balance from the ledger; exit code 1 on drift.
# - python -m flask ledger expire-credits --org-id 1
#   Expire credit lots past their expiry date.
# - python -m flask ledger sweep-breakage --org-id 1
#   Recognize breakage on expired gift cards.
# - python -m flask ledger reconcile --org-id 1 [--statement-id 3]
#   Run the bank statement matcher.
# - python -m flask ledger liability --org-id 1
#   Outstanding gift card and wallet balances.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization
from .money import format_cents
from .services import gift_card_service, ledger_service, reconciliation_service, wallet_service


def _require_org(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id)
    if not org:
        raise click.ClickException(f"Organization ID {org_id} not found")
    return org


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask orgs create' to add a tenant.")


# =============================================================================
# ORGANIZATIONS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Currency':<10} {'Active'}")
    click.echo("="*70)

    for org in orgs:
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {org.default_currency:<10} {active_str}")

    click.echo("="*70 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--currency', default=None, help='Default currency (ISO 4217)')
@with_appcontext
def create_org_cli(name, code, currency):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(
        name=name,
        code=code,
        default_currency=(currency or current_app.config["DEFAULT_CURRENCY"]).upper(),
        is_active=True,
    )
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


# =============================================================================
# LEDGER MAINTENANCE
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger verification and scheduled maintenance."""


@ledger_group.command('verify')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def verify_cli(org_id):
    """
    Recompute cached balances from ledger history.

    Exits with status 1 if any account drifted.
    """
    _require_org(org_id)
    checks = ledger_service.verify_org(org_id)
    drifted = [c for c in checks if not c.ok]

    click.echo(f"Checked {len(checks)} balances for organization {org_id}")
    for check in drifted:
        label = f"{check.account_type} {check.account_id}"
        if check.credit_type:
            label += f" ({check.credit_type})"
        click.echo(f"  DRIFT {label}: cached {check.cached}, ledger {check.computed}")

    if drifted:
        click.echo(f"FAIL {len(drifted)} balance(s) drifted")
        click.get_current_context().exit(1)
    click.echo("PASS All balances match the ledger")


@ledger_group.command('expire-credits')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def expire_credits_cli(org_id):
    """Expire credit lots whose expiry has passed."""
    _require_org(org_id)
    entries = wallet_service.expire_credit_lots(org_id)
    total = sum(-e.credit_delta for e in entries)
    click.echo(f"Expired {total} credit(s) in {len(entries)} wallet/type group(s).")


@ledger_group.command('sweep-breakage')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def sweep_breakage_cli(org_id):
    """Recognize breakage on expired gift cards with remaining balance."""
    org = _require_org(org_id)
    entries = gift_card_service.sweep_breakage(org_id)
    total = sum(-e.amount_delta_cents for e in entries)
    click.echo(f"Recognized breakage on {len(entries)} card(s): {format_cents(total, org.default_currency)}")


@ledger_group.command('reconcile')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--statement-id', type=int, default=None, help='Limit to one imported statement')
@with_appcontext
def reconcile_cli(org_id, statement_id):
    """Match bank statement lines against payouts and invoices."""
    _require_org(org_id)
    results = reconciliation_service.run_matching(org_id, statement_id=statement_id)

    counts = {}
    for result in results:
        counts[result.status] = counts.get(result.status, 0) + 1
    click.echo(f"Matched {len(results)} statement line(s)")
    for status in sorted(counts):
        click.echo(f"  {status:<16} {counts[status]}")


@ledger_group.command('liability')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def liability_cli(org_id):
    """Show outstanding prepaid balances."""
    org = _require_org(org_id)
    summary = gift_card_service.liability_summary(org_id)
    currency = org.default_currency
    click.echo(f"Gift cards outstanding: {format_cents(summary['gift_card_outstanding_cents'], currency)}")
    click.echo(f"Gift card breakage:     {format_cents(summary['gift_card_breakage_cents'], currency)}")
    click.echo(f"Wallets outstanding:    {format_cents(summary['wallet_outstanding_cents'], currency)}")
    click.echo(f"Total outstanding:      {format_cents(summary['total_outstanding_cents'], currency)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(ledger_group)
