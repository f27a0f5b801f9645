# Overview: Flask CLI commands for finance bootstrap and maintenance.

# backend/bursar/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask finance <command> [options]
#
# Bootstrap:
# - python -m flask finance init
#   Idempotent: seeds finance settings and the default chart of accounts.
#
# Settings:
# - python -m flask finance settings
#   List every finance setting with its effective value and source.
# - python -m flask finance set-setting expense_approval_threshold 25000
#   Update one setting (values are validated against the catalog).
#
# Reconciliation:
# - python -m flask finance import-fees [--url https://fees.example.org]
#   Import settled fee payments as income (defaults to FEE_SOURCE_URL).
# - python -m flask finance reconcile-bank [--account-id 1] [--repair]
#   Compare cached bank balances with transaction history.
# - python -m flask finance rebuild-petty-cash "Jane Bursar"
#   Recompute one custodian's petty-cash chain from scratch.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import FinanceError
from .services import account_service, bank_service, petty_cash_service, settings_service
from .services.fee_import_service import import_settled_fee_payments
from .services.fee_sources import HttpFeePaymentSource


# code, name, account_type
DEFAULT_ACCOUNTS = (
    ("AST-001", "Cash at Bank", "asset"),
    ("AST-002", "Petty Cash", "asset"),
    ("INC-001", "Student Fees", "income"),
    ("INC-002", "Grants and Donations", "income"),
    ("EXP-001", "Salaries and Wages", "expense"),
    ("EXP-002", "Utilities", "expense"),
    ("EXP-003", "Teaching Supplies", "expense"),
    ("EXP-004", "Repairs and Maintenance", "expense"),
)


def _fail(exc: FinanceError):
    click.echo(f"FAIL {exc.message}")
    raise SystemExit(1)


@click.group('finance')
def finance_group():
    """Finance ledger bootstrap and maintenance commands."""


@finance_group.command('init')
@with_appcontext
def init_finance():
    """Seed finance settings and the default chart of accounts."""
    click.echo("START Initializing finance ledger...")

    added = settings_service.ensure_settings_seeded()
    click.echo(f"PASS Settings seeded ({added} new)")

    created = 0
    for code, name, account_type in DEFAULT_ACCOUNTS:
        if account_service.get_account_by_code(code):
            continue
        account_service.create_account(code, name, account_type)
        created += 1
    click.echo(f"PASS Chart of accounts ready ({created} new)")


@finance_group.command('settings')
@with_appcontext
def list_settings_cli():
    """List finance settings."""
    for key, row in settings_service.list_settings().items():
        click.echo(f"{key:<30} {str(row['value']):<12} [{row['type']}] ({row['source']})")


@finance_group.command('set-setting')
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_setting_cli(key, value):
    """Set a finance setting."""
    try:
        settings_service.set_setting(key, value)
    except FinanceError as e:
        _fail(e)
    click.echo(f"PASS {key} = {settings_service.get_setting(key)}")


@finance_group.command('import-fees')
@click.option('--url', help='Fee subsystem base URL (defaults to FEE_SOURCE_URL)')
@with_appcontext
def import_fees_cli(url):
    """Import settled student-fee payments as income records."""
    base_url = url or current_app.config.get("FEE_SOURCE_URL")
    if not base_url:
        click.echo("FAIL No fee source configured. Pass --url or set FEE_SOURCE_URL.")
        raise SystemExit(1)

    source = HttpFeePaymentSource(base_url, timeout=current_app.config.get("FEE_SOURCE_TIMEOUT", 10))
    try:
        result = import_settled_fee_payments(source)
    except FinanceError as e:
        current_app.logger.exception("Fee import failed")
        _fail(e)
    click.echo(
        f"PASS Imported {result.imported}, skipped {result.skipped} duplicates, "
        f"ignored {result.ignored} unsettled"
    )


@finance_group.command('reconcile-bank')
@click.option('--account-id', type=int, help='Only this bank account (defaults to all)')
@click.option('--repair', is_flag=True, help='Overwrite drifted cached balances')
@with_appcontext
def reconcile_bank_cli(account_id, repair):
    """Compare cached bank balances with transaction history."""
    if account_id is not None:
        account_ids = [account_id]
    else:
        account_ids = [a.id for a in bank_service.list_bank_accounts()]

    drifted = 0
    for bank_account_id in account_ids:
        try:
            report = bank_service.reconcile_bank_account(bank_account_id, repair=repair)
        except FinanceError as e:
            _fail(e)
        if report["drift_cents"]:
            drifted += 1
            status = "REPAIRED" if report["repaired"] else "DRIFT"
            click.echo(
                f"{status} account {bank_account_id}: stored {report['stored_cents']} "
                f"computed {report['computed_cents']}"
            )
    click.echo(f"PASS Checked {len(account_ids)} accounts, {drifted} with drift")


@finance_group.command('rebuild-petty-cash')
@click.argument('custodian')
@with_appcontext
def rebuild_petty_cash_cli(custodian):
    """Recompute a custodian's petty-cash chain."""
    try:
        report = petty_cash_service.rebuild_custodian_chain(custodian)
    except FinanceError as e:
        _fail(e)
    click.echo(
        f"PASS {report['entries']} entries, {report['corrected_entries']} corrected, "
        f"balance {report['computed_balance_cents']}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(finance_group)
