"""Click CLI commands for billschedule."""

import logging
import sys
import traceback
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import click

from billschedule import __version__
from billschedule.balance import compute_balance
from billschedule.discount import apply_discount
from billschedule.ledger import LedgerReconciler
from billschedule.loader import find_ledger_file, open_store, save_store
from billschedule.migration import has_legacy_records, reconcile_ledger
from billschedule.recurrence import RecurrenceEngine, resolve_due_date
from billschedule.scanner import DueSetScanner, invoke_scan
from billschedule.store import InMemoryStore

from .formatters import (
    print_balance,
    print_batch_json,
    print_batch_table,
    print_due_table,
    print_forecast_csv,
    print_forecast_json,
    print_forecast_table,
    print_reconcile_report,
)

logger = logging.getLogger(__name__)

NOW_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]

ledger_option = click.option(
    "--ledger",
    "-f",
    "ledger_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Ledger file (default: BILLSCHEDULE_FILE, then ./ledger.yaml)",
)


def _ledger_path(ledger_path: Optional[str]) -> Path:
    """Use the given ledger file or discover one."""
    if ledger_path:
        return Path(ledger_path)
    found = find_ledger_file()
    if found is None:
        click.echo(
            "Error: No ledger file found. Pass --ledger or set BILLSCHEDULE_FILE", err=True
        )
        sys.exit(1)
    return found


def _open(path: Path, now: datetime) -> InMemoryStore:
    """Load a ledger, reconciling legacy records first."""
    store = open_store(path)
    if has_legacy_records(store):
        logger.warning("Ledger contains legacy records, reconciling before use")
        reconcile_ledger(store, now)
    return store


def _fail(e: Exception) -> None:
    click.echo(f"Error: {e}", err=True)
    if logger.isEnabledFor(logging.DEBUG):
        traceback.print_exc()
    sys.exit(1)


def _parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise click.BadParameter(f"not a valid amount: {value}") from None


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
def main(verbose: bool):
    """Billschedule - Scheduled billing for subscriptions and one-time products."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@main.command()
@ledger_option
def validate(ledger_path: Optional[str]):
    """Validate a ledger file for syntax and schema compliance.

    Examples:
        billschedule validate -f ledger.yaml
    """
    path = _ledger_path(ledger_path)
    click.echo(f"Validating ledger: {path}")

    try:
        store = open_store(path)
        ledger = store.to_ledger()

        click.echo("✓ Validation successful!")
        click.echo(f"  Subjects: {len(ledger.subjects)}")
        click.echo(f"  Products: {len(ledger.products)}")
        click.echo(f"  Charges:  {len(ledger.charges)}")
        click.echo(f"  Payments: {len(ledger.payments)}")

        if has_legacy_records(store):
            click.echo("\n⚠ Legacy records found; run 'billschedule reconcile' to migrate them")

    except Exception as e:
        click.echo(f"✗ Validation failed: {e}", err=True)
        if logger.isEnabledFor(logging.DEBUG):
            traceback.print_exc()
        sys.exit(1)


@main.command()
@ledger_option
@click.option("--now", type=click.DateTime(formats=NOW_FORMATS), help="Scan time (default: now)")
@click.option("--lookahead-hours", type=int, help="Lookahead horizon (default: from config)")
@click.option("--dry-run", is_flag=True, help="Show what would be charged without writing")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format (default: table)",
)
def scan(
    ledger_path: Optional[str],
    now: Optional[datetime],
    lookahead_hours: Optional[int],
    dry_run: bool,
    output_format: str,
):
    """Generate charges for every subscription that is due.

    Exits 0 when the scan completes, even if individual items failed; see the
    error count in the output.

    Examples:
        billschedule scan
        billschedule scan -f ledger.yaml --now 2024-01-01 --format json
        billschedule scan --dry-run
    """
    path = _ledger_path(ledger_path)
    now = now or datetime.now()

    try:
        store = _open(path, now)
        hours = store.config.lookahead_hours if lookahead_hours is None else lookahead_hours

        if dry_run:
            due = DueSetScanner(store).find_due(now, hours)
            click.echo(f"Would generate {len(due)} charge(s)")
            for subject, subscription in due:
                click.echo(f"  {subject.id}  {subscription.product_name}")
            return

        result = invoke_scan(store, now, hours)
        save_store(store, path)
    except Exception as e:
        _fail(e)
        return

    if output_format == "json":
        print_batch_json(result)
    else:
        print_batch_table(result)


@main.command()
@ledger_option
@click.option("--now", type=click.DateTime(formats=NOW_FORMATS), help="Scan time (default: now)")
@click.option("--lookahead-hours", type=int, help="Lookahead horizon (default: from config)")
def due(ledger_path: Optional[str], now: Optional[datetime], lookahead_hours: Optional[int]):
    """List subscriptions awaiting a charge.

    Examples:
        billschedule due
        billschedule due -f ledger.yaml --now 2024-03-01 --lookahead-hours 72
    """
    path = _ledger_path(ledger_path)
    now = now or datetime.now()

    try:
        store = _open(path, now)
        hours = store.config.lookahead_hours if lookahead_hours is None else lookahead_hours
        pairs = DueSetScanner(store).find_due(now, hours)
    except Exception as e:
        _fail(e)
        return

    if not pairs:
        click.echo("Nothing due")
        return

    rows = sorted(
        ((subject, sub, resolve_due_date(sub)) for subject, sub in pairs),
        key=lambda row: (row[2], row[0].id),
    )
    print_due_table(rows)


@main.command()
@ledger_option
@click.argument("subject_id")
@click.option("--org", "organization_id", help="Organization (default: the subject's own)")
def balance(ledger_path: Optional[str], subject_id: str, organization_id: Optional[str]):
    """Show a subject's outstanding debt, available credit and overdue charges.

    Examples:
        billschedule balance alice
    """
    path = _ledger_path(ledger_path)
    now = datetime.now()

    try:
        store = _open(path, now)
        subject = store.get_subject(subject_id)
        org = organization_id or subject.organization_id
        snapshot = compute_balance(store, subject_id, org)
        overdue = LedgerReconciler(store).overdue_charges(subject_id, org, now.date())
    except Exception as e:
        _fail(e)
        return

    print_balance(snapshot, overdue, store.config.currency)


@main.command()
@ledger_option
@click.argument("subject_id")
@click.argument("amount")
@click.option(
    "--charge",
    "charge_ids",
    multiple=True,
    help="Charge to apply the payment to, in order (repeatable)",
)
@click.option("--description", default="", help="Payment description")
@click.option("--reference", help="External payment reference")
def pay(
    ledger_path: Optional[str],
    subject_id: str,
    amount: str,
    charge_ids: tuple,
    description: str,
    reference: Optional[str],
):
    """Record a payment, applying it to charges; any excess becomes credit.

    Examples:
        billschedule pay alice 50.00 --charge 3f2a9c1b7d4e
        billschedule pay -f ledger.yaml alice 100
    """
    path = _ledger_path(ledger_path)
    value = _parse_amount(amount)
    now = datetime.now()

    try:
        store = _open(path, now)
        if reference and store.find_payment_by_reference(reference) is not None:
            click.echo(f"Error: Payment with reference '{reference}' already recorded", err=True)
            sys.exit(1)

        subject = store.get_subject(subject_id)
        payments = LedgerReconciler(store).record_payment(
            subject_id,
            subject.organization_id,
            value,
            description=description,
            charge_ids=charge_ids,
            reference=reference,
            now=now,
        )
        save_store(store, path)
    except Exception as e:
        _fail(e)
        return

    click.echo(f"✓ Recorded {value} as {len(payments)} payment(s)")
    for payment in payments:
        click.echo(f"  {payment.id}  {payment.amount}  {payment.description}")


@main.command(name="delete-charge")
@ledger_option
@click.argument("charge_id")
def delete_charge(ledger_path: Optional[str], charge_id: str):
    """Delete a charge; payments applied to it become available credit.

    Examples:
        billschedule delete-charge 3f2a9c1b7d4e
    """
    path = _ledger_path(ledger_path)
    now = datetime.now()

    try:
        store = _open(path, now)
        result = LedgerReconciler(store).delete_charge(charge_id, now)
        save_store(store, path)
    except Exception as e:
        _fail(e)
        return

    click.echo(f"✓ Deleted charge {charge_id}")
    if result.converted_payment_ids:
        click.echo(
            f"  {result.converted_amount} from {len(result.converted_payment_ids)} "
            f"payment(s) converted to available credit"
        )


@main.command(name="restore-charge")
@ledger_option
@click.argument("charge_id")
def restore_charge(ledger_path: Optional[str], charge_id: str):
    """Restore a deleted charge and relink its former payments.

    Examples:
        billschedule restore-charge 3f2a9c1b7d4e
    """
    path = _ledger_path(ledger_path)
    now = datetime.now()

    try:
        store = _open(path, now)
        result = LedgerReconciler(store).restore_charge(charge_id, now)
        save_store(store, path)
    except Exception as e:
        _fail(e)
        return

    click.echo(f"✓ Restored charge {charge_id}")
    click.echo(f"  Relinked payments: {len(result.relinked_payment_ids)}")
    if result.skipped_payment_ids:
        click.echo(f"  ⚠ Skipped payments: {', '.join(result.skipped_payment_ids)}")


@main.command()
@ledger_option
def reconcile(ledger_path: Optional[str]):
    """Migrate legacy records and recompute indexes and balances.

    Examples:
        billschedule reconcile -f ledger.yaml
    """
    path = _ledger_path(ledger_path)

    try:
        store = open_store(path)
        report = reconcile_ledger(store, datetime.now())
        save_store(store, path)
    except Exception as e:
        _fail(e)
        return

    click.echo("✓ Reconciled ledger" if report.changed else "✓ Ledger already up to date")
    print_reconcile_report(report)


@main.command()
@ledger_option
@click.argument("subject_id")
@click.argument("product_id")
@click.option(
    "--until",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    required=True,
    help="Last date to forecast (YYYY-MM-DD)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "csv", "json"], case_sensitive=False),
    default="table",
    help="Output format (default: table)",
)
def forecast(
    ledger_path: Optional[str],
    subject_id: str,
    product_id: str,
    until: datetime,
    output_format: str,
):
    """Show upcoming charges of one subscription.

    Examples:
        billschedule forecast alice gym --until 2024-12-31
        billschedule forecast -f ledger.yaml alice gym --until 2024-12-31 --format csv
    """
    path = _ledger_path(ledger_path)

    try:
        store = _open(path, datetime.now())
        subject = store.get_subject(subject_id)
        subscription = subject.find_subscription(product_id)
        if subscription is None:
            click.echo(f"Error: Product '{product_id}' not assigned to '{subject_id}'", err=True)
            sys.exit(1)

        start = resolve_due_date(subscription)
        end = until.date()
        if start is None:
            dates = []
        elif subscription.is_recurring:
            dates = RecurrenceEngine().generate(subscription.recurrence, start, end)
        else:
            dates = [start] if start <= end else []

        amount = apply_discount(subscription.base_price, subscription.discount)
        rows = [(d, amount) for d in dates]
    except Exception as e:
        _fail(e)
        return

    if not rows:
        click.echo("No upcoming charges")
        return

    output_format = output_format.lower()
    if output_format == "csv":
        print_forecast_csv(rows)
    elif output_format == "json":
        print_forecast_json(rows, subject_id, product_id)
    else:
        print_forecast_table(rows)
