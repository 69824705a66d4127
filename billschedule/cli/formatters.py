"""Output formatting functions for CLI commands."""

import csv
import json
import sys

import click

from billschedule import constants


def print_batch_table(result) -> None:
    """
    Print a scan summary followed by one row per processed subscription.

    Args:
        result: BatchResult returned by a scan.
    """
    click.echo(
        f"Processed: {result.total_processed}  "
        f"Successful: {result.success_count}  "
        f"Errors: {result.error_count}"
    )
    if not result.items:
        return

    subject_width = max(max(len(i.subject_id) for i in result.items), len("Subject"))
    product_width = max(max(len(i.product_id) for i in result.items), len("Product"))

    click.echo()
    click.echo(
        f"{'Subject':<{subject_width}}  {'Product':<{product_width}}  {'Action':<20}  Detail"
    )
    click.echo("-" * (subject_width + product_width + 20 + 14))

    for item in result.items:
        detail = item.charge_id if item.success else f"✗ {item.error}"
        click.echo(
            f"{item.subject_id:<{subject_width}}  {item.product_id:<{product_width}}  "
            f"{item.action:<20}  {detail}"
        )


def print_batch_json(result) -> None:
    """Print a scan summary as JSON."""
    click.echo(json.dumps(result.to_dict(), indent=2))


def print_due_table(due: list) -> None:
    """
    Print subscriptions awaiting a charge.

    Args:
        due: List of (Subject, Subscription, due date) tuples.
    """
    subject_width = max(max(len(s.id) for s, _, _ in due), len("Subject"))
    name_width = max(max(len(sub.product_name) for _, sub, _ in due), len("Product"))
    name_width = min(name_width, constants.MAX_TABLE_COLUMN_WIDTH)

    click.echo(
        f"{'Due':<10}  {'Subject':<{subject_width}}  {'Product':<{name_width}}  "
        f"{'Type':<9}  {'Price':>10}"
    )
    click.echo("-" * (10 + subject_width + name_width + 9 + 10 + 8))

    for subject, subscription, due_date in due:
        name = subscription.product_name[:name_width]
        click.echo(
            f"{due_date.isoformat():<10}  {subject.id:<{subject_width}}  {name:<{name_width}}  "
            f"{subscription.product_type.value:<9}  {subscription.base_price:>10}"
        )

    click.echo(f"\nTotal: {len(due)} due")


def print_balance(snapshot, overdue: list, currency: str) -> None:
    """
    Print a subject's balances and any overdue charges.

    Args:
        snapshot: BalanceSnapshot for the subject.
        overdue: Overdue Charge objects.
        currency: Currency code for display.
    """
    click.echo(f"Subject:           {snapshot.subject_id}")
    click.echo(f"Organization:      {snapshot.organization_id}")
    click.echo(f"Outstanding:       {snapshot.outstanding} {currency}")
    click.echo(f"Available credit:  {snapshot.available_credit} {currency}")
    click.echo(f"Net balance:       {snapshot.net_balance} {currency}")

    if overdue:
        click.echo(f"\nOverdue charges ({len(overdue)}):")
        for charge in overdue:
            click.echo(
                f"  {charge.id}  {charge.product.name}  {charge.amount}  "
                f"(deadline {charge.product.deadline})"
            )


def print_forecast_table(rows: list) -> None:
    """
    Print forecast charges as a table.

    Args:
        rows: List of (date, amount) tuples, sorted by date.
    """
    header = f"{'#':>4} {'Date':>12} {'Amount':>12}"
    click.echo(header)
    click.echo("-" * len(header))

    for i, (due_date, amount) in enumerate(rows, start=1):
        click.echo(f"{i:>4} {due_date.isoformat():>12} {amount:>12}")

    total = sum((amount for _, amount in rows), constants.ZERO_AMOUNT)
    click.echo(f"\nTotal: {len(rows)} charges, {total}")


def print_forecast_csv(rows: list) -> None:
    """Print forecast charges as CSV."""
    writer = csv.writer(sys.stdout)
    writer.writerow(["Date", "Amount"])
    for due_date, amount in rows:
        writer.writerow([due_date.isoformat(), str(amount)])


def print_forecast_json(rows: list, subject_id: str, product_id: str) -> None:
    """Print forecast charges as JSON."""
    output = {
        "subject_id": subject_id,
        "product_id": product_id,
        "charges": [
            {"date": due_date.isoformat(), "amount": str(amount)} for due_date, amount in rows
        ],
    }
    click.echo(json.dumps(output, indent=2))


def print_reconcile_report(report) -> None:
    """Print what a reconciliation pass changed."""
    click.echo(f"  Links created:      {report.links_created}")
    click.echo(f"  Statuses inferred:  {report.statuses_inferred}")
    click.echo(f"  Schedules fixed:    {report.schedules_fixed}")
    click.echo(f"  Charges archived:   {report.archived}")

    if report.warnings:
        click.echo(f"\n⚠ {len(report.warnings)} warning(s):")
        for warning in report.warnings:
            click.echo(f"  {warning}")
