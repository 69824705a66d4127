"""Recurrence rule engine for computing charge due dates."""

import logging
from datetime import date, timedelta
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from . import constants
from .schema import (
    DaysRule,
    InvoiceDayRule,
    MonthsRule,
    RecurrenceRule,
    Subscription,
    WeeksRule,
    YearsRule,
)
from .types import ProductType, ReceiptStatus, SubscriptionStatus

logger = logging.getLogger(__name__)


def invoice_day_in_month(day_in_month: date, invoice_day: int) -> date:
    """
    Resolve an invoice day against the month containing ``day_in_month``.

    Days past the end of the month clamp to its last day, and -1 always means
    the last day. The clamp is computed per month and never carried over, so
    day 31 resolves to Feb 29 in February and back to Mar 31 in March.
    """
    if invoice_day == constants.LAST_DAY_OF_MONTH_INDICATOR:
        invoice_day = constants.MAX_DAY_OF_MONTH
    # relativedelta's absolute day clamps to the month length
    return day_in_month + relativedelta(day=invoice_day)


def next_occurrence(
    rule: RecurrenceRule,
    anchor: date,
    last_generated: Optional[date] = None,
) -> date:
    """
    Calculate the next due date strictly after the base date.

    The base is ``last_generated`` when given, otherwise ``anchor``. Feeding the
    result back in as the anchor yields an evenly spaced, strictly increasing
    sequence.

    Args:
        rule: Recurrence rule to advance by
        anchor: Date to advance from when nothing has been generated yet
        last_generated: Date the schedule last fired

    Returns:
        Next occurrence date

    Example:
        >>> next_occurrence(InvoiceDayRule(invoice_day=31), date(2024, 1, 31))
        date(2024, 2, 29)
    """
    base = last_generated or anchor

    if isinstance(rule, DaysRule):
        return base + timedelta(days=rule.value)
    if isinstance(rule, WeeksRule):
        return base + timedelta(weeks=rule.value)
    if isinstance(rule, MonthsRule):
        return base + relativedelta(months=rule.value)
    if isinstance(rule, YearsRule):
        return base + relativedelta(years=rule.value)
    if isinstance(rule, InvoiceDayRule):
        candidate = invoice_day_in_month(base, rule.invoice_day)
        if candidate > base:
            return candidate
        return invoice_day_in_month(base + relativedelta(months=rule.months), rule.invoice_day)
    raise TypeError(f"Unknown recurrence rule: {rule!r}")


def first_occurrence(rule: RecurrenceRule, start: date) -> date:
    """
    Calculate the first due date on or after ``start``.

    Interval rules start on ``start`` itself; invoice-day rules start on the
    first matching day of month.
    """
    if isinstance(rule, InvoiceDayRule):
        candidate = invoice_day_in_month(start, rule.invoice_day)
        if candidate >= start:
            return candidate
        return next_occurrence(rule, start)
    return start


def resolve_due_date(subscription: Subscription) -> Optional[date]:
    """
    Get the date a subscription's next charge is due.

    Only active, scheduled subscriptions are due. One-time subscriptions are
    due on their invoice date. Recurring subscriptions use the stored next
    receipt date, re-derive it from the rule when it is missing but the
    schedule has fired before, and otherwise fall back to the invoice date.

    Returns:
        Due date, or None if the subscription is not awaiting a charge
    """
    if subscription.status != SubscriptionStatus.ACTIVE:
        return None
    if subscription.receipt_status != ReceiptStatus.SCHEDULED:
        return None

    if subscription.product_type == ProductType.ONE_TIME:
        return subscription.invoice_date

    if subscription.next_receipt_date is not None:
        return subscription.next_receipt_date
    if subscription.last_generated_date is not None and subscription.recurrence is not None:
        return next_occurrence(
            subscription.recurrence,
            subscription.invoice_date,
            subscription.last_generated_date,
        )
    return subscription.invoice_date


def earliest_due(subscriptions: Iterable[Subscription]) -> Optional[date]:
    """
    Calculate the earliest due date across subscriptions.

    This is the value written to a subject's scan index.

    Returns:
        Minimum due date, or None if nothing is awaiting a charge
    """
    due_dates = [d for d in (resolve_due_date(s) for s in subscriptions) if d is not None]
    if not due_dates:
        return None
    return min(due_dates)


class RecurrenceEngine:
    """Engine for listing upcoming due dates of a recurrence rule."""

    def generate(self, rule: RecurrenceRule, start_date: date, end_date: date) -> list[date]:
        """
        Generate due dates for a rule within a date range.

        Args:
            rule: Recurrence rule
            start_date: Start of date range (inclusive)
            end_date: End of date range (inclusive)

        Returns:
            List of occurrence dates within range, ascending
        """
        if start_date > end_date:
            return []

        dates = []
        current = first_occurrence(rule, start_date)
        while current <= end_date:
            dates.append(current)
            current = next_occurrence(rule, current)

        logger.debug(
            "Generated %d occurrences for %s between %s and %s",
            len(dates),
            rule.unit,
            start_date,
            end_date,
        )
        return dates
