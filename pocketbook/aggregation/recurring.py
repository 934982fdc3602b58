"""
Recurring Bill Classifier

There is no schedule object: a payee is a recurring bill when its
transactions carry recurring=True, and the schedule is inferred from
the payee's history.

For each payee (grouped by exact name):
- last_date      = latest transaction date
- next_due_date  = last_date plus one calendar month, same day of month,
                   clamped to the end of a shorter month (Jan 31 -> Feb 29)
- is_paid        = some transaction of the payee falls in the reference month
- days_until_due = ceil((next_due_date - reference) / 1 day)
- is_due_soon    = not paid and 0 <= days_until_due <= due_soon_days

DESIGN DECISION: The reference date is always a parameter. Demo data and
live data must classify the same way on every run, which a hidden
wall-clock read would break.
"""

import calendar
import math
from datetime import datetime, timedelta
from typing import Iterable, Optional

from pocketbook.models.ledger import (
    ZERO,
    ReportingPeriod,
    SortOrder,
    Transaction,
    to_naive_utc,
)
from pocketbook.models.views import BillSummary, RecurringBill, RecurringBillsView
from pocketbook.aggregation.budgets import newest_first


ONE_DAY = timedelta(days=1)


def add_one_month(moment: datetime) -> datetime:
    """Same day next month, clamped to that month's last day. Time of day is kept."""
    if moment.month == 12:
        year, month = moment.year + 1, 1
    else:
        year, month = moment.year, moment.month + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def days_until(target: datetime, reference: datetime) -> int:
    """Whole days from reference to target, rounded up."""
    return math.ceil((target - reference) / ONE_DAY)


def classify_recurring_bills(
    transactions: Iterable[Transaction],
    reference: datetime,
    due_soon_days: int = 5,
) -> list[RecurringBill]:
    """
    Turn recurring transactions into one bill per payee.

    Non-recurring transactions in the input are ignored. The bill's
    amount (absolute), avatar and category come from the payee's latest
    transaction. Bills are returned in order of each payee's first
    appearance in the input.
    """
    reference = to_naive_utc(reference)
    period = ReportingPeriod.of(reference)

    groups: dict[str, list[Transaction]] = {}
    for txn in transactions:
        if txn.recurring:
            groups.setdefault(txn.name, []).append(txn)

    bills = []
    for name, history in groups.items():
        latest = newest_first(history)[0]
        next_due = add_one_month(latest.date)
        is_paid = any(period.contains(t.date) for t in history)
        remaining_days = days_until(next_due, reference)

        bills.append(RecurringBill(
            name=name,
            avatar=latest.avatar,
            category=latest.category,
            amount=abs(latest.amount),
            last_date=latest.date,
            next_due_date=next_due,
            is_paid=is_paid,
            is_due_soon=not is_paid and 0 <= remaining_days <= due_soon_days,
            days_until_due=remaining_days,
        ))
    return bills


def search_bills(bills: Iterable[RecurringBill], search: Optional[str]) -> list[RecurringBill]:
    """Case-insensitive substring match on the payee name."""
    if not search or not search.strip():
        return list(bills)
    needle = search.strip().casefold()
    return [b for b in bills if needle in b.name.casefold()]


def sort_bills(bills: Iterable[RecurringBill], order: SortOrder) -> list[RecurringBill]:
    """Stable sort; bills that compare equal keep their order."""
    if order == SortOrder.LATEST:
        return sorted(bills, key=lambda b: b.last_date, reverse=True)
    if order == SortOrder.OLDEST:
        return sorted(bills, key=lambda b: b.last_date)
    if order == SortOrder.A_Z:
        return sorted(bills, key=lambda b: b.name.casefold())
    if order == SortOrder.Z_A:
        return sorted(bills, key=lambda b: b.name.casefold(), reverse=True)
    if order == SortOrder.HIGHEST:
        return sorted(bills, key=lambda b: b.amount, reverse=True)
    return sorted(bills, key=lambda b: b.amount)


def summarize_bills(bills: Iterable[RecurringBill]) -> BillSummary:
    paid = upcoming = due_soon = ZERO
    paid_count = upcoming_count = due_soon_count = 0

    for bill in bills:
        if bill.is_paid:
            paid += bill.amount
            paid_count += 1
        else:
            upcoming += bill.amount
            upcoming_count += 1
        if bill.is_due_soon:
            due_soon += bill.amount
            due_soon_count += 1

    return BillSummary(
        paid=paid,
        upcoming=upcoming,
        due_soon=due_soon,
        paid_count=paid_count,
        upcoming_count=upcoming_count,
        due_soon_count=due_soon_count,
        total=paid + upcoming,
    )


def recurring_bills_view(
    transactions: Iterable[Transaction],
    reference: datetime,
    search: Optional[str] = None,
    order: SortOrder = SortOrder.LATEST,
    due_soon_days: int = 5,
) -> RecurringBillsView:
    """
    Classify, then search and sort the list.

    The summary covers every bill, so the page totals do not change while
    the user types a search.
    """
    bills = classify_recurring_bills(transactions, reference, due_soon_days)
    listed = sort_bills(search_bills(bills, search), order)
    return RecurringBillsView(data=listed, summary=summarize_bills(bills))
