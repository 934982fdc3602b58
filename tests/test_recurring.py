"""
Tests for the Recurring Bill Classifier
"""

from datetime import datetime
from decimal import Decimal

import pytest

from pocketbook.aggregation import (
    add_one_month,
    classify_recurring_bills,
    days_until,
    recurring_bills_view,
    search_bills,
    sort_bills,
    summarize_bills,
)
from pocketbook.models import SortOrder, Transaction


REFERENCE = datetime(2024, 8, 19)


def make_bill_tx(name, amount, when, category="Bills", avatar="", recurring=True):
    return Transaction(
        name=name,
        category=category,
        date=when,
        amount=Decimal(str(amount)),
        avatar=avatar,
        recurring=recurring,
    )


class TestAddOneMonth:
    """Calendar month arithmetic."""

    def test_same_day_next_month(self):
        assert add_one_month(datetime(2024, 8, 15)) == datetime(2024, 9, 15)

    def test_clamps_to_leap_february(self):
        assert add_one_month(datetime(2024, 1, 31)) == datetime(2024, 2, 29)

    def test_clamps_to_short_february(self):
        assert add_one_month(datetime(2023, 1, 30)) == datetime(2023, 2, 28)

    def test_clamps_to_thirty_day_month(self):
        assert add_one_month(datetime(2024, 5, 31)) == datetime(2024, 6, 30)

    def test_december_rolls_year(self):
        assert add_one_month(datetime(2024, 12, 31, 9, 30)) == datetime(2025, 1, 31, 9, 30)

    def test_keeps_time_of_day(self):
        assert add_one_month(datetime(2024, 3, 5, 14, 45, 10)) == datetime(2024, 4, 5, 14, 45, 10)


class TestDaysUntil:
    def test_rounds_up(self):
        assert days_until(datetime(2024, 8, 20, 1), REFERENCE) == 2

    def test_exact_days(self):
        assert days_until(datetime(2024, 8, 24), REFERENCE) == 5

    def test_past(self):
        assert days_until(datetime(2024, 8, 17), REFERENCE) == -2


class TestClassify:
    """Grouping and status."""

    def test_paid_in_reference_month(self):
        bills = classify_recurring_bills(
            [
                make_bill_tx("Spark Electric", -100, datetime(2024, 7, 15)),
                make_bill_tx("Spark Electric", -100, datetime(2024, 8, 15)),
            ],
            REFERENCE,
        )

        assert len(bills) == 1
        bill = bills[0]
        assert bill.is_paid
        assert not bill.is_due_soon
        assert bill.last_date == datetime(2024, 8, 15)
        assert bill.next_due_date == datetime(2024, 9, 15)
        assert bill.amount == Decimal("100.00")

    def test_month_end_clamp(self):
        bills = classify_recurring_bills(
            [make_bill_tx("Gym", -30, datetime(2024, 1, 31))],
            datetime(2024, 2, 10),
        )
        assert bills[0].next_due_date == datetime(2024, 2, 29)

    def test_any_transaction_in_month_counts_as_paid(self):
        """An older transaction in the month still marks the bill paid."""
        bills = classify_recurring_bills(
            [
                make_bill_tx("Netflix", -15, datetime(2024, 8, 2)),
                make_bill_tx("Netflix", -15, datetime(2024, 9, 2)),
            ],
            REFERENCE,
        )
        assert bills[0].is_paid
        assert bills[0].last_date == datetime(2024, 9, 2)

    def test_due_soon(self):
        bills = classify_recurring_bills(
            [make_bill_tx("Water", -45, datetime(2024, 7, 22))],
            REFERENCE,
        )
        bill = bills[0]
        assert not bill.is_paid
        assert bill.next_due_date == datetime(2024, 8, 22)
        assert bill.days_until_due == 3
        assert bill.is_due_soon

    def test_due_soon_window_edges(self):
        bills = classify_recurring_bills(
            [
                make_bill_tx("Due today", -1, datetime(2024, 7, 19)),
                make_bill_tx("In five", -1, datetime(2024, 7, 24)),
                make_bill_tx("In six", -1, datetime(2024, 7, 25)),
                make_bill_tx("Overdue", -1, datetime(2024, 7, 18)),
            ],
            REFERENCE,
        )
        flags = {b.name: (b.days_until_due, b.is_due_soon) for b in bills}
        assert flags == {
            "Due today": (0, True),
            "In five": (5, True),
            "In six": (6, False),
            "Overdue": (-1, False),
        }

    def test_custom_due_soon_days(self):
        bills = classify_recurring_bills(
            [make_bill_tx("In six", -1, datetime(2024, 7, 25))],
            REFERENCE,
            due_soon_days=7,
        )
        assert bills[0].is_due_soon

    def test_ignores_non_recurring(self):
        bills = classify_recurring_bills(
            [make_bill_tx("Coffee", -3, datetime(2024, 8, 1), recurring=False)],
            REFERENCE,
        )
        assert bills == []

    def test_details_from_latest_transaction(self):
        bills = classify_recurring_bills(
            [
                make_bill_tx("Phone", -20, datetime(2024, 6, 5), avatar="old.jpg"),
                make_bill_tx("Phone", -25, datetime(2024, 7, 5), avatar="new.jpg",
                             category="Utilities"),
            ],
            REFERENCE,
        )
        assert bills[0].amount == Decimal("25.00")
        assert bills[0].avatar == "new.jpg"
        assert bills[0].category == "Utilities"

    def test_aware_reference_is_accepted(self):
        from datetime import timezone
        bills = classify_recurring_bills(
            [make_bill_tx("Spark Electric", -100, datetime(2024, 8, 15))],
            datetime(2024, 8, 19, tzinfo=timezone.utc),
        )
        assert bills[0].is_paid


class TestSummaryAndListing:
    """Summary, search and sort."""

    @pytest.fixture
    def transactions(self):
        return [
            make_bill_tx("Spark Electric", -100, datetime(2024, 8, 15)),
            make_bill_tx("Water", -45, datetime(2024, 7, 22)),
            make_bill_tx("Aqua Flow", -30, datetime(2024, 7, 1)),
        ]

    def test_summary(self, transactions):
        summary = summarize_bills(classify_recurring_bills(transactions, REFERENCE))

        assert summary.paid == Decimal("100.00")
        assert summary.upcoming == Decimal("75.00")
        assert summary.due_soon == Decimal("45.00")
        assert (summary.paid_count, summary.upcoming_count, summary.due_soon_count) == (1, 2, 1)
        assert summary.total == Decimal("175.00")

    def test_empty_summary(self):
        summary = summarize_bills([])
        assert summary.paid == summary.upcoming == summary.due_soon == Decimal("0.00")
        assert summary.total == Decimal("0.00")

    def test_search_is_case_insensitive(self, transactions):
        bills = classify_recurring_bills(transactions, REFERENCE)
        assert [b.name for b in search_bills(bills, "WAT")] == ["Water"]
        assert len(search_bills(bills, "  ")) == 3

    @pytest.mark.parametrize("order, expected", [
        (SortOrder.LATEST, ["Spark Electric", "Water", "Aqua Flow"]),
        (SortOrder.OLDEST, ["Aqua Flow", "Water", "Spark Electric"]),
        (SortOrder.A_Z, ["Aqua Flow", "Spark Electric", "Water"]),
        (SortOrder.Z_A, ["Water", "Spark Electric", "Aqua Flow"]),
        (SortOrder.HIGHEST, ["Spark Electric", "Water", "Aqua Flow"]),
        (SortOrder.LOWEST, ["Aqua Flow", "Water", "Spark Electric"]),
    ])
    def test_sort(self, transactions, order, expected):
        bills = classify_recurring_bills(transactions, REFERENCE)
        assert [b.name for b in sort_bills(bills, order)] == expected

    def test_view_summary_ignores_search(self, transactions):
        view = recurring_bills_view(transactions, REFERENCE, search="water")
        assert [b.name for b in view.data] == ["Water"]
        assert view.summary.total == Decimal("175.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
