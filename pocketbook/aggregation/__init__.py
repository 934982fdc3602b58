"""
Aggregation Package

Read-side projections: budget spend, recurring bill classification and
the overview summary. All of them are pure functions of their input.
"""

from pocketbook.aggregation.budgets import BudgetManager, aggregate_budgets, newest_first
from pocketbook.aggregation.recurring import (
    add_one_month,
    classify_recurring_bills,
    days_until,
    recurring_bills_view,
    search_bills,
    sort_bills,
    summarize_bills,
)
from pocketbook.aggregation.summary import compose_summary

__all__ = [
    "BudgetManager",
    "add_one_month",
    "aggregate_budgets",
    "classify_recurring_bills",
    "compose_summary",
    "days_until",
    "newest_first",
    "recurring_bills_view",
    "search_bills",
    "sort_bills",
    "summarize_bills",
]
