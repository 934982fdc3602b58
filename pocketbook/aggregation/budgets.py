"""
Budget Aggregator

Merges budget definitions with what was actually spent.

DESIGN DECISION: Spend is computed, never stored. aggregate_budgets is a
pure function of (transactions, budgets, period): calling it twice on the
same input yields the same figures.

- spent:  sum of abs(amount) over expenses in the budget's category
          dated inside the reporting period
- latest: the most recent transactions of the category (any sign, any
          date), newest first, ties kept in insertion order

A category with no transactions yields spent = 0 and an empty list.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Union

from pocketbook.config import get_settings
from pocketbook.models.ledger import (
    ZERO,
    Budget,
    BudgetUpdate,
    ReportingPeriod,
    Transaction,
    round_percentage,
)
from pocketbook.models.views import BudgetView
from pocketbook.storage import DuplicateCategoryError, LedgerStore, NotFoundError
from pocketbook.validation import apply_update, validate_budget_update, validate_new_budget


def newest_first(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Sort by date descending; equal dates keep their input order."""
    return sorted(transactions, key=lambda t: t.date, reverse=True)


def aggregate_budgets(
    transactions: Iterable[Transaction],
    budgets: Iterable[Budget],
    period: ReportingPeriod,
    latest_count: int = 3,
) -> list[BudgetView]:
    """
    Attach period spend and latest transactions to each budget.

    Args:
        transactions: All of the user's transactions, in insertion order
        budgets: The user's budgets
        period: Calendar month spend is measured in
        latest_count: How many recent transactions to attach per budget

    Returns:
        One BudgetView per budget, in the order budgets were given
    """
    spent: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_category: dict[str, list[Transaction]] = defaultdict(list)

    for txn in transactions:
        by_category[txn.category].append(txn)
        if txn.is_expense and period.contains(txn.date):
            spent[txn.category] += abs(txn.amount)

    views = []
    for budget in budgets:
        category_spent = spent[budget.category]
        latest = newest_first(by_category[budget.category])[:latest_count]
        views.append(BudgetView(
            id=budget.id,
            category=budget.category,
            maximum=budget.maximum,
            theme=budget.theme,
            spent=category_spent,
            remaining=max(budget.maximum - category_spent, ZERO),
            percentage=round_percentage(category_spent, budget.maximum),
            latest_transactions=latest,
        ))
    return views


class BudgetManager:
    """
    Budget lifecycle plus the spend-enriched listing.

    At most one budget per (user, category): the check runs inside a
    unit of work, and the SQL store backs it with a unique constraint.
    """

    def __init__(self, store: LedgerStore, latest_count: Optional[int] = None):
        self._store = store
        self._latest_count = (
            latest_count
            if latest_count is not None
            else get_settings().reporting.budget_latest_count
        )

    async def list_with_spending(
        self,
        user_id: int,
        period: ReportingPeriod,
    ) -> list[BudgetView]:
        budgets = await self._store.list_budgets(user_id)
        if not budgets:
            return []
        categories = {b.category for b in budgets}
        transactions = [
            t for t in await self._store.list_transactions(user_id)
            if t.category in categories
        ]
        return aggregate_budgets(transactions, budgets, period, self._latest_count)

    async def create(
        self,
        user_id: int,
        category: Any,
        maximum: Any,
        theme: Any,
    ) -> Budget:
        """
        Raises:
            ValidationError: missing or invalid fields
            DuplicateCategoryError: the user already budgets this category
        """
        budget = validate_new_budget(category=category, maximum=maximum, theme=theme)
        async with self._store.atomic(user_id) as uow:
            for existing in await uow.list_budgets():
                if existing.category == budget.category:
                    raise DuplicateCategoryError(budget.category)
            return await uow.upsert_budget(budget)

    async def update(
        self,
        user_id: int,
        budget_id: int,
        update: Union[BudgetUpdate, Mapping[str, Any]],
    ) -> Budget:
        command = validate_budget_update(update)
        async with self._store.atomic(user_id) as uow:
            budget = await uow.get_budget(budget_id)
            if budget is None:
                raise NotFoundError("budget", budget_id)
            return await uow.upsert_budget(apply_update(command, budget))

    async def delete(self, user_id: int, budget_id: int) -> None:
        async with self._store.atomic(user_id) as uow:
            if not await uow.delete_budget(budget_id):
                raise NotFoundError("budget", budget_id)
