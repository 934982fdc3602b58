"""
Summary Composer

Pure read-side composition of the overview page from one consistent
ledger snapshot. Empty ledgers give zero-valued summaries, never errors.
"""

from datetime import datetime

from pocketbook.models.ledger import ZERO, LedgerSnapshot, ReportingPeriod, round_percentage
from pocketbook.models.views import FinanceSummary, PotView
from pocketbook.aggregation.budgets import aggregate_budgets, newest_first
from pocketbook.aggregation.recurring import classify_recurring_bills, summarize_bills


def compose_summary(
    snapshot: LedgerSnapshot,
    reference: datetime,
    recent_count: int = 5,
    latest_count: int = 3,
    due_soon_days: int = 5,
) -> FinanceSummary:
    """
    Build the whole-of-finances view.

    budget_utilization = round(100 * total_spent / total_budget), half up,
    and 0 when there is no budget at all.
    """
    period = ReportingPeriod.of(reference)

    pots = [PotView.from_pot(pot) for pot in snapshot.pots]
    budgets = aggregate_budgets(snapshot.transactions, snapshot.budgets, period, latest_count)

    total_saved = sum((pot.total for pot in pots), ZERO)
    total_spent = sum((budget.spent for budget in budgets), ZERO)
    total_budget = sum((budget.maximum for budget in budgets), ZERO)

    bills = classify_recurring_bills(snapshot.transactions, reference, due_soon_days)

    return FinanceSummary(
        period=str(period),
        balance=snapshot.balance,
        total_saved=total_saved,
        pots=pots,
        budgets=budgets,
        total_spent=total_spent,
        total_budget=total_budget,
        budget_utilization=round_percentage(total_spent, total_budget),
        recent_transactions=newest_first(snapshot.transactions)[:recent_count],
        recurring_bills=summarize_bills(bills),
    )
