"""
Result Views

Every read the core serves is one of these records. They are derived
per request and never persisted.

DESIGN DECISION: All fields are always present (defaulted where there is
nothing to report), so a consumer never has to tell "absent" apart from
"zero" or "empty".
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from pocketbook.models.ledger import (
    ZERO,
    Balance,
    LedgerModel,
    Pot,
    Transaction,
)


class PotView(LedgerModel):
    """A pot with its progress towards target."""

    id: int
    name: str
    target: Decimal
    total: Decimal
    theme: str
    percentage: int = Field(default=0, ge=0)

    @classmethod
    def from_pot(cls, pot: Pot) -> "PotView":
        return cls(
            id=pot.id,
            name=pot.name,
            target=pot.target,
            total=pot.total,
            theme=pot.theme,
            percentage=pot.percentage,
        )


class TransferResult(LedgerModel):
    """Outcome of moving money between the balance and a pot."""

    pot: PotView
    balance: Decimal


class PotDeletion(LedgerModel):
    """Outcome of deleting a pot: what went back to the balance."""

    pot_id: int
    returned_amount: Decimal
    new_balance: Decimal


class BudgetView(LedgerModel):
    """A budget with its spend in the reporting period."""

    id: int
    category: str
    maximum: Decimal
    theme: str
    spent: Decimal = ZERO
    remaining: Decimal = ZERO
    percentage: int = 0
    latest_transactions: list[Transaction] = Field(default_factory=list)


class RecurringBill(LedgerModel):
    """One payee's recurring bill, classified against a reference date."""

    name: str
    avatar: str = ""
    category: str
    amount: Decimal
    last_date: datetime
    next_due_date: datetime
    is_paid: bool
    is_due_soon: bool
    days_until_due: int


class BillSummary(LedgerModel):
    """Totals per bucket. Amounts are absolute values."""

    paid: Decimal = ZERO
    upcoming: Decimal = ZERO
    due_soon: Decimal = ZERO
    paid_count: int = 0
    upcoming_count: int = 0
    due_soon_count: int = 0
    total: Decimal = ZERO


class RecurringBillsView(LedgerModel):
    data: list[RecurringBill] = Field(default_factory=list)
    summary: BillSummary = Field(default_factory=BillSummary)


class Pagination(LedgerModel):
    current_page: int = Field(default=1, ge=1)
    total_pages: int = Field(default=1, ge=1)
    total_items: int = Field(default=0, ge=0)
    has_next: bool = False
    has_prev: bool = False


class TransactionPage(LedgerModel):
    data: list[Transaction] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class FinanceSummary(LedgerModel):
    """
    The whole-of-finances overview.

    budget_utilization is a whole percentage of total_budget spent.
    """

    period: str
    balance: Balance = Field(default_factory=Balance)
    total_saved: Decimal = ZERO
    pots: list[PotView] = Field(default_factory=list)
    budgets: list[BudgetView] = Field(default_factory=list)
    total_spent: Decimal = ZERO
    total_budget: Decimal = ZERO
    budget_utilization: int = 0
    recent_transactions: list[Transaction] = Field(default_factory=list)
    recurring_bills: BillSummary = Field(default_factory=BillSummary)


class HealthStatus(LedgerModel):
    status: str = Field(..., pattern="^(healthy|unhealthy)$")
    store: str = Field(..., pattern="^(connected|disconnected)$")
    checked_at: datetime
    error: Optional[str] = None
