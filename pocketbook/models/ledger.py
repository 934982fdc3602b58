"""
Core Ledger Models for Pocketbook

These models define the strict schemas for the records a user owns:
one Balance, and sets of Transactions, Pots and Budgets.

DESIGN DECISION: Every model is frozen. A "change" is a new instance
built with model_copy(update=...), so a snapshot handed to a reader can
never be altered by a concurrent writer.

DESIGN DECISION: Money is Decimal, quantized to cents.
Binary floats drift by fractions of a cent after a few hundred transfers.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Stored amounts stay below this; it keeps cents within a 64-bit integer
MAX_MONEY = Decimal("1e15")

# Colour palette shared by pots and budgets
THEME_COLORS = {
    "green": "#277C78",
    "cyan": "#82C9D7",
    "yellow": "#D19900",
    "navy": "#626070",
    "red": "#C94736",
    "purple": "#826CB0",
    "turquoise": "#008C76",
    "brown": "#93674F",
    "magenta": "#AF81CD",
    "blue": "#647484",
}

POT_NAME_MAX_LENGTH = 30


class SortOrder(str, Enum):
    """Orderings offered by the transaction and recurring bill lists."""
    LATEST = "latest"
    OLDEST = "oldest"
    A_Z = "a-z"
    Z_A = "z-a"
    HIGHEST = "highest"
    LOWEST = "lowest"


def quantize_money(value: Decimal) -> Decimal:
    """
    Round a Decimal to whole cents, halves away from zero.

    Raises:
        ValueError: The value has too many digits to be held to the cent
    """
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value}") from None


def round_percentage(part: Decimal, whole: Decimal) -> int:
    """round(100 * part / whole) with halves rounded up; 0 for an empty whole."""
    if not whole:
        return 0
    ratio = Decimal(100) * Decimal(part) / Decimal(whole)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_naive_utc(value: datetime) -> datetime:
    """Ledger timestamps are naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class LedgerModel(BaseModel):
    """Base for ledger records: immutable, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# ENTITIES
# =============================================================================

class Balance(LedgerModel):
    """
    A user's cash position.

    current is what is available to move into pots.
    income and expenses are the period totals shown on the overview.
    """

    current: Decimal = Field(default=ZERO)
    income: Decimal = Field(default=ZERO)
    expenses: Decimal = Field(default=ZERO)

    @field_validator('current', 'income', 'expenses')
    @classmethod
    def to_cents(cls, v: Decimal) -> Decimal:
        return quantize_money(v)


class Transaction(LedgerModel):
    """
    A single ledger entry.

    amount is signed: negative = expense, positive = income.
    recurring marks the payee as a recurring bill; there is no schedule
    object, the schedule is inferred from the payee's history.
    """

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    date: datetime
    amount: Decimal
    avatar: str = Field(default="", max_length=500)
    recurring: bool = False

    @field_validator('amount')
    @classmethod
    def to_cents(cls, v: Decimal) -> Decimal:
        return quantize_money(v)

    @field_validator('date')
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @property
    def is_expense(self) -> bool:
        return self.amount < 0


class Pot(LedgerModel):
    """
    A named savings allocation funded from the balance.

    target is aspirational: total may exceed it.
    """

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=POT_NAME_MAX_LENGTH)
    target: Decimal = Field(..., gt=0)
    total: Decimal = Field(default=ZERO, ge=0)
    theme: str = Field(..., min_length=1, max_length=20)

    @field_validator('target', 'total')
    @classmethod
    def to_cents(cls, v: Decimal) -> Decimal:
        return quantize_money(v)

    @property
    def percentage(self) -> int:
        return round_percentage(self.total, self.target)


class Budget(LedgerModel):
    """A monthly spending ceiling for one category."""

    id: Optional[int] = None
    category: str = Field(..., min_length=1, max_length=100)
    maximum: Decimal = Field(..., gt=0)
    theme: str = Field(..., min_length=1, max_length=20)

    @field_validator('maximum')
    @classmethod
    def to_cents(cls, v: Decimal) -> Decimal:
        return quantize_money(v)


# =============================================================================
# PARTIAL UPDATE COMMANDS
# =============================================================================

class _UpdateCommand(LedgerModel):
    """
    A partial update: only fields the caller set are applied.

    apply() merges onto the stored record and re-validates the result,
    so a merged record is always as valid as a freshly created one.
    """

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)

    @property
    def is_empty(self) -> bool:
        return not self.changes()

    def apply(self, record: BaseModel) -> BaseModel:
        merged = record.model_dump()
        merged.update(self.changes())
        return type(record).model_validate(merged)


class PotUpdate(_UpdateCommand):
    """Fields a caller may change on a pot. total is kept unless given."""

    name: Optional[str] = None
    target: Optional[Decimal] = None
    total: Optional[Decimal] = None
    theme: Optional[str] = None


class BudgetUpdate(_UpdateCommand):
    category: Optional[str] = None
    maximum: Optional[Decimal] = None
    theme: Optional[str] = None


class BalanceUpdate(_UpdateCommand):
    current: Optional[Decimal] = None
    income: Optional[Decimal] = None
    expenses: Optional[Decimal] = None


# =============================================================================
# QUERY INPUTS
# =============================================================================

class ReportingPeriod(LedgerModel):
    """A calendar month against which spend and payments are measured."""

    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(..., ge=1, le=12)

    @classmethod
    def of(cls, moment: date) -> "ReportingPeriod":
        return cls(year=moment.year, month=moment.month)

    def contains(self, moment: date) -> bool:
        return moment.year == self.year and moment.month == self.month

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class TransactionFilter(LedgerModel):
    """Filters a store can apply while listing transactions."""

    category: Optional[str] = None
    recurring: Optional[bool] = None

    def matches(self, txn: Transaction) -> bool:
        if self.category is not None and txn.category != self.category:
            return False
        if self.recurring is not None and txn.recurring != self.recurring:
            return False
        return True


class LedgerSnapshot(LedgerModel):
    """Everything one user owns, read at a single point in time."""

    balance: Balance = Field(default_factory=Balance)
    transactions: list[Transaction] = Field(default_factory=list)
    pots: list[Pot] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
