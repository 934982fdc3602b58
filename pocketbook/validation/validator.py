"""
Input Validation

DESIGN DECISION: Caller input is validated in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking and required field presence
- Numbers that parse as finite decimals
- Done by the pydantic models themselves

STAGE 2 - BUSINESS VALIDATION:
- Amounts strictly positive (transfers, targets, maxima)
- Pot names within the form limit
- Themes from the palette or a #RRGGBB colour
- Partial updates that actually change something

All issues of a request are collected and raised together, so a caller
fixing a form sees every problem at once.

IMPORTANT: Validation NEVER silently fixes issues. It only normalizes
representation (cents rounding, palette name -> hex).
"""

import re
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, TypeVar, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from pocketbook.models.ledger import (
    MAX_MONEY,
    POT_NAME_MAX_LENGTH,
    THEME_COLORS,
    ZERO,
    BalanceUpdate,
    Budget,
    BudgetUpdate,
    Pot,
    PotUpdate,
    SortOrder,
    quantize_money,
)


HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")

R = TypeVar("R", bound=BaseModel)
U = TypeVar("U", PotUpdate, BudgetUpdate, BalanceUpdate)


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'too_long')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )


class ValidationError(Exception):
    """
    Malformed or missing input. The caller's fault; never retried.
    """

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.message = message
        self.issues = issues or []

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "issues": [issue.model_dump() for issue in self.issues],
        }


class InvalidAmount(ValidationError):
    """An amount that is not numeric, not finite, or not positive."""

    def __init__(self, message: str = "Invalid amount", field: str = "amount"):
        super().__init__(
            message,
            [ValidationIssue(field=field, issue_type="invalid_amount", message=message)],
        )


def from_pydantic_error(
    exc: PydanticValidationError,
    message: str = "Invalid input",
) -> ValidationError:
    """Convert a pydantic error into ours, one issue per failing field."""
    issues = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "input"
        issues.append(ValidationIssue(
            field=field,
            issue_type=error.get("type", "invalid_value"),
            message=error.get("msg", "Invalid value"),
        ))
    return ValidationError(message, issues)


# =============================================================================
# SCALARS
# =============================================================================

def _to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a number or numeric string; None if it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float, str)):
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    return parsed if parsed.is_finite() else None


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Parse a transfer amount.

    Accepts Decimal, int, float or a numeric string. The result is
    quantized to cents and must be strictly positive.

    An amount at or above MAX_MONEY is returned unrounded: no balance or
    pot can cover it, so the transfer is refused by the funds check.

    Raises:
        InvalidAmount: Not numeric, not finite, or not positive
    """
    amount = _to_decimal(value)
    if amount is None or amount <= 0:
        raise InvalidAmount(field=field)
    if amount >= MAX_MONEY:
        return amount
    amount = quantize_money(amount)
    # 0.004 rounds to 0.00, which is not a transfer
    if amount <= 0:
        raise InvalidAmount(field=field)
    return amount


def parse_money(
    value: Any,
    field: str,
    minimum: Optional[Decimal] = None,
    strictly_positive: bool = False,
) -> Decimal:
    """
    Parse a stored money value (target, maximum, total, balance fields).

    Raises:
        ValidationError: Not numeric, or below the allowed bound
    """
    amount = _to_decimal(value)
    if amount is None:
        raise ValidationError(
            f"{field} must be a number",
            [ValidationIssue(field=field, issue_type="invalid_value",
                             message=f"{field} must be a number")],
        )
    if abs(amount) >= MAX_MONEY:
        raise ValidationError(
            f"{field} is too large",
            [ValidationIssue(field=field, issue_type="too_large",
                             message=f"{field} must be less than {MAX_MONEY:,.0f}")],
        )
    amount = quantize_money(amount)
    if strictly_positive and amount <= 0:
        raise ValidationError(
            f"{field} must be greater than zero",
            [ValidationIssue(field=field, issue_type="invalid_value",
                             message=f"{field} must be greater than zero")],
        )
    if minimum is not None and amount < minimum:
        raise ValidationError(
            f"{field} must be at least {minimum}",
            [ValidationIssue(field=field, issue_type="invalid_value",
                             message=f"{field} must be at least {minimum}")],
        )
    return amount


def normalize_theme(value: Any) -> str:
    """
    Resolve a theme to a #RRGGBB colour.

    Palette names ("green", "Navy") map to their colour; hex colours are
    upper-cased.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            "Theme is required",
            [ValidationIssue(field="theme", issue_type="missing", message="Theme is required")],
        )
    theme = value.strip()
    if theme.lower() in THEME_COLORS:
        return THEME_COLORS[theme.lower()]
    if HEX_COLOR.match(theme):
        return theme.upper()
    raise ValidationError(
        f"Unknown theme: {theme}",
        [ValidationIssue(
            field="theme",
            issue_type="invalid_value",
            message=f"Theme must be one of {sorted(THEME_COLORS)} or a #RRGGBB colour",
        )],
    )


def _check_text(value: Any, field: str, max_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{field.capitalize()} is required",
            [ValidationIssue(field=field, issue_type="missing",
                             message=f"{field.capitalize()} is required")],
        )
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(
            f"{field.capitalize()} must be at most {max_length} characters",
            [ValidationIssue(field=field, issue_type="too_long",
                             message=f"{field.capitalize()} must be at most {max_length} characters")],
        )
    return text


class _IssueCollector:
    """Runs field checks, keeping the value or the issues of each."""

    def __init__(self):
        self.issues: list[ValidationIssue] = []
        self.values: dict[str, Any] = {}

    def check(self, field: str, func, *args, **kwargs) -> None:
        try:
            self.values[field] = func(*args, **kwargs)
        except ValidationError as e:
            self.issues.extend(e.issues)

    def raise_if_invalid(self, message: str) -> None:
        if self.issues:
            raise ValidationError(message, self.issues)


# =============================================================================
# ENTITIES
# =============================================================================

def validate_new_pot(
    name: Any,
    target: Any,
    theme: Any,
    total: Any = None,
) -> Pot:
    """Build a new (unsaved) pot from caller input."""
    collector = _IssueCollector()
    collector.check("name", _check_text, name, "name", POT_NAME_MAX_LENGTH)
    collector.check("target", parse_money, target, "target", strictly_positive=True)
    collector.check("theme", normalize_theme, theme)
    if total is None:
        collector.values["total"] = ZERO
    else:
        collector.check("total", parse_money, total, "total", minimum=ZERO)
    collector.raise_if_invalid("Name, target, and theme are required")

    return Pot(**collector.values)


def validate_new_budget(category: Any, maximum: Any, theme: Any) -> Budget:
    """Build a new (unsaved) budget from caller input."""
    collector = _IssueCollector()
    collector.check("category", _check_text, category, "category", 100)
    collector.check("maximum", parse_money, maximum, "maximum", strictly_positive=True)
    collector.check("theme", normalize_theme, theme)
    collector.raise_if_invalid("Category, maximum, and theme are required")

    return Budget(**collector.values)


def _coerce_update(update: Union[U, Mapping], model: type[U]) -> U:
    if isinstance(update, model):
        command = update
    elif isinstance(update, Mapping):
        try:
            command = model.model_validate(dict(update))
        except PydanticValidationError as e:
            raise from_pydantic_error(e, "Invalid update") from e
    else:
        raise ValidationError(f"Expected {model.__name__} or a mapping")

    if command.is_empty:
        raise ValidationError(
            "No fields to update",
            [ValidationIssue(field="input", issue_type="empty", message="No fields to update")],
        )
    return command


def validate_pot_update(update: Union[PotUpdate, Mapping]) -> PotUpdate:
    """
    Check a partial pot update.

    total is only touched when the caller sends it; editing a target or
    theme never resets accumulated savings.
    """
    command = _coerce_update(update, PotUpdate)
    changes = command.changes()

    collector = _IssueCollector()
    if "name" in changes:
        collector.check("name", _check_text, changes["name"], "name", POT_NAME_MAX_LENGTH)
    if "target" in changes:
        collector.check("target", parse_money, changes["target"], "target", strictly_positive=True)
    if "total" in changes:
        collector.check("total", parse_money, changes["total"], "total", minimum=ZERO)
    if "theme" in changes:
        collector.check("theme", normalize_theme, changes["theme"])
    collector.raise_if_invalid("Invalid pot update")

    return PotUpdate(**collector.values)


def validate_budget_update(update: Union[BudgetUpdate, Mapping]) -> BudgetUpdate:
    command = _coerce_update(update, BudgetUpdate)
    changes = command.changes()

    collector = _IssueCollector()
    if "category" in changes:
        collector.check("category", _check_text, changes["category"], "category", 100)
    if "maximum" in changes:
        collector.check("maximum", parse_money, changes["maximum"], "maximum", strictly_positive=True)
    if "theme" in changes:
        collector.check("theme", normalize_theme, changes["theme"])
    collector.raise_if_invalid("Invalid budget update")

    return BudgetUpdate(**collector.values)


def validate_balance_update(update: Union[BalanceUpdate, Mapping]) -> BalanceUpdate:
    """A direct balance edit. current may not be set below zero."""
    command = _coerce_update(update, BalanceUpdate)
    changes = command.changes()

    collector = _IssueCollector()
    if "current" in changes:
        collector.check("current", parse_money, changes["current"], "current", minimum=ZERO)
    for field in ("income", "expenses"):
        if field in changes:
            collector.check(field, parse_money, changes[field], field)
    collector.raise_if_invalid("Invalid balance update")

    return BalanceUpdate(**collector.values)


def apply_update(command: U, record: R) -> R:
    """Merge a validated update onto a stored record."""
    try:
        return command.apply(record)
    except PydanticValidationError as e:
        raise from_pydantic_error(e, "Update produces an invalid record") from e


def parse_sort(value: Any, default: SortOrder = SortOrder.LATEST) -> SortOrder:
    """Resolve a sort key; None means the default ordering."""
    if value is None or value == "":
        return default
    try:
        return SortOrder(value)
    except ValueError:
        raise ValidationError(
            f"Unknown sort: {value}",
            [ValidationIssue(
                field="sort",
                issue_type="invalid_value",
                message=f"Sort must be one of {[s.value for s in SortOrder]}",
            )],
        ) from None
