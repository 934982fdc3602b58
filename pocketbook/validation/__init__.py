"""Input validation package."""

from pocketbook.validation.validator import (
    InvalidAmount,
    ValidationError,
    ValidationIssue,
    apply_update,
    from_pydantic_error,
    normalize_theme,
    parse_amount,
    parse_money,
    parse_sort,
    validate_balance_update,
    validate_budget_update,
    validate_new_budget,
    validate_new_pot,
    validate_pot_update,
)

__all__ = [
    "InvalidAmount",
    "ValidationError",
    "ValidationIssue",
    "apply_update",
    "from_pydantic_error",
    "normalize_theme",
    "parse_amount",
    "parse_money",
    "parse_sort",
    "validate_balance_update",
    "validate_budget_update",
    "validate_new_budget",
    "validate_new_pot",
    "validate_pot_update",
]
