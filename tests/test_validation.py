"""
Tests for input validation
"""

import pytest
from decimal import Decimal

from pocketbook.models import BalanceUpdate, PotUpdate, SortOrder
from pocketbook.validation import (
    InvalidAmount,
    ValidationError,
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


class TestParseAmount:
    """Transfer amounts must be positive finite numbers."""

    @pytest.mark.parametrize("raw, expected", [
        ("25", Decimal("25.00")),
        (" 10.5 ", Decimal("10.50")),
        (3, Decimal("3.00")),
        (0.1, Decimal("0.10")),
        (Decimal("1.005"), Decimal("1.01")),
    ])
    def test_accepts_numbers(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [
        "abc", "", None, True, "NaN", "Infinity", float("nan"), 0, "-5", "0.004", [1],
    ])
    def test_rejects_invalid(self, raw):
        with pytest.raises(InvalidAmount) as exc_info:
            parse_amount(raw)
        assert exc_info.value.issues[0].field == "amount"

    def test_invalid_amount_is_validation_error(self):
        with pytest.raises(ValidationError):
            parse_amount("-1")

    def test_huge_amount_is_kept_for_the_funds_check(self):
        assert parse_amount("1e30") == Decimal("1e30")

    def test_huge_negative_amount(self):
        with pytest.raises(InvalidAmount):
            parse_amount("-1e30")


class TestParseMoney:
    """Stored money values are bounded."""

    def test_just_below_limit(self):
        assert parse_money("999999999999999.99", "target") == Decimal("999999999999999.99")

    @pytest.mark.parametrize("raw", ["1e15", "1e30", "-1e30", Decimal("1e400")])
    def test_too_large(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            parse_money(raw, "target")
        assert exc_info.value.issues[0].issue_type == "too_large"

    def test_huge_target_on_new_pot(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_new_pot(name="Moon", target="1e30", theme="green")
        assert [i.field for i in exc_info.value.issues] == ["target"]

    def test_huge_update_fields(self):
        with pytest.raises(ValidationError):
            validate_pot_update({"total": "1e30"})
        with pytest.raises(ValidationError):
            validate_budget_update({"maximum": "1e30"})
        with pytest.raises(ValidationError):
            validate_balance_update({"current": "1e30"})


class TestThemes:
    """Themes resolve to #RRGGBB colours."""

    def test_palette_name(self):
        assert normalize_theme("Green") == "#277C78"

    def test_hex_colour(self):
        assert normalize_theme("#82c9d7") == "#82C9D7"

    def test_unknown(self):
        with pytest.raises(ValidationError):
            normalize_theme("chartreuse")

    def test_missing(self):
        with pytest.raises(ValidationError):
            normalize_theme("   ")


class TestNewEntities:
    """Creation input is checked field by field."""

    def test_new_pot(self):
        pot = validate_new_pot(name=" Holiday ", target="1500", theme="navy")
        assert pot.id is None
        assert pot.name == "Holiday"
        assert pot.target == Decimal("1500.00")
        assert pot.total == Decimal("0.00")
        assert pot.theme == "#626070"

    def test_new_pot_with_initial_total(self):
        pot = validate_new_pot(name="Gift", target=60, theme="red", total="12.5")
        assert pot.total == Decimal("12.50")

    def test_new_pot_collects_every_issue(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_new_pot(name="", target="-3", theme=None)
        fields = {issue.field for issue in exc_info.value.issues}
        assert fields == {"name", "target", "theme"}

    def test_new_pot_name_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_new_pot(name="n" * 31, target=10, theme="green")
        assert exc_info.value.issues[0].issue_type == "too_long"

    def test_new_budget(self):
        budget = validate_new_budget(category="Dining Out", maximum="75", theme="#277C78")
        assert budget.category == "Dining Out"
        assert budget.maximum == Decimal("75.00")

    def test_new_budget_requires_positive_maximum(self):
        with pytest.raises(ValidationError):
            validate_new_budget(category="Bills", maximum=0, theme="green")


class TestUpdates:
    """Partial updates."""

    def test_empty_update_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_pot_update({})
        assert exc_info.value.message == "No fields to update"

    def test_update_from_mapping(self):
        update = validate_pot_update({"target": "200", "theme": "cyan"})
        assert update.changes() == {"target": Decimal("200.00"), "theme": "#82C9D7"}

    def test_update_rejects_bad_target(self):
        with pytest.raises(ValidationError):
            validate_pot_update(PotUpdate(target=Decimal("0")))

    def test_update_rejects_non_numeric(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_budget_update({"maximum": "lots"})
        assert exc_info.value.issues

    def test_budget_update_keeps_only_given_fields(self):
        update = validate_budget_update({"category": "Groceries"})
        assert update.changes() == {"category": "Groceries"}

    def test_balance_current_cannot_be_negative(self):
        with pytest.raises(ValidationError):
            validate_balance_update(BalanceUpdate(current=Decimal("-1")))

    def test_balance_update(self):
        update = validate_balance_update({"current": "4836", "income": "3814.25"})
        assert update.changes() == {
            "current": Decimal("4836.00"),
            "income": Decimal("3814.25"),
        }


class TestSort:
    def test_default(self):
        assert parse_sort(None) == SortOrder.LATEST

    def test_known(self):
        assert parse_sort("a-z") == SortOrder.A_Z

    def test_unknown(self):
        with pytest.raises(ValidationError):
            parse_sort("random")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
