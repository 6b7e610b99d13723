"""Unit tests for CategoryValidator."""

from __future__ import annotations

import pytest

from finparse.core.exceptions import CategoryError, UnknownCategoryError, UnknownSubcategoryError
from finparse.pipeline.validation import CategoryValidator, normalize_category
from finparse.schemas.models import CategoryRow


@pytest.fixture
def validator(category_rows) -> CategoryValidator:
    return CategoryValidator(category_rows)


class TestNormalize:
    def test_trims_and_uppercases(self):
        assert normalize_category("  Food & Dining ") == "FOOD & DINING"

    def test_none_becomes_empty(self):
        assert normalize_category(None) == ""


class TestValidate:
    """Tests for category/subcategory validation."""

    def test_returns_category_id_for_exact_pair(self, validator):
        assert validator.validate("Food & Dining", "Groceries") == "cat_food_groceries"

    def test_is_case_and_whitespace_insensitive(self, validator):
        assert validator.validate("  food & dining", "COFFEE SHOPS  ") == "cat_food_coffee"

    def test_category_without_subcategories_accepts_empty(self, validator):
        assert validator.validate("Transfers", "") == "cat_transfers"
        assert validator.validate("Transfers", None) == "cat_transfers"

    def test_empty_string_subcategory_row_counts_as_none(self, validator):
        assert validator.validate("Uncategorized", "") == "cat_uncategorized"

    def test_unknown_category(self, validator):
        with pytest.raises(UnknownCategoryError):
            validator.validate("Nonexistent", "")

    def test_unknown_subcategory(self, validator):
        with pytest.raises(UnknownSubcategoryError) as exc_info:
            validator.validate("Food & Dining", "Restaurants")
        assert "Restaurants" in str(exc_info.value)

    def test_empty_subcategory_rejected_when_category_has_children(self, validator):
        with pytest.raises(UnknownSubcategoryError):
            validator.validate("Income", "")

    def test_subcategory_rejected_when_category_has_none(self, validator):
        with pytest.raises(UnknownSubcategoryError):
            validator.validate("Transfers", "Savings")

    def test_errors_share_base_class(self, validator):
        with pytest.raises(CategoryError):
            validator.validate("Nope", "")


class TestConstruction:
    def test_empty_taxonomy_rejects_everything(self):
        validator = CategoryValidator([])
        assert len(validator) == 0
        with pytest.raises(UnknownCategoryError):
            validator.validate("Income", "Salary")

    def test_bare_row_is_dropped_when_category_also_has_children(self):
        validator = CategoryValidator(
            [
                CategoryRow(category_id="cat_housing", category_name="Housing"),
                CategoryRow(category_id="cat_housing_rent", category_name="Housing", subcategory_name="Rent"),
            ]
        )
        assert validator.validate("Housing", "Rent") == "cat_housing_rent"
        with pytest.raises(UnknownSubcategoryError):
            validator.validate("Housing", "")

    def test_from_repository_uses_active_rows(self, category_rows):
        class Repo:
            def list_active_categories(self):
                return category_rows

        validator = CategoryValidator.from_repository(Repo())
        assert len(validator) == 4
