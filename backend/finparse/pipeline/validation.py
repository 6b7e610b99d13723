from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from finparse.core.exceptions import UnknownCategoryError, UnknownSubcategoryError
from finparse.core.logging import get_logger
from finparse.schemas.models import CategoryRow

if TYPE_CHECKING:
    from finparse.repositories.base import DocumentRepository

logger = get_logger("finparse.pipeline.validation")


def normalize_category(name: str | None) -> str:
    """Case-fold and trim a category or subcategory name for comparison."""
    return (name or "").strip().upper()


class CategoryValidator:
    """Checks proposed classifications against the active taxonomy.

    The index maps each normalized top-level category to its valid
    subcategories (normalized name -> category_id). A category without
    subcategories is stored under the empty key, which means the
    subcategory must be empty.
    """

    def __init__(self, rows: Iterable[CategoryRow]) -> None:
        self._index: dict[str, dict[str, str]] = {}

        for row in rows:
            category = normalize_category(row.category_name)
            if not category:
                continue
            subcategories = self._index.setdefault(category, {})

            subcategory = normalize_category(row.subcategory_name)
            if subcategory:
                subcategories.setdefault(subcategory, row.category_id)
            else:
                subcategories.setdefault("", row.category_id)

        # A category that declares children requires one of them.
        for subcategories in self._index.values():
            if len(subcategories) > 1:
                subcategories.pop("", None)

        logger.debug(f"Built category index with {len(self._index)} categories")

    @classmethod
    def from_repository(cls, repository: "DocumentRepository") -> "CategoryValidator":
        rows = repository.list_active_categories()
        return cls(rows)

    def __len__(self) -> int:
        return len(self._index)

    def validate(self, category: str, subcategory: str | None = "") -> str:
        """Validate a category/subcategory pair and return its category_id.

        Raises:
            UnknownCategoryError: If the category is not in the taxonomy
            UnknownSubcategoryError: If the subcategory does not belong to the category
        """
        norm_category = normalize_category(category)
        norm_subcategory = normalize_category(subcategory)

        subcategories = self._index.get(norm_category)
        if subcategories is None:
            raise UnknownCategoryError(
                f"unknown category {category!r}",
                details={"category": category},
            )

        category_id = subcategories.get(norm_subcategory)
        if category_id is None:
            if "" in subcategories:
                reason = f"category {category!r} takes no subcategory, got {subcategory!r}"
            elif not norm_subcategory:
                reason = f"category {category!r} requires a subcategory"
            else:
                reason = f"unknown subcategory {subcategory!r} for category {category!r}"
            raise UnknownSubcategoryError(
                reason,
                details={"category": category, "subcategory": subcategory},
            )
        return category_id
