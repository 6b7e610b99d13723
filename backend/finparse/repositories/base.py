"""Record store contract used by the ingestion pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date

from finparse.core.logging import get_logger
from finparse.schemas.models import (
    CategoryRow,
    DocumentRecord,
    ModelOutput,
    ParsingRun,
    TransactionRecord,
)

logger = get_logger("finparse.repositories")

# Starter taxonomy: one row per category/subcategory pair, or a bare category.
DEFAULT_CATEGORIES: list[CategoryRow] = [
    CategoryRow(category_id="cat_income_salary", category_name="Income", subcategory_name="Salary"),
    CategoryRow(category_id="cat_income_freelance", category_name="Income", subcategory_name="Freelance"),
    CategoryRow(category_id="cat_income_investment", category_name="Income", subcategory_name="Investment Income"),
    CategoryRow(category_id="cat_housing_rent", category_name="Housing", subcategory_name="Rent/Mortgage"),
    CategoryRow(category_id="cat_housing_utilities", category_name="Housing", subcategory_name="Utilities"),
    CategoryRow(category_id="cat_housing_maintenance", category_name="Housing", subcategory_name="Maintenance"),
    CategoryRow(category_id="cat_transport_transit", category_name="Transportation", subcategory_name="Public Transit"),
    CategoryRow(category_id="cat_transport_fuel", category_name="Transportation", subcategory_name="Fuel"),
    CategoryRow(category_id="cat_transport_parking", category_name="Transportation", subcategory_name="Parking"),
    CategoryRow(category_id="cat_food_groceries", category_name="Food & Dining", subcategory_name="Groceries"),
    CategoryRow(category_id="cat_food_restaurants", category_name="Food & Dining", subcategory_name="Restaurants"),
    CategoryRow(category_id="cat_food_coffee", category_name="Food & Dining", subcategory_name="Coffee Shops"),
    CategoryRow(category_id="cat_shopping_clothing", category_name="Shopping", subcategory_name="Clothing"),
    CategoryRow(category_id="cat_shopping_electronics", category_name="Shopping", subcategory_name="Electronics"),
    CategoryRow(category_id="cat_shopping_home", category_name="Shopping", subcategory_name="Home Goods"),
    CategoryRow(category_id="cat_healthcare", category_name="Healthcare"),
    CategoryRow(category_id="cat_entertainment", category_name="Entertainment"),
    CategoryRow(category_id="cat_travel", category_name="Travel"),
    CategoryRow(category_id="cat_subscriptions", category_name="Subscriptions"),
    CategoryRow(category_id="cat_transfers", category_name="Transfers"),
    CategoryRow(category_id="cat_uncategorized", category_name="Uncategorized"),
]


class DocumentRepository(ABC):
    """Persistence for documents, parsing runs, model outputs and transactions."""

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_document(self, record: DocumentRecord) -> str:
        """Store a new document and return its id."""

    @abstractmethod
    def find_document_by_checksum(self, checksum: str) -> DocumentRecord | None:
        """Return the document whose content has this SHA-256 digest, if any."""

    @abstractmethod
    def get_document(self, document_id: str) -> DocumentRecord | None:
        ...

    @abstractmethod
    def list_documents(self) -> list[DocumentRecord]:
        """Return every document, most recently uploaded first."""

    # -------------------------------------------------------------------------
    # Parsing runs
    # -------------------------------------------------------------------------

    @abstractmethod
    def start_parsing_run(self, document_id: str, parser_type: str, parser_version: str) -> str:
        """Open a RUNNING parsing run for the document and return its id."""

    def mark_parsing_run_failed(self, parsing_run_id: str, error_message: str) -> None:
        """Record a run failure.

        Failure bookkeeping happens while another error is already being
        reported, so problems here are logged and never raised.
        """
        try:
            self._set_parsing_run_failed(parsing_run_id, error_message)
        except Exception as e:
            logger.error(f"Could not mark parsing run {parsing_run_id} as failed: {e}")

    @abstractmethod
    def _set_parsing_run_failed(self, parsing_run_id: str, error_message: str) -> None:
        ...

    @abstractmethod
    def mark_parsing_run_succeeded(self, parsing_run_id: str) -> None:
        ...

    @abstractmethod
    def mark_parsing_runs_superseded(self, document_id: str) -> int:
        """Mark every finished run of the document SUPERSEDED.

        Runs still RUNNING are left alone.

        Returns:
            Number of runs updated
        """

    @abstractmethod
    def get_parsing_run(self, parsing_run_id: str) -> ParsingRun | None:
        ...

    @abstractmethod
    def list_parsing_runs(self, document_id: str) -> list[ParsingRun]:
        """Return the document's runs, oldest first."""

    # -------------------------------------------------------------------------
    # Model outputs and transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_model_output(self, output: ModelOutput) -> str:
        ...

    @abstractmethod
    def insert_transactions(self, records: list[TransactionRecord]) -> int:
        """Bulk insert transactions and return how many were written."""

    @abstractmethod
    def list_transactions(
        self,
        document_id: str | None = None,
        parsing_run_id: str | None = None,
    ) -> list[TransactionRecord]:
        ...

    @abstractmethod
    def query_transactions_by_date_range(self, start_date: date, end_date: date) -> list[TransactionRecord]:
        """Return transactions dated within [start_date, end_date] from SUCCESS runs.

        Rows from failed or superseded runs are left out. Results are ordered
        by transaction date, then by creation time.
        """

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    @abstractmethod
    def list_active_categories(self) -> list[CategoryRow]:
        ...

    @abstractmethod
    def save_categories(self, rows: list[CategoryRow]) -> None:
        """Store taxonomy rows keyed by category_id."""
