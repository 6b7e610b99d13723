"""Pytest fixtures and configuration."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

# Set environment variables before importing finparse modules
os.environ["FINPARSE_BACKEND"] = "local"
os.environ["GEMINI_MODEL"] = "gemini-2.5-flash"

from finparse.core.config import PipelineConfig
from finparse.core.exceptions import StorageError
from finparse.repositories.local_repo import LocalRepository
from finparse.schemas.models import CategoryRow
from finparse.services.inference_service import StatementParser
from finparse.services.ingestion_service import IngestionService
from finparse.storage.base import StorageAccessor

SAMPLE_PDF = b"%PDF-1.4 sample statement"


class FakeStorage(StorageAccessor):
    """In-memory object storage keyed by URI."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.files = dict(files or {})
        self.fetched: list[str] = []

    def fetch(self, uri: str) -> bytes:
        self.fetched.append(uri)
        if uri not in self.files:
            raise StorageError(f"object not found: {uri}")
        return self.files[uri]

    def extract_filename(self, uri: str) -> str:
        return uri.rsplit("/", 1)[-1]

    def upload(self, source, name, content_type=None) -> str:
        content = source.read_bytes() if isinstance(source, Path) else source
        uri = f"gs://test-bucket/statements/{name}"
        self.files[uri] = content
        return uri


class FakeParser(StatementParser):
    """Returns a canned model output, or raises a canned error."""

    def __init__(self, output: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.calls = 0

    def parse_statement(self, pdf_bytes: bytes) -> dict[str, Any]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.output)


@pytest.fixture
def category_rows() -> list[CategoryRow]:
    """A small taxonomy: two categories with subcategories, two without."""
    return [
        CategoryRow(category_id="cat_food_groceries", category_name="Food & Dining", subcategory_name="Groceries"),
        CategoryRow(category_id="cat_food_coffee", category_name="Food & Dining", subcategory_name="Coffee Shops"),
        CategoryRow(category_id="cat_income_salary", category_name="Income", subcategory_name="Salary"),
        CategoryRow(category_id="cat_transfers", category_name="Transfers", subcategory_name=None),
        CategoryRow(category_id="cat_uncategorized", category_name="Uncategorized", subcategory_name=""),
    ]


@pytest.fixture
def sample_model_output() -> dict[str, Any]:
    """Raw AI output for a three-transaction statement."""
    return {
        "transactions": [
            {
                "account_name": "Mr J Smith",
                "account_number": "20-00-00 12345678",
                "date": "2024-01-15",
                "description": "TESCO STORES 2041",
                "amount": -42.17,
                "currency": "GBP",
                "balance_after": 957.83,
                "category": "Food & Dining",
                "subcategory": "Groceries",
            },
            {
                "account_name": "Mr J Smith",
                "account_number": "20-00-00 12345678",
                "date": "2024-01-16",
                "description": "ACME LTD SALARY",
                "amount": 2500,
                "currency": "GBP",
                "balance_after": 3457.83,
                "category": "income",
                "subcategory": " salary ",
            },
            {
                "account_name": None,
                "account_number": None,
                "date": "2024-01-17",
                "description": "TRANSFER TO SAVINGS",
                "amount": -500.0,
                "currency": "GBP",
                "balance_after": None,
                "category": "Transfers",
                "subcategory": "",
            },
        ]
    }


@pytest.fixture
def local_repo(tmp_path: Path, category_rows: list[CategoryRow]) -> LocalRepository:
    repo = LocalRepository(tmp_path / "data")
    repo.save_categories(category_rows)
    return repo


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage({"gs://test-bucket/statements/jan.pdf": SAMPLE_PDF})


@pytest.fixture
def fake_parser(sample_model_output: dict[str, Any]) -> FakeParser:
    return FakeParser(output=sample_model_output)


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(user_id="user-1", ai_timeout_seconds=5)


@pytest.fixture
def ingestion_service(local_repo, fake_storage, fake_parser, pipeline_config) -> IngestionService:
    return IngestionService(local_repo, fake_storage, fake_parser, config=pipeline_config)


@pytest.fixture
def mock_gemini_model():
    """Mock the Vertex GenerativeModel for testing without LLM calls."""
    with patch("finparse.adapters.gemini_vertex.GenerativeModel") as mock_model:
        mock_instance = MagicMock()
        mock_model.return_value = mock_instance
        yield mock_instance
