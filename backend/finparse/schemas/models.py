from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from finparse.core.utils import utc_now


class DocumentStatus(str, Enum):
    PENDING = "PENDING"


class ParsingRunStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SUPERSEDED = "SUPERSEDED"


class Transaction(BaseModel):
    """One transaction extracted from a statement, before persistence."""

    date: dt.date
    description: str
    amount: float = Field(..., description="Positive for money in, negative for money out.")
    currency: str
    balance_after: float | None = None
    account_name: str | None = None
    account_number: str | None = None
    category: str
    subcategory: str = ""
    category_id: str | None = None

    @property
    def direction(self) -> str:
        return "IN" if self.amount >= 0 else "OUT"


class CategoryRow(BaseModel):
    """A denormalized category/subcategory pair from the taxonomy."""

    category_id: str
    category_name: str
    subcategory_name: str | None = None
    is_active: bool = True


class DocumentRecord(BaseModel):
    document_id: str
    user_id: str
    source_uri: str
    document_type: str
    source_system: str
    original_filename: str = ""
    checksum_sha256: str
    parsing_status: DocumentStatus = DocumentStatus.PENDING
    upload_ts: dt.datetime = Field(default_factory=utc_now)


class ParsingRun(BaseModel):
    parsing_run_id: str
    document_id: str
    status: ParsingRunStatus = ParsingRunStatus.RUNNING
    parser_type: str
    parser_version: str
    started_ts: dt.datetime = Field(default_factory=utc_now)
    finished_ts: dt.datetime | None = None
    error_message: str = ""


class ModelOutput(BaseModel):
    output_id: str
    parsing_run_id: str
    document_id: str
    model_name: str
    raw_json: Any
    created_ts: dt.datetime = Field(default_factory=utc_now)


class TransactionRecord(BaseModel):
    """A validated transaction as written to the record store."""

    transaction_id: str
    user_id: str
    document_id: str
    parsing_run_id: str
    transaction_date: dt.date
    amount: float
    currency: str
    balance_after: float | None = None
    direction: str
    raw_description: str
    category_id: str
    category_name: str
    subcategory_name: str | None = None
    account_name: str | None = None
    account_number: str | None = None
    created_ts: dt.datetime = Field(default_factory=utc_now)


class DocumentListResponse(BaseModel):
    documents: list[DocumentRecord]
    count: int


class DocumentDetail(BaseModel):
    """A document with every parsing run and every transaction it produced."""

    document: DocumentRecord
    parsing_runs: list[ParsingRun]
    transactions: list[TransactionRecord]


class CategoryListResponse(BaseModel):
    categories: list[CategoryRow]
    count: int
