"""
Firestore Repository

Record store implementation backed by Firestore.

Data Structure:
    documents/{document_id}          - Ingested source files (checksum, status)
    parsing_runs/{parsing_run_id}    - One attempt to parse a document
    model_outputs/{output_id}        - Raw AI output per run
    transactions/{transaction_id}    - Validated transactions, tagged with run
    categories/{category_id}         - Denormalized category taxonomy
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional
from uuid import uuid4

import firebase_admin
from firebase_admin import firestore
from google.cloud.firestore_v1 import FieldFilter

from finparse.core.exceptions import RepositoryError
from finparse.core.logging import get_logger
from finparse.core.utils import utc_now
from finparse.repositories.base import DocumentRepository
from finparse.schemas.models import (
    CategoryRow,
    DocumentRecord,
    ModelOutput,
    ParsingRun,
    ParsingRunStatus,
    TransactionRecord,
)

logger = get_logger("finparse.repositories.firestore")


class FirestoreRepository(DocumentRepository):
    """Repository using Firestore for data persistence."""

    # Firestore batch write limit
    BATCH_SIZE = 500

    def __init__(self, db: Any = None) -> None:
        if db is None:
            # Initialize Firebase Admin SDK with Application Default Credentials
            if not firebase_admin._apps:
                firebase_admin.initialize_app()
            db = firestore.client()
        self.db = db

        # Collection references
        self.documents_collection = "documents"
        self.parsing_runs_collection = "parsing_runs"
        self.model_outputs_collection = "model_outputs"
        self.transactions_collection = "transactions"
        self.categories_collection = "categories"

    def _batched_set(self, collection: str, items: list[tuple[str, dict[str, Any]]]) -> None:
        """Write documents in batches to stay within Firestore limits."""
        for i in range(0, len(items), self.BATCH_SIZE):
            batch = self.db.batch()
            for doc_id, data in items[i:i + self.BATCH_SIZE]:
                batch.set(self.db.collection(collection).document(doc_id), data)
            batch.commit()

    # =========================================================================
    # Document Methods
    # =========================================================================

    def insert_document(self, record: DocumentRecord) -> str:
        document_id = record.document_id or str(uuid4())
        data = record.model_dump(mode="json") | {"document_id": document_id}
        try:
            self.db.collection(self.documents_collection).document(document_id).set(data)
        except Exception as e:
            raise RepositoryError(f"insert document {document_id}: {e}") from e
        return document_id

    def find_document_by_checksum(self, checksum: str) -> Optional[DocumentRecord]:
        """
        Find an existing document by content checksum.

        Args:
            checksum: SHA-256 hex digest of the file content

        Returns:
            The document, or None if this content has never been ingested
        """
        query = (
            self.db.collection(self.documents_collection)
            .where(filter=FieldFilter("checksum_sha256", "==", checksum))
            .limit(1)
        )
        docs = list(query.stream())
        if not docs:
            return None
        return DocumentRecord.model_validate(docs[0].to_dict())

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        doc = self.db.collection(self.documents_collection).document(document_id).get()
        if not doc.exists:
            return None
        return DocumentRecord.model_validate(doc.to_dict())

    def list_documents(self) -> list[DocumentRecord]:
        try:
            docs = self.db.collection(self.documents_collection).stream()
            documents = [DocumentRecord.model_validate(doc.to_dict()) for doc in docs]
        except Exception as e:
            raise RepositoryError(f"list documents: {e}") from e
        return sorted(documents, key=lambda document: document.upload_ts, reverse=True)

    # =========================================================================
    # Parsing Run Methods
    # =========================================================================

    def start_parsing_run(self, document_id: str, parser_type: str, parser_version: str) -> str:
        run = ParsingRun(
            parsing_run_id=str(uuid4()),
            document_id=document_id,
            status=ParsingRunStatus.RUNNING,
            parser_type=parser_type,
            parser_version=parser_version,
        )
        try:
            self.db.collection(self.parsing_runs_collection).document(run.parsing_run_id).set(
                run.model_dump(mode="json")
            )
        except Exception as e:
            raise RepositoryError(f"start parsing run for document {document_id}: {e}") from e
        return run.parsing_run_id

    def _set_parsing_run_failed(self, parsing_run_id: str, error_message: str) -> None:
        self.db.collection(self.parsing_runs_collection).document(parsing_run_id).update(
            {
                "status": ParsingRunStatus.FAILED.value,
                "finished_ts": utc_now().isoformat(),
                "error_message": error_message,
            }
        )

    def mark_parsing_run_succeeded(self, parsing_run_id: str) -> None:
        try:
            self.db.collection(self.parsing_runs_collection).document(parsing_run_id).update(
                {
                    "status": ParsingRunStatus.SUCCESS.value,
                    "finished_ts": utc_now().isoformat(),
                }
            )
        except Exception as e:
            raise RepositoryError(f"mark parsing run {parsing_run_id} succeeded: {e}") from e

    def mark_parsing_runs_superseded(self, document_id: str) -> int:
        runs = [
            run for run in self.list_parsing_runs(document_id)
            if run.status not in (ParsingRunStatus.RUNNING, ParsingRunStatus.SUPERSEDED)
        ]
        for i in range(0, len(runs), self.BATCH_SIZE):
            batch = self.db.batch()
            for run in runs[i:i + self.BATCH_SIZE]:
                ref = self.db.collection(self.parsing_runs_collection).document(run.parsing_run_id)
                batch.update(ref, {"status": ParsingRunStatus.SUPERSEDED.value})
            batch.commit()
        return len(runs)

    def get_parsing_run(self, parsing_run_id: str) -> Optional[ParsingRun]:
        doc = self.db.collection(self.parsing_runs_collection).document(parsing_run_id).get()
        if not doc.exists:
            return None
        return ParsingRun.model_validate(doc.to_dict())

    def list_parsing_runs(self, document_id: str) -> list[ParsingRun]:
        query = self.db.collection(self.parsing_runs_collection).where(
            filter=FieldFilter("document_id", "==", document_id)
        )
        runs = [ParsingRun.model_validate(doc.to_dict()) for doc in query.stream()]
        return sorted(runs, key=lambda run: run.started_ts)

    # =========================================================================
    # Model Output & Transaction Methods
    # =========================================================================

    def insert_model_output(self, output: ModelOutput) -> str:
        try:
            self.db.collection(self.model_outputs_collection).document(output.output_id).set(
                output.model_dump(mode="json")
            )
        except Exception as e:
            raise RepositoryError(f"insert model output for run {output.parsing_run_id}: {e}") from e
        return output.output_id

    def insert_transactions(self, records: list[TransactionRecord]) -> int:
        """
        Save transactions using batch writes.

        Args:
            records: Validated transactions, already tagged with document and run ids

        Returns:
            Number of transactions written
        """
        if not records:
            return 0
        items = [(record.transaction_id, record.model_dump(mode="json")) for record in records]
        try:
            self._batched_set(self.transactions_collection, items)
        except Exception as e:
            raise RepositoryError(f"insert {len(records)} transactions: {e}") from e
        return len(records)

    def list_transactions(
        self,
        document_id: Optional[str] = None,
        parsing_run_id: Optional[str] = None,
    ) -> list[TransactionRecord]:
        query = self.db.collection(self.transactions_collection)
        if document_id:
            query = query.where(filter=FieldFilter("document_id", "==", document_id))
        if parsing_run_id:
            query = query.where(filter=FieldFilter("parsing_run_id", "==", parsing_run_id))
        return [TransactionRecord.model_validate(doc.to_dict()) for doc in query.stream()]

    def query_transactions_by_date_range(self, start_date: date, end_date: date) -> list[TransactionRecord]:
        """
        Query transactions by date range, keeping only rows from SUCCESS runs.

        Dates are stored as ISO strings, so range filters compare lexically.
        """
        query = (
            self.db.collection(self.transactions_collection)
            .where(filter=FieldFilter("transaction_date", ">=", start_date.isoformat()))
            .where(filter=FieldFilter("transaction_date", "<=", end_date.isoformat()))
        )
        try:
            records = [TransactionRecord.model_validate(doc.to_dict()) for doc in query.stream()]
        except Exception as e:
            raise RepositoryError(f"query transactions {start_date} to {end_date}: {e}") from e

        statuses: dict[str, ParsingRunStatus | None] = {}
        for record in records:
            if record.parsing_run_id not in statuses:
                run = self.get_parsing_run(record.parsing_run_id)
                statuses[record.parsing_run_id] = run.status if run else None
        records = [r for r in records if statuses[r.parsing_run_id] == ParsingRunStatus.SUCCESS]
        return sorted(records, key=lambda record: (record.transaction_date, record.created_ts))

    # =========================================================================
    # Category Methods
    # =========================================================================

    def list_active_categories(self) -> list[CategoryRow]:
        query = self.db.collection(self.categories_collection).where(
            filter=FieldFilter("is_active", "==", True)
        )
        try:
            return [CategoryRow.model_validate(doc.to_dict()) for doc in query.stream()]
        except Exception as e:
            raise RepositoryError(f"list active categories: {e}") from e

    def save_categories(self, rows: list[CategoryRow]) -> None:
        items = [(row.category_id, row.model_dump(mode="json")) for row in rows]
        self._batched_set(self.categories_collection, items)
        logger.info(f"Saved {len(rows)} category rows")
