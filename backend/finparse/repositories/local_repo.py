from __future__ import annotations

import json
import threading
from datetime import date
from pathlib import Path
from typing import Any
from uuid import uuid4

from finparse.core.utils import utc_now
from finparse.repositories.base import DEFAULT_CATEGORIES, DocumentRepository
from finparse.schemas.models import (
    CategoryRow,
    DocumentRecord,
    ModelOutput,
    ParsingRun,
    ParsingRunStatus,
    TransactionRecord,
)


class LocalRepository(DocumentRepository):
    """JSON-file record store for running the pipeline without cloud credentials.

    Transactions are stored one file per parsing run so insertion order is kept.
    Without a ``categories.json`` the starter taxonomy is served.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or Path(__file__).resolve().parents[2] / "data"
        self.document_dir = self.data_dir / "documents"
        self.run_dir = self.data_dir / "parsing_runs"
        self.output_dir = self.data_dir / "model_outputs"
        self.transaction_dir = self.data_dir / "transactions"
        self.categories_path = self.data_dir / "categories.json"
        for directory in (self.document_dir, self.run_dir, self.output_dir, self.transaction_dir):
            directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @staticmethod
    def _write(path: Path, payload: Any) -> None:
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    @staticmethod
    def _read(path: Path) -> Any:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _read_all(self, directory: Path) -> list[Any]:
        return [self._read(path) for path in sorted(directory.glob("*.json"))]

    # Documents

    def insert_document(self, record: DocumentRecord) -> str:
        with self._lock:
            self._write(self.document_dir / f"{record.document_id}.json", record.model_dump(mode="json"))
        return record.document_id

    def find_document_by_checksum(self, checksum: str) -> DocumentRecord | None:
        with self._lock:
            for data in self._read_all(self.document_dir):
                if data.get("checksum_sha256") == checksum:
                    return DocumentRecord.model_validate(data)
        return None

    def get_document(self, document_id: str) -> DocumentRecord | None:
        with self._lock:
            data = self._read(self.document_dir / f"{document_id}.json")
        return DocumentRecord.model_validate(data) if data else None

    def list_documents(self) -> list[DocumentRecord]:
        with self._lock:
            documents = [DocumentRecord.model_validate(data) for data in self._read_all(self.document_dir)]
        return sorted(documents, key=lambda document: document.upload_ts, reverse=True)

    # Parsing runs

    def _update_run(self, parsing_run_id: str, **changes: Any) -> None:
        path = self.run_dir / f"{parsing_run_id}.json"
        data = self._read(path)
        if data is None:
            raise KeyError(f"parsing run {parsing_run_id} not found")
        data.update(changes)
        self._write(path, data)

    def start_parsing_run(self, document_id: str, parser_type: str, parser_version: str) -> str:
        run = ParsingRun(
            parsing_run_id=str(uuid4()),
            document_id=document_id,
            parser_type=parser_type,
            parser_version=parser_version,
        )
        with self._lock:
            self._write(self.run_dir / f"{run.parsing_run_id}.json", run.model_dump(mode="json"))
        return run.parsing_run_id

    def _set_parsing_run_failed(self, parsing_run_id: str, error_message: str) -> None:
        with self._lock:
            self._update_run(
                parsing_run_id,
                status=ParsingRunStatus.FAILED.value,
                finished_ts=utc_now().isoformat(),
                error_message=error_message,
            )

    def mark_parsing_run_succeeded(self, parsing_run_id: str) -> None:
        with self._lock:
            self._update_run(
                parsing_run_id,
                status=ParsingRunStatus.SUCCESS.value,
                finished_ts=utc_now().isoformat(),
            )

    def mark_parsing_runs_superseded(self, document_id: str) -> int:
        count = 0
        with self._lock:
            for data in self._read_all(self.run_dir):
                if data.get("document_id") != document_id:
                    continue
                if data.get("status") in (ParsingRunStatus.RUNNING.value, ParsingRunStatus.SUPERSEDED.value):
                    continue
                self._update_run(data["parsing_run_id"], status=ParsingRunStatus.SUPERSEDED.value)
                count += 1
        return count

    def get_parsing_run(self, parsing_run_id: str) -> ParsingRun | None:
        with self._lock:
            data = self._read(self.run_dir / f"{parsing_run_id}.json")
        return ParsingRun.model_validate(data) if data else None

    def list_parsing_runs(self, document_id: str) -> list[ParsingRun]:
        with self._lock:
            runs = [
                ParsingRun.model_validate(data)
                for data in self._read_all(self.run_dir)
                if data.get("document_id") == document_id
            ]
        return sorted(runs, key=lambda run: run.started_ts)

    # Model outputs and transactions

    def insert_model_output(self, output: ModelOutput) -> str:
        with self._lock:
            self._write(self.output_dir / f"{output.output_id}.json", output.model_dump(mode="json"))
        return output.output_id

    def insert_transactions(self, records: list[TransactionRecord]) -> int:
        if not records:
            return 0
        by_run: dict[str, list[dict[str, Any]]] = {}
        for record in records:
            by_run.setdefault(record.parsing_run_id, []).append(record.model_dump(mode="json"))
        with self._lock:
            for parsing_run_id, rows in by_run.items():
                path = self.transaction_dir / f"{parsing_run_id}.json"
                self._write(path, (self._read(path) or []) + rows)
        return len(records)

    def list_transactions(
        self,
        document_id: str | None = None,
        parsing_run_id: str | None = None,
    ) -> list[TransactionRecord]:
        with self._lock:
            if parsing_run_id:
                rows = self._read(self.transaction_dir / f"{parsing_run_id}.json") or []
            else:
                rows = [row for chunk in self._read_all(self.transaction_dir) for row in chunk]
        records = [TransactionRecord.model_validate(row) for row in rows]
        if document_id:
            records = [record for record in records if record.document_id == document_id]
        return records

    def query_transactions_by_date_range(self, start_date: date, end_date: date) -> list[TransactionRecord]:
        with self._lock:
            succeeded = {
                data["parsing_run_id"]
                for data in self._read_all(self.run_dir)
                if data.get("status") == ParsingRunStatus.SUCCESS.value
            }
            rows = [
                row
                for parsing_run_id in succeeded
                for row in self._read(self.transaction_dir / f"{parsing_run_id}.json") or []
            ]
        records = [
            record
            for record in (TransactionRecord.model_validate(row) for row in rows)
            if start_date <= record.transaction_date <= end_date
        ]
        return sorted(records, key=lambda record: (record.transaction_date, record.created_ts))

    # Categories

    def list_active_categories(self) -> list[CategoryRow]:
        with self._lock:
            data = self._read(self.categories_path)
        if data is None:
            return [row.model_copy() for row in DEFAULT_CATEGORIES]
        rows = [CategoryRow.model_validate(item) for item in data]
        return [row for row in rows if row.is_active]

    def save_categories(self, rows: list[CategoryRow]) -> None:
        with self._lock:
            existing = {item["category_id"]: item for item in self._read(self.categories_path) or []}
            for row in rows:
                existing[row.category_id] = row.model_dump(mode="json")
            self._write(self.categories_path, list(existing.values()))
