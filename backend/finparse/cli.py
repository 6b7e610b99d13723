"""
Finparse command line.

Usage:
    finparse ingest gs://bucket/statements/2024-01.pdf
    finparse upload ./statement.pdf
    finparse reparse --document-id 2f1c...
    finparse inspect --document-id 2f1c...
    finparse worker --port 8080
    finparse seed-categories
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from finparse.core.config import Settings
from finparse.core.exceptions import FinparseError, RepositoryError
from finparse.core.logging import get_logger
from finparse.pipeline.engine import PipelineState
from finparse.repositories.base import DEFAULT_CATEGORIES, DocumentRepository
from finparse.schemas.models import DocumentRecord
from finparse.services.ingestion_service import IngestionService, build_ingestion_service, build_repository

logger = get_logger("finparse.cli")


def _report(state: PipelineState) -> None:
    print(f"document_id:    {state.document_id}")
    print(f"parsing_run_id: {state.parsing_run_id}")
    print(f"transactions:   {len(state.transactions)}")
    if state.is_reparse:
        print("re-parse:       previous runs superseded")


def cmd_ingest(service: IngestionService, uri: str) -> None:
    _report(service.ingest(uri))


def cmd_upload(service: IngestionService, path: Path, name: str | None) -> None:
    if not path.is_file():
        raise SystemExit(f"File not found: {path}")
    uri = service.storage.upload(path, name or path.name)
    print(f"uploaded:       {uri}")
    _report(service.ingest(uri))


def _require_document(repository: DocumentRepository, document_id: str) -> DocumentRecord:
    document = repository.get_document(document_id)
    if document is None:
        raise RepositoryError(f"Document not found: {document_id}", details={"document_id": document_id})
    return document


def cmd_reparse(service: IngestionService, document_id: str) -> None:
    document = _require_document(service.repository, document_id)
    if not document.source_uri:
        raise RepositoryError(f"Document {document_id} has no source URI")
    logger.info(f"Re-parsing document {document_id} from {document.source_uri}")
    _report(service.ingest(document.source_uri))


def cmd_inspect(repository: DocumentRepository, document_id: str) -> None:
    document = _require_document(repository, document_id)
    print("=== Document ===")
    print(f"document_id:    {document.document_id}")
    print(f"source_uri:     {document.source_uri}")
    print(f"checksum:       {document.checksum_sha256}")
    print(f"uploaded:       {document.upload_ts.isoformat()}")
    print(f"status:         {document.parsing_status.value}")

    runs = repository.list_parsing_runs(document_id)
    print(f"\n=== Parsing runs ({len(runs)}) ===")
    for run in runs:
        line = f"{run.parsing_run_id}  {run.status.value:<10}  {run.started_ts.isoformat()}"
        if run.error_message:
            line += f"  {run.error_message.splitlines()[0]}"
        print(line)

    transactions = repository.list_transactions(document_id=document_id)
    print(f"\n=== Transactions ({len(transactions)}) ===")
    for index, tx in enumerate(transactions, start=1):
        category = tx.category_name + (f" / {tx.subcategory_name}" if tx.subcategory_name else "")
        print(f"{index}. {tx.transaction_date.isoformat()}  {tx.amount:>10.2f} {tx.currency}  {tx.raw_description}")
        print(f"   category: {category}  (run {tx.parsing_run_id})")


def cmd_seed_categories(service: IngestionService) -> None:
    service.repository.save_categories(DEFAULT_CATEGORIES)
    print(f"Saved {len(DEFAULT_CATEGORIES)} category rows")


def cmd_worker(settings: Settings, host: str, port: int) -> None:
    import uvicorn

    from finparse.main import create_app

    uvicorn.run(create_app(settings), host=host, port=port)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Finparse statement ingestion")
    parser.add_argument("--env-file", help="Load environment variables from this file first")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a statement already in storage")
    ingest_parser.add_argument("uri", help="Source URI (gs://bucket/object or a local path)")

    upload_parser = subparsers.add_parser("upload", help="Upload a local statement, then ingest it")
    upload_parser.add_argument("path", type=Path, help="Local PDF file")
    upload_parser.add_argument("--name", help="Object name (defaults to the file name)")

    worker_parser = subparsers.add_parser("worker", help="Serve the job API and worker pool")
    worker_parser.add_argument("--host", default="0.0.0.0")
    worker_parser.add_argument("--port", type=int, default=8080)

    reparse_parser = subparsers.add_parser("reparse", help="Re-parse an existing document by ID")
    reparse_parser.add_argument("--document-id", required=True, help="Document ID to re-parse")

    inspect_parser = subparsers.add_parser("inspect", help="Inspect a document, its runs and transactions")
    inspect_parser.add_argument("--document-id", required=True, help="Document ID to inspect")

    subparsers.add_parser("seed-categories", help="Store the starter category taxonomy")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    settings = Settings.from_env(args.env_file)
    if args.command == "worker":
        cmd_worker(settings, args.host, args.port)
        return 0

    try:
        if args.command == "inspect":
            cmd_inspect(build_repository(settings), args.document_id)
            return 0

        service = build_ingestion_service(settings)
        if args.command == "ingest":
            cmd_ingest(service, args.uri)
        elif args.command == "upload":
            cmd_upload(service, args.path, args.name)
        elif args.command == "reparse":
            cmd_reparse(service, args.document_id)
        elif args.command == "seed-categories":
            cmd_seed_categories(service)
    except FinparseError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
