"""Steps of the statement ingestion pipeline.

Each step reads and writes ``PipelineState``. Steps that run after a parsing
run has been opened mark that run as failed before re-raising, so the record
store never keeps a RUNNING run for a dead ingestion.
"""

from __future__ import annotations

import concurrent.futures
import uuid

from finparse.core.exceptions import (
    CategoryError,
    CategoryValidationError,
    ChecksumError,
    LLMTimeoutError,
)
from finparse.core.logging import get_logger
from finparse.core.utils import content_checksum, truncate_message
from finparse.pipeline.engine import Pipeline, PipelineState, PipelineStep
from finparse.pipeline.transform import transform_model_output
from finparse.pipeline.validation import CategoryValidator
from finparse.schemas.models import (
    DocumentRecord,
    DocumentStatus,
    ModelOutput,
    TransactionRecord,
)

logger = get_logger("finparse.pipeline.steps")


def mark_run_failed(state: PipelineState, error: BaseException) -> None:
    """Record ``error`` against the open parsing run, if there is one."""
    if not state.parsing_run_id:
        return
    state.repository.mark_parsing_run_failed(state.parsing_run_id, truncate_message(str(error)))


class FetchSource(PipelineStep):
    name = "FetchSource"

    def execute(self, state: PipelineState) -> None:
        try:
            state.file_bytes = state.storage.fetch(state.source_uri)
        except Exception as e:
            mark_run_failed(state, e)
            raise
        logger.info(f"Fetched {len(state.file_bytes)} bytes from {state.source_uri}")


class ComputeChecksum(PipelineStep):
    name = "ComputeChecksum"

    def execute(self, state: PipelineState) -> None:
        if not state.file_bytes:
            raise ChecksumError(
                "file bytes not available",
                details={"source_uri": state.source_uri},
            )
        state.checksum = content_checksum(state.file_bytes)


class ResolveDocument(PipelineStep):
    """Reuse the document with the same checksum, or create a new one."""

    name = "ResolveDocument"

    def execute(self, state: PipelineState) -> None:
        existing = state.repository.find_document_by_checksum(state.checksum)
        if existing is not None:
            state.document_id = existing.document_id
            state.is_reparse = True
            logger.info(f"Document {existing.document_id} already ingested, re-parsing")
            return

        config = state.config
        record = DocumentRecord(
            document_id=str(uuid.uuid4()),
            user_id=config.user_id,
            source_uri=state.source_uri,
            document_type=config.document_type,
            source_system=config.source_system,
            original_filename=state.storage.extract_filename(state.source_uri),
            checksum_sha256=state.checksum,
            parsing_status=DocumentStatus.PENDING,
        )
        state.document_id = state.repository.insert_document(record)
        state.is_reparse = False


class SupersedeOldRuns(PipelineStep):
    name = "SupersedeOldRuns"

    def execute(self, state: PipelineState) -> None:
        if not state.is_reparse:
            return
        count = state.repository.mark_parsing_runs_superseded(state.document_id)
        logger.info(f"Superseded {count} previous runs of document {state.document_id}")


class StartParsingRun(PipelineStep):
    name = "StartParsingRun"

    def execute(self, state: PipelineState) -> None:
        state.parsing_run_id = state.repository.start_parsing_run(
            state.document_id,
            parser_type=state.config.parser_type,
            parser_version=state.config.parser_version,
        )


class ParseWithAIService(PipelineStep):
    name = "ParseWithAIService"

    def execute(self, state: PipelineState) -> None:
        try:
            state.raw_output = self._parse(state)
        except Exception as e:
            mark_run_failed(state, e)
            raise

    def _parse(self, state: PipelineState):
        timeout = state.config.ai_timeout_seconds
        if timeout is None:
            return state.parser.parse_statement(state.file_bytes)

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(state.parser.parse_statement, state.file_bytes)
            try:
                return future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                raise LLMTimeoutError(
                    f"AI service did not answer within {timeout}s",
                    details={"timeout_seconds": timeout},
                )
        finally:
            # A hung call is left to finish on its own thread.
            executor.shutdown(wait=False)


class StoreRawOutput(PipelineStep):
    name = "StoreRawOutput"

    def execute(self, state: PipelineState) -> None:
        try:
            output = ModelOutput(
                output_id=str(uuid.uuid4()),
                parsing_run_id=state.parsing_run_id,
                document_id=state.document_id,
                model_name=state.config.model_name,
                raw_json=state.raw_output,
            )
            state.repository.insert_model_output(output)
        except Exception as e:
            mark_run_failed(state, e)
            raise


class TransformOutput(PipelineStep):
    name = "TransformOutput"

    def execute(self, state: PipelineState) -> None:
        try:
            state.transactions = transform_model_output(state.raw_output)
        except Exception as e:
            mark_run_failed(state, e)
            raise
        logger.info(f"Extracted {len(state.transactions)} transactions")


class BuildValidator(PipelineStep):
    name = "BuildValidator"

    def execute(self, state: PipelineState) -> None:
        try:
            state.validator = CategoryValidator.from_repository(state.repository)
        except Exception as e:
            mark_run_failed(state, e)
            raise


class ValidateCategories(PipelineStep):
    """Validate every transaction, reporting all failures at once."""

    name = "ValidateCategories"

    def execute(self, state: PipelineState) -> None:
        if state.validator is None:
            error = RuntimeError("category validator not initialized")
            mark_run_failed(state, error)
            raise error

        failures: list[str] = []
        errors: list[tuple[int, CategoryError]] = []
        for index, tx in enumerate(state.transactions):
            try:
                tx.category_id = state.validator.validate(tx.category, tx.subcategory)
            except CategoryError as e:
                errors.append((index, e))
                failures.append(
                    f"transaction {index} (date: {tx.date.isoformat()}, desc: {tx.description}): {e}"
                )

        if failures:
            error = CategoryValidationError(failures, errors)
            mark_run_failed(state, error)
            raise error


class PersistTransactions(PipelineStep):
    name = "PersistTransactions"

    def execute(self, state: PipelineState) -> None:
        if not state.transactions:
            logger.info("No transactions to persist")
            return

        records = [
            TransactionRecord(
                transaction_id=str(uuid.uuid4()),
                user_id=state.config.user_id,
                document_id=state.document_id,
                parsing_run_id=state.parsing_run_id,
                transaction_date=tx.date,
                amount=tx.amount,
                currency=tx.currency,
                balance_after=tx.balance_after,
                direction=tx.direction,
                raw_description=tx.description,
                category_id=tx.category_id or "",
                category_name=tx.category,
                subcategory_name=tx.subcategory or None,
                account_name=tx.account_name,
                account_number=tx.account_number,
            )
            for tx in state.transactions
        ]
        try:
            state.repository.insert_transactions(records)
        except Exception as e:
            mark_run_failed(state, e)
            raise


class MarkRunSucceeded(PipelineStep):
    name = "MarkRunSucceeded"

    def execute(self, state: PipelineState) -> None:
        try:
            state.repository.mark_parsing_run_succeeded(state.parsing_run_id)
        except Exception as e:
            mark_run_failed(state, e)
            raise


def build_ingestion_pipeline() -> Pipeline:
    """Return the standard statement ingestion pipeline."""
    return Pipeline(
        [
            FetchSource(),
            ComputeChecksum(),
            ResolveDocument(),
            SupersedeOldRuns(),
            StartParsingRun(),
            ParseWithAIService(),
            StoreRawOutput(),
            TransformOutput(),
            BuildValidator(),
            ValidateCategories(),
            PersistTransactions(),
            MarkRunSucceeded(),
        ]
    )
