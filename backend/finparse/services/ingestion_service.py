from __future__ import annotations

import asyncio

import vertexai

from finparse.core.config import PipelineConfig, Settings
from finparse.core.logging import LogContext, get_logger
from finparse.jobs.queue import JobHandler
from finparse.pipeline.engine import Pipeline, PipelineState
from finparse.pipeline.steps import build_ingestion_pipeline
from finparse.repositories.base import DocumentRepository
from finparse.repositories.firestore_repo import FirestoreRepository
from finparse.repositories.local_repo import LocalRepository
from finparse.schemas.job_models import ParseDocumentJob
from finparse.services.inference_service import InferenceService, StatementParser
from finparse.storage.base import StorageAccessor
from finparse.storage.cloud_storage import CloudStorageService
from finparse.storage.local_storage import LocalStorage

logger = get_logger("finparse.services.ingestion")


class IngestionService:
    """Runs the statement ingestion pipeline against injected collaborators."""

    def __init__(
        self,
        repository: DocumentRepository,
        storage: StorageAccessor,
        parser: StatementParser,
        config: PipelineConfig | None = None,
        pipeline: Pipeline | None = None,
    ) -> None:
        self.repository = repository
        self.storage = storage
        self.parser = parser
        self.config = config or PipelineConfig()
        self.pipeline = pipeline or build_ingestion_pipeline()

    def new_state(self, source_uri: str) -> PipelineState:
        return PipelineState(
            source_uri=source_uri,
            repository=self.repository,
            storage=self.storage,
            parser=self.parser,
            config=self.config,
        )

    def ingest(self, source_uri: str, state: PipelineState | None = None) -> PipelineState:
        """Ingest one statement synchronously.

        Args:
            source_uri: Location of the statement in object storage
            state: Pre-built state, so callers can inspect ids after a failure

        Returns:
            The final pipeline state

        Raises:
            PipelineStepError: If any step fails
        """
        state = state or self.new_state(source_uri)
        with LogContext(logger, "ingestion", source_uri=source_uri):
            self.pipeline.run(state)
        logger.info(
            f"Ingested {len(state.transactions)} transactions into document {state.document_id} "
            f"(run {state.parsing_run_id}, reparse={state.is_reparse})"
        )
        return state


def make_parse_job_handler(service: IngestionService) -> JobHandler:
    """Build a queue handler that runs the pipeline on a worker thread.

    The handler records the document and parsing run ids on the job whether
    the run succeeds or fails.
    """

    async def handle(job: ParseDocumentJob) -> None:
        state = service.new_state(job.source_uri)
        try:
            await asyncio.to_thread(service.ingest, job.source_uri, state)
        finally:
            if state.document_id:
                job.document_id = state.document_id
            if state.parsing_run_id:
                job.parsing_run_id = state.parsing_run_id

    return handle


def _check_backend(settings: Settings) -> None:
    if settings.backend not in ("local", "firestore"):
        raise ValueError(f"Unknown backend: {settings.backend}. Use 'firestore' or 'local'.")


def build_repository(settings: Settings) -> DocumentRepository:
    _check_backend(settings)
    if settings.backend == "local":
        return LocalRepository(settings.data_dir)
    return FirestoreRepository()


def build_storage(settings: Settings) -> StorageAccessor:
    _check_backend(settings)
    if settings.backend == "local":
        return LocalStorage(settings.data_dir / "uploads")
    return CloudStorageService(settings.storage_bucket)


def build_ingestion_service(settings: Settings) -> IngestionService:
    """Wire repository, storage and parser for the configured backend."""
    repository = build_repository(settings)
    storage = build_storage(settings)

    if settings.google_cloud_project:
        vertexai.init(project=settings.google_cloud_project, location=settings.vertex_location)

    parser = InferenceService(
        repository,
        model_name=settings.pipeline.model_name,
        source_system=settings.pipeline.source_system,
    )
    logger.info(f"Ingestion service ready (backend={settings.backend})")
    return IngestionService(repository, storage, parser, config=settings.pipeline)
