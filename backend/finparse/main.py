from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from fastapi import FastAPI

from finparse.api.routes import router as api_router
from finparse.core.config import Settings
from finparse.core.exceptions import QueueStopTimeout
from finparse.core.logging import get_logger
from finparse.jobs.queue import JobHandler, JobQueue
from finparse.jobs.store import InMemoryJobStore
from finparse.repositories.base import DocumentRepository
from finparse.services.ingestion_service import (
    build_ingestion_service,
    build_repository,
    make_parse_job_handler,
)

# Load environment variables from .env file in project root
# backend/finparse/main.py -> backend -> project root
env_path = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(env_path)

logger = get_logger("finparse.main")

SHUTDOWN_GRACE_SECONDS = 30.0


def create_app(
    settings: Optional[Settings] = None,
    handler: Optional[JobHandler] = None,
    repository: Optional[DocumentRepository] = None,
) -> FastAPI:
    """Build the API with a job queue whose worker pool lives as long as the app.

    Args:
        settings: Defaults to ``Settings.from_env()``
        handler: Job handler; defaults to running the ingestion pipeline
        repository: Record store behind the read routes; defaults to the
            ingestion service's, or one built for the configured backend
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if handler is None:
            service = build_ingestion_service(settings)
            job_handler = make_parse_job_handler(service)
            records = repository or service.repository
        else:
            job_handler = handler
            records = repository or build_repository(settings)
        store = InMemoryJobStore()
        queue = JobQueue(
            store,
            buffer_size=settings.queue_buffer_size,
            worker_count=settings.queue_workers,
            backoff_unit=settings.retry_backoff_seconds,
            default_max_retries=settings.job_max_retries,
        )
        app.state.repository = records
        app.state.store = store
        app.state.queue = queue
        await queue.start(job_handler)
        try:
            yield
        finally:
            try:
                await queue.stop(SHUTDOWN_GRACE_SECONDS)
            except QueueStopTimeout as e:
                logger.warning(f"Shutdown cut in-flight jobs short: {e}")
            app.state.queue = None

    app = FastAPI(title="Finparse API", version="0.1.0", lifespan=lifespan)
    app.include_router(api_router)
    return app


app = create_app()
