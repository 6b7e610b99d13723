from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from finparse.core.exceptions import JobNotFoundError, QueueClosedError, RepositoryError
from finparse.core.logging import get_logger
from finparse.jobs.queue import JobQueue
from finparse.jobs.store import InMemoryJobStore
from finparse.repositories.base import DocumentRepository
from finparse.schemas.job_models import (
    JobFilter,
    JobListResponse,
    JobStatus,
    ParseDocumentJob,
    ParseJobAccepted,
    ParseJobRequest,
)
from finparse.schemas.models import (
    CategoryListResponse,
    DocumentDetail,
    DocumentListResponse,
    TransactionRecord,
)

logger = get_logger("finparse.api")

router = APIRouter()


def get_queue(request: Request) -> JobQueue:
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Job queue not running")
    return queue


def get_store(request: Request) -> InMemoryJobStore:
    return request.app.state.store


def get_repository(request: Request) -> DocumentRepository:
    return request.app.state.repository


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/jobs/parse", response_model=ParseJobAccepted, status_code=202)
async def submit_parse_job(
    payload: ParseJobRequest,
    queue: JobQueue = Depends(get_queue),
) -> ParseJobAccepted:
    """Queue a statement for asynchronous ingestion.

    Returns as soon as the job is on the queue; poll ``GET /jobs/{job_id}``
    for progress.
    """
    job = ParseDocumentJob(
        source_uri=payload.source_uri,
        document_id=payload.document_id,
        max_retries=payload.max_retries or 0,
    )
    try:
        job = await queue.enqueue(job)
    except QueueClosedError as e:
        raise HTTPException(status_code=503, detail=str(e))

    logger.info(f"Accepted parse job {job.job_id} for {job.source_uri}")
    return ParseJobAccepted(job_id=job.job_id, document_id=job.document_id, status=job.status)


@router.get("/jobs/{job_id}", response_model=ParseDocumentJob)
def get_job(job_id: str, store: InMemoryJobStore = Depends(get_store)) -> ParseDocumentJob:
    try:
        return store.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(
    document_id: Optional[str] = None,
    status: Optional[JobStatus] = None,
    limit: int = Query(default=0, ge=0),
    offset: int = Query(default=0, ge=0),
    store: InMemoryJobStore = Depends(get_store),
) -> JobListResponse:
    jobs = store.list(JobFilter(document_id=document_id, status=status, limit=limit, offset=offset))
    return JobListResponse(jobs=jobs, count=len(jobs))


# Ingested records


@router.get("/documents", response_model=DocumentListResponse)
def list_documents(repository: DocumentRepository = Depends(get_repository)) -> DocumentListResponse:
    try:
        documents = repository.list_documents()
    except RepositoryError as e:
        logger.error(f"Failed to list documents: {e}")
        raise HTTPException(status_code=500, detail="Failed to list documents")
    return DocumentListResponse(documents=documents, count=len(documents))


@router.get("/documents/{document_id}", response_model=DocumentDetail)
def get_document(
    document_id: str,
    repository: DocumentRepository = Depends(get_repository),
) -> DocumentDetail:
    """Return a document with its parsing runs (oldest first) and transactions."""
    document = repository.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return DocumentDetail(
        document=document,
        parsing_runs=repository.list_parsing_runs(document_id),
        transactions=repository.list_transactions(document_id=document_id),
    )


def _parse_date(value: Optional[str], name: str, default: date) -> date:
    if not value:
        return default
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} format")


@router.get("/transactions", response_model=list[TransactionRecord])
def list_transactions(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    repository: DocumentRepository = Depends(get_repository),
) -> list[TransactionRecord]:
    """List transactions from successful runs dated between ``start_date`` and ``end_date``.

    Both bounds are inclusive YYYY-MM-DD dates. The window defaults to the
    last year up to today.
    """
    today = date.today()
    start = _parse_date(start_date, "start_date", today - timedelta(days=365))
    end = _parse_date(end_date, "end_date", today)
    try:
        return repository.query_transactions_by_date_range(start, end)
    except RepositoryError as e:
        logger.error(f"Failed to query transactions: {e}")
        raise HTTPException(status_code=500, detail="Failed to query transactions")


@router.get("/categories", response_model=CategoryListResponse)
def list_categories(repository: DocumentRepository = Depends(get_repository)) -> CategoryListResponse:
    try:
        categories = repository.list_active_categories()
    except RepositoryError as e:
        logger.error(f"Failed to list categories: {e}")
        raise HTTPException(status_code=500, detail="Failed to list categories")
    return CategoryListResponse(categories=categories, count=len(categories))
