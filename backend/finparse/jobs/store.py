from __future__ import annotations

import threading

from finparse.core.exceptions import JobNotFoundError
from finparse.schemas.job_models import JobFilter, JobStatus, ParseDocumentJob


class InMemoryJobStore:
    """Process-local job state, safe to share between threads and tasks.

    Jobs are copied on the way in and on the way out, so callers never hold a
    reference to the canonical record. Jobs are never evicted.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, ParseDocumentJob] = {}
        self._lock = threading.Lock()

    def save(self, job: ParseDocumentJob) -> None:
        if not job.job_id:
            raise ValueError("job_id is required")
        with self._lock:
            self._jobs[job.job_id] = job.model_copy(deep=True)

    def get(self, job_id: str) -> ParseDocumentJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"job not found: {job_id}", details={"job_id": job_id})
            return job.model_copy(deep=True)

    def list(self, job_filter: JobFilter | None = None) -> list[ParseDocumentJob]:
        """Return matching jobs in insertion order; offset is applied before limit."""
        job_filter = job_filter or JobFilter()
        with self._lock:
            matches = [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if (not job_filter.document_id or job.document_id == job_filter.document_id)
                and (job_filter.status is None or job.status == job_filter.status)
            ]
        matches = matches[job_filter.offset:]
        if job_filter.limit:
            matches = matches[:job_filter.limit]
        return matches

    def update_status(self, job_id: str, status: JobStatus, error: str = "") -> None:
        """Set a job's status; a non-empty ``error`` replaces the stored error text."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"job not found: {job_id}", details={"job_id": job_id})
            job.status = status
            if error:
                job.error = error

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
