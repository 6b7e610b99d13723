"""Pydantic models for parse jobs and the job API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_MAX_RETRIES = 3


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class ParseDocumentJob(BaseModel):
    """A request to run the ingestion pipeline over one source file."""

    job_id: str = ""
    document_id: str = ""
    source_uri: str
    parsing_run_id: str | None = None
    status: JobStatus | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str = ""
    retry_count: int = 0
    max_retries: int = 0


class JobFilter(BaseModel):
    document_id: str | None = None
    status: JobStatus | None = None
    limit: int = Field(default=0, ge=0, description="0 means no limit.")
    offset: int = Field(default=0, ge=0)


class ParseJobRequest(BaseModel):
    source_uri: str = Field(..., description="Object storage URI, e.g. gs://bucket/statement.pdf.")
    document_id: str = ""
    max_retries: int | None = Field(default=None, ge=1)


class ParseJobAccepted(BaseModel):
    job_id: str
    document_id: str
    status: JobStatus


class JobListResponse(BaseModel):
    jobs: list[ParseDocumentJob]
    count: int
