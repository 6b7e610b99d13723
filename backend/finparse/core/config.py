"""Runtime configuration for Finparse.

Process-wide settings come from environment variables (optionally loaded from a
``.env`` file). Values that shape a single ingestion run are collected into an
immutable ``PipelineConfig`` and handed to the pipeline explicitly.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MODEL_NAME = "gemini-2.5-flash"
DEFAULT_AI_TIMEOUT_SECONDS = 300.0

# AI_TIMEOUT_SECONDS values that switch the bound off.
TIMEOUT_DISABLED_VALUES = ("", "0", "none", "off")


def _timeout_from_env(name: str) -> float | None:
    value = os.getenv(name)
    if value is None:
        return DEFAULT_AI_TIMEOUT_SECONDS
    if value.strip().lower() in TIMEOUT_DISABLED_VALUES:
        return None
    return float(value)


class PipelineConfig(BaseModel):
    """Per-run settings threaded through the ingestion pipeline."""

    model_config = ConfigDict(frozen=True)

    user_id: str = "default"
    document_type: str = "BANK_STATEMENT"
    source_system: str = "BARCLAYS"
    model_name: str = DEFAULT_MODEL_NAME
    parser_type: str = "GEMINI_VISION"
    parser_version: str = "v1"
    # None lets the AI call run unbounded. A call that outlives the bound keeps
    # its worker thread until it returns, and interpreter exit waits for it.
    ai_timeout_seconds: float | None = Field(default=DEFAULT_AI_TIMEOUT_SECONDS, gt=0)


class Settings(BaseModel):
    """Process-wide settings for the API, the worker pool and the adapters."""

    model_config = ConfigDict(frozen=True)

    backend: str = "firestore"
    data_dir: Path = Path("data")
    google_cloud_project: str | None = None
    vertex_location: str = "us-central1"
    storage_bucket: str | None = None
    queue_buffer_size: int = Field(default=100, ge=1)
    queue_workers: int = Field(default=5, ge=1)
    job_max_retries: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    pipeline: PipelineConfig = PipelineConfig()

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "Settings":
        """Build settings from the environment, loading ``env_file`` first if given."""
        load_dotenv(env_file)
        pipeline = PipelineConfig(
            user_id=os.getenv("FINPARSE_USER_ID", "default"),
            document_type=os.getenv("FINPARSE_DOCUMENT_TYPE", "BANK_STATEMENT"),
            source_system=os.getenv("FINPARSE_SOURCE_SYSTEM", "BARCLAYS"),
            model_name=os.getenv("GEMINI_MODEL", DEFAULT_MODEL_NAME),
            ai_timeout_seconds=_timeout_from_env("AI_TIMEOUT_SECONDS"),
        )
        return cls(
            backend=os.getenv("FINPARSE_BACKEND", "firestore").lower(),
            data_dir=Path(os.getenv("FINPARSE_DATA_DIR", "data")),
            google_cloud_project=os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("VERTEX_PROJECT"),
            vertex_location=os.getenv("VERTEX_LOCATION", "us-central1"),
            storage_bucket=os.getenv("STORAGE_BUCKET"),
            queue_buffer_size=int(os.getenv("QUEUE_BUFFER_SIZE", "100")),
            queue_workers=int(os.getenv("QUEUE_WORKERS", "5")),
            job_max_retries=int(os.getenv("JOB_MAX_RETRIES", "3")),
            retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
            pipeline=pipeline,
        )
