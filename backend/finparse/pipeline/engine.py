"""Sequential step runner for the ingestion pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

from finparse.core.config import PipelineConfig
from finparse.core.exceptions import PipelineStepError
from finparse.core.logging import get_logger
from finparse.schemas.models import Transaction

if TYPE_CHECKING:
    from finparse.pipeline.validation import CategoryValidator
    from finparse.repositories.base import DocumentRepository
    from finparse.services.inference_service import StatementParser
    from finparse.storage.base import StorageAccessor

logger = get_logger("finparse.pipeline")


@dataclass
class PipelineState:
    """Mutable state shared by every step of a single ingestion run."""

    source_uri: str
    repository: "DocumentRepository"
    storage: "StorageAccessor"
    parser: "StatementParser"
    config: PipelineConfig = field(default_factory=PipelineConfig)

    document_id: str = ""
    parsing_run_id: str = ""
    file_bytes: bytes = b""
    checksum: str = ""
    raw_output: Any = None
    transactions: list[Transaction] = field(default_factory=list)
    is_reparse: bool = False
    validator: "CategoryValidator | None" = None


class PipelineStep(ABC):
    """One unit of work in the ingestion pipeline."""

    name: str = ""

    @abstractmethod
    def execute(self, state: PipelineState) -> None:
        """Run the step, mutating ``state`` in place."""


class Pipeline:
    """Runs steps in order and stops at the first failure.

    Completed steps are not rolled back; failure bookkeeping is each step's
    own responsibility.
    """

    def __init__(self, steps: Sequence[PipelineStep]) -> None:
        self.steps = list(steps)

    def run(self, state: PipelineState) -> PipelineState:
        """Execute every step against ``state``.

        Raises:
            PipelineStepError: Wrapping the first step failure, with its
                1-based position and name
        """
        for position, step in enumerate(self.steps, start=1):
            logger.debug(f"Running step {position} ({step.name}) for {state.source_uri}")
            try:
                step.execute(state)
            except Exception as e:
                logger.error(f"Pipeline step {position} ({step.name}) failed: {e}")
                raise PipelineStepError(position, step.name, e) from e
        return state
