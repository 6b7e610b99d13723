from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from finparse.adapters.gemini_vertex import GeminiVertexAdapter
from finparse.core.config import DEFAULT_MODEL_NAME
from finparse.core.exceptions import CategoryError, LLMError
from finparse.core.logging import get_logger
from finparse.prompt.statement_prompts import build_statement_prompt
from finparse.repositories.base import DocumentRepository

logger = get_logger("finparse.services.inference")


class StatementParser(ABC):
    """External AI service that turns a statement file into raw transactions."""

    @abstractmethod
    def parse_statement(self, pdf_bytes: bytes) -> dict[str, Any]:
        """Return ``{"transactions": [...]}`` for the given file bytes."""


class InferenceService(StatementParser):
    """Parses statements with Gemini, constrained to the active category taxonomy."""

    def __init__(
        self,
        repository: DocumentRepository,
        model_name: str = DEFAULT_MODEL_NAME,
        source_system: str = "BARCLAYS",
        adapter: GeminiVertexAdapter | None = None,
    ) -> None:
        self.repository = repository
        self.source_system = source_system
        self.adapter = adapter or GeminiVertexAdapter(model_name)
        logger.info(f"InferenceService initialized with model={self.adapter.model_name}")

    def build_prompt(self) -> str:
        rows = self.repository.list_active_categories()
        if not rows:
            raise CategoryError("no active categories found")
        return build_statement_prompt(rows, source_system=self.source_system)

    def parse_statement(self, pdf_bytes: bytes) -> dict[str, Any]:
        prompt = self.build_prompt()
        try:
            return self.adapter.parse_statement(pdf_bytes, prompt)
        except LLMError as e:
            logger.error(f"LLM error during statement parsing: {e}")
            raise
