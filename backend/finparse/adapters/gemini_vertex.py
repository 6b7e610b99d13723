from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any

import vertexai
from dotenv import load_dotenv
from google.api_core import exceptions as google_exceptions
from vertexai.generative_models import GenerationConfig, GenerativeModel, Part

from finparse.core.exceptions import LLMConnectionError, LLMParseError, LLMRateLimitError
from finparse.core.logging import get_logger

logger = get_logger("finparse.adapters.gemini")

PDF_MIME_TYPE = "application/pdf"

# Deterministic extraction; the prompt already demands a bare JSON array.
STATEMENT_GENERATION_CONFIG = GenerationConfig(temperature=0.0)


class GeminiVertexAdapter:
    """Gemini on Vertex AI, reading statement PDFs as inline document parts."""

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        try:
            self.model = GenerativeModel(model_name, generation_config=STATEMENT_GENERATION_CONFIG)
        except Exception as e:
            logger.error(f"Could not create GenerativeModel {model_name}: {e}")
            raise LLMConnectionError(
                f"Failed to initialize LLM model: {model_name}",
                details={"model": model_name, "error": str(e)},
            ) from e
        logger.info(f"GeminiVertexAdapter ready (model={model_name})")

    def parse_statement(self, pdf_bytes: bytes, prompt: str) -> dict[str, Any]:
        """Send a statement PDF to the model and decode its transaction array.

        Returns:
            ``{"transactions": <decoded array>}``
        """
        contents = [prompt, Part.from_data(data=pdf_bytes, mime_type=PDF_MIME_TYPE)]
        logger.debug(f"Sending {len(pdf_bytes)} byte statement to {self.model_name}")

        text = self._call_model(contents, operation="parse_statement")
        if not text:
            raise LLMParseError("Empty response from LLM", raw_response=text)

        transactions = self._parse_transactions(text)
        count = len(transactions) if isinstance(transactions, list) else 0
        logger.info(f"Model returned {count} transactions")
        return {"transactions": transactions}

    def _call_model(self, contents: Any, operation: str = "generate") -> str:
        """Call the model, mapping Google API failures onto LLM errors."""
        try:
            response = self.model.generate_content(contents)
        except google_exceptions.ResourceExhausted as e:
            logger.error(f"{operation}: Vertex AI quota exhausted: {e}")
            raise LLMRateLimitError(
                "Rate limit exceeded. Please try again later.",
                details={"operation": operation, "model": self.model_name},
            ) from e
        except (google_exceptions.ServiceUnavailable, google_exceptions.DeadlineExceeded) as e:
            logger.error(f"{operation}: Vertex AI unavailable: {e}")
            raise LLMConnectionError(
                "LLM service is temporarily unavailable.",
                details={"operation": operation, "model": self.model_name},
            ) from e
        except google_exceptions.InvalidArgument as e:
            logger.error(f"{operation}: request rejected by Vertex AI: {e}")
            raise LLMConnectionError(
                f"Invalid request to LLM service: {e}",
                details={"operation": operation, "model": self.model_name},
            ) from e
        except Exception as e:
            logger.error(f"{operation}: unexpected LLM error: {e}", exc_info=True)
            raise LLMConnectionError(
                f"Failed to communicate with LLM: {e}",
                details={"operation": operation, "model": self.model_name},
            ) from e

        text = getattr(response, "text", "") or ""
        if not text:
            logger.warning(f"{operation}: model returned no text")
        return text

    def _parse_transactions(self, text: str) -> Any:
        try:
            return json.loads(self._extract_json_array(text))
        except json.JSONDecodeError as e:
            logger.warning(f"Model output is not valid JSON ({e}); starts with: {text[:200]}")
            raise LLMParseError(
                "Failed to parse transactions from LLM response",
                raw_response=text,
                details={"error": str(e)},
            ) from e

    @classmethod
    def _extract_json_array(cls, text: str) -> str:
        """Cut the outermost ``[...]`` out of a reply that may carry prose around it."""
        cleaned = cls._strip_code_fence(text)
        start = cleaned.find("[")
        end = cleaned.rfind("]")
        if start != -1 and end > start:
            cleaned = cleaned[start:end + 1]
        return cleaned.strip()

    @staticmethod
    def _strip_code_fence(text: str) -> str:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.endswith("```"):
            cleaned = cleaned.rsplit("\n", 1)[0] if "\n" in cleaned else cleaned[:-3]
        return cleaned.strip()


if __name__ == "__main__":
    # Smoke test: python -m finparse.adapters.gemini_vertex statement.pdf
    load_dotenv()
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("VERTEX_PROJECT")
    if not project:
        raise SystemExit("Set GOOGLE_CLOUD_PROJECT or VERTEX_PROJECT before running this test.")
    if len(sys.argv) != 2:
        raise SystemExit("Usage: python -m finparse.adapters.gemini_vertex STATEMENT.pdf")

    vertexai.init(project=project, location=os.getenv("VERTEX_LOCATION", "us-central1"))
    adapter = GeminiVertexAdapter(os.getenv("GEMINI_MODEL", "gemini-2.5-flash"))
    result = adapter.parse_statement(
        Path(sys.argv[1]).read_bytes(),
        "List every transaction in this statement as a JSON array of objects with date, description and amount.",
    )
    print(json.dumps(result, indent=2))
