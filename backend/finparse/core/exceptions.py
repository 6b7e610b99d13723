"""Custom exceptions for the Finparse application."""

from __future__ import annotations


class FinparseError(Exception):
    """Base exception for all Finparse errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StorageError(FinparseError):
    """Raised when a source file cannot be fetched or stored."""

    pass


class ChecksumError(FinparseError):
    """Raised when a content fingerprint cannot be computed."""

    pass


class RepositoryError(FinparseError):
    """Raised when the record store rejects an operation."""

    pass


class LLMError(FinparseError):
    """Base exception for LLM-related errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when connection to LLM provider fails."""

    pass


class LLMParseError(LLMError):
    """Raised when parsing LLM response fails."""

    def __init__(self, message: str, raw_response: str = "", details: dict | None = None) -> None:
        super().__init__(message, details)
        self.raw_response = raw_response


class LLMRateLimitError(LLMError):
    """Raised when LLM rate limit is exceeded."""

    pass


class LLMTimeoutError(LLMError):
    """Raised when the LLM does not answer within the configured bound."""

    pass


class TransformError(FinparseError):
    """Base exception for structural problems in model output."""

    pass


class MalformedOutputError(TransformError):
    """Raised when the model output does not have the expected top-level shape."""

    pass


class MalformedFieldError(TransformError):
    """Raised when a single transaction element has a missing or invalid field."""

    def __init__(self, index: int, field: str, reason: str) -> None:
        super().__init__(
            f"transaction {index}: field {field!r} {reason}",
            details={"index": index, "field": field},
        )
        self.index = index
        self.field = field


class CategoryError(FinparseError):
    """Base exception for a single invalid category/subcategory pair."""

    pass


class UnknownCategoryError(CategoryError):
    """Raised when the category is not part of the taxonomy."""

    pass


class UnknownSubcategoryError(CategoryError):
    """Raised when the subcategory is not valid for its category."""

    pass


class CategoryValidationError(FinparseError):
    """Raised when one or more transactions fail category validation.

    ``failures`` holds one readable line per transaction; ``errors`` pairs each
    failing transaction index with the ``CategoryError`` it raised.
    """

    def __init__(
        self,
        failures: list[str],
        errors: list[tuple[int, CategoryError]] | None = None,
    ) -> None:
        lines = "\n".join(f"  - {failure}" for failure in failures)
        super().__init__(f"category validation failed:\n{lines}", details={"failures": failures})
        self.failures = failures
        self.errors = errors or []


class PipelineStepError(FinparseError):
    """Raised when a pipeline step fails; wraps the underlying cause."""

    def __init__(self, position: int, step_name: str, cause: BaseException) -> None:
        super().__init__(
            f"pipeline step {position} ({step_name}) failed: {cause}",
            details={"position": position, "step": step_name},
        )
        self.position = position
        self.step_name = step_name
        self.cause = cause


class JobNotFoundError(FinparseError):
    """Raised when a job is not found."""

    pass


class QueueClosedError(FinparseError):
    """Raised when work is submitted to a queue that has been shut down."""

    pass


class QueueStopTimeout(FinparseError, TimeoutError):
    """Raised when in-flight jobs do not finish before the stop deadline."""

    pass
