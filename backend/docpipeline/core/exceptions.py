"""
Pipeline exception hierarchy.

Benign outcomes (unsupported file type, empty document) are NOT exceptions;
the ingestion pipeline returns them as JobOutcome values. Everything here is
a real failure that ends up in Document.processing_error.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the ingestion/scoring pipeline."""


class ConfigurationError(PipelineError):
    """
    The failure is caused by deployment configuration
    (missing or invalid credentials). Re-queueing the job cannot fix it.
    """


# ---------------------------------------------------------------------------
# Blob store / extraction
# ---------------------------------------------------------------------------

class BlobNotFoundError(PipelineError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Blob not found: {key}")
        self.key = key


class ExtractionError(PipelineError):
    """The file could not be parsed (corrupt, encrypted, legacy binary .doc ...)."""


class StageTimeoutError(PipelineError):
    def __init__(self, stage: str, timeout: float) -> None:
        super().__init__(f"{stage} timed out after {timeout:g}s")
        self.stage = stage
        self.timeout = timeout


# ---------------------------------------------------------------------------
# Embedding
# ---------------------------------------------------------------------------

class EmbeddingError(PipelineError):
    """Generic embedding provider failure."""


class EmbeddingCredentialsError(ConfigurationError, EmbeddingError):
    def __init__(self, detail: str = "") -> None:
        msg = "Embedding API credentials are invalid or missing"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class EmbeddingQuotaError(EmbeddingError):
    def __init__(self, detail: str = "") -> None:
        msg = "Embedding API quota exceeded"
        super().__init__(f"{msg}: {detail}" if detail else msg)


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------

class LLMError(PipelineError):
    """Generic chat-completion failure."""


class LLMCredentialsError(ConfigurationError, LLMError):
    pass


class LLMQuotaError(LLMError):
    pass


# ---------------------------------------------------------------------------
# Vector index / state
# ---------------------------------------------------------------------------

class VectorIndexError(PipelineError):
    def __init__(self, operation: str, status_code: int | None = None, detail: str = "") -> None:
        parts = [f"Vector index {operation} failed"]
        if status_code is not None:
            parts.append(f"status={status_code}")
        if detail:
            parts.append(detail)
        super().__init__(" | ".join(parts))
        self.operation = operation
        self.status_code = status_code


class InvalidTransitionError(PipelineError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target
