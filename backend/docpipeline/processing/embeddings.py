"""
Embedder  —  Text → Vector with Classified Failures
═════════════════════════════════════════════════════

One call per text. There is deliberately no retry loop in here: a failed
embedding fails the job, and the job queue owns retries. What this module
does own is turning provider exceptions into the three failure classes the
pipeline cares about:

  EmbeddingCredentialsError → key missing / rejected   (not retried by the queue)
  EmbeddingQuotaError       → quota or billing limit    (message contains "quota")
  EmbeddingError            → anything else

OpenAI embedding model selection:
  text-embedding-3-small  → 1536 dims  (default)
  text-embedding-3-large  → 3072 dims
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol, Sequence

from docpipeline.core.exceptions import (
    EmbeddingCredentialsError,
    EmbeddingError,
    EmbeddingQuotaError,
)

logger = logging.getLogger(__name__)

MAX_CONCURRENT_EMBEDDINGS = 4

# Native output size of each model; a smaller `dimensions` is requested
# only when the configured size differs.
_NATIVE_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class Embedder(Protocol):
    dimensions: int

    async def embed(self, text: str) -> list[float]: ...


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

def classify_embedding_error(exc: Exception) -> EmbeddingError:
    """
    Map a provider exception onto the pipeline's embedding error classes.
    Matches on class name and message so it works for any SDK version.
    """
    if isinstance(exc, EmbeddingError):
        return exc

    name = type(exc).__name__
    message = str(exc)
    lowered = message.lower()
    status = getattr(exc, "status_code", None)
    code = getattr(exc, "code", None)

    if (
        name in ("AuthenticationError", "PermissionDeniedError")
        or status == 401
        or "api key" in lowered
        or "api_key" in lowered
    ):
        return EmbeddingCredentialsError(message)

    if code == "insufficient_quota" or "quota" in lowered or "billing" in lowered:
        return EmbeddingQuotaError(message)

    return EmbeddingError(f"{name}: {message}")


# ---------------------------------------------------------------------------
# OpenAI implementation
# ---------------------------------------------------------------------------

class OpenAIEmbedder:
    """
    Async OpenAI embedder. The AsyncOpenAI client is created once and reused
    for every call (connection pooling via httpx).

    Usage:
        embedder = OpenAIEmbedder(api_key=..., model="text-embedding-3-small")
        vector   = await embedder.embed("some text")
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        client=None,
    ) -> None:
        if not api_key and client is None:
            raise EmbeddingCredentialsError("OPENAI_API_KEY is not set")
        self.model = model
        self.dimensions = dimensions
        if client is None:
            from openai import AsyncOpenAI
            # SDK-level retries off: the job queue is the single retry layer
            client = AsyncOpenAI(api_key=api_key, max_retries=0)
        self._client = client

    def _request_kwargs(self) -> dict:
        kwargs: dict = {"model": self.model}
        if _NATIVE_DIMENSIONS.get(self.model) not in (None, self.dimensions):
            kwargs["dimensions"] = self.dimensions
        return kwargs

    async def embed(self, text: str) -> list[float]:
        t0 = time.monotonic()
        try:
            response = await self._client.embeddings.create(
                input=[text], **self._request_kwargs(),
            )
        except Exception as exc:
            err = classify_embedding_error(exc)
            logger.error("Embedding failed | model=%s error=%s", self.model, err)
            raise err from exc

        vector = response.data[0].embedding
        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Embedding dimension mismatch: expected {self.dimensions}, got {len(vector)}"
            )

        logger.debug(
            "OpenAI embedding | model=%s chars=%d api_ms=%.0f",
            self.model, len(text), (time.monotonic() - t0) * 1000,
        )
        return vector


# ---------------------------------------------------------------------------
# Fan-out helper used by the ingestion pipeline
# ---------------------------------------------------------------------------

async def embed_all(
    embedder: Embedder,
    texts: Sequence[str],
    max_concurrency: int = MAX_CONCURRENT_EMBEDDINGS,
) -> list[list[float]]:
    """
    Embed every text, at most `max_concurrency` requests in flight.

    Fails fast: the first error cancels the remaining requests and is
    re-raised unchanged, so a quota error on chunk 3 of 10 surfaces as an
    EmbeddingQuotaError and nothing gets upserted.
    """
    if not texts:
        return []

    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _one(text: str) -> list[float]:
        async with semaphore:
            return await embedder.embed(text)

    tasks = [asyncio.ensure_future(_one(t)) for t in texts]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
