"""
Vector Index — Abstract Base

Every concrete backend (Qdrant, Pinecone) implements this interface. The
pipeline and the chat read path only speak this protocol, so backends are
swappable without touching ingestion or scoring code.

Isolation contract:
  There is no namespace per tenant. Every point carries `chatId` and
  `documentId` in its payload and every read or delete is scoped by a
  `must` filter built from those fields. A search without a filter is not
  exposed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class VectorPoint:
    """A single chunk embedding to upsert."""
    id:      str              # uuid5 of docId + chunk position
    vector:  list[float]
    payload: dict             # text, documentId, chatId, blobKey, fileName, position fields


@dataclass
class ScoredPoint:
    """One result returned from a similarity search."""
    id:      str
    score:   float
    payload: dict
    text:    str = field(default="")   # convenience alias for payload["text"]

    def __post_init__(self) -> None:
        if not self.text and "text" in self.payload:
            self.text = self.payload["text"]


@dataclass(frozen=True)
class FieldMatch:
    """Equality condition on one payload field."""
    key:   str
    value: Any


@dataclass(frozen=True)
class MustFilter:
    """Conjunction of field equalities (all must hold)."""
    must: tuple[FieldMatch, ...]

    @classmethod
    def of(cls, **fields: Any) -> "MustFilter":
        """MustFilter.of(chatId="c1", documentId="d1")"""
        return cls(must=tuple(FieldMatch(k, v) for k, v in fields.items()))

    def __bool__(self) -> bool:
        return bool(self.must)

    def items(self) -> Iterable[tuple[str, Any]]:
        return ((m.key, m.value) for m in self.must)

    def matches(self, payload: dict) -> bool:
        return all(payload.get(k) == v for k, v in self.items())


REQUIRED_PAYLOAD_FIELDS = ("text", "documentId", "chatId")


def validate_point(point: VectorPoint, dimensions: int) -> None:
    """Reject points that would break retrieval or isolation."""
    missing = [f for f in REQUIRED_PAYLOAD_FIELDS if not point.payload.get(f)]
    if missing:
        raise ValueError(f"Point {point.id} payload missing {missing}")
    if len(point.vector) != dimensions:
        raise ValueError(
            f"Point {point.id} has dimension {len(point.vector)}, index expects {dimensions}"
        )


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class VectorIndex(ABC):
    """Filter-scoped vector index over chunk embeddings."""

    def __init__(self, dimensions: int) -> None:
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @abstractmethod
    async def ensure_collection(self) -> None:
        """
        Create the collection (cosine distance, `dimensions` wide) if absent.
        Idempotent; a concurrent creator winning the race counts as success.
        """

    @abstractmethod
    async def upsert(self, points: list[VectorPoint], batch_size: int = 100) -> int:
        """Insert or update points. Returns the number of points written."""

    @abstractmethod
    async def search(
        self,
        vector: list[float],
        filter: MustFilter,
        limit: int = 5,
    ) -> list[ScoredPoint]:
        """Top-`limit` nearest neighbours among points matching `filter`."""

    @abstractmethod
    async def delete(self, filter: MustFilter) -> None:
        """Delete every point matching `filter`."""

    @abstractmethod
    async def count(self, filter: MustFilter | None = None) -> int:
        """Number of points, optionally restricted to `filter`."""

    async def close(self) -> None:
        """Release network resources. No-op by default."""
