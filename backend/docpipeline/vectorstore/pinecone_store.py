"""
Pinecone Vector Index

One shared serverless index, cosine metric. Isolation is by metadata
filter (`chatId` / `documentId`), exactly as with Qdrant; the optional
namespace only separates environments (e.g. staging vs production) that
share an index.

The Pinecone SDK is synchronous. Calls are pushed to the default thread
executor so a slow request does not stall the worker's event loop.
"""

from __future__ import annotations

import asyncio
import functools
import logging

from pinecone import Pinecone, ServerlessSpec
from pinecone.exceptions import PineconeApiException

from docpipeline.core.exceptions import VectorIndexError
from docpipeline.vectorstore.base import (
    MustFilter,
    ScoredPoint,
    VectorIndex,
    VectorPoint,
    validate_point,
)

logger = logging.getLogger(__name__)

# Pinecone limit for metadata-filtered queries
MAX_TOP_K = 100


def to_pinecone_filter(filter: MustFilter) -> dict:
    clauses = [{key: {"$eq": value}} for key, value in filter.items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class PineconeVectorIndex(VectorIndex):

    def __init__(
        self,
        api_key: str,
        index_name: str,
        dimensions: int,
        namespace: str = "",
        cloud_region: str = "us-east-1",
        client: Pinecone | None = None,
    ) -> None:
        super().__init__(dimensions)
        self._pc = client or Pinecone(api_key=api_key)
        self._index_name = index_name
        self._namespace = namespace
        self._region = cloud_region
        self._index = None

    def _idx(self):
        if self._index is None:
            self._index = self._pc.Index(self._index_name)
        return self._index

    async def _run(self, operation: str, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        except PineconeApiException as exc:
            raise VectorIndexError(operation, getattr(exc, "status", None), str(exc)) from exc

    # ------------------------------------------------------------------
    # Index provisioning
    # ------------------------------------------------------------------

    async def ensure_collection(self) -> None:
        existing = await self._run("exists", lambda: [i.name for i in self._pc.list_indexes()])
        if self._index_name in existing:
            logger.info("Pinecone index exists | index=%s", self._index_name)
            return

        try:
            await self._run(
                "create",
                self._pc.create_index,
                name=self._index_name,
                dimension=self._dimensions,
                metric="cosine",
                spec=ServerlessSpec(cloud="aws", region=self._region),
            )
        except VectorIndexError as exc:
            if exc.status_code == 409:
                logger.info("Pinecone index created concurrently | index=%s", self._index_name)
                return
            raise
        logger.info(
            "Pinecone index created | index=%s dimension=%d", self._index_name, self._dimensions,
        )

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upsert(self, points: list[VectorPoint], batch_size: int = 100) -> int:
        """Batches stay within Pinecone's 2MB request limit."""
        total = 0
        for i in range(0, len(points), batch_size):
            batch = points[i : i + batch_size]
            vectors = []
            for point in batch:
                validate_point(point, self._dimensions)
                vectors.append({"id": point.id, "values": point.vector, "metadata": point.payload})

            await self._run("upsert", self._idx().upsert, vectors=vectors, namespace=self._namespace)
            total += len(batch)
            logger.debug("Pinecone upsert | index=%s batch=%d total=%d", self._index_name, len(batch), total)
        return total

    async def search(
        self,
        vector: list[float],
        filter: MustFilter,
        limit: int = 5,
    ) -> list[ScoredPoint]:
        if not filter:
            raise ValueError("search requires a non-empty filter")

        resp = await self._run(
            "search",
            self._idx().query,
            vector=vector,
            top_k=min(limit, MAX_TOP_K),
            namespace=self._namespace,
            filter=to_pinecone_filter(filter),
            include_metadata=True,
            include_values=False,
        )
        return [
            ScoredPoint(id=m["id"], score=m["score"], payload=m.get("metadata") or {})
            for m in resp.get("matches", [])
        ]

    async def delete(self, filter: MustFilter) -> None:
        if not filter:
            raise ValueError("delete requires a non-empty filter")
        await self._run(
            "delete", self._idx().delete,
            filter=to_pinecone_filter(filter), namespace=self._namespace,
        )
        logger.info("Pinecone delete | index=%s filter=%s", self._index_name, dict(filter.items()))

    async def count(self, filter: MustFilter | None = None) -> int:
        kwargs = {"filter": to_pinecone_filter(filter)} if filter else {}
        stats = await self._run("count", self._idx().describe_index_stats, **kwargs)
        ns_stats = stats.get("namespaces", {}).get(self._namespace, {})
        return ns_stats.get("vector_count", 0)
