"""
Qdrant Vector Index — REST over httpx

Talks to Qdrant's HTTP API directly instead of through the gRPC client, so
the worker image needs nothing beyond httpx. One httpx.AsyncClient per
worker process; base URL, api-key header and timeout are fixed at
construction.

Endpoints used:
  GET  /collections/{c}                 existence check
  PUT  /collections/{c}                 create (Cosine, size=dimensions)
  PUT  /collections/{c}/points?wait=true   upsert
  POST /collections/{c}/points/search   filtered similarity search
  POST /collections/{c}/points/delete   delete by filter
  POST /collections/{c}/points/count    exact count by filter
"""

from __future__ import annotations

import logging

import httpx

from docpipeline.core.exceptions import VectorIndexError
from docpipeline.vectorstore.base import (
    MustFilter,
    ScoredPoint,
    VectorIndex,
    VectorPoint,
    validate_point,
)

logger = logging.getLogger(__name__)

DISTANCE = "Cosine"


def to_qdrant_filter(filter: MustFilter) -> dict:
    return {
        "must": [
            {"key": key, "match": {"value": value}}
            for key, value in filter.items()
        ]
    }


class QdrantVectorIndex(VectorIndex):
    """
    Usage:
        index = QdrantVectorIndex(url=..., collection="documents", dimensions=1536)
        await index.ensure_collection()
        await index.upsert(points)
        hits = await index.search(vector, MustFilter.of(chatId=chat_id), limit=5)
    """

    def __init__(
        self,
        url: str,
        collection: str,
        dimensions: int,
        api_key: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(dimensions)
        self._collection = collection
        headers = {"api-key": api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=url, headers=headers, timeout=timeout,
        )

    @property
    def collection(self) -> str:
        return self._collection

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def _collection_path(self) -> str:
        return f"/collections/{self._collection}"

    def _points_path(self, action: str = "") -> str:
        base = f"{self._collection_path()}/points"
        return f"{base}/{action}" if action else base

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise VectorIndexError(operation, detail=f"{type(exc).__name__}: {exc}") from exc

    @staticmethod
    def _raise_for(operation: str, response: httpx.Response) -> None:
        if response.status_code not in (200, 201):
            raise VectorIndexError(operation, response.status_code, response.text[:500])

    # ------------------------------------------------------------------
    # Collection lifecycle
    # ------------------------------------------------------------------

    async def ensure_collection(self) -> None:
        response = await self._request("exists", "GET", self._collection_path())
        if response.status_code == 200:
            logger.info("Qdrant collection exists | collection=%s", self._collection)
            return
        if response.status_code != 404:
            self._raise_for("exists", response)

        body = {"vectors": {"size": self._dimensions, "distance": DISTANCE}}
        response = await self._request("create", "PUT", self._collection_path(), json=body)

        # Another worker created it between our GET and PUT
        if response.status_code == 409 or (
            response.status_code == 400 and "already exists" in response.text
        ):
            logger.info("Qdrant collection created concurrently | collection=%s", self._collection)
            return
        self._raise_for("create", response)
        logger.info(
            "Qdrant collection created | collection=%s size=%d distance=%s",
            self._collection, self._dimensions, DISTANCE,
        )

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upsert(self, points: list[VectorPoint], batch_size: int = 100) -> int:
        total = 0
        for i in range(0, len(points), batch_size):
            batch = points[i : i + batch_size]
            for point in batch:
                validate_point(point, self._dimensions)

            body = {
                "points": [
                    {"id": p.id, "vector": p.vector, "payload": p.payload}
                    for p in batch
                ]
            }
            response = await self._request(
                "upsert", "PUT", self._points_path(), params={"wait": "true"}, json=body,
            )
            self._raise_for("upsert", response)
            total += len(batch)
            logger.debug(
                "Qdrant upsert | collection=%s batch=%d total=%d",
                self._collection, len(batch), total,
            )
        return total

    async def search(
        self,
        vector: list[float],
        filter: MustFilter,
        limit: int = 5,
    ) -> list[ScoredPoint]:
        if not filter:
            raise ValueError("search requires a non-empty filter")

        body = {
            "vector": vector,
            "limit": limit,
            "with_payload": True,
            "filter": to_qdrant_filter(filter),
        }
        response = await self._request("search", "POST", self._points_path("search"), json=body)
        self._raise_for("search", response)

        results = [
            ScoredPoint(
                id=str(hit["id"]),
                score=float(hit.get("score", 0.0)),
                payload=hit.get("payload") or {},
            )
            for hit in response.json().get("result", [])
        ]
        logger.debug(
            "Qdrant search | collection=%s limit=%d results=%d",
            self._collection, limit, len(results),
        )
        return results

    async def delete(self, filter: MustFilter) -> None:
        if not filter:
            raise ValueError("delete requires a non-empty filter")
        response = await self._request(
            "delete", "POST", self._points_path("delete"),
            params={"wait": "true"}, json={"filter": to_qdrant_filter(filter)},
        )
        self._raise_for("delete", response)
        logger.info(
            "Qdrant delete | collection=%s filter=%s", self._collection, dict(filter.items()),
        )

    async def count(self, filter: MustFilter | None = None) -> int:
        body: dict = {"exact": True}
        if filter:
            body["filter"] = to_qdrant_filter(filter)
        response = await self._request("count", "POST", self._points_path("count"), json=body)
        self._raise_for("count", response)
        return int(response.json().get("result", {}).get("count", 0))

    async def close(self) -> None:
        await self._client.aclose()
