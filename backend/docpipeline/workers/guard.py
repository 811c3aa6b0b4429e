# =============================================================================
# In-flight Guard — at most one execution per doc_id
# =============================================================================
#
# Jobs are published with task_id = doc_id, but a broker redelivery (worker
# lost with acks_late) or a duplicate publish can still hand the same
# document to two pool slots. Before processing, the task takes a Redis
# lock `inflight:doc:<doc_id>` with SET NX EX; the holder's token is stored
# as the value so only the holder can release it.
#
# The TTL is longer than the Celery hard time limit, so a killed worker's
# lock expires on its own. A redelivery that finds the lock still held is
# retried after remaining_ttl() seconds rather than acked.
#
# If Redis is unreachable the guard degrades to "allow" with a warning:
# duplicate processing only duplicates chunks, while refusing all work
# would stall the whole pipeline.
# =============================================================================

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

KEY_PREFIX = "inflight:doc:"

# Delete only if the value is still our token
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class InflightGuard:

    def __init__(self, redis_client, ttl_seconds: int = 900) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 900) -> "InflightGuard":
        import redis.asyncio as aioredis
        return cls(aioredis.from_url(url, decode_responses=True), ttl_seconds)

    @staticmethod
    def key(doc_id: str) -> str:
        return f"{KEY_PREFIX}{doc_id}"

    async def acquire(self, doc_id: str, token: str) -> bool:
        """True if this caller now owns the doc_id (or Redis is down)."""
        try:
            acquired = await self._redis.set(self.key(doc_id), token, nx=True, ex=self._ttl)
        except Exception as exc:
            logger.warning(
                "In-flight guard unavailable (Redis error): %s. Allowing doc=%s",
                exc, doc_id,
            )
            return True

        if not acquired:
            logger.info("Document already in flight | doc=%s", doc_id)
            return False
        return True

    async def remaining_ttl(self, doc_id: str) -> int:
        """Seconds until the lock expires; at least 1."""
        try:
            ttl = await self._redis.ttl(self.key(doc_id))
        except Exception as exc:
            logger.warning("In-flight TTL lookup failed | doc=%s error=%s", doc_id, exc)
            return self._ttl
        # -2: released meanwhile, -1: no expiry set
        if ttl == -1:
            return self._ttl
        return max(int(ttl), 1)

    async def release(self, doc_id: str, token: str) -> None:
        try:
            await self._redis.eval(_RELEASE_SCRIPT, 1, self.key(doc_id), token)
        except Exception as exc:
            logger.warning("In-flight release failed | doc=%s error=%s", doc_id, exc)

    async def close(self) -> None:
        await self._redis.aclose()
