"""
S3 Blob Store — read side used by the ingestion worker

Upload happens in the web tier via presigned PUT; the worker only ever
fetches an object by the exact key carried in the job payload. Raw file
bytes never travel through the broker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aioboto3
from botocore.exceptions import ClientError

from docpipeline.core.config import settings
from docpipeline.core.exceptions import BlobNotFoundError, StageTimeoutError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Anything that can return the bytes stored under a key."""

    async def get(self, key: str) -> bytes: ...


# ---------------------------------------------------------------------------
# S3 implementation
# ---------------------------------------------------------------------------

class S3BlobStore:
    """
    Async S3 reader. One instance per worker process; aioboto3 clients are
    opened per call so the instance is safe to share across jobs.
    """

    def __init__(
        self,
        bucket: str | None = None,
        session: aioboto3.Session | None = None,
    ) -> None:
        self._bucket = bucket or settings.s3_bucket
        self._session = session or aioboto3.Session(
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
            region_name=settings.aws_region,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url or None,
        )

    async def get(self, key: str) -> bytes:
        """
        Download the object stored under `key`.

        Raises:
            BlobNotFoundError: the key does not exist in the bucket.
            ClientError:       any other S3 failure (propagates to the job).
        """
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                data = await resp["Body"].read()
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code")
                if code in ("NoSuchKey", "404"):
                    raise BlobNotFoundError(key) from exc
                raise

        logger.info("S3 download ok | bucket=%s key=%s size=%d", self._bucket, key, len(data))
        return data


async def fetch_blob(store: BlobStore, key: str, timeout: float | None = None) -> bytes:
    """Fetch with a wall-clock budget; a slow object store fails the job."""
    timeout = timeout if timeout is not None else settings.blob_fetch_timeout_seconds
    try:
        return await asyncio.wait_for(store.get(key), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise StageTimeoutError("blob fetch", timeout) from exc
