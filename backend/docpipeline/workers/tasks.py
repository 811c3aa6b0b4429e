"""
Celery Tasks — Document Ingestion & Review

Task: process_document         (queue documents.ingest)
Task: process_review_document  (queue documents.review)
  Both take the job payload as a single JSON kwarg `job` and run
  IngestionPipeline.process(). The review task additionally requires
  `reviewContext` and scores every question of the session owner.

Retry policy:
  - Malformed payloads are rejected without retry.
  - Credentials errors (ConfigurationError) fail without retry. If they
    stop the worker from building its clients, the row is still marked
    FAILED.
  - A document already held by another execution is retried once the
    in-flight lock expires.
  - Any other exception: the document is already marked FAILED by the
    pipeline; the task is retried with exponential back-off up to
    settings.job_max_retries. A retry moves the row FAILED → PROCESSING.

Process model:
  Clients (S3, OpenAI, vector index, Redis, DB engine) are built once per
  pool child in worker_process_init and reused by every job the child runs.
  Each child owns one event loop for its whole life, so pooled connections
  never cross loops.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from celery import Task
from celery.signals import worker_process_init, worker_process_shutdown
from pydantic import ValidationError

from docpipeline.core.config import settings
from docpipeline.core.exceptions import ConfigurationError
from docpipeline.schemas.jobs import IngestionJob
from docpipeline.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# One event loop per worker process; every task runs on it.
# ---------------------------------------------------------------------------

_loop: Optional[asyncio.AbstractEventLoop] = None


def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop.run_until_complete(coro)


# ---------------------------------------------------------------------------
# Per-process resources
# ---------------------------------------------------------------------------

@dataclass
class WorkerResources:
    pipeline: Any   # IngestionPipeline
    index:    Any   # VectorIndex
    guard:    Any   # InflightGuard


_resources: Optional[WorkerResources] = None


def build_resources() -> WorkerResources:
    from docpipeline.llm.client import ChatModelClient
    from docpipeline.processing.chunking import Chunker
    from docpipeline.processing.embeddings import OpenAIEmbedder
    from docpipeline.scoring.engine import ScoringEngine
    from docpipeline.services.ingestion import IngestionPipeline
    from docpipeline.services.questions import SqlQuestionStore
    from docpipeline.services.sessions import ScoringSessionStore
    from docpipeline.services.status import DocumentStatusTracker
    from docpipeline.storage.s3 import S3BlobStore
    from docpipeline.vectorstore.factory import create_vector_index
    from docpipeline.workers.guard import InflightGuard

    embedder = OpenAIEmbedder(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
    )
    index = create_vector_index(settings)
    scoring = ScoringEngine(
        embedder=embedder,
        index=index,
        llm=ChatModelClient.from_settings(settings),
        top_k=settings.retrieval_top_k,
    )
    pipeline = IngestionPipeline(
        blobs=S3BlobStore(),
        chunker=Chunker(settings.chunk_size, settings.chunk_overlap),
        embedder=embedder,
        index=index,
        tracker=DocumentStatusTracker(),
        scoring=scoring,
        questions=SqlQuestionStore(),
        sessions=ScoringSessionStore(),
        embedding_concurrency=settings.embedding_concurrency,
        blob_timeout=settings.blob_fetch_timeout_seconds,
    )
    guard = InflightGuard.from_url(settings.redis_url, settings.inflight_lock_ttl_seconds)
    return WorkerResources(pipeline=pipeline, index=index, guard=guard)


def get_resources() -> WorkerResources:
    global _resources
    if _resources is None:
        _resources = build_resources()
    return _resources


@worker_process_init.connect
def on_worker_process_init(**_):
    """Build clients and make sure the collection exists before the first job."""
    try:
        resources = get_resources()
        run_async(resources.index.ensure_collection())
    except Exception as exc:
        # Jobs will fail (and retry) with the real error; keep the child alive
        logger.error("Worker init failed | error=%s", exc)


@worker_process_shutdown.connect
def on_worker_process_shutdown(**_):
    global _resources
    if _resources is None:
        return
    from docpipeline.db.session import dispose_engine

    async def _close() -> None:
        await _resources.index.close()
        await _resources.guard.close()
        await dispose_engine()

    try:
        run_async(_close())
    except Exception as exc:
        logger.warning("Worker shutdown cleanup failed | error=%s", exc)
    _resources = None


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

_TASK_OPTIONS = dict(
    bind=True,
    max_retries=settings.job_max_retries,
    default_retry_delay=30,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=settings.job_soft_time_limit,
    time_limit=settings.job_time_limit,
)


@celery_app.task(name="docpipeline.workers.tasks.process_document", **_TASK_OPTIONS)
def process_document(self: Task, *, job: dict) -> dict[str, Any]:
    """Extract → chunk → embed → upsert."""
    return execute_job(self, job, review=False)


@celery_app.task(name="docpipeline.workers.tasks.process_review_document", **_TASK_OPTIONS)
def process_review_document(self: Task, *, job: dict) -> dict[str, Any]:
    """Extract → chunk → embed → upsert → score every question."""
    return execute_job(self, job, review=True)


@celery_app.task(name="docpipeline.workers.tasks.health_check")
def health_check() -> dict[str, Any]:
    from docpipeline.db.session import check_db_health
    return {"status": "ok", "worker": "healthy", "db": run_async(check_db_health())}


# ---------------------------------------------------------------------------
# Shared task body
# ---------------------------------------------------------------------------

def retry_countdown(retries: int, base: int = 30, cap: int = 600) -> int:
    """30s, 60s, 120s, ... capped at 10 minutes."""
    return min(base * (2 ** retries), cap)


def execute_job(
    task: Task,
    payload: dict,
    review: bool,
    resources: Optional[WorkerResources] = None,
) -> dict[str, Any]:
    try:
        job = IngestionJob.from_message(payload)
    except ValidationError as exc:
        logger.error("Rejected malformed job | errors=%s", exc.errors())
        return {"status": "rejected", "reason": "invalid_payload"}

    if review and not job.is_review:
        logger.error("Rejected review job without reviewContext | doc=%s", job.doc_id)
        return {"status": "rejected", "reason": "missing_review_context", "doc_id": job.doc_id}

    try:
        res = resources or get_resources()
    except ConfigurationError as exc:
        # Nothing else would move the row off QUEUED
        logger.error("Worker not configured, failing job | doc=%s error=%s", job.doc_id, exc)
        run_async(_mark_unconfigured(job, str(exc)))
        raise
    return run_async(_execute_async(task, job, res))


async def _mark_unconfigured(job: IngestionJob, message: str) -> None:
    from docpipeline.services.status import DocumentKey, DocumentStatusTracker

    await DocumentStatusTracker().mark_failed(
        DocumentKey(job.chat_id, job.uploaded_at), message,
    )


async def _execute_async(task: Task, job: IngestionJob, res: WorkerResources) -> dict[str, Any]:
    token = uuid.uuid4().hex
    if not await res.guard.acquire(job.doc_id, token):
        # The holder may be a killed child; its lock outlives it
        countdown = await res.guard.remaining_ttl(job.doc_id)
        logger.info("Document in flight, retrying later | doc=%s countdown=%ds", job.doc_id, countdown)
        raise task.retry(countdown=countdown)

    try:
        outcome = await res.pipeline.process(job)
        return outcome.as_dict()
    except ConfigurationError:
        logger.error("Configuration error, not retrying | doc=%s", job.doc_id)
        raise
    except Exception as exc:
        retries = task.request.retries or 0
        logger.warning(
            "Scheduling retry | doc=%s attempt=%d/%d",
            job.doc_id, retries + 1, task.max_retries,
        )
        raise task.retry(exc=exc, countdown=retry_countdown(retries))
    finally:
        await res.guard.release(job.doc_id, token)
