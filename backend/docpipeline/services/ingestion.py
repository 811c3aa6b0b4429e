"""
Ingestion Pipeline  —  one job, start to finish
════════════════════════════════════════════════

  1. Status → PROCESSING (best effort)
  2. Unsupported file type?   → COMPLETED with note, stop
  3. Fetch blob from S3 (bounded by blob_fetch_timeout)
  4. Extract text             → no text?   FAILED "No text content extracted ...", stop
  5. Chunk (500 / 50)         → no chunks? FAILED "No text chunks generated ...", stop
  6. Embed every chunk (bounded fan-out, fail fast)
  7. Upsert all points into the vector index (ids derived from docId +
     chunk position, so a retry overwrites rather than duplicates)
  8. Review jobs only: score every question, merge the answers into the
     scoring session and recompute its category scores
  9. Status → COMPLETED (+ missing_question_ids for review jobs)

Any exception in 3–8 → status FAILED with the exception message, then the
exception is re-raised so the job queue can retry.

Structural outcomes (unsupported, empty) are return values, not
exceptions: retrying them cannot change the result.

Every collaborator is injected. The Celery task module builds them once per
worker process; tests pass in-memory fakes.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional

from docpipeline.core.exceptions import PipelineError
from docpipeline.models.status import ProcessingStatus
from docpipeline.processing.chunking import Chunker, TextChunk
from docpipeline.processing.embeddings import Embedder, embed_all
from docpipeline.processing.extractor import FileKind, Unsupported, classify_file_type, extract
from docpipeline.schemas.jobs import IngestionJob
from docpipeline.scoring.engine import ScoringEngine
from docpipeline.services.questions import QuestionStore
from docpipeline.services.sessions import SessionStore
from docpipeline.services.status import DocumentKey, StatusTracker
from docpipeline.storage.s3 import BlobStore, fetch_blob
from docpipeline.vectorstore.base import VectorIndex, VectorPoint

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """What happened to one job. Returned to Celery as the task result."""
    doc_id:  str
    status:  ProcessingStatus
    chunks:  int = 0
    note:    Optional[str] = None
    error:   Optional[str] = None
    answered: int = 0
    missing_question_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


# Stable per chunk position: a redelivered job overwrites its own points
POINT_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "docpipeline:chunk")


def point_id(doc_id: str, chunk: TextChunk) -> str:
    if chunk.page_number is not None:
        name = f"{doc_id}:{chunk.page_number}:{chunk.chunk_index_on_page}"
    else:
        name = f"{doc_id}:{chunk.chunk_index}"
    return str(uuid.uuid5(POINT_ID_NAMESPACE, name))


def build_payload(job: IngestionJob, chunk: TextChunk) -> dict:
    return {
        "text":       chunk.text,
        "documentId": job.doc_id,
        "chatId":     job.chat_id,
        "blobKey":    job.blob_key,
        "fileName":   job.file_name,
        **chunk.position_payload(),
    }


class IngestionPipeline:

    def __init__(
        self,
        blobs: BlobStore,
        chunker: Chunker,
        embedder: Embedder,
        index: VectorIndex,
        tracker: StatusTracker,
        scoring: Optional[ScoringEngine] = None,
        questions: Optional[QuestionStore] = None,
        sessions: Optional[SessionStore] = None,
        embedding_concurrency: int = 4,
        blob_timeout: Optional[float] = None,
    ) -> None:
        self._blobs = blobs
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self._tracker = tracker
        self._scoring = scoring
        self._questions = questions
        self._sessions = sessions
        self._embedding_concurrency = embedding_concurrency
        self._blob_timeout = blob_timeout

    async def process(self, job: IngestionJob) -> JobOutcome:
        key = DocumentKey(job.chat_id, job.uploaded_at)
        t0 = time.monotonic()
        logger.info(
            "Processing | doc=%s chat=%s type=%s review=%s",
            job.doc_id, job.chat_id, job.file_type, job.is_review,
        )

        await self._tracker.set_status(key, ProcessingStatus.PROCESSING)

        try:
            outcome = await self._run(job, key)
        except asyncio.CancelledError:
            await self._tracker.mark_failed(key, "Processing cancelled")
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.exception("Processing failed | doc=%s error=%s", job.doc_id, message)
            await self._tracker.mark_failed(key, message)
            raise

        logger.info(
            "Processing complete | doc=%s status=%s chunks=%d elapsed_ms=%.0f",
            job.doc_id, outcome.status.value, outcome.chunks, (time.monotonic() - t0) * 1000,
        )
        return outcome

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(self, job: IngestionJob, key: DocumentKey) -> JobOutcome:
        if classify_file_type(job.file_type, job.file_name) is FileKind.OTHER:
            return await self._unsupported(job, key)

        data = await fetch_blob(self._blobs, job.blob_key, self._blob_timeout)
        extracted = await extract(data, job.file_type, job.file_name)
        if isinstance(extracted, Unsupported):
            return await self._unsupported(job, key)

        if extracted.is_empty():
            return await self._structural_failure(
                job, key, f"No text content extracted from {job.file_name}",
            )

        chunks = self._chunker.chunk(extracted)
        if not chunks:
            return await self._structural_failure(
                job, key, f"No text chunks generated for {job.file_name}",
            )
        logger.info("Chunked | doc=%s chunks=%d", job.doc_id, len(chunks))

        vectors = await embed_all(
            self._embedder, [c.text for c in chunks], self._embedding_concurrency,
        )
        points = [
            VectorPoint(id=point_id(job.doc_id, chunk), vector=vector, payload=build_payload(job, chunk))
            for chunk, vector in zip(chunks, vectors)
        ]
        written = await self._index.upsert(points)
        logger.info("Vectors upserted | doc=%s count=%d", job.doc_id, written)

        outcome = JobOutcome(doc_id=job.doc_id, status=ProcessingStatus.COMPLETED, chunks=len(points))

        missing: Optional[list[str]] = None
        if job.is_review:
            answers, missing = await self._review(job)
            outcome.answered = answers
            outcome.missing_question_ids = missing

        await self._tracker.mark_completed(key, missing_question_ids=missing)
        return outcome

    async def _review(self, job: IngestionJob) -> tuple[int, list[str]]:
        if self._scoring is None or self._questions is None or self._sessions is None:
            raise PipelineError("Review job received but the scoring engine is not configured")

        ctx = job.review_context
        questions = await self._questions.list_questions(ctx.owner_id)
        result = await self._scoring.score(job.chat_id, questions)

        categories = await self._questions.list_categories(ctx.owner_id)
        await self._sessions.save_review(
            ctx.owner_id,
            ctx.session_created_at,
            result.answers,
            questions=questions,
            categories=categories,
        )
        return len(result.answers), list(result.unanswerable)

    async def _unsupported(self, job: IngestionJob, key: DocumentKey) -> JobOutcome:
        note = Unsupported(file_type=job.file_type).note
        logger.info("Skipping unsupported type | doc=%s type=%s", job.doc_id, job.file_type)
        await self._tracker.mark_completed(key, note=note)
        return JobOutcome(doc_id=job.doc_id, status=ProcessingStatus.COMPLETED, note=note)

    async def _structural_failure(self, job: IngestionJob, key: DocumentKey, message: str) -> JobOutcome:
        logger.warning("Structural failure | doc=%s reason=%s", job.doc_id, message)
        await self._tracker.mark_failed(key, message)
        return JobOutcome(doc_id=job.doc_id, status=ProcessingStatus.FAILED, error=message)


# ---------------------------------------------------------------------------
# Producer side
# ---------------------------------------------------------------------------

class TaskPublisher:
    """
    Sends an ingestion job to the Celery broker.
    Import is deferred so the broker connection is not required at module load time.
    """

    async def publish(self, job: IngestionJob) -> str:
        """
        Dispatch the job with task_id = doc_id so the broker-side identity
        matches the document. Runs in a thread executor to avoid blocking
        the event loop on broker I/O.
        """
        from docpipeline.workers.tasks import process_document, process_review_document

        task = process_review_document if job.is_review else process_document
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: task.apply_async(
                kwargs={"job": job.to_message()},
                task_id=job.doc_id,
            ),
        )
        logger.info(
            "Processing task published | doc=%s chat=%s task=%s",
            job.doc_id, job.chat_id, task.name,
        )
        return job.doc_id
