"""
Unit Tests — Ingestion Pipeline
════════════════════════════════
Tests for docpipeline/services/ingestion.py

Every collaborator is an in-memory fake; PDFs and DOCX files are built with
the real libraries so extraction and chunking run for real.

Coverage:
  ✅ 2-page PDF → COMPLETED, chunks carry pageNumber ∈ {1, 2}, documentId, chatId
  ✅ 1,199-char DOCX → 3 chunks with chunkIndex 0..2
  ✅ Review job: "-1" answer → missing_question_ids, answers merged into the session
  ✅ Quota error on chunk 3 of 10 → FAILED "…quota…", nothing upserted, never COMPLETED
  ✅ Retry after failure: FAILED → PROCESSING → COMPLETED
  ✅ Blank PDF → FAILED "No text content extracted …", nothing upserted
  ✅ Unsupported type → COMPLETED with note, blob never fetched
  ✅ Missing blob → FAILED and re-raised
  ✅ Re-ingesting a chat keeps earlier documents' chunks
  ✅ Review job without a scoring engine → FAILED
  ✅ Retry after a failure past the upsert rewrites the same points, no duplicates
"""

from __future__ import annotations

import uuid

import pytest

from docpipeline.core.exceptions import BlobNotFoundError, EmbeddingQuotaError, PipelineError
from docpipeline.models.status import ProcessingStatus
from docpipeline.processing.chunking import Chunker, TextChunk
from docpipeline.scoring.categories import FASTER_CLOSURE
from docpipeline.scoring.engine import ScoringEngine
from docpipeline.services.ingestion import IngestionPipeline, build_payload, point_id

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture
def build_pipeline(blob_store, vector_index, tracker, question_store, session_store, make_llm):
    """
    Factory: build_pipeline(embedder, llm=None, review=True)
    `review=False` leaves the scoring collaborators out.
    """
    def _build(embedder, llm=None, review: bool = True) -> IngestionPipeline:
        scoring = None
        if review:
            scoring = ScoringEngine(
                embedder=embedder,
                index=vector_index,
                llm=llm or make_llm(),
            )
        return IngestionPipeline(
            blobs=blob_store,
            chunker=Chunker(500, 50),
            embedder=embedder,
            index=vector_index,
            tracker=tracker,
            scoring=scoring,
            questions=question_store if review else None,
            sessions=session_store if review else None,
            embedding_concurrency=4,
            blob_timeout=5,
        )
    return _build


@pytest.mark.unit
@pytest.mark.ingestion
class TestIngestSuccess:

    async def test_two_page_pdf(self, build_pipeline, embedder, blob_store, vector_index,
                                tracker, make_job, two_page_pdf_bytes):
        job = make_job()
        blob_store.blobs[job.blob_key] = two_page_pdf_bytes

        outcome = await build_pipeline(embedder).process(job)

        assert outcome.status is ProcessingStatus.COMPLETED
        assert tracker.statuses == ["PROCESSING", "COMPLETED"]
        points = vector_index.for_document("doc-1")
        assert len(points) == outcome.chunks > 0
        assert {p.payload["pageNumber"] for p in points} == {1, 2}
        assert all(p.payload["chatId"] == "chat-1" for p in points)
        assert all(p.payload["blobKey"] == job.blob_key for p in points)
        assert len({p.id for p in points}) == len(points)

    async def test_docx_three_chunks(self, build_pipeline, embedder, blob_store, vector_index,
                                     make_job, docx_1200_chars):
        job = make_job(file_name="scope.docx", file_type=DOCX_MIME)
        blob_store.blobs[job.blob_key] = docx_1200_chars

        outcome = await build_pipeline(embedder).process(job)

        assert outcome.chunks == 3
        points = vector_index.for_document("doc-1")
        assert sorted(p.payload["chunkIndex"] for p in points) == [0, 1, 2]
        assert all("pageNumber" not in p.payload for p in points)
        assert all(len(p.payload["text"]) <= 500 for p in points)

    async def test_earlier_documents_kept(self, build_pipeline, embedder, blob_store, vector_index,
                                          make_job, two_page_pdf_bytes, pdf_factory):
        first = make_job(doc_id="doc-1", file_name="a.pdf")
        second = make_job(doc_id="doc-2", file_name="b.pdf")
        blob_store.blobs[first.blob_key] = two_page_pdf_bytes
        blob_store.blobs[second.blob_key] = pdf_factory(["Annex with pricing tables."])
        pipeline = build_pipeline(embedder)

        await pipeline.process(first)
        before = len(vector_index.for_document("doc-1"))
        await pipeline.process(second)

        assert len(vector_index.for_document("doc-1")) == before
        assert len(vector_index.for_document("doc-2")) == 1

    def test_point_ids_stable_per_position(self):
        paged = TextChunk("hello", 3, page_number=2, chunk_index_on_page=1)
        plain = TextChunk("hello", 3)

        assert point_id("doc-1", paged) == point_id("doc-1", paged)
        assert point_id("doc-1", paged) != point_id("doc-1", plain)
        assert point_id("doc-1", plain) != point_id("doc-2", plain)
        assert str(uuid.UUID(point_id("doc-1", plain))) == point_id("doc-1", plain)

    def test_payload_fields(self, make_job):

        job = make_job()
        payload = build_payload(job, TextChunk("hello", 0, page_number=2, chunk_index_on_page=0))
        assert payload == {
            "text": "hello",
            "documentId": "doc-1",
            "chatId": "chat-1",
            "blobKey": job.blob_key,
            "fileName": "proposal.pdf",
            "pageNumber": 2,
            "chunkIndexOnPage": 0,
        }


@pytest.mark.unit
@pytest.mark.ingestion
@pytest.mark.scoring
class TestReviewJobs:

    async def test_unanswerable_question_reported_missing(
        self, build_pipeline, embedder, blob_store, tracker, session_store,
        make_job, make_llm, two_page_pdf_bytes,
    ):
        job = make_job(review=True)
        blob_store.blobs[job.blob_key] = two_page_pdf_bytes
        llm = make_llm(replies={"deadline realistic": "Answer: -1\nReason: Not stated."})

        outcome = await build_pipeline(embedder, llm=llm).process(job)

        assert outcome.status is ProcessingStatus.COMPLETED
        assert outcome.missing_question_ids == ["q2"]
        assert outcome.answered == 2
        assert tracker.missing == ["q2"]
        assert tracker.statuses[-1] == "COMPLETED"
        assert {a["questionId"] for a in session_store.answers} == {"q1", "q3"}
        # Maybe on q1 (1/4 → 25%), Maybe on q3 (1/2 → 50%)
        assert [s.percentage for s in session_store.scores] == [25, 50]
        assert session_store.recommendation == FASTER_CLOSURE

    async def test_answers_merged_with_existing_session(
        self, build_pipeline, embedder, blob_store, session_store, make_job, make_llm,
        two_page_pdf_bytes,
    ):
        session_store.answers = [
            {"questionId": "q2", "answer": 2, "reasoning": "from an earlier document"},
        ]
        job = make_job(review=True)
        blob_store.blobs[job.blob_key] = two_page_pdf_bytes
        llm = make_llm(replies={"deadline realistic": "Answer: -1\nReason: Not stated."})

        await build_pipeline(embedder, llm=llm).process(job)

        by_id = {a["questionId"]: a for a in session_store.answers}
        assert set(by_id) == {"q1", "q2", "q3"}
        assert by_id["q2"]["reasoning"] == "from an earlier document"
        # q1 Maybe + q2 Yes over 4 points → 75%
        assert session_store.scores[0].percentage == 75

    async def test_retry_after_save_failure_does_not_duplicate_points(
        self, build_pipeline, embedder, blob_store, vector_index, tracker, session_store,
        make_job, two_page_pdf_bytes,
    ):
        job = make_job(review=True)
        blob_store.blobs[job.blob_key] = two_page_pdf_bytes
        save_review = session_store.save_review
        attempts = []

        async def save_review_once_failing(*args, **kwargs):
            attempts.append(args)
            if len(attempts) == 1:
                raise PipelineError("could not lock scoring session")
            return await save_review(*args, **kwargs)

        session_store.save_review = save_review_once_failing
        pipeline = build_pipeline(embedder)

        with pytest.raises(PipelineError, match="scoring session"):
            await pipeline.process(job)
        first_ids = {p.id for p in vector_index.for_document("doc-1")}
        outcome = await pipeline.process(job)

        points = vector_index.for_document("doc-1")
        assert len(points) == outcome.chunks
        assert {p.id for p in points} == first_ids
        assert tracker.statuses == ["PROCESSING", "FAILED", "PROCESSING", "COMPLETED"]

    async def test_review_without_scoring_engine_fails(

        self, build_pipeline, embedder, blob_store, tracker, make_job, two_page_pdf_bytes,
    ):
        job = make_job(review=True)
        blob_store.blobs[job.blob_key] = two_page_pdf_bytes

        with pytest.raises(PipelineError, match="scoring engine"):
            await build_pipeline(embedder, review=False).process(job)
        assert tracker.statuses == ["PROCESSING", "FAILED"]


@pytest.mark.unit
@pytest.mark.ingestion
class TestIngestFailures:

    @pytest.fixture
    def ten_chunk_docx(self, docx_factory) -> bytes:
        # each paragraph is too long to share a chunk with its neighbour
        return docx_factory([f"p{i:02d} " + "y" * 440 for i in range(10)])

    async def test_quota_error_midway(self, build_pipeline, make_embedder, blob_store, vector_index,
                                      tracker, make_job, ten_chunk_docx, quota_error):
        job = make_job(file_name="big.docx", file_type=DOCX_MIME)
        blob_store.blobs[job.blob_key] = ten_chunk_docx
        embedder = make_embedder(fail_on_call={3: quota_error})

        with pytest.raises(EmbeddingQuotaError):
            await build_pipeline(embedder).process(job)

        assert tracker.statuses == ["PROCESSING", "FAILED"]
        assert "quota" in tracker.last_error
        assert "COMPLETED" not in tracker.statuses
        assert vector_index.upsert_calls == 0
        assert vector_index.points == {}

    async def test_retry_after_failure_completes(self, build_pipeline, make_embedder, blob_store,
                                                 vector_index, tracker, make_job, ten_chunk_docx,
                                                 quota_error):
        job = make_job(file_name="big.docx", file_type=DOCX_MIME)
        blob_store.blobs[job.blob_key] = ten_chunk_docx
        pipeline = build_pipeline(make_embedder(fail_on_call={3: quota_error}))

        with pytest.raises(EmbeddingQuotaError):
            await pipeline.process(job)
        outcome = await pipeline.process(job)

        assert outcome.chunks == 10
        assert tracker.statuses == ["PROCESSING", "FAILED", "PROCESSING", "COMPLETED"]
        assert len(vector_index.for_document("doc-1")) == 10

    async def test_blank_pdf(self, build_pipeline, embedder, blob_store, vector_index, tracker,
                             make_job, blank_pdf_bytes):
        job = make_job(file_name="scan.pdf")
        blob_store.blobs[job.blob_key] = blank_pdf_bytes

        outcome = await build_pipeline(embedder).process(job)

        assert outcome.status is ProcessingStatus.FAILED
        assert tracker.statuses == ["PROCESSING", "FAILED"]
        assert tracker.last_error == "No text content extracted from scan.pdf"
        assert vector_index.upsert_calls == 0
        assert embedder.calls == []

    async def test_unsupported_type(self, build_pipeline, embedder, blob_store, vector_index,
                                    tracker, make_job):
        job = make_job(file_name="notes.txt", file_type="text/plain")

        outcome = await build_pipeline(embedder).process(job)

        assert outcome.status is ProcessingStatus.COMPLETED
        assert outcome.note == "File type text/plain not processed by worker."
        assert tracker.history[-1] == ("COMPLETED", outcome.note)
        assert blob_store.requested == []
        assert vector_index.upsert_calls == 0

    async def test_missing_blob(self, build_pipeline, embedder, tracker, make_job):
        job = make_job()

        with pytest.raises(BlobNotFoundError):
            await build_pipeline(embedder).process(job)

        assert tracker.statuses == ["PROCESSING", "FAILED"]
        assert "Blob not found" in tracker.last_error
