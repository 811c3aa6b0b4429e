"""
Document Status Tracker

Writes processing_status / processing_error / missing_question_ids on the
document row addressed by (chat_id, uploaded_at), and serves the read path
the UI polls.

Writes are last-write-wins and best effort: a failed status write is logged
and swallowed. The pipeline must never fail (or succeed) a job because of a
status write; the worst case is a stale status in the UI, which the next
write corrects.

The state machine in docpipeline.models.status is applied permissively
here: an unexpected transition is logged, then written anyway. A retried job
whose previous attempt died mid-way must still be able to move on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from sqlalchemy import select, update

from docpipeline.core.exceptions import InvalidTransitionError
from docpipeline.db.session import get_db
from docpipeline.models.documents import Document
from docpipeline.models.status import ProcessingStatus, transition
from docpipeline.schemas.jobs import DocumentStatusView

logger = logging.getLogger(__name__)

# processing_error column is TEXT but the UI shows it inline
MAX_ERROR_LENGTH = 1000


@dataclass(frozen=True)
class DocumentKey:
    chat_id:     str
    uploaded_at: str

    def __str__(self) -> str:
        return f"{self.chat_id}/{self.uploaded_at}"


def truncate_error(message: str, limit: int = MAX_ERROR_LENGTH) -> str:
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."


class StatusTracker(Protocol):
    async def set_status(
        self, key: DocumentKey, status: ProcessingStatus, error: Optional[str] = None,
    ) -> bool: ...

    async def set_missing_questions(self, key: DocumentKey, question_ids: Sequence[str]) -> bool: ...

    async def mark_completed(
        self,
        key: DocumentKey,
        missing_question_ids: Optional[Sequence[str]] = None,
        note: Optional[str] = None,
    ) -> bool: ...

    async def mark_failed(self, key: DocumentKey, error: str) -> bool: ...


class DocumentStatusTracker:
    """
    SQL-backed tracker.

    All write methods return True when the row was written and False when
    the write failed (already logged). They never raise.
    """

    def __init__(self, session_factory=get_db) -> None:
        self._session = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set_status(
        self,
        key: DocumentKey,
        status: ProcessingStatus,
        error: Optional[str] = None,
    ) -> bool:
        values = {
            "processing_status": status.value,
            "processing_error": truncate_error(error) if error else None,
        }
        return await self._write(key, values, status)

    async def set_missing_questions(self, key: DocumentKey, question_ids: Sequence[str]) -> bool:
        return await self._write(key, {"missing_question_ids": list(question_ids)})

    async def mark_completed(
        self,
        key: DocumentKey,
        missing_question_ids: Optional[Sequence[str]] = None,
        note: Optional[str] = None,
    ) -> bool:
        """COMPLETED in one statement, together with the scoring result if any."""
        values: dict = {
            "processing_status": ProcessingStatus.COMPLETED.value,
            "processing_error": note,
        }
        if missing_question_ids is not None:
            values["missing_question_ids"] = list(missing_question_ids)
        return await self._write(key, values, ProcessingStatus.COMPLETED)

    async def mark_failed(self, key: DocumentKey, error: str) -> bool:
        return await self.set_status(key, ProcessingStatus.FAILED, error)

    async def _write(
        self,
        key: DocumentKey,
        values: dict,
        target: Optional[ProcessingStatus] = None,
    ) -> bool:
        try:
            async with self._session() as db:
                if target is not None:
                    await self._check_transition(db, key, target)
                result = await db.execute(
                    update(Document)
                    .where(
                        Document.chat_id == key.chat_id,
                        Document.uploaded_at == key.uploaded_at,
                    )
                    .values(**values)
                )
                if result.rowcount == 0:
                    logger.warning("Status write matched no document | key=%s", key)
        except Exception as exc:
            logger.error(
                "Status write failed | key=%s values=%s error=%s",
                key, sorted(values), exc,
            )
            return False

        logger.info(
            "Status written | key=%s status=%s",
            key, values.get("processing_status", "-"),
        )
        return True

    @staticmethod
    async def _check_transition(db, key: DocumentKey, target: ProcessingStatus) -> None:
        result = await db.execute(
            select(Document.processing_status).where(
                Document.chat_id == key.chat_id,
                Document.uploaded_at == key.uploaded_at,
            )
        )
        raw = result.scalar_one_or_none()
        try:
            current = ProcessingStatus(raw) if raw else None
            transition(current, target)
        except (ValueError, InvalidTransitionError) as exc:
            logger.warning("Unexpected status transition | key=%s %s", key, exc)

    # ------------------------------------------------------------------
    # Read path (polled by the UI)
    # ------------------------------------------------------------------

    async def list_by_chat(self, chat_id: str) -> list[DocumentStatusView]:
        async with self._session() as db:
            result = await db.execute(
                select(Document)
                .where(Document.chat_id == chat_id)
                .order_by(Document.uploaded_at)
            )
            rows = result.scalars().all()

        return [
            DocumentStatusView(
                doc_id=row.doc_id,
                file_name=row.file_name,
                uploaded_at=row.uploaded_at,
                processing_status=row.processing_status,
                processing_error=row.processing_error,
                missing_question_ids=list(row.missing_question_ids or []),
            )
            for row in rows
        ]
