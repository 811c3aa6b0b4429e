"""
SQLAlchemy ORM Models — Documents, Questions, Categories, Scoring Sessions

The worker owns writes to `documents.processing_status / processing_error /
missing_question_ids` and to `scoring_sessions.answers / scores /
recommendation`. Everything else is created by the web tier; the worker only
reads it.

Composite keys mirror how the web tier addresses rows:
    documents         (chat_id, uploaded_at)
    scoring_sessions  (user_id, created_at)
Timestamps in keys are the ISO-8601 strings the client sent, stored verbatim
so a job payload always addresses the exact row it was built from.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from docpipeline.models.status import ProcessingStatus


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ProcessingStatus)


# ---------------------------------------------------------------------------
# Document model — documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded file attached to a chat.

    processing_status follows docpipeline.models.status.ProcessingStatus.
    processing_error is populated when status=FAILED, and also carries the
    informational "not processed by worker" note on COMPLETED rows for
    unsupported file types.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            f"processing_status IS NULL OR processing_status IN ({_STATUS_VALUES})",
            name="documents_processing_status_check",
        ),
        Index("idx_documents_doc_id", "doc_id", unique=True),
    )

    chat_id:     Mapped[str] = mapped_column(Text, primary_key=True)
    uploaded_at: Mapped[str] = mapped_column(Text, primary_key=True)

    doc_id:    Mapped[str] = mapped_column(Text, nullable=False, comment="UUID, stable across retries")
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    blob_key:  Mapped[str] = mapped_column(Text, nullable=False, comment="S3 object key")
    file_type: Mapped[str] = mapped_column(Text, nullable=False, comment="MIME type")

    processing_status: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        default=ProcessingStatus.QUEUED.value,
    )
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    missing_question_ids: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default="[]",
        comment="Questions the scoring pass could not answer from this document",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<Document doc_id={self.doc_id} chat={self.chat_id} "
            f"status={self.processing_status} file={self.file_name!r}>"
        )


# ---------------------------------------------------------------------------
# Evaluation questions / categories — read-only for the worker
# ---------------------------------------------------------------------------

class EvaluationQuestion(Base):
    __tablename__ = "evaluation_questions"
    __table_args__ = (
        Index("idx_evaluation_questions_user", "user_id"),
    )

    evaluation_question_id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id:     Mapped[str] = mapped_column(Text, nullable=False, comment="owning user")
    category_id: Mapped[str] = mapped_column(Text, nullable=False)
    text:        Mapped[str] = mapped_column("question_text", Text, nullable=False)
    order:       Mapped[int] = mapped_column("sort_order", Integer, nullable=False, default=0)
    is_master:   Mapped[bool] = mapped_column(nullable=False, default=False)


class Category(Base):
    __tablename__ = "categories"

    category_id:   Mapped[str] = mapped_column(Text, primary_key=True)
    user_id:       Mapped[str] = mapped_column(Text, nullable=False)
    category_name: Mapped[str] = mapped_column(Text, nullable=False)
    order:         Mapped[int] = mapped_column("sort_order", Integer, nullable=False, default=0)
    qualification_cutoff: Mapped[int] = mapped_column(
        Integer, nullable=False, default=50, server_default="50",
    )


# ---------------------------------------------------------------------------
# Scoring session — scoring_sessions
# ---------------------------------------------------------------------------

class ScoringSession(Base):
    """
    A review run over one chat's documents.

    answers: [{"questionId": str, "answer": 0|1|2, "reasoning": str}, ...]
    scores:  [{"categoryId", "categoryName", "score", "total",
               "percentage", "qualificationCutoff"}, ...]
    """

    __tablename__ = "scoring_sessions"

    user_id:    Mapped[str] = mapped_column(Text, primary_key=True)
    created_at: Mapped[str] = mapped_column(Text, primary_key=True)

    scoring_session_id: Mapped[str] = mapped_column(Text, nullable=False)
    name:    Mapped[str] = mapped_column(Text, nullable=False, default="")
    answers: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    scores:  Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    recommendation: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")

    processing_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_error:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ScoringSession user={self.user_id} created_at={self.created_at} "
            f"answers={len(self.answers or [])}>"
        )
