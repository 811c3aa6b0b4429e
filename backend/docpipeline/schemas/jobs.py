"""
Wire schemas for the ingestion worker.

Jobs arrive as JSON with camelCase keys (the producer is a TypeScript web
tier). Models accept both the alias and the Python field name so the worker
can also build jobs internally.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Job payload
# ---------------------------------------------------------------------------

class ReviewContext(_CamelModel):
    """Identifies the scoring session a review-mode job writes answers to."""
    owner_id:           str = Field(..., alias="ownerId", min_length=1)
    session_created_at: str = Field(..., alias="sessionCreatedAt", min_length=1)


class IngestionJob(_CamelModel):
    """
    One queue message = one document to ingest.

    (chat_id, uploaded_at) addresses the document row; doc_id is the stable
    identity used as the queue task id and as `documentId` in every vector
    payload.
    """
    chat_id:     str = Field(..., alias="chatId", min_length=1)
    uploaded_at: str = Field(..., alias="uploadedAt", min_length=1)
    doc_id:      str = Field(..., alias="docId", min_length=1)
    file_name:   str = Field(..., alias="fileName")
    blob_key:    str = Field(..., alias="blobKey", min_length=1)
    file_type:   str = Field(..., alias="fileType")
    review_context: Optional[ReviewContext] = Field(default=None, alias="reviewContext")

    @field_validator("file_type")
    @classmethod
    def _normalise_mime(cls, v: str) -> str:
        # "application/pdf; charset=binary" -> "application/pdf"
        return v.split(";", 1)[0].strip().lower()

    @classmethod
    def from_message(cls, payload: dict) -> "IngestionJob":
        """Parse a raw queue message. Older producers send `s3Key`."""
        data = dict(payload)
        if "blobKey" not in data and "s3Key" in data:
            data["blobKey"] = data.pop("s3Key")
        return cls.model_validate(data)

    def to_message(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def is_review(self) -> bool:
        return self.review_context is not None


# ---------------------------------------------------------------------------
# Scoring output
# ---------------------------------------------------------------------------

class AnswerLabel(int, Enum):
    NO    = 0
    MAYBE = 1
    YES   = 2


class QuestionAnswer(_CamelModel):
    question_id: str = Field(..., alias="questionId")
    answer:      int = Field(..., ge=0, le=2)
    reasoning:   str = ""

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)


class ScoringResult(_CamelModel):
    """Every question of a pass lands in exactly one of the two collections."""
    answers:     list[QuestionAnswer] = Field(default_factory=list)
    unanswerable: list[str] = Field(default_factory=list)


class CategoryScore(_CamelModel):
    category_id:   str = Field(..., alias="categoryId")
    category_name: str = Field(..., alias="categoryName")
    score:         int
    total:         int   # number of questions in the category
    percentage:    int
    qualification_cutoff: int = Field(50, alias="qualificationCutoff")

    @property
    def qualifies(self) -> bool:
        return self.percentage >= self.qualification_cutoff


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------

class DocumentStatusView(_CamelModel):
    """What the UI polls for a chat's documents."""
    doc_id:      str = Field(..., alias="docId")
    file_name:   str = Field(..., alias="fileName")
    uploaded_at: str = Field(..., alias="uploadedAt")
    processing_status: Optional[str] = Field(None, alias="processingStatus")
    processing_error:  Optional[str] = Field(None, alias="processingError")
    missing_question_ids: list[str] = Field(default_factory=list, alias="missingQuestionIds")
