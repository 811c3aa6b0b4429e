"""
Scoring session writes.

A review job merges its answers into the scoring session addressed by
(owner_id, session_created_at). Several documents can be reviewed into the
same session, so answers are merged by questionId rather than overwritten:
an answer from this pass replaces an older one for the same question, other
answers are kept.

Category scores and the recommendation are recomputed from the merged
answers while the session row is locked, so two review jobs for the same
session cannot store scores that miss each other's answers.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol, Sequence

from sqlalchemy import select

from docpipeline.db.session import get_db
from docpipeline.models.documents import ScoringSession
from docpipeline.models.status import ProcessingStatus
from docpipeline.schemas.jobs import QuestionAnswer
from docpipeline.scoring.categories import category_scores, recommend
from docpipeline.services.questions import CategoryInfo, Question

logger = logging.getLogger(__name__)


def merge_answers(existing: Iterable[dict], new: Iterable[QuestionAnswer]) -> list[dict]:
    """Union by questionId; entries in `new` win. Order: existing first, then additions."""
    merged: dict[str, dict] = {}
    for record in existing or []:
        qid = record.get("questionId")
        if qid:
            merged[qid] = dict(record)
    for ans in new:
        merged[ans.question_id] = ans.to_record()
    return list(merged.values())


class SessionStore(Protocol):
    async def save_review(
        self,
        owner_id: str,
        created_at: str,
        answers: Sequence[QuestionAnswer],
        questions: Sequence[Question],
        categories: Sequence[CategoryInfo],
    ) -> list[QuestionAnswer]: ...


class ScoringSessionStore:

    def __init__(self, session_factory=get_db) -> None:
        self._session = session_factory

    async def save_review(
        self,
        owner_id: str,
        created_at: str,
        answers: Sequence[QuestionAnswer],
        questions: Sequence[Question],
        categories: Sequence[CategoryInfo],
    ) -> list[QuestionAnswer]:
        """
        Merge `answers` into the session, then score every category from
        the merged set. Returns the merged answer list. A missing session
        row is created.
        """
        async with self._session() as db:
            row = await self._get(db, owner_id, created_at, for_update=True)
            if row is None:
                logger.warning(
                    "Scoring session missing, creating | owner=%s created_at=%s",
                    owner_id, created_at,
                )
                row = ScoringSession(
                    user_id=owner_id,
                    created_at=created_at,
                    scoring_session_id=owner_id,
                    answers=[],
                    scores=[],
                )
                db.add(row)

            merged = [
                QuestionAnswer.model_validate(record)
                for record in merge_answers(row.answers, answers)
            ]
            scores = category_scores(categories, questions, merged)

            row.answers = [a.to_record() for a in merged]
            row.scores = [s.model_dump(by_alias=True) for s in scores]
            row.recommendation = recommend(scores)
            row.processing_status = ProcessingStatus.COMPLETED.value
            row.processing_error = None

        logger.info(
            "Scoring session saved | owner=%s created_at=%s answers=%d recommendation=%s",
            owner_id, created_at, len(merged), row.recommendation or "-",
        )
        return merged

    @staticmethod
    async def _get(db, owner_id: str, created_at: str, for_update: bool = False):
        stmt = select(ScoringSession).where(
            ScoringSession.user_id == owner_id,
            ScoringSession.created_at == created_at,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalars().first()
