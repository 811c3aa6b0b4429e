"""Read-only access to a user's evaluation questions and categories."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select

from docpipeline.db.session import get_db
from docpipeline.models.documents import Category, EvaluationQuestion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Question:
    question_id: str
    text:        str
    category_id: str
    order:       int = 0


@dataclass(frozen=True)
class CategoryInfo:
    category_id:   str
    category_name: str
    order:         int = 0
    qualification_cutoff: int = 50


class QuestionStore(Protocol):
    async def list_questions(self, owner_id: str) -> list[Question]: ...

    async def list_categories(self, owner_id: str) -> list[CategoryInfo]: ...


class SqlQuestionStore:
    """Questions and categories owned by `owner_id`, in display order."""

    def __init__(self, session_factory=get_db) -> None:
        self._session = session_factory

    async def list_questions(self, owner_id: str) -> list[Question]:
        async with self._session() as db:
            result = await db.execute(
                select(EvaluationQuestion)
                .where(EvaluationQuestion.user_id == owner_id)
                .order_by(EvaluationQuestion.order, EvaluationQuestion.evaluation_question_id)
            )
            rows = result.scalars().all()

        questions = [
            Question(
                question_id=row.evaluation_question_id,
                text=row.text,
                category_id=row.category_id,
                order=row.order,
            )
            for row in rows
        ]
        logger.info("Questions loaded | owner=%s count=%d", owner_id, len(questions))
        return questions

    async def list_categories(self, owner_id: str) -> list[CategoryInfo]:
        async with self._session() as db:
            result = await db.execute(
                select(Category)
                .where(Category.user_id == owner_id)
                .order_by(Category.order, Category.category_id)
            )
            rows = result.scalars().all()

        return [
            CategoryInfo(
                category_id=row.category_id,
                category_name=row.category_name,
                order=row.order,
                qualification_cutoff=row.qualification_cutoff or 50,
            )
            for row in rows
        ]
