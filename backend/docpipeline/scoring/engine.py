"""
Scoring Engine  —  Retrieval-Augmented Question Answering
══════════════════════════════════════════════════════════

For every evaluation question:

  1. embed the question text
  2. search the vector index, filtered to the job's chatId, top-k (5)
  3. prompt the LLM with ONLY the retrieved chunk texts + the question
  4. parse "Answer: Yes|Maybe|No|-1" / "Reason: ..."
  5. Yes=2, Maybe=1, No=0 → answers; "-1" or unparseable → unanswerable

Fault isolation
───────────────
A failure while handling one question (embedding error, search error, LLM
error, timeout, bad reply) makes THAT question unanswerable and the loop
moves on. The single exception is a credentials error from the embedder or
the LLM: it is a deployment problem that would fail every remaining
question identically, so the pass is aborted and the job fails loudly.

Every question lands in exactly one of `answers` / `unanswerable`.
"""

from __future__ import annotations

import logging
import time
from typing import Sequence

from docpipeline.core.exceptions import ConfigurationError
from docpipeline.llm.client import LLMClient
from docpipeline.processing.embeddings import Embedder
from docpipeline.schemas.jobs import QuestionAnswer, ScoringResult
from docpipeline.scoring.parser import parse_review_response
from docpipeline.scoring.prompts import SYSTEM_PROMPT, build_review_prompt
from docpipeline.services.questions import Question
from docpipeline.vectorstore.base import MustFilter, VectorIndex

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


class ScoringEngine:

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        llm: LLMClient,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._llm = llm
        self._top_k = top_k

    async def score(self, chat_id: str, questions: Sequence[Question]) -> ScoringResult:
        t0 = time.monotonic()
        answers: list[QuestionAnswer] = []
        unanswerable: list[str] = []

        for question in questions:
            try:
                answer = await self._answer(chat_id, question)
            except ConfigurationError:
                raise
            except Exception as exc:
                logger.warning(
                    "Question failed, marking unanswerable | chat=%s question=%s error=%s: %s",
                    chat_id, question.question_id, type(exc).__name__, exc,
                )
                answer = None

            if answer is None:
                unanswerable.append(question.question_id)
            else:
                answers.append(answer)

        logger.info(
            "Scoring done | chat=%s questions=%d answered=%d unanswerable=%d elapsed_ms=%.0f",
            chat_id, len(questions), len(answers), len(unanswerable),
            (time.monotonic() - t0) * 1000,
        )
        return ScoringResult(answers=answers, unanswerable=unanswerable)

    async def _answer(self, chat_id: str, question: Question) -> QuestionAnswer | None:
        vector = await self._embedder.embed(question.text)
        hits = await self._index.search(
            vector, MustFilter.of(chatId=chat_id), limit=self._top_k,
        )
        contexts = [hit.text for hit in hits if hit.text]

        reply = await self._llm.complete(SYSTEM_PROMPT, build_review_prompt(question.text, contexts))
        parsed = parse_review_response(reply)

        if not parsed.answerable:
            if parsed.label is None:
                logger.warning(
                    "Unparseable reply | question=%s reply=%r", question.question_id, reply[:200],
                )
            return None

        return QuestionAnswer(
            question_id=question.question_id,
            answer=parsed.score,
            reasoning=parsed.reasoning,
        )
