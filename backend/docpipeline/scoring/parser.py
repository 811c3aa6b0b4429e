"""Parse the model's `Answer:` / `Reason:` reply into a discrete score."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from docpipeline.schemas.jobs import AnswerLabel

_ANSWER_RE = re.compile(r"Answer:\s*(Yes|Maybe|No|-1)\b", re.IGNORECASE)
_REASON_RE = re.compile(r"Reason:\s*(.+?)(?:\n|$)", re.IGNORECASE)

DEFAULT_REASONING = "No reasoning provided"

_LABEL_SCORES = {
    "yes":   AnswerLabel.YES,
    "maybe": AnswerLabel.MAYBE,
    "no":    AnswerLabel.NO,
}


@dataclass(frozen=True)
class ParsedAnswer:
    score:     Optional[int]   # None = unanswerable
    reasoning: str
    label:     Optional[str]   # normalised label as matched, None if no match

    @property
    def answerable(self) -> bool:
        return self.score is not None


def parse_review_response(response: str) -> ParsedAnswer:
    """
    Yes → 2, Maybe → 1, No → 0.
    "-1" and any reply without a recognisable Answer line are unanswerable.
    """
    answer_match = _ANSWER_RE.search(response or "")
    reason_match = _REASON_RE.search(response or "")
    reasoning = reason_match.group(1).strip() if reason_match else DEFAULT_REASONING

    if answer_match is None:
        return ParsedAnswer(score=None, reasoning=reasoning, label=None)

    label = answer_match.group(1).strip().lower()
    score = _LABEL_SCORES.get(label)
    return ParsedAnswer(
        score=int(score) if score is not None else None,
        reasoning=reasoning,
        label=label,
    )
