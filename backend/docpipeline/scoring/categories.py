"""
Category score policy.

    raw        = Σ answer over answered questions in the category
    max        = 2 × (number of questions in the category)
    percentage = round(100 × raw / max), 0 for an empty category

The denominator counts EVERY question in the category, answered or not, so
an unanswerable question pulls the percentage down exactly as a "No" would.
The web tier applies the same formula once the user fills the gaps, which
keeps worker-written and user-finalised scores comparable.

Recommendation: the first two categories in display order are the two axes
(ability to win, attractiveness), each compared to its own qualification
cutoff.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Sequence

from docpipeline.schemas.jobs import CategoryScore, QuestionAnswer
from docpipeline.services.questions import CategoryInfo, Question

MAX_POINTS_PER_QUESTION = 2
DEFAULT_QUALIFICATION_CUTOFF = 50

BID_TO_WIN       = "Bid to Win"
BUILD_CAPABILITY = "Build Capability"
FASTER_CLOSURE   = "Faster Closure"
NO_BID           = "No Bid"


def _round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; scores are shown as whole percents
    return int(value + 0.5)


def category_scores(
    categories: Sequence[CategoryInfo],
    questions: Sequence[Question],
    answers: Iterable[QuestionAnswer],
) -> list[CategoryScore]:
    """One CategoryScore per category, in the order given."""
    category_of = {q.question_id: q.category_id for q in questions}

    totals: dict[str, int] = defaultdict(int)
    for q in questions:
        totals[q.category_id] += 1

    raw: dict[str, int] = defaultdict(int)
    for ans in answers:
        cat = category_of.get(ans.question_id)
        if cat is not None:
            raw[cat] += ans.answer

    scores = []
    for cat in categories:
        total = totals.get(cat.category_id, 0)
        points = raw.get(cat.category_id, 0)
        max_points = MAX_POINTS_PER_QUESTION * total
        percentage = _round_half_up(100 * points / max_points) if max_points else 0
        scores.append(CategoryScore(
            category_id=cat.category_id,
            category_name=cat.category_name,
            score=points,
            total=total,
            percentage=percentage,
            qualification_cutoff=cat.qualification_cutoff or DEFAULT_QUALIFICATION_CUTOFF,
        ))
    return scores


def recommend(scores: Sequence[CategoryScore]) -> str:
    """
    Quadrant recommendation from the first two category scores.
    Returns "" when fewer than two categories exist.
    """
    if len(scores) < 2:
        return ""
    ability, attractiveness = scores[0], scores[1]

    if ability.qualifies and attractiveness.qualifies:
        return BID_TO_WIN
    if ability.qualifies:
        return BUILD_CAPABILITY
    if attractiveness.qualifies:
        return FASTER_CLOSURE
    return NO_BID
