"""
Review Scoring Package
══════════════════════

  prompts.py     prompt text sent to the chat model
  parser.py      Answer/Reason extraction → 0/1/2 or unanswerable
  engine.py      per-question retrieve → prompt → parse loop
  categories.py  per-category percentages and the quadrant recommendation
"""

from docpipeline.scoring.categories import category_scores, recommend
from docpipeline.scoring.engine import ScoringEngine
from docpipeline.scoring.parser import ParsedAnswer, parse_review_response

__all__ = [
    "ScoringEngine",
    "ParsedAnswer",
    "parse_review_response",
    "category_scores",
    "recommend",
]
