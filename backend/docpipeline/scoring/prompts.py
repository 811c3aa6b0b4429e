"""
Review prompt.

The model only ever sees the retrieved chunk texts and the question. The
answer format is fixed so scoring.parser can read it with two regexes.
"""

from __future__ import annotations

SYSTEM_PROMPT = (
    "You are an expert document analyst tasked with evaluating business "
    "proposals and RFPs. You answer strictly from the document context you "
    "are given and never invent facts."
)

REVIEW_PROMPT_TEMPLATE = """Based on the provided document context, answer the specific question with precision.

DOCUMENT CONTEXT:
{context}

QUESTION TO EVALUATE:
{question}

INSTRUCTIONS:
1. Carefully analyze the document context for information directly related to the question
2. Provide your answer in this EXACT format:
   Answer: [Yes/Maybe/No/-1]
   Reason: [One clear sentence explaining your reasoning]

ANSWER GUIDELINES:
- "Yes" (2 points): The document clearly and explicitly supports a positive answer
- "Maybe" (1 point): The document provides some relevant information but it's ambiguous or partial
- "No" (0 points): The document clearly indicates a negative answer or contradicts the question
- "-1": The document lacks sufficient information to make any reasonable assessment

IMPORTANT:
- Base your answer ONLY on the provided document context
- Do not make assumptions beyond what's explicitly stated
- If information is unclear or incomplete, lean towards "Maybe" or "-1"
- Keep your reason to one concise sentence (maximum 20 words)

Your response:"""

NO_CONTEXT_PLACEHOLDER = "(no relevant passages were found in the document)"


def build_review_prompt(question: str, contexts: list[str]) -> str:
    texts = [c for c in contexts if c and c.strip()]
    context = "\n\n".join(texts) if texts else NO_CONTEXT_PLACEHOLDER
    return REVIEW_PROMPT_TEMPLATE.format(context=context, question=question.strip())
