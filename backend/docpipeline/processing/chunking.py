"""
Chunker  —  Recursive Character Splitting
══════════════════════════════════════════

Wraps LangChain's RecursiveCharacterTextSplitter with the worker's fixed
parameters (500 chars, 50 overlap by default). Splitting tries paragraph
breaks first, then line breaks, sentence ends, spaces and finally single
characters, so a chunk boundary lands on the coarsest separator that keeps
the chunk under `chunk_size`.

Pure and deterministic: the same input always yields the same chunks.

Page awareness
──────────────
  PagedText (PDF)  → each non-empty page is split on its own; chunks carry
                     page_number and chunk_index_on_page.
  PlainText (Word) → one split of the whole document; chunks carry a
                     document-wide chunk_index.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from docpipeline.processing.extractor import PagedText, PlainText

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE    = 500
DEFAULT_CHUNK_OVERLAP = 50
SEPARATORS = ["\n\n", "\n", ". ", " ", ""]

# C0/C1 control characters other than tab / newline / carriage return.
# Some PDFs emit these from broken font maps; embedding APIs reject them.
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


@dataclass
class TextChunk:
    """One chunk of source text plus its position in the document."""
    text:                str
    chunk_index:         int             # 0-based, document-wide
    page_number:         Optional[int] = None   # 1-based, PDF only
    chunk_index_on_page: Optional[int] = None   # 0-based, PDF only

    def position_payload(self) -> dict:
        """Vector-payload fields describing where the chunk came from."""
        if self.page_number is not None:
            return {
                "pageNumber":       self.page_number,
                "chunkIndexOnPage": self.chunk_index_on_page,
            }
        return {"chunkIndex": self.chunk_index}


def sanitize(text: str) -> str:
    return _CONTROL_CHARS_RE.sub("", text)


class Chunker:
    """
    Stateless after construction; one instance per worker process is fine.

    Usage:
        chunker = Chunker(chunk_size=500, chunk_overlap=50)
        chunks  = chunker.chunk(extracted)
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=SEPARATORS,
            length_function=len,
            keep_separator=True,
            strip_whitespace=True,
        )

    def split(self, text: str) -> list[str]:
        """Split raw text; whitespace-only pieces are dropped."""
        cleaned = sanitize(text)
        if not cleaned.strip():
            return []
        return [piece for piece in self._splitter.split_text(cleaned) if piece.strip()]

    def chunk(self, extracted: PagedText | PlainText) -> list[TextChunk]:
        if isinstance(extracted, PagedText):
            return self._chunk_pages(extracted)
        return self._chunk_plain(extracted)

    def _chunk_pages(self, extracted: PagedText) -> list[TextChunk]:
        chunks: list[TextChunk] = []
        for page in extracted.pages:
            if not page.text.strip():
                continue
            for idx_on_page, piece in enumerate(self.split(page.text)):
                chunks.append(TextChunk(
                    text=piece,
                    chunk_index=len(chunks),
                    page_number=page.page_number,
                    chunk_index_on_page=idx_on_page,
                ))
        logger.debug(
            "Chunked pages | pages=%d chunks=%d", len(extracted.pages), len(chunks),
        )
        return chunks

    def _chunk_plain(self, extracted: PlainText) -> list[TextChunk]:
        chunks = [
            TextChunk(text=piece, chunk_index=idx)
            for idx, piece in enumerate(self.split(extracted.text))
        ]
        logger.debug("Chunked text | chars=%d chunks=%d", len(extracted.text), len(chunks))
        return chunks


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Functional shortcut around Chunker.split."""
    return Chunker(chunk_size=chunk_size, chunk_overlap=overlap).split(text)
