"""
Text Extraction
═══════════════

Turns raw blob bytes into text the chunker can split.

  PDF         → PagedText   one entry per page, 1-indexed (PyMuPDF)
  DOCX / DOC  → PlainText   paragraphs and table cells in document order, joined by "\n" (python-docx)
  anything else → Unsupported (not an error; the job completes with a note)

PDF layout handling
───────────────────
PyMuPDF returns text as spans, each with a baseline origin (x, y). Spans on
the same baseline are concatenated directly; a baseline change starts a new
line. This keeps words that the PDF split into several runs together while
preserving the visual line structure.

Parsing is CPU-bound and runs in the default thread executor so the worker's
event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Union

from docpipeline.core.exceptions import ExtractionError

logger = logging.getLogger(__name__)

# Pages beyond this are ignored; a safety valve for pathological uploads
MAX_PDF_PAGES = 1000

# Baselines closer than this (in points) are treated as the same line
BASELINE_TOLERANCE = 0.5

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"


class FileKind(str, Enum):
    PDF = "pdf"
    WORD = "word"
    OTHER = "other"


_MIME_KINDS = {
    PDF_MIME: FileKind.PDF,
    DOCX_MIME: FileKind.WORD,
    DOC_MIME: FileKind.WORD,
}

_EXTENSION_KINDS = {
    ".pdf": FileKind.PDF,
    ".docx": FileKind.WORD,
    ".doc": FileKind.WORD,
}


def classify_file_type(file_type: str, file_name: str = "") -> FileKind:
    """
    MIME type decides. The extension is only consulted when the producer
    sent a generic type (browsers do this for some .doc uploads).
    """
    mime = (file_type or "").split(";", 1)[0].strip().lower()
    if mime in _MIME_KINDS:
        return _MIME_KINDS[mime]
    if mime in ("", "application/octet-stream") and "." in file_name:
        ext = file_name[file_name.rfind("."):].lower()
        return _EXTENSION_KINDS.get(ext, FileKind.OTHER)
    return FileKind.OTHER


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class PageText:
    page_number: int   # 1-based
    text:        str


@dataclass
class PagedText:
    pages:      list[PageText]
    page_count: int = 0

    def __post_init__(self) -> None:
        if not self.page_count:
            self.page_count = len(self.pages)

    @property
    def total_chars(self) -> int:
        return sum(len(p.text.strip()) for p in self.pages)

    def is_empty(self) -> bool:
        return all(not p.text.strip() for p in self.pages)


@dataclass
class PlainText:
    text: str

    @property
    def total_chars(self) -> int:
        return len(self.text.strip())

    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass
class Unsupported:
    file_type: str

    @property
    def note(self) -> str:
        return f"File type {self.file_type} not processed by worker."


ExtractedText = Union[PagedText, PlainText, Unsupported]


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def join_spans_by_baseline(spans: list[tuple[float, str]]) -> str:
    """
    Concatenate (baseline_y, text) runs in reading order. A run on the same
    baseline as its predecessor is appended directly, otherwise it starts a
    new line.
    """
    out: list[str] = []
    last_y: float | None = None
    for y, run in spans:
        if last_y is None or abs(y - last_y) <= BASELINE_TOLERANCE:
            out.append(run)
        else:
            out.append("\n")
            out.append(run)
        last_y = y
    return "".join(out)


def _page_spans(page) -> list[tuple[float, str]]:
    spans: list[tuple[float, str]] = []
    layout = page.get_text("dict")
    for block in layout.get("blocks", []):
        if block.get("type", 0) != 0:   # 1 = image block
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                spans.append((float(span["origin"][1]), span.get("text", "")))
    return spans


def _extract_pdf_sync(data: bytes) -> PagedText:
    import fitz  # PyMuPDF

    pages: list[PageText] = []
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ExtractionError(f"Unable to open PDF: {exc}") from exc

    with doc:
        if doc.needs_pass:
            raise ExtractionError("PDF is password protected")

        page_count = doc.page_count
        if page_count > MAX_PDF_PAGES:
            logger.warning(
                "PDF page cap hit | pages=%d cap=%d", page_count, MAX_PDF_PAGES,
            )

        for page_number, page in enumerate(doc, start=1):
            if page_number > MAX_PDF_PAGES:
                break
            pages.append(PageText(
                page_number=page_number,
                text=join_spans_by_baseline(_page_spans(page)),
            ))

    return PagedText(pages=pages, page_count=min(page_count, MAX_PDF_PAGES))


# ---------------------------------------------------------------------------
# Word
# ---------------------------------------------------------------------------

def _extract_word_sync(data: bytes) -> PlainText:
    import docx  # python-docx
    from docx.table import Table

    try:
        document = docx.Document(io.BytesIO(data))
    except Exception as exc:
        # Legacy binary .doc lands here: python-docx only reads OOXML
        raise ExtractionError(f"Unable to open Word document: {exc}") from exc

    lines: list[str] = []
    for block in document.iter_inner_content():
        if isinstance(block, Table):
            lines.extend(_table_lines(block))
        else:
            lines.append(block.text)

    return PlainText(text="\n".join(lines))


def _table_lines(table) -> list[str]:
    """Non-empty cell texts row by row; a merged cell is read once."""
    lines = []
    for row in table.rows:
        previous = None
        for cell in row.cells:
            # row.cells repeats a horizontally merged cell for every grid column it spans
            if previous is not None and cell._tc is previous:
                continue
            previous = cell._tc
            if cell.text.strip():
                lines.append(cell.text)
    return lines


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def extract_sync(data: bytes, file_type: str, file_name: str = "") -> ExtractedText:
    kind = classify_file_type(file_type, file_name)
    if kind is FileKind.OTHER:
        return Unsupported(file_type=file_type)

    if not data:
        raise ExtractionError(f"Blob is empty (0 bytes) for {file_name or file_type}")

    if kind is FileKind.PDF:
        return _extract_pdf_sync(data)
    return _extract_word_sync(data)


async def extract(data: bytes, file_type: str, file_name: str = "") -> ExtractedText:
    """
    Extract text from `data` according to its MIME type.

    Returns:
        PagedText | PlainText | Unsupported

    Raises:
        ExtractionError: the file is corrupt, empty, encrypted or a format
                         the parser cannot open.
    """
    loop = asyncio.get_running_loop()
    t0 = time.monotonic()
    result = await loop.run_in_executor(None, extract_sync, data, file_type, file_name)

    if not isinstance(result, Unsupported):
        logger.info(
            "Extracted | file=%s type=%s chars=%d pages=%s elapsed_ms=%.0f",
            file_name, file_type, result.total_chars,
            getattr(result, "page_count", "-"),
            (time.monotonic() - t0) * 1000,
        )
    return result
