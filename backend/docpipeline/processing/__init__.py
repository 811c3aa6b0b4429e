"""
Document Processing Package
════════════════════════════

Everything between "bytes from S3" and "points in the vector index":

  Text Extraction → Chunking → Embedding

Modules
───────
  extractor.py  PDF (PyMuPDF, page-aware) and Word (python-docx) text extraction
  chunking.py   RecursiveCharacterTextSplitter wrapper, 500 chars / 50 overlap
  embeddings.py OpenAI embedder with classified failures and bounded fan-out

Every component is stateless after construction and dependency-injected.
"""

from docpipeline.processing.chunking import Chunker, TextChunk
from docpipeline.processing.embeddings import OpenAIEmbedder, embed_all
from docpipeline.processing.extractor import PagedText, PlainText, Unsupported, extract

__all__ = [
    "Chunker",
    "TextChunk",
    "OpenAIEmbedder",
    "embed_all",
    "PagedText",
    "PlainText",
    "Unsupported",
    "extract",
]
