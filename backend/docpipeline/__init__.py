"""Asynchronous document ingestion and review-scoring worker."""

__version__ = "0.1.0"
