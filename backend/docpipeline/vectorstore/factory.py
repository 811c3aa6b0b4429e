"""
Vector Index Factory

Selects the backend (Qdrant | Pinecone) from config. The worker calls
create_vector_index() once per process and injects the result; nothing else
touches the concrete classes.
"""

from __future__ import annotations

from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.vectorstore.base import VectorIndex


def create_vector_index(settings: Settings | None = None) -> VectorIndex:
    cfg = settings or default_settings
    backend = cfg.vector_store_backend.lower()

    if backend == "qdrant":
        from docpipeline.vectorstore.qdrant_store import QdrantVectorIndex
        return QdrantVectorIndex(
            url=cfg.qdrant_url,
            collection=cfg.qdrant_collection,
            dimensions=cfg.embedding_dimensions,
            api_key=cfg.qdrant_api_key,
            timeout=cfg.qdrant_timeout_seconds,
        )

    if backend == "pinecone":
        from docpipeline.vectorstore.pinecone_store import PineconeVectorIndex
        return PineconeVectorIndex(
            api_key=cfg.pinecone_api_key,
            index_name=cfg.pinecone_index_name,
            dimensions=cfg.embedding_dimensions,
            namespace=cfg.pinecone_namespace,
            cloud_region=cfg.aws_region,
        )

    raise ValueError(
        f"Unknown vector store backend: '{backend}'. "
        f"Valid options: 'qdrant', 'pinecone'"
    )
