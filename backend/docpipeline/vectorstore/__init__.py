from docpipeline.vectorstore.base import MustFilter, ScoredPoint, VectorIndex, VectorPoint
from docpipeline.vectorstore.factory import create_vector_index

__all__ = ["VectorIndex", "VectorPoint", "ScoredPoint", "MustFilter", "create_vector_index"]
