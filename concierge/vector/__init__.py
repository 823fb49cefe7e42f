"""Vector projection of the cache and retrieval for grounding."""

from .embeddings import Embedder
from .index import VectorHit, VectorIndex
from .projector import ProjectionResult, VectorProjector
from .retriever import Retriever

__all__ = [
    "Embedder",
    "ProjectionResult",
    "Retriever",
    "VectorHit",
    "VectorIndex",
    "VectorProjector",
]
