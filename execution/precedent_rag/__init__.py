"""
Precedent RAG - retrieval-augmented legal case analysis

This module provides:
- Syncing Indian Kanoon judgments into a local precedent store
- Embedding and nearest-neighbour retrieval over stored precedents
- LLM case analysis grounded in local and live precedents
- Lawyer recommendations by case type
"""

__version__ = "0.1.0"

from .errors import (
    PrecedentRAGError,
    UpstreamUnavailable,
    Timeout,
    AuthenticationError,
    NotFound,
    AnalysisFailed,
)
from .embeddings import EmbeddingService, cosine_similarity
from .precedent_store import InMemoryPrecedentStore, PostgresPrecedentStore
from .vector_index import BruteForceIndex
from .kanoon_client import KanoonClient
from .llm import LLMClient
from .sync import PrecedentSyncService
from .rag import RAGAnalyzer

__all__ = [
    "PrecedentRAGError",
    "UpstreamUnavailable",
    "Timeout",
    "AuthenticationError",
    "NotFound",
    "AnalysisFailed",
    "EmbeddingService",
    "cosine_similarity",
    "InMemoryPrecedentStore",
    "PostgresPrecedentStore",
    "BruteForceIndex",
    "KanoonClient",
    "LLMClient",
    "PrecedentSyncService",
    "RAGAnalyzer",
]
