"""
Nearest-neighbour search over embedded precedents.

BruteForceIndex scans every embedded precedent and ranks by cosine
similarity. The corpus is small and bounded, so no approximate index is
used; an ANN backend can replace it behind NearestNeighborIndex without
changing the analyzer.
"""

import time
import logging
import threading
from typing import Optional

from .embeddings import cosine_similarity
from .models import MatchSource, PrecedentCase, RetrievedMatch
from .precedent_store import PrecedentStore

logger = logging.getLogger(__name__)


class NearestNeighborIndex:
    """Interface for precedent similarity search."""

    ready: bool = False

    def initialize(self) -> None:
        raise NotImplementedError

    def top_k(self, query_vector: list[float], k: int) -> list[RetrievedMatch]:
        raise NotImplementedError

    def search_similar(self, text: str, k: int = 5) -> list[RetrievedMatch]:
        raise NotImplementedError

    def invalidate(self) -> None:
        """Drop any cached corpus after embeddings change."""


class BruteForceIndex(NearestNeighborIndex):
    """
    Full-scan cosine similarity ranking.

    Ordering: descending similarity; equal similarities keep the store's
    order (insertion order).

    Corpus caching is controlled by ``refresh_seconds``: 0 reads the store
    on every query, a positive value reuses the loaded corpus for that long
    or until invalidate() is called.
    """

    def __init__(
        self,
        store: PrecedentStore,
        embedding_service=None,
        refresh_seconds: float = 0,
        clock=time.monotonic,
    ):
        self.store = store
        self.embeddings = embedding_service
        self.refresh_seconds = refresh_seconds
        self._clock = clock
        self._corpus: Optional[list[PrecedentCase]] = None
        self._loaded_at = 0.0
        self._lock = threading.Lock()
        self.ready = False

    def initialize(self) -> None:
        """Check the store and mark the index ready."""
        logger.info("Initializing vector index...")
        corpus = self._load_corpus()
        logger.info(f"Found {len(corpus)} indexed precedents")
        self.ready = True

    def invalidate(self) -> None:
        with self._lock:
            self._corpus = None

    def _load_corpus(self) -> list[PrecedentCase]:
        if self.refresh_seconds <= 0:
            return self.store.find_embedded()

        with self._lock:
            expired = self._clock() - self._loaded_at > self.refresh_seconds
            if self._corpus is None or expired:
                self._corpus = self.store.find_embedded()
                self._loaded_at = self._clock()
            return self._corpus

    def top_k(self, query_vector: list[float], k: int) -> list[RetrievedMatch]:
        """Return up to k matches sorted by non-increasing similarity."""
        if k <= 0:
            return []
        return self._rank(self._load_corpus(), query_vector, k)

    def search_similar(self, text: str, k: int = 5) -> list[RetrievedMatch]:
        """Embed free text and return its top-k precedent matches."""
        if self.embeddings is None:
            raise RuntimeError("BruteForceIndex has no embedding service for text search")
        if k <= 0:
            return []
        corpus = self._load_corpus()
        if not corpus:
            logger.warning("No indexed precedents found in vector index")
            return []
        return self._rank(corpus, self.embeddings.embed(text), k)

    @staticmethod
    def _rank(corpus: list[PrecedentCase], query_vector: list[float], k: int) -> list[RetrievedMatch]:
        if not corpus:
            logger.warning("No indexed precedents found in vector index")
            return []

        scored = [
            (cosine_similarity(query_vector, case.embedding), case)
            for case in corpus
        ]
        scored.sort(key=lambda pair: pair[0], reverse=True)

        return [
            RetrievedMatch(
                precedent_ref=case.id,
                case_number=case.case_number,
                title=case.title,
                similarity=score,
                source=MatchSource.LOCAL_VECTOR,
                content=case.summary or case.facts or case.title,
                verdict=case.verdict.value,
            )
            for score, case in scored[:k]
        ]
