"""
Embedding Service for Precedent RAG

Turns precedent and query text into fixed-length vectors through an
OpenAI-compatible /embeddings endpoint (xAI by default), and provides the
cosine similarity used to rank precedents.

Failures are not retried here -- callers decide whether to retry, skip,
or fall back.
"""

import os
import json
import hashlib
import logging
from typing import Optional
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .errors import AuthenticationError, Timeout, UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.x.ai/v1"


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    model: str = "v1"
    dimensions: int = 1024
    max_input_chars: int = 8000  # Upstream token limit, applied per text
    batch_size: int = 64
    timeout: float = 30.0
    base_url: Optional[str] = None
    cache_dir: Optional[str] = None
    use_cache: bool = True


def cosine_similarity(a: Optional[list[float]], b: Optional[list[float]]) -> float:
    """
    Cosine similarity between two vectors.

    Returns 0.0 for empty, all-zero, or mismatched-length vectors. Ranking
    code treats 0 as the worst possible match, so this must not raise.
    """
    if a is None or b is None or len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return 0.0
    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    score = float(np.dot(a_arr, b_arr) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))



class EmbeddingCache:
    """
    Two-level cache of embeddings keyed by model and text.

    Entries live in memory and, when a directory is given, as one JSON file
    per key so they survive restarts. An unreadable file counts as a miss.
    """

    def __init__(self, model: str, directory: Optional[str] = None, enabled: bool = True):
        self.model = model
        self.enabled = enabled
        self._memory: dict[str, list[float]] = {}
        self._dir = Path(directory) if directory else None
        if self._dir:
            self._dir.mkdir(parents=True, exist_ok=True)

    def key_for(self, text: str) -> str:
        digest = hashlib.sha256(f"{self.model}:{text}".encode())
        return digest.hexdigest()[:32]

    def _file(self, key: str) -> Optional[Path]:
        return self._dir / f"{key}.json" if self._dir else None

    def get(self, text: str) -> Optional[list[float]]:
        if not self.enabled:
            return None
        key = self.key_for(text)
        hit = self._memory.get(key)
        if hit is not None:
            return hit

        path = self._file(key)
        if path is None or not path.exists():
            return None
        try:
            vector = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.debug(f"Ignoring unreadable embedding cache entry {path.name}: {e}")
            return None
        self._memory[key] = vector
        return vector

    def put(self, text: str, vector: list[float]) -> None:
        if not self.enabled:
            return
        key = self.key_for(text)
        self._memory[key] = vector
        path = self._file(key)
        if path is None:
            return
        try:
            path.write_text(json.dumps(vector))
        except OSError as e:
            logger.warning(f"Could not persist embedding cache entry {path.name}: {e}")


class EmbeddingService:
    """
    Generates embeddings via an OpenAI-compatible API.

    Inputs are truncated to the upstream limit, bulk requests are split into
    batches, and results are cached by (model, text).
    """

    _provider_name: str = "xAI"
    _env_var_name: str = "XAI_API_KEY"

    def __init__(self, config: Optional[EmbeddingConfig] = None, client=None):
        """
        Args:
            config: Optional configuration. Uses env vars / defaults if not provided.
            client: Optional pre-built OpenAI-compatible client (tests inject one).
        """
        self.config = config or EmbeddingConfig(
            model=os.getenv("EMBEDDING_MODEL", "v1"),
        )
        self.cache = EmbeddingCache(
            self.config.model,
            directory=self.config.cache_dir,
            enabled=self.config.use_cache,
        )
        self._client = client if client is not None else self._build_client()

    def _build_client(self):
        api_key = os.getenv(self._env_var_name)
        if not api_key:
            logger.warning(f"{self._env_var_name} not found. Embedding features are disabled.")
            return None

        from openai import OpenAI
        logger.info(f"{self._provider_name} embedding client initialized with model {self.config.model}")
        return OpenAI(
            base_url=self.config.base_url or os.getenv("XAI_BASE_URL", DEFAULT_BASE_URL),
            api_key=api_key,
            timeout=self.config.timeout,
            max_retries=0,
        )

    def _truncate(self, text: str) -> str:
        return (text or "")[: self.config.max_input_chars]

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding for a single text.

        Raises:
            AuthenticationError: no API key configured, or the key was rejected
            UpstreamUnavailable: the API errored or timed out
        """
        return self._embed_chunk([self._truncate(text)])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for many texts, preserving input order."""
        if not texts:
            return []

        prepared = [self._truncate(t) for t in texts]
        size = self.config.batch_size
        chunks = [prepared[start:start + size] for start in range(0, len(prepared), size)]
        logger.info(f"Embedding {len(texts)} texts in {len(chunks)} batches")

        vectors: list[list[float]] = []
        for chunk in chunks:
            vectors.extend(self._embed_chunk(chunk))
        return vectors

    def _embed_chunk(self, texts: list[str]) -> list[list[float]]:
        """Embed already-truncated texts; only cache misses reach the API."""
        found = {pos: self.cache.get(text) for pos, text in enumerate(texts)}
        missing = [pos for pos, vector in found.items() if vector is None]

        if missing:
            if not self._client:
                raise AuthenticationError(
                    self._provider_name,
                    f"{self._env_var_name} is not set. Embedding features are disabled. "
                    f"Add {self._env_var_name}=<your key> to .env.",
                )
            response = self._request([texts[pos] for pos in missing])
            if len(response.data) != len(missing):
                raise UpstreamUnavailable(
                    self._provider_name,
                    f"expected {len(missing)} embeddings, received {len(response.data)}",
                )
            for pos, item in zip(missing, response.data):
                found[pos] = list(item.embedding)
                self.cache.put(texts[pos], found[pos])

        return [found[pos] for pos in range(len(texts))]

    def _request(self, texts: list[str]):
        """Call the embeddings endpoint, mapping SDK errors onto our taxonomy."""
        import openai

        try:
            return self._client.embeddings.create(model=self.config.model, input=texts)
        except openai.APITimeoutError as e:
            logger.error(f"{self._provider_name} embedding timed out: {e}")
            raise Timeout(self._provider_name, f"embedding request timed out after {self.config.timeout}s")
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.error(f"{self._provider_name} rejected credentials: {e}")
            raise AuthenticationError(
                self._provider_name,
                f"API key rejected. Check {self._env_var_name} in .env.",
            )
        except openai.OpenAIError as e:
            logger.error(f"{self._provider_name} embedding failed: {e}")
            raise UpstreamUnavailable(self._provider_name, f"Failed to create embedding: {e}")

    @property
    def dimensions(self) -> int:
        return self.config.dimensions


if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    sample = " ".join(sys.argv[1:]) or "Accused convicted under Section 302 IPC for murder"
    vector = EmbeddingService().embed(sample)
    print(f"{sample!r} -> {len(vector)} dims, head {vector[:5]}")
