"""
Shared fixtures and test utilities for Precedent RAG tests.

Provides fake upstream clients, a deterministic embedding service and
in-memory stores so that all tests run without API keys, databases, or
network access.
"""

import sys
import hashlib
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")


# ---------------------------------------------------------------------------
# Sample Kanoon payloads
# ---------------------------------------------------------------------------

SAMPLE_KANOON_DOC = {
    "tid": 1234567,
    "title": "State of Maharashtra vs Ramesh Kumar",
    "caseid": "Criminal Appeal No. 456 of 2019",
    "date": "12-03-2019",
    "docsource": "Supreme Court of India",
    "doctype": "judgment",
    "casetype": "Criminal Appeal",
    "bench": "A.K. Sikri, Ashok Bhushan",
    "petitioner": "State of Maharashtra",
    "respondent": "Ramesh Kumar",
    "judgment": (
        "The accused was charged under Section 302 IPC read with S. 34 IPC for the murder "
        "of the deceased. The evidence establishes a common intention. Appeal dismissed."
    ),
    "summary": "Conviction for murder with common intention upheld.",
}


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """Deterministic mock embedding service -- never calls external APIs.

    Texts registered in ``vectors`` return that exact vector; any other
    text gets a hash-derived vector.
    """

    def __init__(self, dimensions=8, vectors=None, fail_on=None):
        self._dimensions = dimensions
        self.vectors = dict(vectors or {})
        self.fail_on = fail_on
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on(text):
            from execution.precedent_rag.errors import UpstreamUnavailable
            raise UpstreamUnavailable("mock embeddings", "simulated failure")
        for key, vector in self.vectors.items():
            if key in text:
                return list(vector)
        return self._deterministic_embedding(text)

    def embed_batch(self, texts):
        return [self.embed(t) for t in texts]

    def _deterministic_embedding(self, text):
        h = hashlib.sha256(text.encode()).hexdigest()
        seed = int(h[:8], 16)
        return [((seed + i) % 1000) / 1000.0 + 0.001 for i in range(self._dimensions)]

    @property
    def dimensions(self):
        return self._dimensions


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# Fake LLM
# ---------------------------------------------------------------------------

class FakeLLM:
    """Routes prompts to canned responses by system prompt.

    ``responses`` maps a system prompt substring to either a string or an
    exception instance to raise.
    """

    def __init__(self, responses=None, default="No analysis."):
        self.responses = dict(responses or {})
        self.default = default
        self.calls = []

    def complete(self, prompt, system_prompt="", temperature=None, max_tokens=None):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "temperature": temperature})
        for key, response in self.responses.items():
            if key in system_prompt:
                if isinstance(response, Exception):
                    raise response
                return response
        if isinstance(self.default, Exception):
            raise self.default
        return self.default


@pytest.fixture
def fake_llm():
    return FakeLLM()


# ---------------------------------------------------------------------------
# Fake Kanoon client
# ---------------------------------------------------------------------------

class FakeKanoonClient:
    """In-memory stand-in for KanoonClient.

    ``search_results`` maps query -> list of SearchHit (or an exception);
    ``details`` maps tid -> PrecedentCase (or an exception).
    """

    def __init__(self, search_results=None, details=None):
        self.search_results = dict(search_results or {})
        self.details = dict(details or {})
        self.search_calls = []
        self.fetch_calls = []

    def search(self, query, page=0, max_pages=1, **kwargs):
        from execution.precedent_rag.models import SearchResults
        self.search_calls.append(query)
        result = self.search_results.get(query, [])
        if isinstance(result, Exception):
            raise result
        return SearchResults(query=query, found=len(result), docs=list(result))

    def fetch_details(self, doc_id_or_url, max_citations=None, max_cited_by=None):
        from dataclasses import replace
        from execution.precedent_rag.kanoon_client import extract_doc_id
        from execution.precedent_rag.errors import NotFound
        doc_id = extract_doc_id(doc_id_or_url)
        self.fetch_calls.append(doc_id)
        case = self.details.get(doc_id)
        if case is None:
            raise NotFound(str(doc_id_or_url))
        if isinstance(case, Exception):
            raise case
        return replace(case)

    def close(self):
        pass


def make_hit(tid, title=None, headline=""):
    from execution.precedent_rag.models import SearchHit
    return SearchHit(tid=str(tid), title=title or f"Case {tid}", headline=headline)


def make_precedent(tid=None, title=None, **overrides):
    """Build a PrecedentCase the way KanoonClient.fetch_details would."""
    from execution.precedent_rag.models import PrecedentCase
    fields = {
        "title": title or f"Case {tid}",
        "case_number": f"IK-{tid}" if tid is not None else "N/A",
        "source_id": str(tid) if tid is not None else None,
        "source_url": f"https://indiankanoon.org/doc/{tid}/" if tid is not None else None,
        "source": "IndianKanoon" if tid is not None else "manual",
        "year": 2020,
        "summary": f"Summary of case {tid}",
        "decision": f"Decision text for case {tid}",
    }
    fields.update(overrides)
    return PrecedentCase(**fields)


@pytest.fixture
def fake_kanoon():
    return FakeKanoonClient()


# ---------------------------------------------------------------------------
# Stores and directories
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_store():
    from execution.precedent_rag.precedent_store import InMemoryPrecedentStore
    return InMemoryPrecedentStore()


@pytest.fixture
def lawyer_directory():
    from execution.precedent_rag.models import Lawyer
    from execution.precedent_rag.lawyers import InMemoryLawyerDirectory
    return InMemoryLawyerDirectory([
        Lawyer(id="l1", name="A. Mehta", specializations=["Criminal"], experience_years=12,
               rating=4.8, cases_won=120, verification_status="verified"),
        Lawyer(id="l2", name="R. Iyer", specializations=["Criminal", "Cyber Law"], experience_years=8,
               rating=4.8, cases_won=150, verification_status="verified"),
        Lawyer(id="l3", name="S. Rao", specializations=["Family"], experience_years=20,
               rating=4.9, cases_won=300, verification_status="verified"),
        Lawyer(id="l4", name="P. Das", specializations=["Criminal"], experience_years=3,
               rating=5.0, cases_won=10, verification_status="pending"),
        Lawyer(id="l5", name="K. Nair", specializations=["Property"], experience_years=15,
               rating=4.2, cases_won=90, verification_status="verified"),
    ])


# ---------------------------------------------------------------------------
# Singleton resets between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics_singleton():
    """Reset the MetricsCollector singleton between tests."""
    import execution.precedent_rag.metrics as metrics_mod
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
    yield
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
