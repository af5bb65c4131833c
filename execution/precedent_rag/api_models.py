"""
Pydantic models for the Precedent RAG FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field


class AnalyzeRequest(BaseModel):
    """Request body for case analysis."""
    description: str = Field(..., min_length=1, max_length=20000)
    case_type: Optional[str] = None


class MatchInfo(BaseModel):
    """A precedent used as context for an analysis."""
    precedent_ref: Optional[str] = None
    case_number: Optional[str] = None
    title: str
    similarity: float
    source: str
    verdict: Optional[str] = None


class LawyerInfo(BaseModel):
    id: str
    name: str
    specialization: str
    experience: str
    rating: float
    cases_won: int
    image: Optional[str] = None


class AnalyzeResponse(BaseModel):
    """Structured analysis. ``confidence`` below 0.9 marks a degraded parse."""
    case_type: str
    suggested_sections: list[str]
    summary: str
    analysis: str
    key_points: list[str] = []
    key_arguments: str
    possible_verdict: str
    risk_level: str
    recommendations: str
    confidence: float
    parse_degraded: bool = False
    retrieved_matches: list[MatchInfo] = []
    recommended_lawyers: list[LawyerInfo] = []
    analyzed_at: str
    latency_ms: float = 0


class SimilarRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=20000)
    top_k: int = Field(default=5, ge=1, le=50)


class SimilarResponse(BaseModel):
    matches: list[MatchInfo]


class CompareRequest(BaseModel):
    """Current case to compare against its nearest stored precedents."""
    title: str = ""
    description: str = Field(..., min_length=1, max_length=20000)
    case_type: Optional[str] = None
    top_k: int = Field(default=5, ge=1, le=20)


class InsightsRequest(BaseModel):
    context: str = Field(..., min_length=1, max_length=20000)


class TextResponse(BaseModel):
    text: str


class SyncRequest(BaseModel):
    """Request body for a Kanoon sync batch. Empty queries means the popular set."""
    queries: list[str] = []
    limit: int = Field(default=5, ge=1, le=50)
    auto_index: bool = True


class SyncFailureInfo(BaseModel):
    query: str
    doc_id: Optional[str] = None
    title: Optional[str] = None
    error: str


class SyncResponse(BaseModel):
    success: bool
    queries_processed: int
    hits_found: int
    fetched: int
    newly_indexed: int
    already_present: int
    embeddings_indexed: int
    failed: int
    cancelled: bool = False
    errors: Optional[list[SyncFailureInfo]] = None


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=1000)
    page: int = Field(default=0, ge=0)
    court_filter: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    max_citations: Optional[int] = None


class SearchHitInfo(BaseModel):
    tid: str
    title: str
    docsource: str
    headline: str = ""
    docsize: int = 0
    date: Optional[str] = None
    casetype: str = "Unknown"
    doctype: str = "judgment"


class SearchResponse(BaseModel):
    query: str
    found: int
    pagenum: int
    docs: list[SearchHitInfo]


class FetchRequest(BaseModel):
    """A Kanoon URL (https://indiankanoon.org/doc/<id>/) or a bare document id."""
    case_url: str = Field(..., min_length=1)
    auto_index: bool = True


class PrecedentInfo(BaseModel):
    id: Optional[str] = None
    case_number: str
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    source: str
    title: str
    year: Optional[int] = None
    court: str
    verdict: str
    ipc_sections: list[str] = []
    keywords: list[str] = []
    summary: str = ""
    indexed: bool = False


class FetchResponse(BaseModel):
    inserted: bool
    precedent: PrecedentInfo


class ReindexRequest(BaseModel):
    force: bool = False
    source: Optional[str] = None


class ReindexResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    cancelled: bool = False


class IndexResponse(BaseModel):
    status: str
    precedent_id: str


class StatsResponse(BaseModel):
    total: int
    embedded: int
    not_indexed: int
    percentage_indexed: float
    by_source: dict[str, int] = {}
    unique_ipc_sections: int = 0


class QueriesResponse(BaseModel):
    queries: list[str]


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    database: str
    llm_configured: bool = False
    kanoon_configured: bool = False
