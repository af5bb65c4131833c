"""
FastAPI Backend for the Precedent RAG engine

REST endpoints for case analysis, similar-precedent search, Indian Kanoon
sync and index maintenance.

Run with: uvicorn execution.precedent_rag.api:app --host 0.0.0.0 --port 8000
"""

import os
import time
import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    AnalyzeRequest, AnalyzeResponse,
    SimilarRequest, SimilarResponse, MatchInfo,
    CompareRequest, InsightsRequest, TextResponse,
    SyncRequest, SyncResponse,
    SearchRequest, SearchResponse, SearchHitInfo,
    FetchRequest, FetchResponse, PrecedentInfo,
    ReindexRequest, ReindexResponse, IndexResponse,
    StatsResponse, QueriesResponse, HealthResponse,
)
from .errors import AnalysisFailed, AuthenticationError, NotFound, UpstreamUnavailable
from .kanoon_client import POPULAR_QUERIES
from .metrics import get_metrics_collector

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

SYNC_ERROR_PREVIEW = 5

app = FastAPI(
    title="Precedent RAG API",
    description="Retrieval-augmented legal case analysis over Indian precedents",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Service Container - lazily wires the engine's components
# =============================================================================

class ServiceContainer:
    """Builds and caches the store, clients, index, analyzer and sync service."""

    def __init__(self):
        self._store = None
        self._embeddings = None
        self._index = None
        self._kanoon = None
        self._llm = None
        self._lawyers = None
        self._analyzer = None
        self._sync = None

    def get_store(self):
        if self._store is None:
            backend = os.getenv("PRECEDENT_STORE", "postgres").lower()
            if backend == "memory":
                from .precedent_store import InMemoryPrecedentStore
                self._store = InMemoryPrecedentStore()
            else:
                from .precedent_store import PostgresPrecedentStore
                store = PostgresPrecedentStore()
                store.connect()
                store.initialize()
                self._store = store
            logger.info(f"Precedent store ready ({backend})")
        return self._store

    def get_embeddings(self):
        if self._embeddings is None:
            from .embeddings import EmbeddingService
            self._embeddings = EmbeddingService()
        return self._embeddings

    def get_index(self):
        if self._index is None:
            from .vector_index import BruteForceIndex
            index = BruteForceIndex(
                self.get_store(),
                self.get_embeddings(),
                refresh_seconds=float(os.getenv("INDEX_REFRESH_SECONDS", "0")),
            )
            try:
                index.initialize()
            except Exception as e:
                logger.warning(f"Vector index initialization failed: {e}")
            self._index = index
        return self._index

    def get_kanoon(self):
        if self._kanoon is None:
            from .kanoon_client import KanoonClient
            self._kanoon = KanoonClient()
        return self._kanoon

    def get_llm(self):
        if self._llm is None:
            from .llm import LLMClient
            self._llm = LLMClient()
        return self._llm

    def get_lawyers(self):
        if self._lawyers is None:
            from .precedent_store import PostgresPrecedentStore
            from .lawyers import InMemoryLawyerDirectory, PostgresLawyerDirectory
            store = self.get_store()
            if isinstance(store, PostgresPrecedentStore):
                self._lawyers = PostgresLawyerDirectory(store)
            else:
                self._lawyers = InMemoryLawyerDirectory()
        return self._lawyers

    def get_analyzer(self):
        if self._analyzer is None:
            from .rag import RAGAnalyzer
            self._analyzer = RAGAnalyzer(
                self.get_llm(),
                self.get_index(),
                self.get_kanoon(),
                lawyers=self.get_lawyers(),
            )
        return self._analyzer

    def get_sync_service(self):
        if self._sync is None:
            from .sync import PrecedentSyncService
            self._sync = PrecedentSyncService(
                self.get_store(),
                self.get_kanoon(),
                self.get_embeddings(),
                index=self.get_index(),
            )
        return self._sync


_container = ServiceContainer()


# =============================================================================
# Error mapping
# =============================================================================

def _http_error(e: Exception) -> HTTPException:
    """Map engine errors to HTTP status codes."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, KeyError):
        return HTTPException(status_code=404, detail=str(e.args[0]) if e.args else "Not found")
    if isinstance(e, AuthenticationError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, (AnalysisFailed, UpstreamUnavailable)):
        return HTTPException(status_code=503, detail=str(e))
    logger.error(f"Unhandled error: {e}")
    return HTTPException(status_code=500, detail=str(e))


def _precedent_info(case) -> PrecedentInfo:
    return PrecedentInfo(
        id=case.id,
        case_number=case.case_number,
        source_id=case.source_id,
        source_url=case.source_url,
        source=case.source,
        title=case.title,
        year=case.year,
        court=case.court,
        verdict=case.verdict.value,
        ipc_sections=case.ipc_sections,
        keywords=case.keywords,
        summary=case.summary,
        indexed=case.has_embedding,
    )


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    try:
        _container.get_store()
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check: database disconnected: {e}")
        db_status = "disconnected"

    return HealthResponse(
        status="ok",
        version=__version__,
        database=db_status,
        llm_configured=bool(os.getenv("XAI_API_KEY")),
        kanoon_configured=bool(os.getenv("KANOON_API_TOKEN")),
    )


@app.post("/api/v1/analyze", response_model=AnalyzeResponse)
def analyze_case(request: AnalyzeRequest):
    """Run the retrieval-augmented analysis for one case description."""
    start = time.time()
    collector = get_metrics_collector()
    try:
        with collector.track_analysis(request.description) as tracker:
            result = _container.get_analyzer().analyze(request.description, request.case_type)
            tracker.set_result(result)
    except Exception as e:
        raise _http_error(e)

    data = result.to_dict()
    data["latency_ms"] = round((time.time() - start) * 1000, 2)
    return AnalyzeResponse(**data)


@app.post("/api/v1/precedents/similar", response_model=SimilarResponse)
def similar_precedents(request: SimilarRequest):
    try:
        matches = _container.get_index().search_similar(request.description, request.top_k)
    except Exception as e:
        raise _http_error(e)
    return SimilarResponse(matches=[MatchInfo(**m.to_dict()) for m in matches])


@app.post("/api/v1/precedents/compare", response_model=TextResponse)
def compare_precedents(request: CompareRequest):
    """Compare a case with its nearest stored precedents."""
    store = _container.get_store()
    try:
        matches = _container.get_index().search_similar(request.description, request.top_k)
        precedents = [store.find_by_id(m.precedent_ref) for m in matches]
        text = _container.get_analyzer().compare_with_precedents(
            {
                "title": request.title,
                "description": request.description,
                "case_type": request.case_type or "General",
            },
            [p for p in precedents if p is not None],
        )
    except Exception as e:
        raise _http_error(e)
    return TextResponse(text=text)


@app.post("/api/v1/insights", response_model=TextResponse)
def legal_insights(request: InsightsRequest):
    try:
        text = _container.get_analyzer().legal_insights(request.context)
    except Exception as e:
        raise _http_error(e)
    return TextResponse(text=text)


@app.post("/api/v1/kanoon/sync", response_model=SyncResponse)
def sync_kanoon(request: SyncRequest):
    """Fetch and index precedents for a batch of search queries."""
    queries = request.queries or list(POPULAR_QUERIES)
    try:
        report = _container.get_sync_service().sync_batch(
            queries,
            per_query_limit=request.limit,
            auto_index=request.auto_index,
        )
    except Exception as e:
        raise _http_error(e)

    get_metrics_collector().record_sync(report)
    return SyncResponse(**report.to_dict(preview=SYNC_ERROR_PREVIEW))


@app.post("/api/v1/kanoon/search", response_model=SearchResponse)
def search_kanoon(request: SearchRequest):
    try:
        results = _container.get_kanoon().search(
            request.query,
            page=request.page,
            court_filter=request.court_filter,
            date_from=request.date_from,
            date_to=request.date_to,
            max_citations=request.max_citations,
        )
    except Exception as e:
        raise _http_error(e)
    return SearchResponse(
        query=results.query,
        found=results.found,
        pagenum=results.pagenum,
        docs=[SearchHitInfo(**d.to_dict()) for d in results.docs],
    )


@app.post("/api/v1/kanoon/fetch", response_model=FetchResponse)
def fetch_kanoon_case(request: FetchRequest):
    """Fetch one judgment by URL or id and add it to the store."""
    try:
        result = _container.get_sync_service().fetch_single(request.case_url, auto_index=request.auto_index)
    except Exception as e:
        raise _http_error(e)
    return FetchResponse(inserted=result.inserted, precedent=_precedent_info(result.record))


@app.get("/api/v1/kanoon/queries", response_model=QueriesResponse)
async def recommended_queries():
    return QueriesResponse(queries=list(POPULAR_QUERIES))


@app.post("/api/v1/index/all", response_model=ReindexResponse)
def index_all(request: ReindexRequest):
    try:
        report = _container.get_sync_service().reindex_all(force=request.force, source=request.source)
    except Exception as e:
        raise _http_error(e)
    return ReindexResponse(**report.to_dict())


@app.post("/api/v1/index/{precedent_id}", response_model=IndexResponse)
def index_one(precedent_id: str):
    try:
        _container.get_sync_service().reindex_one(precedent_id)
    except Exception as e:
        raise _http_error(e)
    return IndexResponse(status="indexed", precedent_id=precedent_id)


@app.delete("/api/v1/index/{precedent_id}", response_model=IndexResponse)
def remove_from_index(precedent_id: str):
    """Drop a precedent's embedding. The record itself is kept."""
    try:
        _container.get_sync_service().clear_index(precedent_id)
    except Exception as e:
        raise _http_error(e)
    return IndexResponse(status="removed", precedent_id=precedent_id)


@app.get("/api/v1/stats", response_model=StatsResponse)
def get_stats():
    try:
        stats = _container.get_sync_service().stats()
    except Exception as e:
        raise _http_error(e)
    return StatsResponse(**stats)


@app.get("/api/v1/metrics")
async def get_metrics():
    collector = get_metrics_collector()
    data = collector.get_metrics_dict()
    data["uptime_seconds"] = round(collector.get_uptime().total_seconds(), 1)
    return data
