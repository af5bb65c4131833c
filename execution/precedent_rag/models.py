"""
Data model for precedent retrieval and case analysis.

PrecedentCase is the only persisted record. RetrievedMatch and
AnalysisResult live for the duration of one analysis call and are handed
back to the case-management layer, which stores a denormalised copy.
"""

from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from dataclasses import dataclass, field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Verdict(str, Enum):
    GUILTY = "guilty"
    NOT_GUILTY = "not_guilty"
    PARTIAL = "partial"
    DISMISSED = "dismissed"
    ACQUITTED = "acquitted"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Verdict":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class MatchSource(str, Enum):
    LOCAL_VECTOR = "local-vector"
    LIVE_EXTERNAL = "live-external"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def parse(cls, token: Optional[str]) -> "RiskLevel":
        """Map a free-text risk token to a level, defaulting to Medium."""
        if not token:
            return cls.MEDIUM
        normalized = token.strip().strip("*:.,").capitalize()
        for level in cls:
            if level.value == normalized:
                return level
        return cls.MEDIUM


@dataclass
class Parties:
    plaintiff: Optional[str] = None
    defendant: Optional[str] = None

    def to_dict(self) -> dict:
        return {"plaintiff": self.plaintiff, "defendant": self.defendant}


@dataclass
class PrecedentCase:
    """A stored or freshly fetched precedent."""
    title: str
    case_number: str = "N/A"
    id: Optional[str] = None
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    source: str = "manual"
    year: Optional[int] = None
    court: str = "Unknown Court"
    doctype: str = "judgment"
    judges: list[str] = field(default_factory=list)
    parties: Parties = field(default_factory=Parties)
    facts: str = ""
    decision: str = ""
    summary: str = ""
    verdict: Verdict = Verdict.UNKNOWN
    ipc_sections: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    acts: list = field(default_factory=list)
    headnotes: list = field(default_factory=list)
    cites: list = field(default_factory=list)
    cited_by: list = field(default_factory=list)
    date: Optional[str] = None
    bench: Optional[str] = None
    # Retrieval state. ``embedding`` is authoritative; ``indexed`` mirrors it.
    embedding: Optional[list[float]] = None
    indexed: bool = False
    fetched_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and len(self.embedding) > 0

    def embedding_text(self) -> str:
        """Text representation used to compute the precedent's embedding."""
        return "\n".join([
            f"Case Number: {self.case_number}",
            f"Title: {self.title}",
            f"Year: {self.year or ''}",
            f"Court: {self.court}",
            f"IPC Sections: {', '.join(self.ipc_sections)}",
            f"Facts: {self.facts or ''}",
            f"Summary: {self.summary or ''}",
            f"Decision: {self.decision or ''}",
            f"Keywords: {', '.join(self.keywords)}",
        ])

    def to_dict(self, include_embedding: bool = False) -> dict:
        data = {
            "id": self.id,
            "case_number": self.case_number,
            "source_id": self.source_id,
            "source_url": self.source_url,
            "source": self.source,
            "title": self.title,
            "year": self.year,
            "court": self.court,
            "doctype": self.doctype,
            "judges": list(self.judges),
            "parties": self.parties.to_dict(),
            "facts": self.facts,
            "decision": self.decision,
            "summary": self.summary,
            "verdict": self.verdict.value,
            "ipc_sections": list(self.ipc_sections),
            "keywords": list(self.keywords),
            "date": self.date,
            "bench": self.bench,
            "indexed": self.has_embedding,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data


@dataclass
class SearchHit:
    """One document from an external search result page."""
    tid: str
    title: str = "Unknown"
    docsource: str = "Unknown Court"
    headline: str = ""
    docsize: int = 0
    date: Optional[str] = None
    casetype: str = "Unknown"
    doctype: str = "judgment"

    def to_dict(self) -> dict:
        return {
            "tid": self.tid,
            "title": self.title,
            "docsource": self.docsource,
            "headline": self.headline,
            "docsize": self.docsize,
            "date": self.date,
            "casetype": self.casetype,
            "doctype": self.doctype,
        }


@dataclass
class SearchResults:
    query: str
    found: int = 0
    pagenum: int = 0
    docs: list[SearchHit] = field(default_factory=list)
    categories: list = field(default_factory=list)


@dataclass
class RetrievedMatch:
    """A ranked precedent match used inside one analysis call."""
    precedent_ref: Optional[str]
    title: str
    similarity: float
    source: MatchSource
    case_number: Optional[str] = None
    content: str = ""
    verdict: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "precedent_ref": self.precedent_ref,
            "case_number": self.case_number,
            "title": self.title,
            "similarity": self.similarity,
            "source": self.source.value,
            "verdict": self.verdict,
        }


@dataclass
class Lawyer:
    id: str
    name: str
    specializations: list[str] = field(default_factory=list)
    experience_years: int = 0
    rating: float = 0.0
    cases_won: int = 0
    verification_status: str = "pending"
    profile_image: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.verification_status == "verified"


@dataclass
class LawyerRecommendation:
    id: str
    name: str
    specialization: str
    experience: str
    rating: float
    cases_won: int
    image: Optional[str] = None

    @classmethod
    def from_lawyer(cls, lawyer: Lawyer) -> "LawyerRecommendation":
        return cls(
            id=lawyer.id,
            name=lawyer.name or "Verified Lawyer",
            specialization=", ".join(lawyer.specializations),
            experience=f"{lawyer.experience_years} years",
            rating=lawyer.rating,
            cases_won=lawyer.cases_won,
            image=lawyer.profile_image,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "specialization": self.specialization,
            "experience": self.experience,
            "rating": self.rating,
            "cases_won": self.cases_won,
            "image": self.image,
        }


@dataclass
class AnalysisResult:
    """Structured output of one retrieval-augmented analysis."""
    case_type: str
    suggested_sections: list[str]
    summary: str
    analysis: str
    key_arguments: str
    possible_verdict: str
    risk_level: RiskLevel
    recommendations: str
    confidence: float
    parse_degraded: bool = False
    retrieved_matches: list[RetrievedMatch] = field(default_factory=list)
    recommended_lawyers: list[LawyerRecommendation] = field(default_factory=list)
    analyzed_at: datetime = field(default_factory=_utcnow)

    def key_points(self, limit: int = 5) -> list[str]:
        return [line.strip() for line in self.analysis.split("\n") if line.strip()][:limit]

    def to_dict(self) -> dict:
        return {
            "case_type": self.case_type,
            "suggested_sections": list(self.suggested_sections),
            "summary": self.summary,
            "analysis": self.analysis,
            "key_points": self.key_points(),
            "key_arguments": self.key_arguments,
            "possible_verdict": self.possible_verdict,
            "risk_level": self.risk_level.value,
            "recommendations": self.recommendations,
            "confidence": self.confidence,
            "parse_degraded": self.parse_degraded,
            "retrieved_matches": [m.to_dict() for m in self.retrieved_matches],
            "recommended_lawyers": [l.to_dict() for l in self.recommended_lawyers],
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass
class SyncFailure:
    query: str
    error: str
    doc_id: Optional[str] = None
    title: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "doc_id": self.doc_id,
            "title": self.title,
            "error": self.error,
        }


@dataclass
class SyncReport:
    """Aggregate outcome of a sync batch. Partial batches are normal."""
    queries_processed: int = 0
    hits_found: int = 0
    fetched: int = 0
    newly_indexed: int = 0
    already_present: int = 0
    embeddings_indexed: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    cases: list[PrecedentCase] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def success(self) -> bool:
        return self.newly_indexed > 0

    def failure_preview(self, limit: int = 5) -> list[SyncFailure]:
        return self.failures[:limit]

    def to_dict(self, preview: int = 5) -> dict:
        return {
            "success": self.success,
            "queries_processed": self.queries_processed,
            "hits_found": self.hits_found,
            "fetched": self.fetched,
            "newly_indexed": self.newly_indexed,
            "already_present": self.already_present,
            "embeddings_indexed": self.embeddings_indexed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "errors": [f.to_dict() for f in self.failure_preview(preview)] or None,
        }


@dataclass
class ReindexReport:
    total: int = 0
    succeeded: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }
