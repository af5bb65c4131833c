"""
Indian Kanoon API client.

Searches the official Kanoon API and fetches full judgments, normalising
the upstream's heterogeneous response shapes into PrecedentCase records.

API documentation: https://api.indiankanoon.org
Both endpoints are POST with form-encoded parameters and token auth.
"""

import os
import re
import logging
from typing import Optional, Union
from datetime import date, datetime, timezone
from dataclasses import dataclass

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import AuthenticationError, NotFound, Timeout, UpstreamUnavailable
from .models import Parties, PrecedentCase, SearchHit, SearchResults, Verdict

logger = logging.getLogger(__name__)

SERVICE_NAME = "Kanoon API"
SOURCE_NAME = "IndianKanoon"
KANOON_API_BASE_URL = "https://api.indiankanoon.org"
KANOON_DOC_URL = "https://indiankanoon.org/doc/{doc_id}/"

TOKEN_REMEDIATION = "\n".join([
    "KANOON_API_TOKEN not configured or rejected!",
    "",
    "Get your API token from: https://indiankanoon.org",
    "Steps:",
    "1. Visit https://indiankanoon.org/login/",
    "2. Login or create account",
    "3. Go to API settings/profile",
    "4. Generate and copy your API token",
    "5. Add to .env: KANOON_API_TOKEN=your_token_here",
    "",
    "Documentation: https://api.indiankanoon.org",
])

MAX_CITATIONS = 50
MAX_IPC_SECTIONS = 20
MAX_KEYWORDS = 15

# "Section 302 IPC", "S. 307 IPC", "IPC Section 420", "Article 21"
IPC_SECTION_PATTERNS = [
    re.compile(r"Section\s+(\d+[A-Z]?)\s+(?:IPC|I\.P\.C|of the IPC)", re.IGNORECASE),
    re.compile(r"S\.\s+(\d+[A-Z]?)\s+(?:IPC|I\.P\.C)", re.IGNORECASE),
    re.compile(r"IPC\s+Section\s+(\d+[A-Z]?)", re.IGNORECASE),
    re.compile(r"Article\s+(\d+)", re.IGNORECASE),
]

COMMON_LEGAL_TERMS = [
    "murder", "theft", "rape", "fraud", "property", "inheritance", "divorce",
    "custody", "contract", "negligence", "cruelty", "defamation", "harassment",
]

DOC_ID_URL_PATTERN = re.compile(r"/doc/(\d+)/")
YEAR_PATTERN = re.compile(r"(\d{4})")

# Recommended seed queries for initial population
POPULAR_QUERIES = [
    # Criminal law - high frequency
    "Section 302 IPC",
    "Section 307 IPC",
    "Section 376 IPC",
    "Section 498A IPC",
    "Section 420 IPC",
    "Section 379 IPC",
    "Section 304B IPC",
    "Section 506 IPC",
    "Section 294 IPC",
    "Section 377 IPC",
    # Civil / family law
    "divorce",
    "custody children",
    "inheritance property",
    "contract disputes",
    "property disputes",
    # Special topics
    "domestic violence",
    "dowry system",
    "harassment stalking",
    "cybercrime",
    "defamation case",
    "criminal intimidation",
    "death by negligence",
    "mischief by fire",
]


# =============================================================================
# Normalisation helpers
# =============================================================================

def extract_doc_id(doc_id_or_url: Union[str, int, None]) -> Optional[str]:
    """
    Extract the numeric document id from a Kanoon URL.

    Numeric input is returned as-is; a URL containing /doc/<digits>/ yields
    the digits; anything else is passed through unchanged.
    """
    if doc_id_or_url is None or doc_id_or_url == "":
        return None
    value = str(doc_id_or_url)
    if value.isdigit():
        return value
    match = DOC_ID_URL_PATTERN.search(value)
    return match.group(1) if match else value


def extract_year(data: dict, today: Optional[date] = None) -> int:
    """Year from an explicit field, else a date string, else the case id, else today."""
    fallback = (today or date.today()).year

    if data.get("year"):
        try:
            return int(data["year"])
        except (TypeError, ValueError):
            pass

    for key in ("date", "judgement_date"):
        if data.get(key):
            match = YEAR_PATTERN.search(str(data[key]))
            if match:
                return int(match.group(1))

    for key in ("caseid", "caseNumber"):
        if data.get(key):
            match = YEAR_PATTERN.search(str(data[key]))
            if match:
                return int(match.group(1))

    return fallback


def extract_judges(data: dict) -> list[str]:
    judges = data.get("judges")
    if isinstance(judges, list):
        names = [j.get("name") if isinstance(j, dict) else j for j in judges]
        return [n for n in names if n]
    if data.get("judge_name"):
        return [data["judge_name"]]
    if data.get("bench_name"):
        return [data["bench_name"]]
    return []


def _party_name(party) -> Optional[str]:
    if isinstance(party, dict):
        return party.get("name")
    return party


def extract_parties(data: dict) -> Parties:
    parties = data.get("parties")
    if isinstance(parties, list) and len(parties) >= 2:
        return Parties(plaintiff=_party_name(parties[0]), defendant=_party_name(parties[1]))
    if data.get("appellant"):
        return Parties(
            plaintiff=data["appellant"],
            defendant=data.get("respondent") or data.get("appellee"),
        )
    return Parties()


def _judgment_text(data: dict) -> str:
    """Plain judgment text: explicit fields first, else the HTML ``doc`` body."""
    text = data.get("judgment") or data.get("decision")
    if text:
        return str(text)
    if data.get("doc"):
        return BeautifulSoup(data["doc"], "html.parser").get_text(" ", strip=True)
    return ""


def extract_ipc_sections(data: dict) -> list[str]:
    """
    Union of structured sections with a regex scan of the case text.

    Heuristic: neither complete nor precise. At most 20 unique sections.
    """
    sections: dict[str, None] = {}

    for s in data.get("ipc_sections") or []:
        if len(sections) >= MAX_IPC_SECTIONS:
            break
        if isinstance(s, str):
            sections[s] = None
        elif isinstance(s, dict) and s.get("section"):
            sections[str(s["section"])] = None

    text = " ".join([
        data.get("title") or "",
        _judgment_text(data),
        data.get("facts") or "",
        data.get("summary") or "",
    ])

    for pattern in IPC_SECTION_PATTERNS:
        for match in pattern.finditer(text):
            if len(sections) >= MAX_IPC_SECTIONS:
                break
            sections[match.group(1)] = None

    return list(sections)


def extract_keywords(data: dict, ipc_sections: Optional[list[str]] = None) -> list[str]:
    keywords: dict[str, None] = {}

    sections = ipc_sections if ipc_sections is not None else extract_ipc_sections(data)
    for s in sections:
        keywords[f"IPC-{s}"] = None

    if data.get("casetype"):
        keywords[data["casetype"]] = None
    if data.get("court"):
        keywords[data["court"]] = None

    content = " ".join([data.get("title") or "", data.get("summary") or ""]).lower()
    for term in COMMON_LEGAL_TERMS:
        if term in content:
            keywords[term] = None

    return list(keywords)[:MAX_KEYWORDS]


def parse_search_docs(docs: list[dict]) -> list[SearchHit]:
    hits = []
    for doc in docs:
        tid = doc.get("tid") or doc.get("id")
        if tid is None:
            continue
        hits.append(SearchHit(
            tid=str(tid),
            title=doc.get("title") or "Unknown",
            docsource=doc.get("docsource") or doc.get("court") or "Unknown Court",
            headline=doc.get("headline") or doc.get("snippet") or "",
            docsize=doc.get("docsize") or 0,
            date=doc.get("date"),
            casetype=doc.get("casetype") or "Unknown",
            doctype=doc.get("doctype") or "judgment",
        ))
    return hits


def parse_case_response(data: dict) -> PrecedentCase:
    """Map an upstream /doc/ response onto a PrecedentCase."""
    doc_id = data.get("id") or data.get("tid")
    source_id = str(doc_id) if doc_id is not None else None
    decision = _judgment_text(data)
    sections = extract_ipc_sections(data)

    return PrecedentCase(
        source_url=KANOON_DOC_URL.format(doc_id=doc_id) if source_id else None,
        source=SOURCE_NAME,
        source_id=source_id,
        title=data.get("title") or "Unknown Case",
        # case_number is unique in storage, so fall back to the source id
        case_number=data.get("caseid") or data.get("caseNumber") or f"IK-{source_id}",
        year=extract_year(data),
        court=data.get("court_name") or data.get("court") or data.get("docsource") or "Unknown Court",
        doctype=data.get("doctype") or "judgment",
        judges=extract_judges(data),
        parties=extract_parties(data),
        ipc_sections=sections,
        keywords=extract_keywords(data, sections),
        acts=data.get("acts") or [],
        facts=data.get("facts") or "",
        decision=decision,
        summary=data.get("summary") or decision[:500],
        verdict=Verdict.parse(data.get("verdict")),
        headnotes=data.get("headnotes") or [],
        cites=data.get("citeList") or [],
        cited_by=data.get("citedbyList") or [],
        date=data.get("date") or data.get("judgement_date") or data.get("publishdate"),
        bench=data.get("bench_name"),
        fetched_at=datetime.now(timezone.utc),
    )


def _clamp_citations(value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    return max(1, min(int(value), MAX_CITATIONS))


# =============================================================================
# Client
# =============================================================================

@dataclass
class KanoonConfig:
    """Configuration for the Kanoon API client."""
    api_token: Optional[str] = None
    base_url: str = KANOON_API_BASE_URL
    timeout: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 1.0
    user_agent: str = "Precedent-RAG/1.0"


class KanoonClient:
    """
    Official Indian Kanoon API client.

    Transient 5xx responses and connection errors are retried with
    exponential backoff by the session; 403 and 404 are terminal.
    """

    def __init__(self, config: Optional[KanoonConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or KanoonConfig()
        self.api_token = self.config.api_token or os.getenv("KANOON_API_TOKEN")
        self._session = session or self._make_session()

    def _make_session(self) -> requests.Session:
        """Create a session with auth headers and retry backoff."""
        s = requests.Session()
        retries = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=frozenset(["GET", "POST"]),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retries)
        s.mount("https://", adapter)
        s.mount("http://", adapter)
        return s

    def validate_configuration(self) -> None:
        """Raise AuthenticationError with setup instructions if no token is set."""
        if not self.api_token:
            raise AuthenticationError(SERVICE_NAME, TOKEN_REMEDIATION)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Token {self.api_token}",
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
            "Content-Type": "application/x-www-form-urlencoded",
        }

    def _post(self, path: str, params: dict, resource_id: Optional[str] = None) -> dict:
        url = f"{self.config.base_url}{path}"
        try:
            response = self._session.post(
                url, data=params, headers=self._headers(), timeout=self.config.timeout,
            )
        except requests.Timeout:
            raise Timeout(SERVICE_NAME, f"request to {path} timed out after {self.config.timeout}s")
        except requests.RequestException as e:
            raise UpstreamUnavailable(SERVICE_NAME, f"request to {path} failed: {e}")

        if response.status_code in (401, 403):
            raise AuthenticationError(
                SERVICE_NAME, f"Authentication failed. Check your API token.\n\n{TOKEN_REMEDIATION}",
            )
        if response.status_code == 404:
            raise NotFound(resource_id or path, SERVICE_NAME)
        if response.status_code >= 500:
            raise UpstreamUnavailable(SERVICE_NAME, f"HTTP {response.status_code} from {path}")
        if response.status_code != 200:
            raise UpstreamUnavailable(SERVICE_NAME, f"unexpected HTTP {response.status_code} from {path}")

        try:
            payload = response.json()
        except ValueError:
            raise UpstreamUnavailable(SERVICE_NAME, f"Invalid response from {path}")
        if not isinstance(payload, dict):
            raise UpstreamUnavailable(SERVICE_NAME, f"Invalid response from {path}")
        return payload

    def search(
        self,
        query: str,
        page: int = 0,
        max_pages: int = 1,
        court_filter: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        title_only: Optional[str] = None,
        citation: Optional[str] = None,
        author_filter: Optional[str] = None,
        max_citations: Optional[int] = None,
    ) -> SearchResults:
        """
        Search for judgments.

        Args:
            query: Search query (e.g. "Section 302 IPC", "murder ANDD dowry")
            page: Page number, starting at 0
            max_pages: Maximum pages to fetch in one call
            court_filter: Kanoon doctypes filter (supremecourt, delhi, ...)
            date_from / date_to: DD-MM-YYYY bounds
            title_only: Search restricted to titles
            citation: Filter by citation
            author_filter: Filter by authoring judge
            max_citations: Citations to include per doc, clamped to [1, 50]

        Raises:
            AuthenticationError: token missing or rejected
            UpstreamUnavailable: timeout, 5xx, or malformed response
        """
        self.validate_configuration()
        logger.info(f"[Kanoon API] Searching for: \"{query}\" (page {page})")

        params = {"formInput": query, "pagenum": page, "maxpages": max_pages}
        optional = {
            "doctypes": court_filter,
            "fromdate": date_from,
            "todate": date_to,
            "title": title_only,
            "cite": citation,
            "author": author_filter,
            "maxcites": _clamp_citations(max_citations),
        }
        params.update({k: v for k, v in optional.items() if v is not None})

        data = self._post("/search/", params)
        results = SearchResults(
            query=query,
            found=int(data.get("found") or 0),
            pagenum=int(data.get("pagenum") or 0),
            docs=parse_search_docs(data.get("docs") or []),
            categories=data.get("categories") or [],
        )
        logger.info(f"[Kanoon API] Found {results.found} results")
        return results

    def fetch_details(
        self,
        doc_id_or_url: Union[str, int],
        max_citations: Optional[int] = None,
        max_cited_by: Optional[int] = None,
    ) -> PrecedentCase:
        """
        Fetch one judgment by numeric id or Kanoon URL.

        Raises:
            AuthenticationError: token missing or rejected
            NotFound: the upstream has no such document (stale ids are normal)
            UpstreamUnavailable: timeout, 5xx after retries, or malformed response
        """
        self.validate_configuration()
        doc_id = extract_doc_id(doc_id_or_url)
        logger.info(f"[Kanoon API] Fetching case details: {doc_id}")

        params = {}
        if max_citations is not None:
            params["maxcites"] = _clamp_citations(max_citations)
        if max_cited_by is not None:
            params["maxcitedby"] = _clamp_citations(max_cited_by)

        data = self._post(f"/doc/{doc_id}/", params, resource_id=str(doc_id_or_url))
        data.setdefault("id", doc_id)
        case = parse_case_response(data)
        logger.info(f"[Kanoon API] Fetched: {case.title}")
        return case

    def close(self) -> None:
        self._session.close()
