"""
Sync and indexing orchestrator.

Pulls precedents from Indian Kanoon into the local store and keeps their
embeddings current. A sync batch is partial by nature: a failing query or
document is recorded on the report and the batch moves on.
"""

import time
import logging
import threading
from typing import Optional, Union

from .errors import PrecedentRAGError
from .models import PrecedentCase, ReindexReport, SyncFailure, SyncReport
from .precedent_store import PrecedentStore, UpsertResult
from .rate_limit import MinIntervalRateLimiter

logger = logging.getLogger(__name__)

DETAIL_MAX_CITATIONS = 5
DETAIL_MAX_CITED_BY = 5


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class PrecedentSyncService:
    """
    Fetches, persists and embeds precedents.

    Usage:
        service = PrecedentSyncService(store, KanoonClient(), EmbeddingService())
        report = service.sync_batch(["Section 302 IPC murder"], per_query_limit=5)
        print(report.to_dict())
    """

    def __init__(
        self,
        store: PrecedentStore,
        client,
        embeddings,
        index=None,
        rate_limiter=None,
        reindex_pause_every: int = 5,
        reindex_pause_seconds: float = 1.0,
        sleep=time.sleep,
    ):
        self.store = store
        self.client = client
        self.embeddings = embeddings
        self.index = index
        self.rate_limiter = rate_limiter or MinIntervalRateLimiter(min_interval=1.0)
        self.reindex_pause_every = reindex_pause_every
        self.reindex_pause_seconds = reindex_pause_seconds
        self._sleep = sleep

    def index_precedent(self, case: PrecedentCase) -> list[float]:
        """Embed a stored precedent and write the vector back. Raises on failure."""
        vector = self.embeddings.embed(case.embedding_text())
        self.store.set_embedding(case.id, vector)
        if self.index is not None:
            self.index.invalidate()
        logger.info(f"Indexed precedent: {case.case_number}")
        return vector

    def sync_batch(
        self,
        queries: list[str],
        per_query_limit: int = 5,
        auto_index: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncReport:
        """
        Search each query, fetch up to per_query_limit documents and persist them.

        Queries run sequentially. Setting cancel_event stops new upstream
        calls; everything written so far stays written.
        """
        report = SyncReport()
        logger.info(f"[Sync] Starting batch of {len(queries)} queries")

        for query in queries:
            if _cancelled(cancel_event):
                report.cancelled = True
                break

            try:
                results = self.client.search(query, page=0, max_pages=1)
            except Exception as e:
                logger.error(f"[Sync] Error processing query \"{query}\": {e}")
                report.failures.append(SyncFailure(query=query, error=str(e)))
                report.queries_processed += 1
                continue

            report.queries_processed += 1
            if not results.docs:
                logger.info(f"[Sync] No results for query: {query}")
                continue

            hits = results.docs[:per_query_limit]
            report.hits_found += len(hits)

            for hit in hits:
                if not self.rate_limiter.wait(cancel_event):
                    report.cancelled = True
                    break
                self._sync_hit(query, hit, auto_index, report)

            if report.cancelled:
                break

        logger.info(
            f"[Sync] Complete: {report.newly_indexed} new, {report.already_present} existing, "
            f"{report.embeddings_indexed} embedded, {report.failed} failed"
        )
        return report

    def _sync_hit(self, query: str, hit, auto_index: bool, report: SyncReport) -> None:
        try:
            case = self.client.fetch_details(
                hit.tid,
                max_citations=DETAIL_MAX_CITATIONS,
                max_cited_by=DETAIL_MAX_CITED_BY,
            )
            report.fetched += 1
            result = self.store.upsert_by_external_id(case)
        except Exception as e:
            logger.error(f"[Sync] Error fetching case {hit.tid}: {e}")
            report.failures.append(SyncFailure(query=query, error=str(e), doc_id=hit.tid, title=hit.title))
            return

        if not result.inserted:
            report.already_present += 1
            return

        report.newly_indexed += 1
        report.cases.append(result.record)

        if not auto_index:
            return
        try:
            self.index_precedent(result.record)
            report.embeddings_indexed += 1
        except Exception as e:
            # The precedent stays persisted; reindex_all picks it up later
            logger.error(f"[Sync] Embedding failed for {result.record.case_number}: {e}")
            report.failures.append(SyncFailure(
                query=query,
                error=f"embedding failed: {e}",
                doc_id=hit.tid,
                title=result.record.title,
            ))

    def reindex_all(
        self,
        force: bool = False,
        source: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReindexReport:
        """Embed every unembedded precedent, or every precedent when force is set."""
        if force:
            cases = self.store.find_all(source=source)
        else:
            cases = self.store.find_unembedded()
            if source is not None:
                cases = [c for c in cases if c.source == source]

        report = ReindexReport(total=len(cases))
        logger.info(f"Found {len(cases)} precedents to index")

        for i, case in enumerate(cases, start=1):
            if _cancelled(cancel_event):
                report.cancelled = True
                break
            try:
                self.index_precedent(case)
                report.succeeded += 1
                logger.info(f"Indexed case {i}/{len(cases)}")
            except Exception as e:
                logger.error(f"Failed to index case {case.id}: {e}")
                report.failures.append(SyncFailure(
                    query="reindex", error=str(e), doc_id=case.id, title=case.title,
                ))

            if self.reindex_pause_every and i % self.reindex_pause_every == 0 and i < len(cases):
                self._sleep(self.reindex_pause_seconds)

        logger.info(f"Reindex complete: {report.succeeded}/{report.total} succeeded, {report.failed} failed")
        return report

    def reindex_one(self, precedent_id: str) -> PrecedentCase:
        case = self.store.find_by_id(precedent_id)
        if case is None:
            raise KeyError(f"Precedent not found: {precedent_id}")
        self.index_precedent(case)
        return self.store.find_by_id(precedent_id)

    def clear_index(self, precedent_id: str) -> None:
        """Drop a precedent's embedding. The record itself is kept."""
        self.store.clear_embedding(precedent_id)
        if self.index is not None:
            self.index.invalidate()
        logger.info(f"Removed precedent from index: {precedent_id}")

    def fetch_single(self, doc_id_or_url: Union[str, int], auto_index: bool = True) -> UpsertResult:
        """Fetch one judgment, persist it, and embed it if it was new."""
        case = self.client.fetch_details(doc_id_or_url)
        result = self.store.upsert_by_external_id(case)
        if result.inserted and auto_index:
            try:
                self.index_precedent(result.record)
                result.record = self.store.find_by_id(result.record.id) or result.record
            except PrecedentRAGError as e:
                logger.error(f"Embedding failed for {result.record.case_number}: {e}")
        return result

    def stats(self) -> dict:
        stats = self.store.stats()
        total = stats.get("total", 0)
        embedded = stats.get("embedded", 0)
        stats["not_indexed"] = total - embedded
        stats["percentage_indexed"] = round(embedded / total * 100, 2) if total else 0.0
        return stats
