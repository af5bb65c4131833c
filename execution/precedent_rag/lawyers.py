"""
Lawyer directory and recommendation.

Recommendations never come back empty while any verified lawyer exists:
when no specialist matches the case type, the overall top-rated verified
lawyers are returned instead.
"""

import logging
import threading
from typing import Optional

from .models import Lawyer, LawyerRecommendation
from .precedent_store import PostgresPrecedentStore, PostgresStoreConfig

logger = logging.getLogger(__name__)


def _rank_key(lawyer: Lawyer):
    return (-lawyer.rating, -lawyer.cases_won)


class LawyerDirectory:
    """Read access to verified lawyer profiles."""

    def find_verified(self, specialization: Optional[str] = None, limit: int = 3) -> list[Lawyer]:
        """Verified lawyers, optionally by specialization, ranked by rating then wins."""
        raise NotImplementedError


class InMemoryLawyerDirectory(LawyerDirectory):

    def __init__(self, lawyers: Optional[list[Lawyer]] = None):
        self._lawyers = list(lawyers or [])
        self._lock = threading.Lock()

    def add(self, lawyer: Lawyer) -> None:
        with self._lock:
            self._lawyers.append(lawyer)

    def find_verified(self, specialization: Optional[str] = None, limit: int = 3) -> list[Lawyer]:
        with self._lock:
            candidates = [
                l for l in self._lawyers
                if l.verified and (specialization is None or specialization in l.specializations)
            ]
        candidates.sort(key=_rank_key)
        return candidates[:limit]


class PostgresLawyerDirectory(LawyerDirectory):
    """Reads the ``lawyers`` table owned by the lawyer-profile service."""

    def __init__(self, store: Optional[PostgresPrecedentStore] = None, table_name: str = "lawyers"):
        # Reuse the precedent store's connection handling
        self._db = store or PostgresPrecedentStore(PostgresStoreConfig())
        self.table_name = table_name

    def find_verified(self, specialization: Optional[str] = None, limit: int = 3) -> list[Lawyer]:
        filters = ["verification_status = 'verified'"]
        params = []
        if specialization is not None:
            filters.append("%s = ANY(specializations)")
            params.append(specialization)
        params.append(limit)

        sql = f"""
        SELECT id, name, specializations, experience, rating, case_won, verification_status, profile_image
        FROM {self.table_name}
        WHERE {' AND '.join(filters)}
        ORDER BY rating DESC, case_won DESC
        LIMIT %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            conn.commit()
            return [
                Lawyer(
                    id=str(r["id"]),
                    name=r.get("name") or "",
                    specializations=list(r.get("specializations") or []),
                    experience_years=r.get("experience") or 0,
                    rating=float(r.get("rating") or 0),
                    cases_won=r.get("case_won") or 0,
                    verification_status=r.get("verification_status") or "pending",
                    profile_image=r.get("profile_image"),
                )
                for r in rows
            ]

        return self._db._execute_with_retry(_op, "find_verified_lawyers")


def recommend_lawyers(
    directory: Optional[LawyerDirectory],
    case_type: str,
    limit: int = 3,
) -> list[LawyerRecommendation]:
    """Specialists for case_type, else the top verified lawyers overall."""
    if directory is None:
        return []
    try:
        lawyers = directory.find_verified(specialization=case_type, limit=limit)
        if not lawyers:
            logger.info(f"No verified {case_type} specialists; falling back to top-rated lawyers")
            lawyers = directory.find_verified(limit=limit)
        return [LawyerRecommendation.from_lawyer(l) for l in lawyers]
    except Exception as e:
        logger.warning(f"Lawyer matching failed: {e}")
        return []
