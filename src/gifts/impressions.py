"""
Impression log: one row per served page (session, page, product ids, count).

Analytics only. Nothing in pagination or feedback reads it back, so a failed
write is logged and the page is still served.
"""

from threading import Lock
from typing import Dict, List, Protocol

from core.logging import get_logger
from gifts.models import ImpressionRecord


logger = get_logger(__name__)


class ImpressionLog(Protocol):
    def record(self, entry: ImpressionRecord) -> bool:
        """Persist an entry. Returns False if it could not be written."""
        ...

    def list_for_session(self, session_id: str) -> List[ImpressionRecord]:
        ...


class InMemoryImpressionLog:
    def __init__(self):
        self._entries: Dict[str, List[ImpressionRecord]] = {}
        self._lock = Lock()

    def record(self, entry: ImpressionRecord) -> bool:
        with self._lock:
            self._entries.setdefault(entry.session_id, []).append(entry)
        return True

    def list_for_session(self, session_id: str) -> List[ImpressionRecord]:
        with self._lock:
            return list(self._entries.get(session_id, []))


class SupabaseImpressionLog:
    """Impression rows inserted into a Supabase table."""

    def __init__(self, client, table: str = "recommend_log"):
        self._client = client
        self._table = table

    def record(self, entry: ImpressionRecord) -> bool:
        row = {
            "session_id": entry.session_id,
            "page": entry.page,
            "product_ids": entry.product_ids,
            "results_count": entry.results_count,
            "created_at": entry.created_at,
        }
        try:
            self._client.table(self._table).insert(row).execute()
        except Exception as e:
            logger.warning(
                "Impression log write failed",
                session_id=entry.session_id,
                page=entry.page,
                error=str(e),
            )
            return False
        return True

    def list_for_session(self, session_id: str) -> List[ImpressionRecord]:
        try:
            result = (
                self._client.table(self._table)
                .select("session_id, page, product_ids, results_count, created_at")
                .eq("session_id", session_id)
                .order("created_at")
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to load impressions", session_id=session_id, error=str(e))
            return []
        return [
            ImpressionRecord(
                session_id=row["session_id"],
                page=row.get("page") or 0,
                product_ids=row.get("product_ids") or [],
                results_count=row.get("results_count") or 0,
                created_at=row.get("created_at") or 0.0,
            )
            for row in result.data or []
        ]
