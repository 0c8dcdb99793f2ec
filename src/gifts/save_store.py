"""
Save record persistence.

A save record is written once per accepted (session, product). The recorder
decides *whether* to write (via the session's saved_ids); these stores only
persist, and both also refuse a second row for the same dedup key.
"""

from threading import Lock
from typing import Dict, List, Protocol

from core.errors import FeedbackDeliveryError
from core.logging import get_logger
from gifts.models import ProductSnapshot, SaveRecord


logger = get_logger(__name__)


class SaveStore(Protocol):
    def add(self, record: SaveRecord) -> bool:
        """Persist a record. Returns False if one already existed."""
        ...

    def list_for_session(self, session_id: str) -> List[SaveRecord]:
        ...

    def count_for_session(self, session_id: str) -> int:
        ...


class InMemorySaveStore:
    """Save records kept in process memory."""

    def __init__(self):
        self._records: Dict[str, Dict[str, SaveRecord]] = {}
        self._lock = Lock()

    def add(self, record: SaveRecord) -> bool:
        with self._lock:
            per_session = self._records.setdefault(record.session_id, {})
            if record.dedup_key in per_session:
                return False
            per_session[record.dedup_key] = record
            return True

    def list_for_session(self, session_id: str) -> List[SaveRecord]:
        with self._lock:
            records = list(self._records.get(session_id, {}).values())
        return sorted(records, key=lambda r: r.saved_at)

    def count_for_session(self, session_id: str) -> int:
        with self._lock:
            return len(self._records.get(session_id, {}))


class SupabaseSaveStore:
    """Save records in a Supabase table keyed by (session_id, dedup_key)."""

    def __init__(self, client, table: str = "saved_gifts"):
        self._client = client
        self._table = table

    def add(self, record: SaveRecord) -> bool:
        row = {
            "session_id": record.session_id,
            "product_id": record.product_id,
            "dedup_key": record.dedup_key,
            "snapshot": record.snapshot.model_dump(mode="json", by_alias=True) if record.snapshot else None,
            "saved_at": record.saved_at,
        }
        try:
            result = (
                self._client.table(self._table)
                .upsert(row, on_conflict="session_id,dedup_key", ignore_duplicates=True)
                .execute()
            )
        except Exception as e:
            raise FeedbackDeliveryError(
                f"Failed to persist save record: {e}",
                session_id=record.session_id,
                product_id=record.product_id,
            ) from e
        return bool(result.data)

    def list_for_session(self, session_id: str) -> List[SaveRecord]:
        try:
            result = (
                self._client.table(self._table)
                .select("session_id, product_id, dedup_key, snapshot, saved_at")
                .eq("session_id", session_id)
                .order("saved_at")
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to load save records", session_id=session_id, error=str(e))
            return []

        records = []
        for row in result.data or []:
            snapshot = row.get("snapshot")
            records.append(
                SaveRecord(
                    session_id=row["session_id"],
                    product_id=row["product_id"],
                    dedup_key=row["dedup_key"],
                    snapshot=ProductSnapshot.model_validate(snapshot) if snapshot else None,
                    saved_at=row.get("saved_at") or 0.0,
                )
            )
        return records

    def count_for_session(self, session_id: str) -> int:
        try:
            result = (
                self._client.table(self._table)
                .select("dedup_key", count="exact")
                .eq("session_id", session_id)
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to count save records", session_id=session_id, error=str(e))
            return 0
        return result.count or 0
