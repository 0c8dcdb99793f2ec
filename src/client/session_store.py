"""
Client-side persisted state.

The deck keeps exactly one value across restarts: the session id, under the
namespace ``giftdeck`` and key ``session_id``. Storage is pluggable so tests
use a dict and long-lived clients use a JSON file (CLIENT_STATE_PATH).
"""

import json
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Protocol, Union

from core.logging import get_logger
from gifts.session_state import SessionProfileStore


logger = get_logger(__name__)

NAMESPACE = "giftdeck"
SESSION_ID_KEY = "session_id"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class JsonFileKeyValueStore:
    """
    Flat string map in a JSON file.

    Writes go through a temp file + rename so a crash never leaves a
    truncated file behind. An unreadable file is treated as empty.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Client state unreadable, starting fresh", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


class SessionIdRepository:
    """Owns the persisted session id for one client."""

    def __init__(self, store: KeyValueStore, namespace: str = NAMESPACE):
        self._store = store
        self._key = f"{namespace}:{SESSION_ID_KEY}"

    def get_session_id(self) -> Optional[str]:
        return self._store.get(self._key)

    def get_or_create_session_id(self) -> str:
        session_id = self._store.get(self._key)
        if not session_id:
            session_id = SessionProfileStore.generate_session_id()
            self._store.set(self._key, session_id)
            logger.debug("Created client session id", session_id=session_id)
        return session_id

    def set_session_id(self, session_id: str) -> None:
        self._store.set(self._key, session_id)

    def clear(self) -> None:
        self._store.delete(self._key)
