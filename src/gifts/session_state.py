"""
Session Profile Store for the gift deck.

Holds, per session id, the current constraint set, the optional preference
embedding and the per-product judgment state. Purely data: get / merge /
save, plus a per-session lock so a page load and a swipe racing for the same
session cannot lose each other's updates.

Supports two backends:
1. InMemory: For development/testing (default)
2. Redis: For multi-worker deployments (REDIS_ENABLED=true)

Guarantees:
A. exclude_ids and seen_ids only ever grow within a session
B. Read-modify-write on one session is atomic per call
C. Graceful degradation (Redis unavailable -> in-memory)
D. Session isolation
"""

import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Any, Dict, Iterator, Optional

from core.logging import get_logger
from gifts.models import JudgmentState, SessionConstraints, SessionProfile


logger = get_logger(__name__)


def merge_constraints(
    current: SessionConstraints,
    incoming: SessionConstraints,
) -> SessionConstraints:
    """
    Merge a new constraint set into the session's current one.

    Soft fields (price, interests, occasion, region...) follow the incoming
    request. exclude_ids / seen_ids are union-merged so nothing judged or
    served ever becomes eligible again.
    """
    merged = incoming.model_copy(deep=True)
    merged.exclude_ids = set(current.exclude_ids) | set(incoming.exclude_ids)
    merged.seen_ids = set(current.seen_ids) | set(incoming.seen_ids) | merged.exclude_ids
    return merged


# =============================================================================
# In-Memory Backend (Default)
# =============================================================================

class InMemorySessionBackend:
    """
    In-memory session storage for development/testing.

    Note: Sessions are lost on server restart.
    """

    def __init__(self, ttl_seconds: int = 86400):
        self._sessions: Dict[str, SessionProfile] = {}
        self._locks: Dict[str, Lock] = {}
        self._lock = Lock()
        self._ttl = ttl_seconds
        self._last_cleanup = time.time()
        self._cleanup_interval = 3600

    def _maybe_cleanup(self):
        now = time.time()
        if now - self._last_cleanup > self._cleanup_interval:
            self._cleanup_expired()
            self._last_cleanup = now

    def _cleanup_expired(self):
        cutoff = time.time() - self._ttl
        with self._lock:
            expired = [sid for sid, p in self._sessions.items() if p.last_access < cutoff]
            for sid in expired:
                del self._sessions[sid]
                self._locks.pop(sid, None)
        if expired:
            logger.info("Cleaned up expired sessions", count=len(expired))

    def load(self, session_id: str) -> Optional[SessionProfile]:
        self._maybe_cleanup()
        with self._lock:
            profile = self._sessions.get(session_id)
            return profile.model_copy(deep=True) if profile else None

    def store(self, profile: SessionProfile):
        profile.last_access = time.time()
        with self._lock:
            self._sessions[profile.session_id] = profile.model_copy(deep=True)

    def delete(self, session_id: str):
        with self._lock:
            self._sessions.pop(session_id, None)

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        with self._lock:
            session_lock = self._locks.setdefault(session_id, Lock())
        with session_lock:
            yield

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": "in_memory",
            "active_sessions": len(self._sessions),
            "ttl_seconds": self._ttl,
        }


# =============================================================================
# Redis Backend (Optional - for production)
# =============================================================================

class RedisSessionBackend:
    """
    Redis-based session storage.

    Profiles are stored as JSON blobs with a TTL; the per-session lock is a
    redis-py distributed lock so several workers can share sessions.
    """

    KEY_PREFIX = "giftdeck:session:"
    LOCK_PREFIX = "giftdeck:lock:"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        ttl_seconds: int = 86400,
        client=None,
        lock_timeout: float = 10.0,
    ):
        if client is None:
            import redis

            client = redis.from_url(redis_url, decode_responses=True)
            client.ping()
            logger.info("Connected to Redis", url=redis_url.split("@")[-1])

        self._redis = client
        self._ttl = ttl_seconds
        self._lock_timeout = lock_timeout

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def load(self, session_id: str) -> Optional[SessionProfile]:
        data = self._redis.get(self._key(session_id))
        if not data:
            return None
        return SessionProfile.model_validate_json(data)

    def store(self, profile: SessionProfile):
        profile.last_access = time.time()
        self._redis.setex(
            self._key(profile.session_id),
            self._ttl,
            profile.model_dump_json(by_alias=True),
        )

    def delete(self, session_id: str):
        self._redis.delete(self._key(session_id))

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        with self._redis.lock(
            f"{self.LOCK_PREFIX}{session_id}",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_timeout,
        ):
            yield

    def get_stats(self) -> Dict[str, Any]:
        cursor = 0
        count = 0
        while True:
            cursor, keys = self._redis.scan(cursor, match=f"{self.KEY_PREFIX}*", count=1000)
            count += len(keys)
            if cursor == 0:
                break

        return {
            "backend": "redis",
            "active_sessions": count,
            "ttl_seconds": self._ttl,
        }


# =============================================================================
# Session Profile Store (Main Interface)
# =============================================================================

class SessionProfileStore:
    """
    High-level session profile store.

    Automatically selects backend:
    - Redis if enabled and reachable
    - In-memory otherwise
    """

    def __init__(
        self,
        backend: str = "auto",
        ttl_seconds: int = 86400,
        redis_url: Optional[str] = None,
        redis_enabled: bool = False,
    ):
        """
        Args:
            backend: "auto", "redis", or "memory"
            ttl_seconds: Session TTL (default 24 hours)
            redis_url: Redis connection URL
            redis_enabled: In "auto" mode, whether Redis should be tried at all
        """
        redis_url = redis_url or "redis://localhost:6379/0"

        if backend == "auto":
            if redis_enabled:
                try:
                    self._backend = RedisSessionBackend(redis_url=redis_url, ttl_seconds=ttl_seconds)
                except Exception as e:
                    logger.warning("Redis unavailable, using in-memory session backend", error=str(e))
                    self._backend = InMemorySessionBackend(ttl_seconds=ttl_seconds)
            else:
                self._backend = InMemorySessionBackend(ttl_seconds=ttl_seconds)
        elif backend == "redis":
            self._backend = RedisSessionBackend(redis_url=redis_url, ttl_seconds=ttl_seconds)
        elif backend == "memory":
            self._backend = InMemorySessionBackend(ttl_seconds=ttl_seconds)
        else:
            raise ValueError(f"Unknown session backend: {backend}")

        logger.debug("Session store ready", backend=self._backend.get_stats()["backend"])

    @classmethod
    def with_backend(cls, backend) -> "SessionProfileStore":
        """Wrap an already-constructed backend (used by tests)."""
        store = cls.__new__(cls)
        store._backend = backend
        return store

    # =========================================================
    # Session ID Generation
    # =========================================================

    @staticmethod
    def generate_session_id() -> str:
        return f"sess_{uuid.uuid4().hex[:12]}"

    # =========================================================
    # Profile access
    # =========================================================

    def get(self, session_id: str) -> Optional[SessionProfile]:
        return self._backend.load(session_id)

    def get_or_create(self, session_id: str) -> SessionProfile:
        with self.session(session_id) as profile:
            return profile.model_copy(deep=True)

    def save(self, profile: SessionProfile):
        self._backend.store(profile)

    @contextmanager
    def session(self, session_id: str) -> Iterator[SessionProfile]:
        """
        Atomic read-modify-write on one session.

        The profile yielded is persisted when the block exits normally;
        on exception nothing is written.
        """
        with self._backend.lock(session_id):
            profile = self._backend.load(session_id)
            if profile is None:
                profile = SessionProfile(session_id=session_id)
                logger.debug("Session created", session_id=session_id)
            yield profile
            self._backend.store(profile)

    def merge_constraints(
        self,
        session_id: str,
        constraints: SessionConstraints,
    ) -> SessionProfile:
        with self.session(session_id) as profile:
            profile.constraints = merge_constraints(profile.constraints, constraints)
            return profile.model_copy(deep=True)

    # =========================================================
    # Session Management
    # =========================================================

    def get_session_info(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get session info for debugging."""
        profile = self._backend.load(session_id)
        if profile is None:
            return None

        judgments = list(profile.judgments.values())
        return {
            "session_id": profile.session_id,
            "seen_count": len(profile.constraints.seen_ids),
            "excluded_count": len(profile.constraints.exclude_ids),
            "accepted_count": sum(1 for j in judgments if j == JudgmentState.ACCEPTED),
            "rejected_count": sum(1 for j in judgments if j == JudgmentState.REJECTED),
            "saved_count": len(profile.saved_ids),
            "has_embedding": profile.embedding is not None,
            "created_at": datetime.fromtimestamp(profile.created_at).isoformat(),
            "last_access": datetime.fromtimestamp(profile.last_access).isoformat(),
        }

    def clear_session(self, session_id: str):
        self._backend.delete(session_id)

    def get_stats(self) -> Dict[str, Any]:
        return self._backend.get_stats()
