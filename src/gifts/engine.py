"""
Gift deck service container.

Every collaborator (session store, retriever, save store, impression log,
recorder, pagination) is constructed explicitly here and passed by
reference to the components that need it. The container has an explicit lifecycle:

    service = GiftDeckService(settings)
    service.init()
    ...
    service.shutdown()

The FastAPI lifespan hook drives init/shutdown; tests construct the
container directly with injected in-memory collaborators.
"""

from typing import Any, Dict, List, Optional, Tuple

from config.settings import Settings, get_settings
from core.logging import get_logger
from gifts.feedback import EmbeddingNudger, FeedbackRecorder
from gifts.impressions import ImpressionLog, InMemoryImpressionLog, SupabaseImpressionLog
from gifts.models import (
    ImpressionRecord,
    RecommendationResult,
    SaveRecord,
    SessionConstraints,
    SwipeAck,
)
from gifts.pagination import PaginationController
from gifts.ranking import RankingWeights
from gifts.retriever import (
    CandidateRetriever,
    StaticCatalogRetriever,
    SupabaseCandidateRetriever,
)
from gifts.save_store import InMemorySaveStore, SaveStore, SupabaseSaveStore
from gifts.session_state import SessionProfileStore


logger = get_logger(__name__)


class GiftDeckService:
    """Owns the server-side components for one process."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        retriever: Optional[CandidateRetriever] = None,
        session_store: Optional[SessionProfileStore] = None,
        save_store: Optional[SaveStore] = None,
        nudger: Optional[EmbeddingNudger] = None,
        impression_log: Optional[ImpressionLog] = None,
    ):
        self.settings = settings or get_settings()
        self._retriever = retriever
        self._session_store = session_store
        self._save_store = save_store
        self._nudger = nudger
        self._impression_log = impression_log

        self._pagination: Optional[PaginationController] = None
        self._recorder: Optional[FeedbackRecorder] = None
        self._started = False

    # =========================================================
    # Lifecycle
    # =========================================================

    def init(self) -> "GiftDeckService":
        if self._started:
            return self

        settings = self.settings
        if self._session_store is None:
            self._session_store = SessionProfileStore(
                backend="auto",
                ttl_seconds=settings.session_ttl_seconds,
                redis_url=settings.redis_url,
                redis_enabled=settings.redis_enabled,
            )
        if self._retriever is None:
            self._retriever = self._build_retriever(settings)
        if self._save_store is None:
            self._save_store = self._build_save_store(settings)
        if self._impression_log is None and settings.log_impressions:
            self._impression_log = self._build_impression_log(settings)

        self._pagination = PaginationController(
            store=self._session_store,
            retriever=self._retriever,
            weights=RankingWeights.from_settings(settings),
            max_per_retailer=settings.max_per_retailer,
            default_page_size=settings.page_size,
        )
        self._recorder = FeedbackRecorder(
            store=self._session_store,
            save_store=self._save_store,
            nudger=self._nudger,
        )
        self._started = True

        logger.info(
            "Gift deck service started",
            retriever=type(self._retriever).__name__,
            save_store=type(self._save_store).__name__,
            impressions=type(self._impression_log).__name__ if self._impression_log else None,
            sessions=self._session_store.get_stats()["backend"],
        )
        return self

    def shutdown(self):
        if not self._started:
            return
        self._pagination = None
        self._recorder = None
        self._started = False
        logger.info("Gift deck service stopped")

    @property
    def started(self) -> bool:
        return self._started

    @staticmethod
    def _build_retriever(settings: Settings) -> CandidateRetriever:
        if settings.retriever_backend == "supabase":
            from config.database import get_supabase_client

            return SupabaseCandidateRetriever(
                get_supabase_client(),
                table=settings.products_table,
                limit=settings.retriever_limit,
            )
        if settings.catalog_path is not None:
            return StaticCatalogRetriever.from_json_file(settings.catalog_path)
        logger.warning("No catalogue configured, static retriever is empty")
        return StaticCatalogRetriever()

    @staticmethod
    def _build_save_store(settings: Settings) -> SaveStore:
        if settings.supabase_configured:
            from config.database import get_supabase_client_optional

            client = get_supabase_client_optional()
            if client is not None:
                return SupabaseSaveStore(client, table=settings.saved_table)
            logger.warning("Supabase client unavailable, keeping save records in memory")
        return InMemorySaveStore()

    @staticmethod
    def _build_impression_log(settings: Settings) -> ImpressionLog:
        if settings.supabase_configured:
            from config.database import get_supabase_client_optional

            client = get_supabase_client_optional()
            if client is not None:
                return SupabaseImpressionLog(client, table=settings.impressions_table)
        return InMemoryImpressionLog()

    # =========================================================
    # Components
    # =========================================================

    def _require_started(self):
        if not self._started:
            raise RuntimeError("GiftDeckService.init() has not been called")

    @property
    def sessions(self) -> SessionProfileStore:
        self._require_started()
        return self._session_store

    @property
    def pagination(self) -> PaginationController:
        self._require_started()
        return self._pagination

    @property
    def recorder(self) -> FeedbackRecorder:
        self._require_started()
        return self._recorder

    # =========================================================
    # Operations
    # =========================================================

    def recommend(
        self,
        constraints: SessionConstraints,
        session_seed: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> Tuple[str, RecommendationResult]:
        """First page (page 0) for a new or previously seeded session."""
        session_id = (session_seed or "").strip() or SessionProfileStore.generate_session_id()
        result = self.pagination.get_page(
            session_id, page=0, page_size=page_size, constraints=constraints
        )
        self._log_impressions(session_id, result)
        return session_id, result

    def recommend_more(
        self,
        session_id: str,
        page: int,
        constraints: Optional[SessionConstraints] = None,
        page_size: Optional[int] = None,
    ) -> RecommendationResult:
        result = self.pagination.get_page(
            session_id, page=page, page_size=page_size, constraints=constraints
        )
        self._log_impressions(session_id, result)
        return result

    def _log_impressions(self, session_id: str, result: RecommendationResult):
        if self._impression_log is not None:
            self._impression_log.record(ImpressionRecord.from_result(session_id, result))

    def impressions(self, session_id: str) -> List[ImpressionRecord]:
        self._require_started()
        if self._impression_log is None:
            return []
        return self._impression_log.list_for_session(session_id)

    def swipe(self, session_id, product_id, action, product_snapshot=None) -> SwipeAck:
        return self.recorder.record_swipe(session_id, product_id, action, product_snapshot)

    def saved(self, session_id: str) -> List[SaveRecord]:
        return self.recorder.list_saved(session_id)

    def session_info(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.sessions.get_session_info(session_id)
