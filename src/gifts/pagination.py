"""
Pagination & Dedup Controller.

get_page() retrieves a fresh pool, ranks it, strips everything the session
has already been served or has judged, and hands out the top window. An
item is blocked when either its dedup key or its id is in exclude_ids or
seen_ids.

The pool is NOT assumed stable between calls: the retriever may return a
different set every time. Continuity comes from the session instead. Every
dedup key handed out is folded into seen_ids, so page N+1 naturally starts
past whatever pages 0..N served.

has_more is a size heuristic: a full page implies more might exist. It is
approximate on purpose. A page of exactly page_size items may be followed by
an empty one.
"""

from typing import List, Optional

from core.errors import InvalidPageError
from core.logging import get_logger
from gifts.models import RankedProduct, RecommendationResult, SessionConstraints
from gifts.ranking import DEFAULT_WEIGHTS, RankingWeights, rank_candidates
from gifts.retriever import CandidateRetriever, ingest_candidates
from gifts.session_state import SessionProfileStore, merge_constraints


logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 30
MAX_PAGE_SIZE = 100
MAX_PAGE = 1000


class PaginationController:
    """Slices the ranked pool into pages without ever repeating an item."""

    def __init__(
        self,
        store: SessionProfileStore,
        retriever: CandidateRetriever,
        weights: RankingWeights = DEFAULT_WEIGHTS,
        max_per_retailer: Optional[int] = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self._store = store
        self._retriever = retriever
        self._weights = weights
        self._max_per_retailer = max_per_retailer
        self._default_page_size = default_page_size

    def get_page(
        self,
        session_id: str,
        page: int = 0,
        page_size: Optional[int] = None,
        constraints: Optional[SessionConstraints] = None,
    ) -> RecommendationResult:
        """
        Serve one page for a session.

        Args:
            session_id: Session identifier (profile is created on first use)
            page: Page index supplied by the caller (not auto-incremented)
            page_size: Items per page (default 30)
            constraints: New constraint set to merge before serving, if any

        Returns:
            RecommendationResult; an empty page with has_more=False when the
            retriever yields nothing usable.
        """
        page_size = self._default_page_size if page_size is None else page_size
        if not 0 <= page <= MAX_PAGE:
            raise InvalidPageError(f"page must be between 0 and {MAX_PAGE}", page=page)
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise InvalidPageError(
                f"pageSize must be between 1 and {MAX_PAGE_SIZE}", page_size=page_size
            )

        # Step 1: merge constraints, snapshot the profile for ranking
        with self._store.session(session_id) as profile:
            if constraints is not None:
                profile.constraints = merge_constraints(profile.constraints, constraints)
            snapshot = profile.model_copy(deep=True)

        # Step 2: retrieval + ranking, outside the session lock
        ranked = self._rank_pool(snapshot)

        # Step 3: filter against the *current* seen/exclude sets and commit
        with self._store.session(session_id) as profile:
            blocked = profile.constraints.blocked_keys
            window: List[RankedProduct] = []
            window_keys = set()
            for product in ranked:
                # A swipe may have been keyed by id alone, so both identities block
                identities = {product.dedup_key}
                if product.id:
                    identities.add(product.id)
                if identities & blocked or identities & window_keys:
                    continue
                window.append(product)
                window_keys |= identities
                if len(window) >= page_size:
                    break

            profile.constraints.seen_ids |= window_keys

        has_more = len(window) >= page_size

        logger.info(
            "Page served",
            session_id=session_id,
            page=page,
            ranked=len(ranked),
            returned=len(window),
            has_more=has_more,
        )
        return RecommendationResult(page=page, has_more=has_more, products=window)

    def _rank_pool(self, profile) -> List[RankedProduct]:
        try:
            raw = self._retriever.retrieve_candidates(profile.constraints)
        except Exception as e:
            # An empty deck is a valid business state, not a fault
            logger.warning(
                "Candidate retrieval failed, serving empty page",
                session_id=profile.session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        candidates, dropped = ingest_candidates(raw or [])
        ranked = rank_candidates(
            candidates,
            profile,
            weights=self._weights,
            max_per_retailer=self._max_per_retailer,
        )
        logger.debug(
            "Pool ranked",
            session_id=profile.session_id,
            retrieved=len(raw or []),
            dropped=dropped,
            ranked=len(ranked),
        )
        return ranked
