"""
Client Deck Controller.

Holds the visible card stack for one session and drives the server calls
behind it:

    stack (bottom -> top)        current_index
    [p59 ... p31 | p30 ... p1 p0]      ^ top card

- Swiping hides the top card and moves the cursor down. Feedback is
  dispatched fire-and-forget; RIGHT also dispatches SAVED.
- When the cursor reaches the prefetch threshold, the next page is
  requested once. Incoming items are deduplicated against every held card
  and slide in *beneath* the remaining ones, so the user never sees the
  stack reshuffle.
- current_index < 0 is the exhausted state. Only load_more() recovers it.

All state changes happen under one lock; network calls are dispatched
outside of it.
"""

from enum import Enum
from threading import Lock
from typing import List, Optional, Set, Union

from client.dispatch import Dispatcher, InlineDispatcher, TaskDispatcher
from client.session_store import JsonFileKeyValueStore, SessionIdRepository
from client.transport import DeckTransport, HttpDeckTransport
from config.settings import get_settings
from core.errors import InvalidActionError
from core.logging import get_logger
from gifts.models import (
    ProductSnapshot,
    RankedProduct,
    RecommendationResult,
    SessionConstraints,
    SwipeAck,
    SwipeAction,
)


logger = get_logger(__name__)

DEFAULT_PREFETCH_THRESHOLD = 6


class Direction(str, Enum):
    """Gesture directions. Only LEFT and RIGHT carry meaning."""
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    UP = "UP"
    DOWN = "DOWN"


def parse_direction(direction: Union[str, Direction, None]) -> Direction:
    if isinstance(direction, Direction):
        return direction
    if not isinstance(direction, str) or not direction.strip():
        raise InvalidActionError("Swipe direction is required", direction=direction)
    try:
        return Direction(direction.strip().upper())
    except ValueError:
        raise InvalidActionError(
            f"Invalid direction {direction!r}. Must be one of: LEFT, RIGHT, UP, DOWN",
            direction=direction,
        ) from None


class DeckController:
    """Card stack, cursor, pagination state and prefetch latch for one deck."""

    def __init__(
        self,
        transport: DeckTransport,
        session_ids: SessionIdRepository,
        dispatcher: Optional[Dispatcher] = None,
        prefetch_threshold: int = DEFAULT_PREFETCH_THRESHOLD,
    ):
        self._transport = transport
        self._session_ids = session_ids
        self._dispatcher = dispatcher or InlineDispatcher()
        self._threshold = prefetch_threshold
        self._lock = Lock()
        self._closed = False
        self._reset()

    @classmethod
    def from_settings(cls, settings=None) -> "DeckController":
        """HTTP transport, JSON-file session id and a thread pool, all from settings."""
        settings = settings or get_settings()
        return cls(
            transport=HttpDeckTransport(
                base_url=settings.api_base_url,
                timeout=settings.client_timeout_seconds,
            ),
            session_ids=SessionIdRepository(JsonFileKeyValueStore(settings.client_state_path)),
            dispatcher=TaskDispatcher(max_workers=settings.dispatch_workers),
            prefetch_threshold=settings.prefetch_threshold,
        )

    def _reset(self):
        self._stack: List[RankedProduct] = []
        self._hidden: Set[str] = set()
        self._current_index = -1
        self._page = 0
        self._has_more_pages = True
        self._loading = False
        self._prefetch_requested = False
        self._session_id: Optional[str] = None
        self._constraints = SessionConstraints()
        self.last_load_error: Optional[Exception] = None

    # =========================================================
    # Read-only views
    # =========================================================

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def page(self) -> int:
        return self._page

    @property
    def has_more_pages(self) -> bool:
        return self._has_more_pages

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def exhausted(self) -> bool:
        return self._current_index < 0

    @property
    def top(self) -> Optional[RankedProduct]:
        with self._lock:
            if self._current_index < 0:
                return None
            return self._stack[self._current_index]

    def remaining(self) -> List[RankedProduct]:
        """Unswiped cards, top first."""
        with self._lock:
            return [
                p for p in reversed(self._stack[: self._current_index + 1])
                if p.dedup_key not in self._hidden
            ]

    def is_hidden(self, product: RankedProduct) -> bool:
        return product.dedup_key in self._hidden

    def __len__(self) -> int:
        return len(self._stack)

    # =========================================================
    # Lifecycle
    # =========================================================

    def start(self, constraints: SessionConstraints) -> RecommendationResult:
        """
        Open the deck: fetch page 0 for the persisted session id.

        Raises:
            DeckLoadError: page 0 could not be loaded; the UI should offer a retry
        """
        session_id = self._session_ids.get_or_create_session_id()
        server_session_id, result = self._transport.recommend(constraints, session_seed=session_id)
        if server_session_id and server_session_id != session_id:
            self._session_ids.set_session_id(server_session_id)
            session_id = server_session_id

        with self._lock:
            self._reset()
            self._session_id = session_id
            self._constraints = constraints
            self._stack = self._dedup(result.products, held=set())
            self._stack.reverse()
            self._current_index = len(self._stack) - 1
            self._has_more_pages = result.has_more and bool(result.products)

        logger.info(
            "Deck started",
            session_id=session_id,
            cards=len(self._stack),
            has_more=self._has_more_pages,
        )
        self._maybe_prefetch()
        return result

    def start_over(self):
        """Forget the persisted session id and empty the deck."""
        self._session_ids.clear()
        with self._lock:
            self._reset()
        logger.info("Deck reset")

    def shutdown(self):
        self._closed = True
        self._dispatcher.shutdown()

    # =========================================================
    # Gestures
    # =========================================================

    def swipe(self, direction: Union[str, Direction], product_id: Optional[str] = None) -> bool:
        """
        Swipe the top card.

        Returns False (and changes nothing) for UP/DOWN, an exhausted deck, or
        a product_id that is not the top card.

        Raises:
            InvalidActionError: direction is not LEFT / RIGHT / UP / DOWN
        """
        direction = parse_direction(direction)
        if direction not in (Direction.LEFT, Direction.RIGHT):
            return False

        with self._lock:
            if self._session_id is None or self._current_index < 0:
                return False
            card = self._stack[self._current_index]
            if product_id is not None and product_id not in (card.id, card.dedup_key):
                logger.debug("Swipe on non-top card ignored", product_id=product_id, top=card.id)
                return False

            self._current_index -= 1
            self._hidden.add(card.dedup_key)
            session_id = self._session_id

        action = SwipeAction.RIGHT if direction == Direction.RIGHT else SwipeAction.LEFT
        self._send_feedback(session_id, card, action)
        if action == SwipeAction.RIGHT:
            self._send_feedback(session_id, card, SwipeAction.SAVED)

        self._maybe_prefetch()
        return True

    # =========================================================
    # Feedback
    # =========================================================

    def _send_feedback(self, session_id: str, card: RankedProduct, action: SwipeAction):
        product_id = card.id or card.dedup_key

        def on_success(ack: SwipeAck):
            logger.debug(
                "Feedback delivered",
                product_id=product_id,
                action=action.value,
                status=ack.status.value,
            )

        def on_error(e: BaseException):
            logger.warning(
                "Feedback delivery failed",
                product_id=product_id,
                action=action.value,
                error=str(e),
            )

        self._dispatcher.submit(
            self._transport.swipe,
            session_id,
            product_id,
            action,
            ProductSnapshot.from_product(card),
            on_success=on_success,
            on_error=on_error,
        )

    # =========================================================
    # Pagination
    # =========================================================

    def _maybe_prefetch(self):
        with self._lock:
            if (
                self._session_id is None
                or not self._has_more_pages
                or self._prefetch_requested
                or self._loading
                or self._current_index > self._threshold
            ):
                return
            self._prefetch_requested = True
        logger.debug("Prefetching next page", current_index=self._current_index)
        self.load_more()

    def load_more(self) -> bool:
        """
        Request the next page in the background.

        Returns False when a load is already in flight, no more pages exist,
        or the deck has not started.
        """
        with self._lock:
            if self._session_id is None or self._loading or not self._has_more_pages:
                return False
            self._loading = True
            session_id = self._session_id
            constraints = self._constraints
            next_page = self._page + 1

        self._dispatcher.submit(
            self._transport.recommend_more,
            session_id,
            constraints,
            next_page,
            on_success=lambda result: self._on_page_loaded(session_id, next_page, result),
            on_error=lambda e: self._on_load_failed(session_id, next_page, e),
        )
        return True

    def _on_page_loaded(self, session_id: str, page: int, result: RecommendationResult):
        with self._lock:
            if self._closed or session_id != self._session_id:
                return
            held = {p.dedup_key for p in self._stack}
            fresh = self._dedup(result.products, held)
            fresh.reverse()

            self._stack = fresh + self._stack
            self._current_index += len(fresh)
            self._has_more_pages = (
                self._has_more_pages and result.has_more and bool(result.products)
            )
            self._page = page
            self._loading = False
            self._prefetch_requested = False
            self.last_load_error = None

        logger.info(
            "Page loaded",
            session_id=session_id,
            page=page,
            received=len(result.products),
            added=len(fresh),
            has_more=self._has_more_pages,
        )

    def _on_load_failed(self, session_id: str, page: int, error: BaseException):
        with self._lock:
            if session_id != self._session_id:
                return
            self._loading = False
            self._prefetch_requested = False
            self.last_load_error = error if isinstance(error, Exception) else None
        logger.warning("Page load failed", session_id=session_id, page=page, error=str(error))

    @staticmethod
    def _dedup(products: List[RankedProduct], held: Set[str]) -> List[RankedProduct]:
        """Drop items already held, and repeats within the batch (first wins)."""
        seen = set(held)
        out = []
        for product in products:
            key = product.dedup_key
            if key in seen:
                continue
            seen.add(key)
            out.append(product)
        return out
