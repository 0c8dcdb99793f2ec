"""
Feedback Recorder.

State machine per (session, product):

    unseen --(served)--> seen --LEFT--> rejected   (terminal)
                              --RIGHT-> accepted   (terminal, + one SAVED)

- Repeating the terminal action is a no-op (status "duplicate").
- The opposite action after a terminal state is a consistency conflict:
  logged as a warning, the first write wins (status "conflict").
- RIGHT synthesizes exactly one SAVED record. A client that also sends an
  explicit SAVED after RIGHT is deduplicated here, not by the caller.
- SAVED without a prior RIGHT is ignored (status "ignored").

Identity: judgments are stored by product id. When a snapshot carries an
affiliateUrl, that dedup key is mapped to the first id that judged it, so a
different id with the same affiliateUrl shares the judgment and its single
save record.

Both judgments add the product's dedup key (and its id) to exclude_ids and
seen_ids, so it can never reappear in this session, whatever the
constraints become.
"""

from typing import Any, Dict, List, Optional, Protocol, Union

import numpy as np
from pydantic import ValidationError

from core.errors import (
    FeedbackDeliveryError,
    InvalidActionError,
    InvalidPayloadError,
    MissingSessionError,
)
from core.logging import get_logger
from gifts.models import (
    JudgmentState,
    ProductSnapshot,
    SaveRecord,
    SwipeAck,
    SwipeAction,
    SwipeStatus,
    dedup_key,
)
from gifts.save_store import SaveStore
from gifts.session_state import SessionProfileStore


logger = get_logger(__name__)


# =============================================================================
# Embedding nudges
# =============================================================================

class EmbeddingNudger(Protocol):
    def nudge(
        self,
        embedding: Optional[List[float]],
        snapshot: Optional[ProductSnapshot],
        action: SwipeAction,
    ) -> Optional[List[float]]:
        ...


class NoOpNudger:
    """Leaves the session embedding untouched."""

    def nudge(self, embedding, snapshot, action):
        return embedding


class WeightedAverageNudger:
    """
    Moves the session embedding toward accepted products.

    new = (1 - alpha) * old + alpha * product; the first accepted product
    seeds the embedding directly.
    """

    def __init__(self, alpha: float = 0.2):
        if not 0.0 < alpha <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        self.alpha = alpha

    def nudge(self, embedding, snapshot, action):
        if action != SwipeAction.RIGHT or snapshot is None or not snapshot.embedding:
            return embedding

        product = np.asarray(snapshot.embedding, dtype=np.float64)
        if not embedding:
            return product.tolist()

        current = np.asarray(embedding, dtype=np.float64)
        if current.shape != product.shape:
            logger.debug(
                "Embedding dimension mismatch, skipping nudge",
                session_dim=current.shape[0],
                product_dim=product.shape[0],
            )
            return embedding
        return ((1.0 - self.alpha) * current + self.alpha * product).tolist()


# =============================================================================
# Recorder
# =============================================================================

def parse_action(action: Union[str, SwipeAction, None]) -> SwipeAction:
    if isinstance(action, SwipeAction):
        return action
    if not isinstance(action, str) or not action.strip():
        raise InvalidActionError("Swipe action is required", action=action)
    try:
        return SwipeAction(action.strip().upper())
    except ValueError:
        raise InvalidActionError(
            f"Invalid action {action!r}. Must be one of: LEFT, RIGHT, SAVED",
            action=action,
        ) from None


def parse_snapshot(snapshot: Union[ProductSnapshot, Dict[str, Any], None]) -> Optional[ProductSnapshot]:
    if snapshot is None or isinstance(snapshot, ProductSnapshot):
        return snapshot
    try:
        return ProductSnapshot.model_validate(snapshot)
    except ValidationError as e:
        raise InvalidPayloadError("Malformed productSnapshot", errors=e.error_count()) from e


class FeedbackRecorder:
    """Records swipes idempotently and writes save records once."""

    def __init__(
        self,
        store: SessionProfileStore,
        save_store: SaveStore,
        nudger: Optional[EmbeddingNudger] = None,
    ):
        self._store = store
        self._save_store = save_store
        self._nudger = nudger or NoOpNudger()

    def record_swipe(
        self,
        session_id: Optional[str],
        product_id: Optional[str],
        action: Union[str, SwipeAction, None],
        product_snapshot: Union[ProductSnapshot, Dict[str, Any], None] = None,
    ) -> SwipeAck:
        """
        Record one swipe.

        Raises:
            MissingSessionError: no session id, feedback cannot be attributed
            InvalidPayloadError: no product id or malformed snapshot
            InvalidActionError: action outside LEFT / RIGHT / SAVED
        """
        if not session_id or not str(session_id).strip():
            raise MissingSessionError("sessionId is required to record feedback")
        if product_id is None or not str(product_id).strip():
            raise InvalidPayloadError("productId is required")

        product_id = str(product_id).strip()
        swipe_action = parse_action(action)
        snapshot = parse_snapshot(product_snapshot)
        key = dedup_key(
            snapshot.affiliate_url if snapshot else None,
            product_id,
            snapshot.title if snapshot else None,
        )

        pending_save: Optional[SaveRecord] = None

        with self._store.session(session_id) as profile:
            owner, current = profile.judged_as(product_id, key)

            if swipe_action == SwipeAction.SAVED:
                status, pending_save = self._explicit_save(
                    profile, owner or product_id, key, snapshot, current
                )
            else:
                target = (
                    JudgmentState.ACCEPTED if swipe_action == SwipeAction.RIGHT
                    else JudgmentState.REJECTED
                )
                if current == target:
                    status = SwipeStatus.DUPLICATE
                elif current is not None:
                    status = SwipeStatus.CONFLICT
                    logger.warning(
                        "Conflicting swipe ignored, first judgment kept",
                        session_id=session_id,
                        product_id=product_id,
                        owner=owner,
                        kept=current.value,
                        attempted=swipe_action.value,
                    )
                else:
                    status = SwipeStatus.RECORDED
                    profile.judgments[product_id] = target
                    if key != product_id:
                        profile.key_owners.setdefault(key, product_id)

                    if target == JudgmentState.ACCEPTED:
                        profile.embedding = self._nudger.nudge(profile.embedding, snapshot, swipe_action)
                        if product_id not in profile.saved_ids:
                            profile.saved_ids.add(product_id)
                            pending_save = SaveRecord(
                                session_id=session_id,
                                product_id=product_id,
                                dedup_key=key,
                                snapshot=snapshot,
                            )

                # Judged under either identity: both stay out of every later page
                exclude = {key, product_id}
                profile.constraints.exclude_ids |= exclude
                profile.constraints.seen_ids |= exclude

            state = profile.state_of(product_id, key)
            saved_count = len(profile.saved_ids)

        if pending_save is not None:
            self._persist_save(pending_save)

        logger.info(
            "Swipe recorded",
            session_id=session_id,
            product_id=product_id,
            action=swipe_action.value,
            status=status.value,
            state=state.value,
        )
        return SwipeAck(
            success=True,
            status=status,
            state=state,
            saved_count=saved_count,
            message=_MESSAGES[status],
        )

    def _explicit_save(self, profile, product_id, key, snapshot, current):
        if current != JudgmentState.ACCEPTED:
            logger.warning(
                "SAVED without prior RIGHT ignored",
                session_id=profile.session_id,
                product_id=product_id,
                state=(current.value if current else profile.state_of(product_id, key).value),
            )
            return SwipeStatus.IGNORED, None

        if product_id in profile.saved_ids:
            return SwipeStatus.DUPLICATE, None

        profile.saved_ids.add(product_id)
        return SwipeStatus.RECORDED, SaveRecord(
            session_id=profile.session_id,
            product_id=product_id,
            dedup_key=key,
            snapshot=snapshot,
        )

    def _persist_save(self, record: SaveRecord):
        try:
            self._save_store.add(record)
        except FeedbackDeliveryError as e:
            logger.error(
                "Save record not persisted",
                session_id=record.session_id,
                product_id=record.product_id,
                error=e.message,
            )

    def list_saved(self, session_id: str) -> List[SaveRecord]:
        if not session_id:
            raise MissingSessionError("sessionId is required")
        return self._save_store.list_for_session(session_id)


_MESSAGES = {
    SwipeStatus.RECORDED: "Swipe recorded",
    SwipeStatus.DUPLICATE: "Already recorded",
    SwipeStatus.CONFLICT: "Product already judged, first judgment kept",
    SwipeStatus.IGNORED: "Only liked products can be saved",
}
