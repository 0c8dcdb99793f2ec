"""
Deck client transports.

The deck controller talks to the gift deck service through a transport:

- HttpDeckTransport: requests.Session against the FastAPI app
- InProcessTransport: calls a GiftDeckService directly (tests, embedding)

Page loads raise DeckLoadError so the UI can offer a retry. Feedback calls
raise FeedbackDeliveryError; the deck only logs those.
"""

from typing import Any, Dict, Optional, Protocol, Tuple

import requests
from pydantic import ValidationError

from config.settings import get_settings
from core.errors import DeckLoadError, FeedbackDeliveryError, GiftDeckError
from gifts.models import (
    ProductSnapshot,
    RankedProduct,
    RecommendationResult,
    SessionConstraints,
    SwipeAck,
    SwipeAction,
)


class DeckTransport(Protocol):
    def recommend(
        self,
        constraints: SessionConstraints,
        session_seed: Optional[str] = None,
    ) -> Tuple[str, RecommendationResult]:
        ...

    def recommend_more(
        self,
        session_id: str,
        constraints: SessionConstraints,
        page: int,
    ) -> RecommendationResult:
        ...

    def swipe(
        self,
        session_id: str,
        product_id: str,
        action: SwipeAction,
        snapshot: Optional[ProductSnapshot] = None,
    ) -> SwipeAck:
        ...


def _constraints_payload(constraints: SessionConstraints) -> Dict[str, Any]:
    return constraints.model_dump(mode="json", by_alias=True, exclude_none=True)


class HttpDeckTransport:
    """HTTP client for /api/recommend, /api/recommend-more and /api/swipe."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.client_timeout_seconds
        self.session = session or requests.Session()

    def close(self) -> None:
        self.session.close()

    def _post(self, path: str, payload: Dict[str, Any], error_cls) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            resp = self.session.post(url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise error_cls(f"Request to {path} failed: {e}", path=path) from e

        if resp.status_code >= 400:
            raise error_cls(
                f"{path} failed ({resp.status_code}): {resp.text}",
                status_code=resp.status_code,
                path=path,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise error_cls(f"{path} returned invalid JSON", path=path) from e

    @staticmethod
    def _page(data: Dict[str, Any], page: int) -> RecommendationResult:
        try:
            products = [RankedProduct.model_validate(p) for p in data.get("recommendations") or []]
        except ValidationError as e:
            raise DeckLoadError("Malformed recommendations in response", errors=e.error_count()) from e
        return RecommendationResult(
            page=data.get("page", page),
            has_more=bool(data.get("hasMore", False)),
            products=products,
        )

    def recommend(self, constraints, session_seed=None):
        payload: Dict[str, Any] = {"constraints": _constraints_payload(constraints)}
        if session_seed:
            payload["sessionSeed"] = session_seed
        data = self._post("/api/recommend", payload, DeckLoadError)
        session_id = data.get("sessionId") or session_seed
        if not session_id:
            raise DeckLoadError("Response carried no sessionId")
        return session_id, self._page(data, 0)

    def recommend_more(self, session_id, constraints, page):
        payload = {
            "constraints": _constraints_payload(constraints),
            "page": page,
            "sessionId": session_id,
        }
        data = self._post("/api/recommend-more", payload, DeckLoadError)
        return self._page(data, page)

    def swipe(self, session_id, product_id, action, snapshot=None):
        payload: Dict[str, Any] = {
            "sessionId": session_id,
            "productId": product_id,
            "action": SwipeAction(action).value,
        }
        if snapshot is not None:
            payload["productSnapshot"] = snapshot.model_dump(mode="json", by_alias=True, exclude_none=True)
        data = self._post("/api/swipe", payload, FeedbackDeliveryError)
        return SwipeAck.model_validate(data)


class InProcessTransport:
    """Transport that calls a started GiftDeckService in the same process."""

    def __init__(self, service) -> None:
        self._service = service

    def recommend(self, constraints, session_seed=None):
        try:
            return self._service.recommend(constraints, session_seed=session_seed)
        except GiftDeckError as e:
            raise DeckLoadError(f"recommend failed: {e.message}", cause=e.kind) from e

    def recommend_more(self, session_id, constraints, page):
        try:
            return self._service.recommend_more(session_id, page=page, constraints=constraints)
        except GiftDeckError as e:
            raise DeckLoadError(f"recommend-more failed: {e.message}", cause=e.kind) from e

    def swipe(self, session_id, product_id, action, snapshot=None):
        try:
            return self._service.swipe(session_id, product_id, action, snapshot)
        except GiftDeckError as e:
            raise FeedbackDeliveryError(f"swipe failed: {e.message}", cause=e.kind) from e
