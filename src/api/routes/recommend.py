"""
Gift deck routes.

Endpoints for the swipe deck: first page, further pages, swipe feedback and
the saved-gifts drawer. Payloads are camelCase.

Input errors raised by the service (bad constraints, unknown action, missing
session id, page out of range) are mapped to HTTP 400 by the app's exception
handler.
"""

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import Field

from core.errors import MissingSessionError
from core.logging import bind_context
from gifts.engine import GiftDeckService
from gifts.models import (
    CamelModel,
    RankedProduct,
    SaveRecord,
    SwipeAck,
    parse_constraints,
)


router = APIRouter(prefix="/api", tags=["Gift Deck"])


def get_service(request: Request) -> GiftDeckService:
    return request.app.state.service


# =============================================================================
# Request/Response Models
# =============================================================================

class RecommendRequest(CamelModel):
    """First page for a session."""
    constraints: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Budget / interests / occasion / region constraints"
    )
    session_seed: Optional[str] = Field(
        default=None,
        description="Existing session id to resume; a new one is generated when omitted"
    )
    page_size: Optional[int] = None


class RecommendMoreRequest(CamelModel):
    """A further page. The caller supplies the page index."""
    constraints: Optional[Dict[str, Any]] = None
    page: int = 1
    session_id: Optional[str] = None
    page_size: Optional[int] = None


class SwipeRequest(CamelModel):
    session_id: Optional[str] = None
    product_id: Optional[Union[str, int]] = None
    action: Optional[str] = None
    product_snapshot: Optional[Dict[str, Any]] = None


class RecommendResponse(CamelModel):
    recommendations: List[RankedProduct]
    session_id: str
    has_more: bool
    page: int = 0


class RecommendMoreResponse(CamelModel):
    recommendations: List[RankedProduct]
    has_more: bool
    page: int


class SavedResponse(CamelModel):
    session_id: str
    count: int
    saved: List[SaveRecord]


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "/recommend",
    response_model=RecommendResponse,
    response_model_by_alias=True,
    summary="First page of recommendations",
)
def recommend(
    body: RecommendRequest,
    service: GiftDeckService = Depends(get_service),
) -> RecommendResponse:
    constraints = parse_constraints(body.constraints)
    session_id, result = service.recommend(
        constraints,
        session_seed=body.session_seed,
        page_size=body.page_size,
    )
    bind_context(session_id=session_id)
    return RecommendResponse(
        recommendations=result.products,
        session_id=session_id,
        has_more=result.has_more,
        page=result.page,
    )


@router.post(
    "/recommend-more",
    response_model=RecommendMoreResponse,
    response_model_by_alias=True,
    summary="Next page of recommendations",
)
def recommend_more(
    body: RecommendMoreRequest,
    service: GiftDeckService = Depends(get_service),
) -> RecommendMoreResponse:
    if not body.session_id or not body.session_id.strip():
        raise MissingSessionError("sessionId is required for further pages")
    bind_context(session_id=body.session_id.strip())

    constraints = parse_constraints(body.constraints) if body.constraints is not None else None
    result = service.recommend_more(
        body.session_id.strip(),
        page=body.page,
        constraints=constraints,
        page_size=body.page_size,
    )
    return RecommendMoreResponse(
        recommendations=result.products,
        has_more=result.has_more,
        page=result.page,
    )


@router.post(
    "/swipe",
    response_model=SwipeAck,
    response_model_by_alias=True,
    summary="Record swipe feedback",
)
def swipe(
    body: SwipeRequest,
    service: GiftDeckService = Depends(get_service),
) -> SwipeAck:
    if body.session_id:
        bind_context(session_id=body.session_id)
    return service.swipe(
        body.session_id,
        None if body.product_id is None else str(body.product_id),
        body.action,
        body.product_snapshot,
    )


@router.get(
    "/saved/{session_id}",
    response_model=SavedResponse,
    response_model_by_alias=True,
    summary="Saved gifts for a session",
)
def saved(
    session_id: str,
    service: GiftDeckService = Depends(get_service),
) -> SavedResponse:
    records = service.saved(session_id)
    return SavedResponse(session_id=session_id, count=len(records), saved=records)


@router.get("/session/{session_id}", summary="Session debug info")
def session_info(
    session_id: str,
    service: GiftDeckService = Depends(get_service),
) -> Dict[str, Any]:
    info = service.session_info(session_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return info
