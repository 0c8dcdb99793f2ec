"""
Pydantic models for the gift recommendation deck.

Models cover:
- Session constraints and the per-session profile
- Candidate products (validated once at the retriever boundary)
- Ranked products and paginated results
- Swipe events, save records and acknowledgements

JSON payloads use camelCase field names (``affiliateUrl``, ``hasMore``,
``excludeIds``); Python code uses snake_case attributes. Both spellings are
accepted on input.
"""

import re
import time
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from core.errors import InvalidConstraintsError


MAX_INTERESTS = 10


class CamelModel(BaseModel):
    """Base model serializing to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Enums
# =============================================================================

class SwipeAction(str, Enum):
    """Feedback a user can give on a card."""
    LEFT = "LEFT"      # reject
    RIGHT = "RIGHT"    # accept (implies SAVED)
    SAVED = "SAVED"


class JudgmentState(str, Enum):
    """Per (session, product) lifecycle. Rejected and accepted are terminal."""
    UNSEEN = "unseen"
    SEEN = "seen"
    REJECTED = "rejected"
    ACCEPTED = "accepted"


class Availability(str, Enum):
    IN_STOCK = "IN_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    UNKNOWN = "UNKNOWN"


class Condition(str, Enum):
    NEW = "NEW"
    LIKE_NEW = "LIKE_NEW"
    USED_VERY_GOOD = "USED_VERY_GOOD"
    USED_GOOD = "USED_GOOD"
    USED_ACCEPTABLE = "USED_ACCEPTABLE"
    REFURBISHED = "REFURBISHED"


# =============================================================================
# Dedup key
# =============================================================================

def dedup_key(
    affiliate_url: Optional[str],
    product_id: Optional[str],
    title: Optional[str],
) -> str:
    """
    Identity used to detect "the same product" across pages.

    affiliateUrl if non-empty, else id, else title.
    """
    if affiliate_url and affiliate_url.strip():
        return affiliate_url.strip()
    if product_id is not None and str(product_id).strip():
        return str(product_id).strip()
    return (title or "").strip()


# =============================================================================
# Constraints
# =============================================================================

# Budget buckets offered by the gift form: (min, max), None = unbounded
BUDGET_BUCKETS: Dict[str, Tuple[Optional[float], Optional[float]]] = {
    "under-25": (None, 25.0),
    "25-50": (25.0, 50.0),
    "50-100": (50.0, 100.0),
    "100-200": (100.0, 200.0),
    "200-500": (200.0, 500.0),
    "500+": (500.0, None),
}


def parse_budget(budget: str) -> Tuple[Optional[float], Optional[float]]:
    """Turn a budget bucket ("25-50", "under-25", "500+") into price bounds."""
    key = budget.strip().lower()
    if key in BUDGET_BUCKETS:
        return BUDGET_BUCKETS[key]

    # Free-form fallbacks like "under $40" or "$20 - $60"
    numbers = [float(n) for n in re.findall(r"\d+(?:\.\d+)?", key)]
    if key.startswith("under") and len(numbers) == 1:
        return None, numbers[0]
    if (key.startswith("over") or key.endswith("+")) and len(numbers) == 1:
        return numbers[0], None
    if len(numbers) == 2:
        return numbers[0], numbers[1]
    raise ValueError(f"Unrecognised budget: {budget!r}")


class SessionConstraints(CamelModel):
    """
    Soft constraints for one gift-finding session.

    exclude_ids and seen_ids hold dedup keys. exclude_ids are permanent
    (rejected or accepted); seen_ids are everything already served.
    """
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    budget: Optional[str] = None
    interests: Set[str] = Field(default_factory=set)
    occasion: Optional[str] = None
    relationship: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    exclude_ids: Set[str] = Field(default_factory=set)
    seen_ids: Set[str] = Field(default_factory=set)

    @field_validator("interests", mode="before")
    @classmethod
    def normalize_interests(cls, v):
        if v is None:
            return set()
        if isinstance(v, str):
            v = [v]
        cleaned = {str(i).strip().lower() for i in v if str(i).strip()}
        if len(cleaned) > MAX_INTERESTS:
            raise ValueError(f"At most {MAX_INTERESTS} interests are allowed")
        return cleaned

    @field_validator("country", "region")
    @classmethod
    def normalize_region(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v

    @model_validator(mode="after")
    def resolve_price_bounds(self) -> "SessionConstraints":
        if self.budget and self.min_price is None and self.max_price is None:
            self.min_price, self.max_price = parse_budget(self.budget)
        if self.min_price is not None and self.min_price < 0:
            raise ValueError("minPrice must be >= 0")
        if self.max_price is not None and self.max_price < 0:
            raise ValueError("maxPrice must be >= 0")
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("minPrice must not exceed maxPrice")
        return self

    def price_allows(self, price: float) -> bool:
        if self.min_price is not None and price < self.min_price:
            return False
        if self.max_price is not None and price > self.max_price:
            return False
        return True

    @property
    def blocked_keys(self) -> Set[str]:
        return self.exclude_ids | self.seen_ids


# =============================================================================
# Session Profile
# =============================================================================

class SessionProfile(CamelModel):
    """
    Everything the server remembers about one session.

    judgments maps product id -> terminal state (accepted / rejected);
    key_owners maps a dedup key to the product id that judged it, so a second
    id sharing the same affiliateUrl resolves to the same judgment;
    saved_ids holds the product ids that already have a SAVED record.
    """
    session_id: str
    embedding: Optional[List[float]] = None
    constraints: SessionConstraints = Field(default_factory=SessionConstraints)
    judgments: Dict[str, JudgmentState] = Field(default_factory=dict)
    key_owners: Dict[str, str] = Field(default_factory=dict)
    saved_ids: Set[str] = Field(default_factory=set)
    created_at: float = Field(default_factory=time.time)
    last_access: float = Field(default_factory=time.time)

    def judged_as(
        self, product_id: str, key: Optional[str] = None
    ) -> Tuple[Optional[str], Optional[JudgmentState]]:
        """(owning product id, terminal state) matched by id, then by dedup key."""
        if product_id in self.judgments:
            return product_id, self.judgments[product_id]
        owner = self.key_owners.get(key) if key else None
        if owner is not None and owner in self.judgments:
            return owner, self.judgments[owner]
        return None, None

    def state_of(self, product_id: str, key: Optional[str] = None) -> JudgmentState:
        _, judged = self.judged_as(product_id, key)
        if judged is not None:
            return judged
        seen = self.constraints.seen_ids
        if product_id in seen or (key is not None and key in seen):
            return JudgmentState.SEEN
        return JudgmentState.UNSEEN


# =============================================================================
# Products
# =============================================================================

class CandidateProduct(CamelModel):
    """
    A product from the candidate retriever.

    Required: title, price > 0, and at least one of affiliateUrl / id.
    Everything else is optional; unknown score components stay None.
    """
    id: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., gt=0)
    currency: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    retailer: Optional[str] = None
    availability: Availability = Availability.UNKNOWN
    images: List[str] = Field(default_factory=list)
    affiliate_url: str = ""

    similarity: Optional[float] = None
    quality_score: Optional[float] = None
    recency_score: Optional[float] = None
    popularity_score: Optional[float] = None

    is_vendor: bool = False
    sponsored: bool = False
    condition: Condition = Condition.NEW
    region_mask: Optional[List[str]] = None

    prime_eligible: bool = False
    free_shipping: bool = False
    best_seller: bool = False
    delivery_days: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("affiliate_url", "description", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("categories", "images", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return [] if v is None else v

    @field_validator("categories")
    @classmethod
    def dedupe_categories(cls, v: List[str]) -> List[str]:
        seen: Set[str] = set()
        out = []
        for c in v:
            key = c.strip().lower()
            if key and key not in seen:
                seen.add(key)
                out.append(c.strip())
        return out

    @field_validator("availability", mode="before")
    @classmethod
    def normalize_availability(cls, v):
        if v is None:
            return Availability.UNKNOWN
        if isinstance(v, str):
            v = v.strip().upper()
            if v not in Availability.__members__:
                return Availability.UNKNOWN
        return v

    @model_validator(mode="after")
    def require_identity(self) -> "CandidateProduct":
        if not self.affiliate_url.strip() and not self.id:
            raise ValueError("Candidate needs an affiliateUrl or an id")
        return self

    @property
    def dedup_key(self) -> str:
        return dedup_key(self.affiliate_url, self.id, self.title)


class RankedProduct(CandidateProduct):
    """Candidate plus its position in one ranking pass."""
    final_score: float
    rank: int = Field(..., ge=0)
    badges: List[str] = Field(default_factory=list)


class RecommendationResult(CamelModel):
    """One page of the ranked, deduplicated stream."""
    page: int = Field(..., ge=0)
    has_more: bool
    products: List[RankedProduct] = Field(default_factory=list)


# =============================================================================
# Feedback
# =============================================================================

class ProductSnapshot(CamelModel):
    """Denormalized display fields sent with a swipe so nothing is re-fetched."""
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    image_url: Optional[str] = None
    affiliate_url: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    embedding: Optional[List[float]] = None

    @classmethod
    def from_product(cls, product: CandidateProduct) -> "ProductSnapshot":
        return cls(
            title=product.title,
            description=product.description,
            price=product.price,
            image_url=product.images[0] if product.images else None,
            affiliate_url=product.affiliate_url or None,
            categories=list(product.categories),
        )


class SwipeEvent(CamelModel):
    session_id: str
    product_id: str
    action: SwipeAction
    timestamp: float = Field(default_factory=time.time)


class SaveRecord(CamelModel):
    """Auxiliary record written once per accepted product."""
    session_id: str
    product_id: str
    dedup_key: str
    snapshot: Optional[ProductSnapshot] = None
    saved_at: float = Field(default_factory=time.time)


class ImpressionRecord(CamelModel):
    """Which products one served page contained."""
    session_id: str
    page: int
    product_ids: List[str] = Field(default_factory=list)
    results_count: int = 0
    created_at: float = Field(default_factory=time.time)

    @classmethod
    def from_result(cls, session_id: str, result: "RecommendationResult") -> "ImpressionRecord":
        ids = [p.id or p.dedup_key for p in result.products]
        return cls(session_id=session_id, page=result.page, product_ids=ids, results_count=len(ids))


class SwipeStatus(str, Enum):
    RECORDED = "recorded"
    DUPLICATE = "duplicate"     # same terminal action again, no-op
    CONFLICT = "conflict"       # opposite action after terminal state, first write wins
    IGNORED = "ignored"         # SAVED without a prior RIGHT


class SwipeAck(CamelModel):
    success: bool = True
    status: SwipeStatus
    state: JudgmentState
    saved_count: int = 0
    message: str = ""


def parse_constraints(raw) -> SessionConstraints:
    """Validate an inbound constraint payload, raising InvalidConstraintsError."""
    if raw is None:
        return SessionConstraints()
    if isinstance(raw, SessionConstraints):
        return raw
    try:
        return SessionConstraints.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        raise InvalidConstraintsError(
            first.get("msg", "Invalid constraints"),
            field=".".join(str(p) for p in first.get("loc", ())) or None,
        ) from e
