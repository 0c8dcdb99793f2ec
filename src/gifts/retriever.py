"""
Candidate retrieval boundary.

The retriever is an external collaborator: given constraints it returns an
unranked pool that may contain duplicates, stale rows or out-of-stock items.
Everything it returns passes through ingest_candidates() exactly once, which
validates against CandidateProduct and drops what does not fit. Downstream
code (ranking, pagination) never re-checks optional fields.

Implementations:
- StaticCatalogRetriever: in-memory catalogue (dev, tests, JSON seed file)
- SupabaseCandidateRetriever: the products table in Supabase
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from pydantic import ValidationError

from core.errors import RetrievalError
from core.logging import get_logger
from gifts.models import Availability, CandidateProduct, SessionConstraints


logger = get_logger(__name__)

RawCandidate = Union[Dict[str, Any], CandidateProduct]


class CandidateRetriever(Protocol):
    """Anything that can produce a candidate pool for a constraint set."""

    def retrieve_candidates(self, constraints: SessionConstraints) -> Sequence[RawCandidate]:
        ...


# =============================================================================
# Ingestion (validate-and-drop)
# =============================================================================

def ingest_candidates(raw: Iterable[RawCandidate]) -> Tuple[List[CandidateProduct], int]:
    """
    Validate a raw pool once at the boundary.

    Drops items without a title, without a positive price, or without both
    affiliateUrl and id. Duplicates by dedup key keep their first occurrence.

    Returns:
        (valid candidates in input order, number of dropped items)
    """
    valid: List[CandidateProduct] = []
    seen_keys = set()
    dropped = 0

    for item in raw:
        if isinstance(item, CandidateProduct):
            candidate = item
        else:
            try:
                candidate = CandidateProduct.model_validate(item)
            except ValidationError as e:
                dropped += 1
                logger.debug(
                    "Dropped invalid candidate",
                    candidate_id=(item or {}).get("id") if isinstance(item, dict) else None,
                    errors=e.error_count(),
                )
                continue

        key = candidate.dedup_key
        if key in seen_keys:
            dropped += 1
            continue
        seen_keys.add(key)
        valid.append(candidate)

    if dropped:
        logger.debug("Candidate ingestion dropped items", dropped=dropped, kept=len(valid))
    return valid, dropped


# =============================================================================
# Static catalogue
# =============================================================================

class StaticCatalogRetriever:
    """
    In-memory catalogue.

    Applies the same coarse filters a search backend would: price bounds,
    region mask, and interest overlap (only when at least one item matches,
    so a niche interest never empties the deck).
    """

    def __init__(self, products: Optional[Sequence[RawCandidate]] = None):
        self._products: List[RawCandidate] = list(products or [])

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "StaticCatalogRetriever":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("products", [])
        logger.info("Loaded static catalogue", path=str(path), products=len(data))
        return cls(data)

    def set_products(self, products: Sequence[RawCandidate]):
        self._products = list(products)

    def __len__(self) -> int:
        return len(self._products)

    def retrieve_candidates(self, constraints: SessionConstraints) -> List[RawCandidate]:
        pool = [p for p in self._products if self._passes(p, constraints)]

        if constraints.interests:
            matching = [p for p in pool if self._matches_interests(p, constraints.interests)]
            if matching:
                pool = matching
        return pool

    @staticmethod
    def _field(product: RawCandidate, name: str, alias: str):
        if isinstance(product, CandidateProduct):
            return getattr(product, name)
        return product.get(alias, product.get(name))

    def _passes(self, product: RawCandidate, constraints: SessionConstraints) -> bool:
        price = self._field(product, "price", "price")
        if isinstance(price, (int, float)) and not constraints.price_allows(float(price)):
            return False

        country = constraints.country or constraints.region
        mask = self._field(product, "region_mask", "regionMask")
        if country and mask:
            if country not in {str(c).upper() for c in mask}:
                return False
        return True

    def _matches_interests(self, product: RawCandidate, interests) -> bool:
        categories = [str(c).lower() for c in (self._field(product, "categories", "categories") or [])]
        return any(interest in cat for interest in interests for cat in categories)


# =============================================================================
# Supabase
# =============================================================================

class SupabaseCandidateRetriever:
    """Candidate pool from the Supabase products table."""

    COLUMNS = (
        "id, title, description, price, currency, categories, retailer, availability, "
        "images, affiliate_url, similarity, quality_score, recency_score, popularity_score, "
        "is_vendor, sponsored, condition, region_mask, prime_eligible, free_shipping, "
        "best_seller, delivery_days"
    )

    def __init__(self, client, table: str = "products", limit: int = 200):
        self._client = client
        self._table = table
        self._limit = limit

    def retrieve_candidates(self, constraints: SessionConstraints) -> List[Dict[str, Any]]:
        try:
            query = (
                self._client.table(self._table)
                .select(self.COLUMNS)
                .neq("availability", Availability.OUT_OF_STOCK.value)
                .gt("price", 0)
            )
            if constraints.min_price is not None:
                query = query.gte("price", constraints.min_price)
            if constraints.max_price is not None:
                query = query.lte("price", constraints.max_price)
            if constraints.interests:
                query = query.overlaps("categories", sorted(constraints.interests))

            result = query.order("quality_score", desc=True).limit(self._limit).execute()
        except Exception as e:
            raise RetrievalError(f"Supabase candidate query failed: {e}", table=self._table) from e

        return result.data or []
