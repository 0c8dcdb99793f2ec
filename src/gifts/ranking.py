"""
Ranking Engine for the gift deck.

Turns a validated candidate pool into a strict, explainable order:

    final_score = w_sim * similarity
                + w_quality * quality_score
                + w_recency * recency_score
                + w_popularity * popularity_score
                + vendor_boost (is_vendor)
                + sponsored_boost (sponsored)
                - unavailability_penalty (OUT_OF_STOCK)

Component normalization:
- Missing components count as 0, never as the pool average, so missing data
  never inflates an item.
- Negative values clamp to 0.
- If any value of a component in the pool exceeds 1 (e.g. raw popularity
  counts), that component is divided by its pool maximum.
- A candidate with none of similarity / quality / popularity gets a flat 0.

Ordering: final_score desc, then quality desc, then id asc. Ids compare
naturally: all-digit ids order numerically ("2" before "10") and sort ahead
of non-numeric ids, which compare as strings. Candidates without an id fall
back to their dedup key. The id tie-break makes re-ranking an identical pool
reproducible, which the no-repeat guarantee relies on.

Pure: no I/O, no session mutation.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from gifts.models import (
    Availability,
    CandidateProduct,
    RankedProduct,
    SessionProfile,
)


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class RankingWeights:
    """Weights and boosts for the composite score.

    Defaults follow the gift catalogue's historical weighting: quality
    matters most, similarity and recency equally, popularity least.
    """

    similarity: float = 0.25
    quality: float = 0.35
    recency: float = 0.25
    popularity: float = 0.15

    vendor_boost: float = 0.05
    sponsored_boost: float = 0.03
    unavailability_penalty: float = 0.5

    @classmethod
    def from_settings(cls, settings) -> "RankingWeights":
        return cls(
            similarity=settings.ranking_weight_similarity,
            quality=settings.ranking_weight_quality,
            recency=settings.ranking_weight_recency,
            popularity=settings.ranking_weight_popularity,
            vendor_boost=settings.ranking_vendor_boost,
            sponsored_boost=settings.ranking_sponsored_boost,
            unavailability_penalty=settings.ranking_unavailability_penalty,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "similarity": self.similarity,
            "quality": self.quality,
            "recency": self.recency,
            "popularity": self.popularity,
            "vendor_boost": self.vendor_boost,
            "sponsored_boost": self.sponsored_boost,
            "unavailability_penalty": self.unavailability_penalty,
        }


DEFAULT_WEIGHTS = RankingWeights()

_COMPONENTS = ("similarity", "quality_score", "recency_score", "popularity_score")


# =============================================================================
# Scoring helpers
# =============================================================================

def _component_scales(candidates: Sequence[CandidateProduct]) -> Dict[str, float]:
    """Divisor per component: the pool max when it exceeds 1, else 1."""
    scales = {}
    for name in _COMPONENTS:
        values = [getattr(c, name) for c in candidates if getattr(c, name) is not None]
        peak = max(values) if values else 0.0
        scales[name] = peak if peak > 1.0 else 1.0
    return scales


def _normalized(value: Optional[float], scale: float) -> float:
    if value is None:
        return 0.0
    return min(max(value / scale, 0.0), 1.0)


def score_candidate(
    candidate: CandidateProduct,
    weights: RankingWeights = DEFAULT_WEIGHTS,
    scales: Optional[Dict[str, float]] = None,
) -> float:
    """Composite score for one candidate."""
    if (
        candidate.similarity is None
        and candidate.quality_score is None
        and candidate.popularity_score is None
    ):
        return 0.0

    scales = scales or {name: 1.0 for name in _COMPONENTS}

    score = (
        weights.similarity * _normalized(candidate.similarity, scales["similarity"])
        + weights.quality * _normalized(candidate.quality_score, scales["quality_score"])
        + weights.recency * _normalized(candidate.recency_score, scales["recency_score"])
        + weights.popularity * _normalized(candidate.popularity_score, scales["popularity_score"])
    )
    if candidate.is_vendor:
        score += weights.vendor_boost
    if candidate.sponsored:
        score += weights.sponsored_boost
    if candidate.availability == Availability.OUT_OF_STOCK:
        score -= weights.unavailability_penalty
    return score


def badges_for(candidate: CandidateProduct) -> List[str]:
    badges = []
    if candidate.is_vendor:
        badges.append("Partner")
    if candidate.prime_eligible:
        badges.append("Prime")
    if candidate.free_shipping:
        badges.append("Free Shipping")
    if candidate.best_seller:
        badges.append("Best Seller")
    return badges


def _id_order(candidate: CandidateProduct) -> Tuple[int, int, str]:
    ident = candidate.id or candidate.dedup_key
    if ident.isascii() and ident.isdigit():
        return (0, int(ident), ident)
    return (1, 0, ident)


def is_rankable(candidate: CandidateProduct, profile: Optional[SessionProfile]) -> bool:
    """Price and identity re-check. The retriever is supposed to filter; we verify."""
    if candidate.price <= 0:
        return False
    if not (candidate.affiliate_url or candidate.id):
        return False
    if profile is not None and not profile.constraints.price_allows(candidate.price):
        return False
    return True


# =============================================================================
# Ranking
# =============================================================================

def rank_candidates(
    candidates: Sequence[CandidateProduct],
    profile: Optional[SessionProfile] = None,
    weights: RankingWeights = DEFAULT_WEIGHTS,
    max_per_retailer: Optional[int] = None,
) -> List[RankedProduct]:
    """
    Score and order a candidate pool.

    Args:
        candidates: Validated, deduplicated pool
        profile: Session profile; only its price bounds are consulted
        weights: Score weights and boosts
        max_per_retailer: Optional diversity cap. Items over the cap are
            dropped (never reordered), so score monotonicity holds.

    Returns:
        RankedProducts with dense 0-based ranks. May be shorter than the input.
    """
    eligible = [c for c in candidates if is_rankable(c, profile)]
    if not eligible:
        return []

    scales = _component_scales(eligible)
    scored = []
    for candidate in eligible:
        score = score_candidate(candidate, weights, scales)
        quality = _normalized(candidate.quality_score, scales["quality_score"])
        scored.append((score, quality, candidate))

    scored.sort(key=lambda t: (-t[0], -t[1], _id_order(t[2])))

    retailer_counts: Dict[str, int] = defaultdict(int)
    ranked: List[RankedProduct] = []
    for score, _quality, candidate in scored:
        if max_per_retailer is not None:
            retailer = (candidate.retailer or "unknown").lower()
            if retailer_counts[retailer] >= max_per_retailer:
                continue
            retailer_counts[retailer] += 1

        ranked.append(
            RankedProduct(
                **candidate.model_dump(),
                final_score=score,
                rank=len(ranked),
                badges=badges_for(candidate),
            )
        )

    return ranked
