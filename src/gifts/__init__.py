"""
Gift deck core.

Server-side components: candidate ingestion, ranking, pagination with
session-wide dedup, idempotent feedback recording, and the service
container that wires them together.
"""

from gifts.engine import GiftDeckService
from gifts.feedback import FeedbackRecorder, WeightedAverageNudger
from gifts.models import (
    CandidateProduct,
    RankedProduct,
    RecommendationResult,
    SessionConstraints,
    SessionProfile,
    SwipeAction,
)
from gifts.pagination import PaginationController
from gifts.ranking import RankingWeights, rank_candidates
from gifts.retriever import StaticCatalogRetriever, SupabaseCandidateRetriever
from gifts.session_state import SessionProfileStore

__all__ = [
    "GiftDeckService",
    "FeedbackRecorder",
    "WeightedAverageNudger",
    "CandidateProduct",
    "RankedProduct",
    "RecommendationResult",
    "SessionConstraints",
    "SessionProfile",
    "SwipeAction",
    "PaginationController",
    "RankingWeights",
    "rank_candidates",
    "StaticCatalogRetriever",
    "SupabaseCandidateRetriever",
    "SessionProfileStore",
]
