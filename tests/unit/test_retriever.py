"""
Tests for candidate ingestion and the retriever implementations.
"""

import json
from unittest.mock import MagicMock

import pytest


class TestIngestCandidates:
    """Validate-and-drop at the retriever boundary."""

    def test_drops_invalid_items(self, make_candidate):
        from gifts.retriever import ingest_candidates

        raw = [
            make_candidate(1),
            make_candidate(2, price=0),
            make_candidate(3, title=""),
            make_candidate(4, id=None, affiliateUrl=""),
            make_candidate(5),
        ]

        valid, dropped = ingest_candidates(raw)

        assert [c.id for c in valid] == ["1", "5"]
        assert dropped == 3

    def test_duplicates_keep_first(self, make_candidate):
        from gifts.retriever import ingest_candidates

        raw = [
            make_candidate(1, title="First"),
            make_candidate(2, affiliateUrl="https://example.com/p/1", title="Second"),
        ]

        valid, dropped = ingest_candidates(raw)

        assert [c.title for c in valid] == ["First"]
        assert dropped == 1

    def test_accepts_models(self, make_candidate):
        from gifts.models import CandidateProduct
        from gifts.retriever import ingest_candidates

        product = CandidateProduct.model_validate(make_candidate(1))
        valid, dropped = ingest_candidates([product])

        assert valid == [product]
        assert dropped == 0


class TestStaticCatalogRetriever:
    def test_price_filter(self, make_candidate):
        from gifts.models import SessionConstraints
        from gifts.retriever import StaticCatalogRetriever

        retriever = StaticCatalogRetriever([
            make_candidate(1, price=10),
            make_candidate(2, price=30),
            make_candidate(3, price=60),
        ])

        pool = retriever.retrieve_candidates(SessionConstraints(budget="25-50"))

        assert [p["id"] for p in pool] == ["2"]

    def test_region_mask(self, make_candidate):
        from gifts.models import SessionConstraints
        from gifts.retriever import StaticCatalogRetriever

        retriever = StaticCatalogRetriever([
            make_candidate(1, regionMask=["us"]),
            make_candidate(2, regionMask=["GB", "IE"]),
            make_candidate(3),
        ])

        pool = retriever.retrieve_candidates(SessionConstraints(country="gb"))

        assert [p["id"] for p in pool] == ["2", "3"]

    def test_interest_overlap_only_when_matching(self, make_candidate):
        from gifts.models import SessionConstraints
        from gifts.retriever import StaticCatalogRetriever

        retriever = StaticCatalogRetriever([
            make_candidate(1, categories=["books"]),
            make_candidate(2, categories=["coffee"]),
        ])

        assert [p["id"] for p in retriever.retrieve_candidates(SessionConstraints(interests=["books"]))] == ["1"]
        # A niche interest never empties the deck
        assert len(retriever.retrieve_candidates(SessionConstraints(interests=["falconry"]))) == 2

    def test_from_json_file(self, tmp_path, make_candidate):
        from gifts.models import SessionConstraints
        from gifts.retriever import StaticCatalogRetriever

        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"products": [make_candidate(1), make_candidate(2)]}))

        retriever = StaticCatalogRetriever.from_json_file(path)

        assert len(retriever) == 2
        assert len(retriever.retrieve_candidates(SessionConstraints())) == 2

    def test_set_products(self, make_candidate):
        from gifts.models import SessionConstraints
        from gifts.retriever import StaticCatalogRetriever

        retriever = StaticCatalogRetriever()
        retriever.set_products([make_candidate(7)])

        assert [p["id"] for p in retriever.retrieve_candidates(SessionConstraints())] == ["7"]


class TestSupabaseCandidateRetriever:
    def test_builds_query(self, mock_supabase_client, sample_candidate_dict):
        from gifts.models import SessionConstraints
        from gifts.retriever import SupabaseCandidateRetriever

        query = MagicMock()
        for method in ("select", "neq", "gt", "gte", "lte", "overlaps", "order", "limit"):
            getattr(query, method).return_value = query
        query.execute.return_value.data = [sample_candidate_dict]
        mock_supabase_client.table.return_value = query

        retriever = SupabaseCandidateRetriever(mock_supabase_client, table="products", limit=50)
        rows = retriever.retrieve_candidates(
            SessionConstraints(minPrice=10, maxPrice=80, interests=["coffee", "books"])
        )

        assert rows == [sample_candidate_dict]
        mock_supabase_client.table.assert_called_once_with("products")
        query.neq.assert_called_once_with("availability", "OUT_OF_STOCK")
        query.gte.assert_called_once_with("price", 10)
        query.lte.assert_called_once_with("price", 80)
        query.overlaps.assert_called_once_with("categories", ["books", "coffee"])
        query.order.assert_called_once_with("quality_score", desc=True)
        query.limit.assert_called_once_with(50)

    def test_failure_wrapped(self, mock_supabase_client):
        from core.errors import RetrievalError
        from gifts.models import SessionConstraints
        from gifts.retriever import SupabaseCandidateRetriever

        mock_supabase_client.table.side_effect = RuntimeError("connection reset")

        with pytest.raises(RetrievalError):
            SupabaseCandidateRetriever(mock_supabase_client).retrieve_candidates(SessionConstraints())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
