"""
Tests for the pagination & dedup controller.
"""

from unittest.mock import MagicMock

import pytest


class TestGetPage:
    def test_first_page(self, pagination):
        result = pagination.get_page("s1", page=0)

        assert result.page == 0
        assert len(result.products) == 30
        assert result.has_more is True
        assert [p.id for p in result.products] == [str(i) for i in range(1, 31)]

    def test_no_repeat_across_pages(self, pagination):
        seen = []
        for page in range(3):
            result = pagination.get_page("s1", page=page)
            seen.extend(p.dedup_key for p in result.products)

        assert len(seen) == len(set(seen)) == 60

    def test_has_more_size_heuristic(self, pagination):
        """A full page implies more; the page after an exact fit is empty."""
        first = pagination.get_page("s1", page=0)
        second = pagination.get_page("s1", page=1)
        third = pagination.get_page("s1", page=2)

        assert first.has_more is True
        assert len(second.products) == 30
        assert second.has_more is True
        assert third.products == []
        assert third.has_more is False

    def test_resurfacing_pool(self, pagination, static_retriever, make_candidate):
        """Page 0 served 1..30; the pool for page 1 is 25..40 -> only 31..40 come back."""
        pagination.get_page("s1", page=0)

        static_retriever.set_products([
            make_candidate(i, qualityScore=1.0 - i * 0.01) for i in range(25, 41)
        ])
        result = pagination.get_page("s1", page=1)

        assert [p.id for p in result.products] == [str(i) for i in range(31, 41)]
        assert result.has_more is False

    def test_exclusion_survives_constraint_change(self, pagination, session_store, recorder):
        from gifts.models import SessionConstraints

        first = pagination.get_page("s1", page=0, page_size=5)
        rejected = first.products[0]
        recorder.record_swipe("s1", rejected.id, "LEFT")

        # Forget what was served; the rejection alone must keep it out
        with session_store.session("s1") as profile:
            profile.constraints.seen_ids.clear()

        result = pagination.get_page("s1", page=1, page_size=60, constraints=SessionConstraints(budget="25-50"))

        assert rejected.dedup_key not in {p.dedup_key for p in result.products}
        assert len(result.products) == 59

    def test_rejection_by_id_alone_blocks_item(self, pagination, recorder):
        """A LEFT sent without a snapshot keys the judgment by id; the item still never shows."""
        recorder.record_swipe("s9", "1", "LEFT")

        result = pagination.get_page("s9", page=0, page_size=60)

        assert "1" not in {p.id for p in result.products}
        assert len(result.products) == 59

    def test_sessions_isolated(self, pagination):
        a = pagination.get_page("a", page=0, page_size=10)
        b = pagination.get_page("b", page=0, page_size=10)

        assert [p.id for p in a.products] == [p.id for p in b.products]

    def test_constraints_merged_into_session(self, pagination, session_store):
        from gifts.models import SessionConstraints

        pagination.get_page("s1", constraints=SessionConstraints(budget="50-100"))

        profile = session_store.get("s1")
        assert profile.constraints.min_price == 50.0
        assert len(profile.constraints.seen_ids) == 0  # sample prices are 42.0

    @pytest.mark.parametrize("page,page_size", [(-1, 30), (1001, 30), (0, 0), (0, 101)])
    def test_invalid_page_arguments(self, pagination, page, page_size):
        from core.errors import InvalidPageError

        with pytest.raises(InvalidPageError):
            pagination.get_page("s1", page=page, page_size=page_size)

    def test_retrieval_failure_is_empty_page(self, session_store):
        from gifts.pagination import PaginationController

        retriever = MagicMock()
        retriever.retrieve_candidates.side_effect = RuntimeError("search backend down")
        controller = PaginationController(session_store, retriever)

        result = controller.get_page("s1", page=0)

        assert result.products == []
        assert result.has_more is False

    def test_invalid_candidates_dropped(self, session_store, make_candidate):
        from gifts.pagination import PaginationController
        from gifts.retriever import StaticCatalogRetriever

        retriever = StaticCatalogRetriever([make_candidate(1), make_candidate(2, price=-3), {"junk": True}])
        controller = PaginationController(session_store, retriever)

        result = controller.get_page("s1")

        assert [p.id for p in result.products] == ["1"]

    def test_served_keys_recorded_as_seen(self, pagination, session_store):
        result = pagination.get_page("s1", page=0, page_size=3)

        seen = session_store.get("s1").constraints.seen_ids
        assert {p.dedup_key for p in result.products} <= seen


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
