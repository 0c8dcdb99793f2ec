"""
Tests for the service container.
"""

import json
from unittest.mock import patch

import pytest


class TestLifecycle:
    def test_requires_init(self):
        from config.settings import Settings
        from gifts.engine import GiftDeckService

        svc = GiftDeckService(Settings())

        assert svc.started is False
        with pytest.raises(RuntimeError):
            svc.pagination

    def test_init_builds_defaults(self, tmp_path, make_candidate):
        from config.settings import Settings
        from gifts.engine import GiftDeckService
        from gifts.impressions import InMemoryImpressionLog
        from gifts.retriever import StaticCatalogRetriever
        from gifts.save_store import InMemorySaveStore

        catalog = tmp_path / "catalog.json"
        catalog.write_text(json.dumps([make_candidate(1), make_candidate(2)]))
        settings = Settings(catalog_path=catalog, supabase_url="", supabase_service_key="")

        svc = GiftDeckService(settings).init()

        assert svc.started is True
        assert isinstance(svc._retriever, StaticCatalogRetriever)
        assert len(svc._retriever) == 2
        assert isinstance(svc._save_store, InMemorySaveStore)
        assert isinstance(svc._impression_log, InMemoryImpressionLog)
        assert svc.sessions.get_stats()["backend"] == "in_memory"

        svc.shutdown()
        assert svc.started is False

    def test_init_idempotent(self, service):
        pagination = service.pagination

        service.init()

        assert service.pagination is pagination

    def test_supabase_backends(self, mock_supabase_client):
        from config.settings import Settings
        from gifts.engine import GiftDeckService
        from gifts.impressions import SupabaseImpressionLog
        from gifts.retriever import SupabaseCandidateRetriever
        from gifts.save_store import SupabaseSaveStore

        settings = Settings(
            retriever_backend="supabase",
            supabase_url="https://x.supabase.co",
            supabase_service_key="key",
        )
        with patch("config.database.get_supabase_client", return_value=mock_supabase_client), \
                patch("config.database.get_supabase_client_optional", return_value=mock_supabase_client):
            svc = GiftDeckService(settings).init()

        assert isinstance(svc._retriever, SupabaseCandidateRetriever)
        assert isinstance(svc._save_store, SupabaseSaveStore)
        assert isinstance(svc._impression_log, SupabaseImpressionLog)


class TestOperations:
    def test_recommend_generates_session(self, service):
        from gifts.models import SessionConstraints

        session_id, result = service.recommend(SessionConstraints())

        assert session_id.startswith("sess_")
        assert result.page == 0
        assert len(result.products) == 30

    def test_recommend_with_seed(self, service):
        from gifts.models import SessionConstraints

        session_id, result = service.recommend(SessionConstraints(), session_seed="sess_known")

        assert session_id == "sess_known"
        seen = service.sessions.get("sess_known").constraints.seen_ids
        assert {p.dedup_key for p in result.products} <= seen
        assert {p.id for p in result.products} <= seen

    def test_full_round(self, service):
        from gifts.models import SessionConstraints

        session_id, first = service.recommend(SessionConstraints())
        liked = first.products[0]
        service.swipe(session_id, liked.id, "RIGHT")

        more = service.recommend_more(session_id, page=1)

        assert liked.id not in {p.id for p in more.products}
        assert [r.product_id for r in service.saved(session_id)] == [liked.id]

    def test_served_pages_logged_as_impressions(self, service, impression_log):
        from gifts.models import SessionConstraints

        session_id, first = service.recommend(SessionConstraints())
        more = service.recommend_more(session_id, page=1)

        entries = service.impressions(session_id)
        assert [e.page for e in entries] == [0, 1]
        assert entries[0].product_ids == [p.id for p in first.products]
        assert entries[1].results_count == len(more.products) == 30
        assert impression_log.list_for_session("other") == []

    def test_impressions_disabled(self, static_retriever):
        from config.settings import Settings
        from gifts.engine import GiftDeckService
        from gifts.models import SessionConstraints

        settings = Settings(log_impressions=False, supabase_url="", supabase_service_key="")
        svc = GiftDeckService(settings, retriever=static_retriever).init()
        session_id, _ = svc.recommend(SessionConstraints())

        assert svc.impressions(session_id) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
