"""
Pytest configuration and shared fixtures for the gift deck tests.
"""
import os
import sys
from typing import AsyncGenerator, Callable, List
from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))


# ============================================================================
# Fixtures: Test Data Factories
# ============================================================================

@pytest.fixture
def sample_candidate_dict() -> dict:
    """Sample candidate as dictionary (camelCase, as a catalogue row)."""
    return {
        "id": "gift-001",
        "title": "Ceramic Pour-Over Coffee Set",
        "description": "Hand-glazed dripper with two cups",
        "price": 42.0,
        "currency": "USD",
        "categories": ["coffee", "kitchen"],
        "retailer": "Acme Home",
        "availability": "IN_STOCK",
        "images": ["https://example.com/images/gift-001.jpg"],
        "affiliateUrl": "https://example.com/p/gift-001?tag=giftdeck-20",
        "similarity": 0.8,
        "qualityScore": 0.7,
        "recencyScore": 0.5,
        "popularityScore": 0.4,
    }


@pytest.fixture
def make_candidate(sample_candidate_dict) -> Callable[..., dict]:
    """Factory for candidate dicts with a unique id / affiliate URL."""
    def _make(i: int, **overrides) -> dict:
        candidate = dict(sample_candidate_dict)
        candidate["id"] = str(i)
        candidate["title"] = f"Gift {i}"
        candidate["affiliateUrl"] = f"https://example.com/p/{i}"
        candidate.update(overrides)
        return candidate
    return _make


@pytest.fixture
def sample_candidates_list(make_candidate) -> List[dict]:
    """60 candidates with strictly decreasing quality, ids "1".."60"."""
    return [
        make_candidate(i, qualityScore=1.0 - i * 0.01, similarity=0.5, recencyScore=0.5, popularityScore=0.5)
        for i in range(1, 61)
    ]


# ============================================================================
# Fixtures: Mock Services
# ============================================================================

@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client for unit tests."""
    mock_client = MagicMock()

    # Mock table operations
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.upsert.return_value.execute.return_value.data = [{"dedup_key": "test"}]

    return mock_client


@pytest.fixture
def mock_supabase(mock_supabase_client):
    """Patch Supabase client creation."""
    with patch("supabase.create_client", return_value=mock_supabase_client):
        yield mock_supabase_client


@pytest.fixture
def mock_redis():
    """
    Minimal in-process stand-in for a redis-py client.

    Only the calls RedisSessionBackend makes: get/setex/delete/scan/lock.
    """
    from contextlib import contextmanager

    data = {}
    client = MagicMock()
    client.get.side_effect = data.get
    client.setex.side_effect = lambda key, ttl, value: data.__setitem__(key, value)
    client.delete.side_effect = lambda key: data.pop(key, None)
    client.scan.side_effect = lambda cursor, match=None, count=None: (
        0, [k for k in data if k.startswith(match.rstrip("*"))]
    )

    @contextmanager
    def _lock(name, timeout=None, blocking_timeout=None):
        yield

    client.lock.side_effect = _lock
    client.data = data
    return client


# ============================================================================
# Fixtures: Engine components
# ============================================================================

@pytest.fixture
def static_retriever(sample_candidates_list):
    from gifts.retriever import StaticCatalogRetriever
    return StaticCatalogRetriever(sample_candidates_list)


@pytest.fixture
def session_store():
    """In-memory session profile store."""
    from gifts.session_state import SessionProfileStore
    return SessionProfileStore(backend="memory")


@pytest.fixture
def save_store():
    from gifts.save_store import InMemorySaveStore
    return InMemorySaveStore()


@pytest.fixture
def impression_log():
    from gifts.impressions import InMemoryImpressionLog
    return InMemoryImpressionLog()


@pytest.fixture
def pagination(session_store, static_retriever):
    from gifts.pagination import PaginationController
    return PaginationController(session_store, static_retriever, default_page_size=30)


@pytest.fixture
def recorder(session_store, save_store):
    from gifts.feedback import FeedbackRecorder
    return FeedbackRecorder(session_store, save_store)


@pytest.fixture
def service(static_retriever, session_store, save_store, impression_log):
    """Started service container with in-memory collaborators."""
    from config.settings import Settings
    from gifts.engine import GiftDeckService

    svc = GiftDeckService(
        settings=Settings(),
        retriever=static_retriever,
        session_store=session_store,
        save_store=save_store,
        impression_log=impression_log,
    )
    svc.init()
    yield svc
    svc.shutdown()


# ============================================================================
# Fixtures: FastAPI Test Client
# ============================================================================

@pytest.fixture
def app(service):
    """FastAPI application wired to the in-memory service."""
    from api.app import create_app
    return create_app(service=service)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ============================================================================
# Markers auto-use
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "supabase: marks tests that require Supabase")


# ============================================================================
# Skip conditions
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """Auto-skip integration tests if no server URL is configured."""
    skip_integration = pytest.mark.skip(reason="Integration tests require running server")
    skip_supabase = pytest.mark.skip(reason="Supabase tests require credentials")

    server_url = os.getenv("TEST_SERVER_URL")
    supabase_url = os.getenv("SUPABASE_URL")

    for item in items:
        if "integration" in item.keywords and not server_url:
            item.add_marker(skip_integration)
        if "supabase" in item.keywords and not supabase_url:
            item.add_marker(skip_supabase)
