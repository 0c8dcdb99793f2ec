"""
Tests for the client deck controller.
"""

from typing import Dict, List, Set

import pytest


class FakeTransport:
    """Serves prepared pages and records feedback calls."""

    def __init__(self, pages: Dict[int, List], last_page: int):
        self.pages = pages
        self.last_page = last_page
        self.failing: Set[int] = set()
        self.swipes = []
        self.requested_pages = []

    def _result(self, page):
        from gifts.models import RecommendationResult
        products = self.pages.get(page, [])
        return RecommendationResult(page=page, has_more=page < self.last_page, products=products)

    def recommend(self, constraints, session_seed=None):
        from core.errors import DeckLoadError
        self.requested_pages.append(0)
        if 0 in self.failing:
            raise DeckLoadError("recommend failed", status_code=503)
        return session_seed or "sess_server", self._result(0)

    def recommend_more(self, session_id, constraints, page):
        from core.errors import DeckLoadError
        self.requested_pages.append(page)
        if page in self.failing:
            raise DeckLoadError("recommend-more failed", status_code=503)
        return self._result(page)

    def swipe(self, session_id, product_id, action, snapshot=None):
        from gifts.models import JudgmentState, SwipeAck, SwipeStatus
        self.swipes.append((product_id, action.value))
        return SwipeAck(status=SwipeStatus.RECORDED, state=JudgmentState.ACCEPTED)


@pytest.fixture
def ranked(make_candidate):
    from gifts.models import RankedProduct

    def _ranked(*ids):
        return [
            RankedProduct.model_validate({**make_candidate(i), "finalScore": 1.0 - n * 0.01, "rank": n})
            for n, i in enumerate(ids)
        ]
    return _ranked


@pytest.fixture
def repo():
    from client.session_store import InMemoryKeyValueStore, SessionIdRepository
    return SessionIdRepository(InMemoryKeyValueStore())


def _deck(transport, repo, dispatcher=None):
    from client.deck import DeckController
    return DeckController(transport, repo, dispatcher=dispatcher, prefetch_threshold=6)


def _ids(cards):
    return [c.id for c in cards]


class TestStart:
    def test_start_fills_stack_top_first(self, ranked, repo):
        from gifts.models import SessionConstraints

        deck = _deck(FakeTransport({0: ranked(*range(1, 11))}, last_page=3), repo)
        deck.start(SessionConstraints())

        assert deck.top.id == "1"
        assert deck.current_index == 9
        assert _ids(deck.remaining()) == [str(i) for i in range(1, 11)]
        assert deck.session_id == repo.get_session_id()

    def test_start_failure_surfaces(self, ranked, repo):
        from core.errors import DeckLoadError
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(1)}, last_page=0)
        transport.failing.add(0)

        with pytest.raises(DeckLoadError):
            _deck(transport, repo).start(SessionConstraints())

    def test_server_session_id_adopted(self, ranked, repo):
        from gifts.models import SessionConstraints

        class Renaming(FakeTransport):
            def recommend(self, constraints, session_seed=None):
                _, result = super().recommend(constraints, session_seed)
                return "sess_renamed", result

        deck = _deck(Renaming({0: ranked(1)}, last_page=0), repo)
        deck.start(SessionConstraints())

        assert deck.session_id == "sess_renamed"
        assert repo.get_session_id() == "sess_renamed"

    def test_start_over_clears_session(self, ranked, repo):
        from gifts.models import SessionConstraints

        deck = _deck(FakeTransport({0: ranked(1, 2)}, last_page=0), repo)
        deck.start(SessionConstraints())
        old = deck.session_id

        deck.start_over()

        assert repo.get_session_id() is None
        assert deck.top is None
        assert len(deck) == 0
        deck.start(SessionConstraints())
        assert deck.session_id != old


class TestSwipe:
    def test_left_and_right_feedback(self, ranked, repo):
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(1, 2, 3)}, last_page=0)
        deck = _deck(transport, repo)
        deck.start(SessionConstraints())

        assert deck.swipe("LEFT", "1") is True
        assert deck.swipe("right") is True

        assert transport.swipes == [("1", "LEFT"), ("2", "RIGHT"), ("2", "SAVED")]
        assert deck.top.id == "3"

    def test_up_down_ignored(self, ranked, repo):
        from client.deck import Direction
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(1, 2)}, last_page=0)
        deck = _deck(transport, repo)
        deck.start(SessionConstraints())

        assert deck.swipe(Direction.UP) is False
        assert deck.swipe("DOWN") is False
        assert deck.current_index == 1
        assert transport.swipes == []

    def test_unknown_direction_is_input_error(self, ranked, repo):
        from core.errors import InputError, InvalidActionError
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(1, 2)}, last_page=0)
        deck = _deck(transport, repo)
        deck.start(SessionConstraints())

        with pytest.raises(InvalidActionError) as exc:
            deck.swipe("foo")
        assert isinstance(exc.value, InputError)
        assert exc.value.kind == "invalid_action"
        with pytest.raises(InvalidActionError):
            deck.swipe(None)
        assert deck.current_index == 1
        assert transport.swipes == []

    def test_non_top_card_ignored(self, ranked, repo):
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(1, 2)}, last_page=0)
        deck = _deck(transport, repo)
        deck.start(SessionConstraints())

        assert deck.swipe("LEFT", "2") is False
        assert deck.top.id == "1"

    def test_swiped_card_hidden(self, ranked, repo):
        from gifts.models import SessionConstraints

        deck = _deck(FakeTransport({0: ranked(1, 2)}, last_page=0), repo)
        deck.start(SessionConstraints())
        card = deck.top

        deck.swipe("LEFT")

        assert deck.is_hidden(card)
        assert card.id not in _ids(deck.remaining())

    def test_feedback_failure_does_not_roll_back(self, ranked, repo):
        from core.errors import FeedbackDeliveryError
        from gifts.models import SessionConstraints

        class Failing(FakeTransport):
            def swipe(self, *args, **kwargs):
                raise FeedbackDeliveryError("offline")

        deck = _deck(Failing({0: ranked(1, 2)}, last_page=0), repo)
        deck.start(SessionConstraints())

        assert deck.swipe("RIGHT") is True
        assert deck.top.id == "2"

    def test_exhausted(self, ranked, repo):
        from gifts.models import SessionConstraints

        deck = _deck(FakeTransport({0: ranked(1)}, last_page=0), repo)
        deck.start(SessionConstraints())
        deck.swipe("LEFT")

        assert deck.exhausted is True
        assert deck.swipe("LEFT") is False
        assert deck.load_more() is False


class TestPrefetch:
    def test_prefetch_at_threshold_places_cards_beneath(self, ranked, repo):
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(*range(1, 11)), 1: ranked(*range(11, 21))}, last_page=3)
        deck = _deck(transport, repo)
        deck.start(SessionConstraints())

        deck.swipe("LEFT")
        deck.swipe("LEFT")
        assert transport.requested_pages == [0]

        deck.swipe("LEFT")  # current_index reaches 6

        assert transport.requested_pages == [0, 1]
        assert deck.page == 1
        assert deck.top.id == "4"
        assert _ids(deck.remaining()) == [str(i) for i in range(4, 21)]

    def test_incoming_duplicates_dropped(self, ranked, repo):
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(1, 2, 3), 1: ranked(2, 11, 11, 12)}, last_page=3)
        deck = _deck(transport, repo)
        deck.start(SessionConstraints())

        assert _ids(deck.remaining()) == ["1", "2", "3", "11", "12"]

    def test_swiped_cards_still_count_as_held(self, ranked, repo):
        from client.dispatch import DeferredDispatcher
        from gifts.models import SessionConstraints

        dispatcher = DeferredDispatcher()
        transport = FakeTransport({0: ranked(1, 2, 3), 1: ranked(1, 4)}, last_page=3)
        deck = _deck(transport, repo, dispatcher)
        deck.start(SessionConstraints())
        deck.swipe("LEFT")

        dispatcher.run_pending()

        assert _ids(deck.remaining()) == ["2", "3", "4"]

    def test_single_load_in_flight(self, ranked, repo):
        from client.dispatch import DeferredDispatcher
        from gifts.models import SessionConstraints

        dispatcher = DeferredDispatcher()
        transport = FakeTransport({0: ranked(*range(1, 21)), 1: ranked(21)}, last_page=3)
        deck = _deck(transport, repo, dispatcher)
        deck.start(SessionConstraints())

        assert deck.load_more() is True
        assert deck.loading is True
        assert deck.load_more() is False

        dispatcher.run_pending()

        assert transport.requested_pages == [0, 1]
        assert deck.loading is False
        assert deck.page == 1

    def test_latch_fires_once_per_crossing(self, ranked, repo):
        from client.dispatch import DeferredDispatcher
        from gifts.models import SessionConstraints

        dispatcher = DeferredDispatcher()
        transport = FakeTransport({0: ranked(*range(1, 9)), 1: ranked(*range(9, 30))}, last_page=3)
        deck = _deck(transport, repo, dispatcher)
        deck.start(SessionConstraints())

        deck.swipe("LEFT")  # index 6: prefetch requested
        deck.swipe("LEFT")  # index 5: latch holds
        dispatcher.run_pending()

        assert transport.requested_pages == [0, 1]

    def test_failed_load_leaves_state(self, ranked, repo):
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(*range(1, 8))}, last_page=3)
        transport.failing.add(1)
        deck = _deck(transport, repo)
        deck.start(SessionConstraints())  # 7 cards, index 6: prefetch fires and fails

        assert transport.requested_pages == [0, 1]
        assert deck.page == 0
        assert deck.has_more_pages is True
        assert deck.loading is False
        assert deck.last_load_error is not None
        assert _ids(deck.remaining()) == [str(i) for i in range(1, 8)]

        # Latch re-armed: the next crossing retries
        deck.swipe("LEFT")
        assert transport.requested_pages == [0, 1, 1]

    def test_empty_page_ends_pagination(self, ranked, repo):
        from gifts.models import SessionConstraints

        transport = FakeTransport({0: ranked(1, 2, 3), 1: []}, last_page=3)
        deck = _deck(transport, repo)
        deck.start(SessionConstraints())

        assert deck.has_more_pages is False
        assert deck.load_more() is False

    def test_responses_for_old_session_ignored(self, ranked, repo):
        from client.dispatch import DeferredDispatcher
        from gifts.models import SessionConstraints

        dispatcher = DeferredDispatcher()
        transport = FakeTransport({0: ranked(*range(1, 21)), 1: ranked(99)}, last_page=3)
        deck = _deck(transport, repo, dispatcher)
        deck.start(SessionConstraints())
        deck.load_more()

        deck.start_over()
        dispatcher.run_pending()

        assert len(deck) == 0


class TestDeckAgainstService:
    def test_swipe_through_everything(self, service, repo):
        """Every card is shown exactly once and every like is saved once."""
        from client.deck import DeckController
        from client.transport import InProcessTransport
        from gifts.models import SessionConstraints

        deck = DeckController(InProcessTransport(service), repo, prefetch_threshold=6)
        deck.start(SessionConstraints())

        shown = []
        while deck.top is not None:
            card = deck.top
            shown.append(card.id)
            deck.swipe("RIGHT" if len(shown) % 2 else "LEFT", card.id)

        assert len(shown) == len(set(shown)) == 60
        assert deck.has_more_pages is False
        saved = service.saved(deck.session_id)
        assert len(saved) == 30
        assert {r.product_id for r in saved} == set(shown[0::2])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
