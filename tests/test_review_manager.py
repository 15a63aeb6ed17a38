"""
Tests for ReviewStateManager and ReviewQueue, run against every backend with
the deterministic fake scheduler.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from recallkit.exceptions import ReviewOperationError
from recallkit.models import Card, Rating
from recallkit.review_manager import ReviewQueue, ReviewStateManager
from recallkit.storage.base import StorageBackend


@pytest.fixture
def manager(storage: StorageBackend, fake_scheduler, fixed_now) -> ReviewStateManager:
    return ReviewStateManager(storage, fake_scheduler, clock=lambda: fixed_now)


@pytest.fixture
def cards(storage: StorageBackend):
    return [
        storage.add_card(Card(question=f"Q{i}", answer=f"A{i}", source_file="deck.txt", source_line=i))
        for i in range(1, 4)
    ]


def test_new_card_state_created_lazily(manager: ReviewStateManager, cards):
    card = cards[0]
    assert manager.storage.get_review_state(card) is None

    state = manager.get_state(card)
    assert state.review_count == 0
    assert state.last_review is None
    assert state.card_key == "deck.txt:1"
    assert manager.is_new_card(card)
    assert manager.is_due(card)
    if manager.storage.has_card_ids:
        assert manager.storage.get_review_state(card) is not None


def test_get_state_is_stable(manager: ReviewStateManager, cards):
    assert manager.get_state(cards[0]) is manager.get_state(cards[0])


def test_apply_rating_good(manager: ReviewStateManager, cards, fixed_now):
    card = cards[0]
    state = manager.apply_rating(card, Rating.Good)

    assert state.review_count == 1
    assert state.last_review == fixed_now
    assert state.due == fixed_now + timedelta(days=3)
    assert not manager.is_new_card(card)
    assert not manager.is_due(card)
    assert manager.is_due(card, now=fixed_now + timedelta(days=3))

    stored = manager.storage.get_review_state(card)
    assert stored.review_count == 1
    assert stored.due == state.due


def test_apply_rating_accepts_int(manager: ReviewStateManager, cards):
    assert manager.apply_rating(cards[0], 1).review_count == 1


def test_apply_rating_rejects_bad_rating(manager: ReviewStateManager, cards):
    with pytest.raises(ValueError):
        manager.apply_rating(cards[0], 7)
    assert manager.get_state(cards[0]).review_count == 0


def test_due_is_never_in_the_past(manager: ReviewStateManager, cards, fixed_now):
    with patch.object(manager.scheduler, "next_state", return_value=('{"due": "2000-01-01T00:00:00+00:00"}', fixed_now - timedelta(days=1))):
        state = manager.apply_rating(cards[0], Rating.Hard)
    assert state.due == fixed_now


def test_failed_persist_keeps_previous_state(manager: ReviewStateManager, cards):
    card = cards[0]
    manager.apply_rating(card, Rating.Good)
    with patch.object(manager.storage, "save_review_state", side_effect=ReviewOperationError("write failed")):
        with pytest.raises(ReviewOperationError):
            manager.apply_rating(card, Rating.Easy)
    assert manager.get_state(card).review_count == 1
    assert manager.storage.get_review_state(card).review_count == 1


def test_state_reloaded_by_fresh_manager(storage, fake_scheduler, fixed_now, cards):
    ReviewStateManager(storage, fake_scheduler, clock=lambda: fixed_now).apply_rating(cards[1], Rating.Easy)
    fresh = ReviewStateManager(storage, fake_scheduler, clock=lambda: fixed_now)
    assert fresh.get_state(cards[1]).review_count == 1
    assert not fresh.is_due(cards[1])


def test_due_cards_and_progress(manager: ReviewStateManager, cards, fixed_now):
    manager.apply_rating(cards[1], Rating.Good)
    assert manager.due_cards(cards) == [cards[0], cards[2]]

    progress = manager.get_progress(cards)
    assert (progress.total, progress.due, progress.reviewed) == (3, 2, 1)

    later = fixed_now + timedelta(days=4)
    assert manager.due_cards(cards, now=later) == cards


def test_card_without_id_lives_in_cache(db_storage, fake_scheduler, fixed_now):
    manager = ReviewStateManager(db_storage, fake_scheduler, clock=lambda: fixed_now)
    loose = Card(question="Loose", answer="Card", source_file="scratch.txt", source_line=1)

    state = manager.apply_rating(loose, Rating.Good)

    assert state.card_id is None
    assert manager.get_state(loose).review_count == 1
    assert db_storage.get_all_review_states() == []


def test_delete_state(db_storage, fake_scheduler, fixed_now):
    manager = ReviewStateManager(db_storage, fake_scheduler, clock=lambda: fixed_now)
    card = db_storage.add_card(Card(question="Q", answer="A", source_file="d.txt", source_line=1))
    manager.apply_rating(card, Rating.Good)

    assert manager.delete_state(card.card_id)
    assert not manager.delete_state(card.card_id)
    assert manager.get_state(card).review_count == 0


class TestReviewQueue:
    def test_round_robin_wraps(self, manager: ReviewStateManager, cards):
        queue = ReviewQueue(manager, lambda: cards)
        assert queue.initial_due_count == 3
        seen = [queue.next_card().question for _ in range(4)]
        assert seen == ["Q1", "Q2", "Q3", "Q1"]

    def test_refresh_drops_rated_cards_and_restarts(self, manager: ReviewStateManager, cards):
        queue = ReviewQueue(manager, lambda: cards)
        queue.next_card()
        second = queue.next_card()
        manager.apply_rating(second, Rating.Good)
        queue.refresh()

        assert len(queue) == 2
        assert queue.next_card().question == "Q1"
        assert queue.next_card().question == "Q3"
        assert queue.initial_due_count == 3

    def test_empty_queue(self, manager: ReviewStateManager, cards):
        for card in cards:
            manager.apply_rating(card, Rating.Easy)
        queue = ReviewQueue(manager, lambda: cards)
        assert queue.initial_due_count == 0
        assert queue.next_card() is None
