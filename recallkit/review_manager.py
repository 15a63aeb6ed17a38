"""
This module defines the ReviewStateManager, which owns the scheduling state of
every card: it creates states lazily, decides which cards are due, and applies
ratings through the scheduler. ReviewQueue walks the due cards of a sitting.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .models import Card, ProgressStats, Rating, ReviewState
from .scheduler import BaseScheduler
from .storage.base import StorageBackend

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReviewStateManager:
    """
    Resolves and updates ReviewStates.

    Cards with a store identity (or any card under the file backend) keep
    their state in the storage backend. Every resolved state is mirrored in
    an in-process cache keyed by location; under the relational backend that
    cache is the only home of cards without a card_id.
    """

    def __init__(
        self,
        storage: StorageBackend,
        scheduler: BaseScheduler,
        clock: Optional[Clock] = None,
    ):
        self.storage = storage
        self.scheduler = scheduler
        self._clock = clock or utc_now
        self._cache: Dict[str, ReviewState] = {}

    def _is_persistent(self, card: Card) -> bool:
        return not self.storage.has_card_ids or card.card_id is not None

    def _initial_state(self, card: Card) -> ReviewState:
        blob = self.scheduler.initial_state()
        return ReviewState(
            card_id=card.card_id,
            card_key=card.location_key,
            scheduler_state=blob,
            last_review=None,
            review_count=0,
            due=self.scheduler.due_of(blob),
        )

    def get_state(self, card: Card) -> ReviewState:
        """
        Returns the card's state, creating it on first access.

        Raises:
            StorageError: If the backend cannot be read or the new state
                cannot be registered.
        """
        key = card.location_key
        cached = self._cache.get(key)
        if cached is not None and cached.card_id == card.card_id:
            return cached

        state = self.storage.get_review_state(card) if self._is_persistent(card) else None
        if state is None:
            state = self._initial_state(card)
            if self._is_persistent(card):
                state = self.storage.create_review_state(state)
            logger.debug(f"Created review state for {key}")
        self._cache[key] = state
        return state

    def is_due(self, card: Card, now: Optional[datetime] = None) -> bool:
        return self.get_state(card).is_due(now or self._clock())

    def due_cards(self, cards: List[Card], now: Optional[datetime] = None) -> List[Card]:
        """The due subset of `cards`, keeping their order."""
        now = now or self._clock()
        return [card for card in cards if self.is_due(card, now)]

    def is_new_card(self, card: Card) -> bool:
        return self.get_state(card).review_count == 0

    def apply_rating(
        self, card: Card, rating: Rating, now: Optional[datetime] = None
    ) -> ReviewState:
        """
        Schedules the card's next review from a rating and persists the result.

        The cache is only updated once the new state is stored, so a failed
        write leaves the previous state in place.

        Raises:
            ValueError: If the rating is not 1-4.
            StorageError: If the new state cannot be persisted.
        """
        rating = Rating(int(rating))
        now = now or self._clock()
        state = self.get_state(card)

        new_blob, due = self.scheduler.next_state(state.scheduler_state, rating, now)
        if due < now:
            due = now

        updated = ReviewState(
            card_id=card.card_id,
            card_key=card.location_key,
            scheduler_state=new_blob,
            last_review=now,
            review_count=state.review_count + 1,
            due=due,
        )
        if self._is_persistent(card):
            self.storage.save_review_state(updated)
        self._cache[card.location_key] = updated
        logger.info(
            f"Rated {card.location_key} {rating.name}: review #{updated.review_count}, "
            f"next due {due.isoformat()}"
        )
        return updated

    def delete_state(self, card_id: int) -> bool:
        """Forget the state of a card. A missing state is not an error."""
        deleted = False
        if self.storage.has_card_ids:
            deleted = self.storage.delete_review_state(card_id)
        for key in [k for k, s in self._cache.items() if s.card_id == card_id]:
            del self._cache[key]
        return deleted

    def get_progress(self, cards: List[Card], now: Optional[datetime] = None) -> ProgressStats:
        now = now or self._clock()
        due = reviewed = 0
        for card in cards:
            state = self.get_state(card)
            if state.is_due(now):
                due += 1
            if state.review_count > 0:
                reviewed += 1
        return ProgressStats(total=len(cards), due=due, reviewed=reviewed)


class ReviewQueue:
    """
    Round-robin cursor over the cards due in one sitting.

    `next_card` moves forward and wraps from the last card to the first;
    `refresh` recomputes the due set (after each rating) and restarts the
    cursor at the front.
    """

    def __init__(
        self,
        manager: ReviewStateManager,
        cards_provider: Callable[[], List[Card]],
    ):
        self.manager = manager
        self._cards_provider = cards_provider
        self.due: List[Card] = []
        self._index = -1
        self.initial_due_count = 0
        self.refresh()
        self.initial_due_count = len(self.due)

    def __len__(self) -> int:
        return len(self.due)

    def refresh(self, now: Optional[datetime] = None) -> None:
        self.due = self.manager.due_cards(self._cards_provider(), now)
        self._index = -1

    def next_card(self) -> Optional[Card]:
        if not self.due:
            return None
        self._index = (self._index + 1) % len(self.due)
        return self.due[self._index]
