"""
The storage contract shared by the JSON file backend and the DuckDB backend.

Getters return None (or an empty list) when a record does not exist; every
other failure raises a StorageError subclass.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import List, Optional

from ..models import Card, DailyStats, LearningStreak, ReviewState, Session


class StorageBackend(ABC):
    """Abstract persistence layer injected into the managers."""

    #: True when cards receive a store identity (`card_id`) on insert.
    has_card_ids: bool = False

    # --- Lifecycle ---

    def open(self) -> "StorageBackend":
        """Prepare the backend for use. Returns self."""
        return self

    @abstractmethod
    def close(self) -> None:
        """Release any held resources."""

    def __enter__(self) -> "StorageBackend":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # --- Cards ---

    @abstractmethod
    def card_exists(self, question: str, answer: str) -> bool:
        """True if a card with exactly this question/answer pair is stored."""

    @abstractmethod
    def add_card(self, card: Card) -> Card:
        """Store a new card and return it with its identity filled in."""

    @abstractmethod
    def get_card(self, card_id: int) -> Optional[Card]:
        pass

    @abstractmethod
    def find_card_by_location(
        self, source_file: str, source_line: int
    ) -> Optional[Card]:
        pass

    @abstractmethod
    def get_all_cards(self) -> List[Card]:
        """All cards in creation order."""

    @abstractmethod
    def update_card(self, card: Card) -> Card:
        """
        Persist new content for an existing card.

        Raises:
            CardNotFoundError: If the card is not stored.
        """

    @abstractmethod
    def delete_card(self, card_id: int) -> bool:
        """Delete a card together with its review state. False if absent."""

    # --- Review state ---

    @abstractmethod
    def get_review_state(self, card: Card) -> Optional[ReviewState]:
        pass

    @abstractmethod
    def create_review_state(self, state: ReviewState) -> ReviewState:
        """
        Register the initial state of a card the first time it is seen.

        The relational backend writes it immediately; the file backend keeps
        it in memory until the next full rewrite of the state file.
        """

    @abstractmethod
    def save_review_state(self, state: ReviewState) -> ReviewState:
        """Insert or replace a card's review state and make it durable."""

    @abstractmethod
    def delete_review_state(self, card_id: int) -> bool:
        pass

    @abstractmethod
    def get_all_review_states(self) -> List[ReviewState]:
        pass

    # --- Sessions ---

    @abstractmethod
    def create_session(self, session: Session) -> Session:
        """Store a new session and return it with `session_id` set."""

    @abstractmethod
    def update_session(self, session: Session) -> Session:
        """Persist the running counters of an active session."""

    @abstractmethod
    def get_session(self, session_id: int) -> Optional[Session]:
        pass

    @abstractmethod
    def get_open_sessions(self) -> List[Session]:
        """Sessions that were never given an end time."""

    @abstractmethod
    def delete_empty_open_sessions(self) -> int:
        """Delete open sessions with no reviewed cards. Returns the count."""

    @abstractmethod
    def close_session(
        self,
        session: Session,
        stats_date: date,
        streak: Optional[LearningStreak] = None,
    ) -> DailyStats:
        """
        Atomically stamp the session's end time, add its counters to the
        DailyStats of `stats_date` (creating the day if needed) and, when
        given, save the streak. Returns the updated day.
        """

    # --- Daily statistics ---

    @abstractmethod
    def get_daily_stats(self, stats_date: date) -> Optional[DailyStats]:
        pass

    @abstractmethod
    def get_daily_stats_range(self, start: date, end: date) -> List[DailyStats]:
        """Stored days within [start, end], ascending."""

    @abstractmethod
    def get_all_daily_stats(self) -> List[DailyStats]:
        """Every stored day, ascending."""

    @abstractmethod
    def create_daily_stats(self, stats: DailyStats) -> None:
        """Insert a day that does not exist yet."""

    # --- Streak ---

    @abstractmethod
    def get_learning_streak(self) -> Optional[LearningStreak]:
        pass

    @abstractmethod
    def save_learning_streak(self, streak: LearningStreak) -> None:
        pass

    # --- Maintenance ---

    @abstractmethod
    def reset_statistics(self) -> None:
        """Remove all sessions, daily stats and the streak."""
