"""
JSON file storage backend.

Review states live in one JSON object keyed by card location
("<source_file>:<source_line>"); daily statistics and the learning streak live
in a second file. Both files are rewritten in full on every durable change
(temporary file, fsync, rename), and reloaded when the backend is opened.

Cards and sessions are kept in memory only; cards are re-read from the deck
files on each start.
"""

import json
import logging
import os
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exceptions import (
    CardOperationError,
    DuplicateCardError,
    FileStoreError,
    MarshallingError,
    StatsOperationError,
)
from ..models import Card, DailyStats, LearningStreak, ReviewState, Session
from . import db_utils
from .base import StorageBackend

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: Any) -> None:
    """
    Writes `data` to `path` through a temporary sibling file so that readers
    see either the old or the new content, never a partial write.

    Raises:
        FileStoreError: If the file cannot be written.
    """
    temp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write {path}: {e}")
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                logger.warning(f"Could not remove temporary file {temp_path}")
        raise FileStoreError(f"Failed to write {path}: {e}", original_exception=e) from e


def read_json(path: Path) -> Optional[Any]:
    """
    Returns the decoded content of `path`, or None when the file is missing.

    Raises:
        FileStoreError: If the file exists but cannot be read or decoded.
    """
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise FileStoreError(f"Failed to read {path}: {e}", original_exception=e) from e


class FileStorage(StorageBackend):
    """Storage backend backed by two JSON files."""

    has_card_ids = False

    def __init__(self, state_file: Union[str, Path], stats_file: Union[str, Path]):
        self.state_file = Path(state_file)
        self.stats_file = Path(stats_file)
        self._states: Dict[str, ReviewState] = {}
        self._daily: Dict[date, DailyStats] = {}
        self._streak: Optional[LearningStreak] = None
        self._cards: List[Card] = []
        self._sessions: Dict[int, Session] = {}
        self._next_session_id = 1
        self._states_dirty = False
        self._loaded = False

    # --- Lifecycle ---

    def open(self) -> "FileStorage":
        if not self._loaded:
            self._load_states()
            self._load_stats()
            self._loaded = True
        return self

    def close(self) -> None:
        # Lazily created states are flushed so the next start sees them.
        if self._loaded and self._states_dirty:
            self._flush_states()
        self._loaded = False

    def _load_states(self) -> None:
        data = read_json(self.state_file)
        if data is None:
            logger.info(f"No state file at {self.state_file}; starting empty.")
            return
        if not isinstance(data, dict):
            raise FileStoreError(f"{self.state_file} does not contain a JSON object.")
        try:
            self._states = {
                key: db_utils.json_to_review_state(key, obj) for key, obj in data.items()
            }
        except MarshallingError as e:
            raise FileStoreError(f"Corrupt state file {self.state_file}: {e}", original_exception=e) from e
        logger.info(f"Loaded {len(self._states)} review states from {self.state_file}")

    def _load_stats(self) -> None:
        data = read_json(self.stats_file)
        if data is None:
            logger.info(f"No stats file at {self.stats_file}; starting empty.")
            return
        if not isinstance(data, dict):
            raise FileStoreError(f"{self.stats_file} does not contain a JSON object.")
        try:
            daily = {
                key: db_utils.json_to_daily_stats(key, obj)
                for key, obj in (data.get("daily_stats") or {}).items()
            }
            streak_data = data.get("learning_streak")
            self._streak = LearningStreak(**streak_data) if streak_data else None
        except (MarshallingError, ValueError, TypeError) as e:
            raise FileStoreError(f"Corrupt stats file {self.stats_file}: {e}", original_exception=e) from e
        self._daily = {stats.study_date: stats for stats in daily.values()}
        logger.info(f"Loaded {len(self._daily)} days of statistics from {self.stats_file}")

    def _flush_states(self) -> None:
        try:
            data = {key: db_utils.review_state_to_json(state) for key, state in self._states.items()}
        except MarshallingError as e:
            raise FileStoreError(f"Cannot serialize review states: {e}", original_exception=e) from e
        write_json_atomic(self.state_file, data)
        self._states_dirty = False

    def _flush_stats(self) -> None:
        data = {
            "daily_stats": {
                stats.study_date.isoformat(): db_utils.daily_stats_to_json(stats)
                for stats in sorted(self._daily.values(), key=lambda s: s.study_date)
            },
            "learning_streak": self._streak.model_dump() if self._streak else None,
        }
        write_json_atomic(self.stats_file, data)

    # --- Cards ---

    def card_exists(self, question: str, answer: str) -> bool:
        return any(c.question == question and c.answer == answer for c in self._cards)

    def add_card(self, card: Card) -> Card:
        if self.card_exists(card.question, card.answer):
            raise DuplicateCardError(f"A card with question '{card.question}' and this answer already exists.")
        self._cards.append(card)
        return card

    def get_card(self, card_id: int) -> Optional[Card]:
        # File-backed cards carry no store identity.
        return None

    def find_card_by_location(self, source_file: str, source_line: int) -> Optional[Card]:
        for card in self._cards:
            if card.source_file == source_file and card.source_line == source_line:
                return card
        return None

    def get_all_cards(self) -> List[Card]:
        return list(self._cards)

    def update_card(self, card: Card) -> Card:
        raise CardOperationError("Editing cards requires the database backend.")

    def delete_card(self, card_id: int) -> bool:
        return False

    # --- Review state ---

    def get_review_state(self, card: Card) -> Optional[ReviewState]:
        return self._states.get(card.location_key)

    def create_review_state(self, state: ReviewState) -> ReviewState:
        if state.card_key not in self._states:
            self._states[state.card_key] = state
            self._states_dirty = True
        return self._states[state.card_key]

    def save_review_state(self, state: ReviewState) -> ReviewState:
        previous = self._states.get(state.card_key)
        self._states[state.card_key] = state
        try:
            self._flush_states()
        except FileStoreError:
            if previous is None:
                del self._states[state.card_key]
            else:
                self._states[state.card_key] = previous
            raise
        return state

    def delete_review_state(self, card_id: int) -> bool:
        keys = [key for key, state in self._states.items() if state.card_id == card_id]
        for key in keys:
            del self._states[key]
        if keys:
            self._flush_states()
        return bool(keys)

    def get_all_review_states(self) -> List[ReviewState]:
        return list(self._states.values())

    # --- Sessions ---

    def create_session(self, session: Session) -> Session:
        session.session_id = self._next_session_id
        self._next_session_id += 1
        self._sessions[session.session_id] = session
        return session

    def update_session(self, session: Session) -> Session:
        self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: int) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_open_sessions(self) -> List[Session]:
        return [s for s in self._sessions.values() if s.end_time is None]

    def delete_empty_open_sessions(self) -> int:
        empty = [sid for sid, s in self._sessions.items() if s.end_time is None and s.cards_reviewed == 0]
        for sid in empty:
            del self._sessions[sid]
        return len(empty)

    def close_session(
        self,
        session: Session,
        stats_date: date,
        streak: Optional[LearningStreak] = None,
    ) -> DailyStats:
        previous_day = self._daily.get(stats_date)
        previous_streak = self._streak

        day = previous_day.model_copy() if previous_day else DailyStats(study_date=stats_date)
        day.add_session(session)
        self._daily[stats_date] = day
        if streak is not None:
            self._streak = streak.model_copy()
        try:
            self._flush_stats()
        except FileStoreError:
            if previous_day is None:
                del self._daily[stats_date]
            else:
                self._daily[stats_date] = previous_day
            self._streak = previous_streak
            raise
        self._sessions[session.session_id] = session
        return day

    # --- Daily statistics ---

    def get_daily_stats(self, stats_date: date) -> Optional[DailyStats]:
        stats = self._daily.get(stats_date)
        return stats.model_copy() if stats else None

    def get_daily_stats_range(self, start: date, end: date) -> List[DailyStats]:
        return [s.model_copy() for s in self.get_all_daily_stats() if start <= s.study_date <= end]

    def get_all_daily_stats(self) -> List[DailyStats]:
        return [s.model_copy() for s in sorted(self._daily.values(), key=lambda s: s.study_date)]

    def create_daily_stats(self, stats: DailyStats) -> None:
        if stats.study_date in self._daily:
            raise StatsOperationError(f"Daily stats for {stats.study_date} already exist.")
        self._daily[stats.study_date] = stats.model_copy()
        try:
            self._flush_stats()
        except FileStoreError:
            del self._daily[stats.study_date]
            raise

    # --- Streak ---

    def get_learning_streak(self) -> Optional[LearningStreak]:
        return self._streak.model_copy() if self._streak else None

    def save_learning_streak(self, streak: LearningStreak) -> None:
        previous = self._streak
        self._streak = streak.model_copy()
        try:
            self._flush_stats()
        except FileStoreError:
            self._streak = previous
            raise

    # --- Maintenance ---

    def reset_statistics(self) -> None:
        previous = (self._sessions, self._daily, self._streak)
        self._sessions, self._daily, self._streak = {}, {}, None
        try:
            self._flush_stats()
        except FileStoreError:
            self._sessions, self._daily, self._streak = previous
            raise
        logger.warning(f"All statistics in {self.stats_file} were reset.")
