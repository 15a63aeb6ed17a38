"""
Study statistics for recallkit.

The StatisticsManager owns the study session lifecycle and everything derived
from it:

- Session lifecycle (start, record reviews, end)
- Folding finished sessions into per-day aggregates
- The learning streak
- Recovery of sessions left open by a crash
- Range queries and CSV export of the daily aggregates
"""

import csv
import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from .constants import (
    DEFAULT_SECONDS_PER_CARD,
    MONTH_DAYS,
    STATS_CSV_HEADER,
    STATS_DATE_FORMAT,
    WEEK_DAYS,
)
from .exceptions import StatsOperationError, StorageError
from .models import AllTimeStats, DailyStats, LearningStreak, Session
from .storage.base import StorageBackend

logger = logging.getLogger(__name__)


def local_date(ts: datetime) -> date:
    """The calendar date of `ts` in the machine's local timezone."""
    return ts.astimezone().date()


def parse_study_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD string; None when empty or malformed."""
    if not value:
        return None
    try:
        return datetime.strptime(value, STATS_DATE_FORMAT).date()
    except ValueError:
        return None


def update_streak(streak: LearningStreak, today: date) -> LearningStreak:
    """
    Returns the streak after studying on `today`.

    Same day: unchanged. Next day: extended. Anything else (a gap, a date in
    the future, an unreadable last date): restarted at 1.
    """
    updated = streak.model_copy()
    today_str = today.strftime(STATS_DATE_FORMAT)

    if not streak.last_study_date:
        updated.current_streak = 1
        updated.longest_streak = max(1, streak.longest_streak)
        updated.last_study_date = today_str
        return updated

    last = parse_study_date(streak.last_study_date)
    days_diff = (today - last).days if last is not None else None

    if days_diff == 0:
        return updated
    if days_diff == 1:
        updated.current_streak = streak.current_streak + 1
    else:
        updated.current_streak = 1
    updated.longest_streak = max(streak.longest_streak, updated.current_streak)
    updated.last_study_date = today_str
    return updated


class StatisticsManager:
    """
    Tracks study sessions and aggregates them into daily statistics and the
    learning streak. At most one session is active at a time.
    """

    def __init__(
        self,
        storage: StorageBackend,
        seconds_per_card: int = DEFAULT_SECONDS_PER_CARD,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            storage: Backend holding sessions, daily stats and the streak.
            seconds_per_card: Time credited per reviewed card when closing a
                session that was never ended.
            clock: Returns the current aware datetime; defaults to UTC now.
        """
        self.storage = storage
        self.seconds_per_card = seconds_per_card
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.current_session: Optional[Session] = None

    @property
    def has_active_session(self) -> bool:
        return self.current_session is not None

    # --- Session lifecycle ---

    def start_session(self, now: Optional[datetime] = None) -> Session:
        """
        Raises:
            ValueError: If a session is already active.
        """
        if self.current_session is not None:
            raise ValueError("A session is already active. End the current session first.")

        session = Session(start_time=now or self._clock())
        self.current_session = self.storage.create_session(session)
        logger.info(f"Started session {self.current_session.session_id}")
        return self.current_session

    def record_review(self, is_new: bool, now: Optional[datetime] = None) -> Session:
        """
        Count one reviewed card, starting a session if none is active. The
        counters only change once the store has accepted them.
        """
        if self.current_session is None:
            self.start_session(now)
        session = self.current_session.model_copy()
        session.record_review(is_new)
        self.storage.update_session(session)
        self.current_session = session
        logger.debug(
            f"Session {session.session_id}: {session.cards_reviewed} reviewed "
            f"({session.new_cards} new)"
        )
        return session

    def end_session(self, now: Optional[datetime] = None) -> Optional[DailyStats]:
        """
        Close the active session, fold it into today's DailyStats and update
        the streak. Returns the updated day, or None if no session was active.

        If the store rejects the write, the session stays active.
        """
        session = self.current_session
        if session is None:
            return None

        now = now or self._clock()
        session.end_time = now
        today = local_date(now)
        streak = update_streak(self.get_learning_streak(), today)
        try:
            day = self.storage.close_session(session, today, streak)
        except StorageError:
            session.end_time = None
            raise
        self.current_session = None
        logger.info(
            f"Ended session {session.session_id}: {session.cards_reviewed} cards in "
            f"{session.duration_minutes()} min; streak {streak.current_streak}"
        )
        return day

    def recover_orphan_sessions(self) -> Tuple[int, int]:
        """
        Close sessions left open by an earlier run that never ended them.

        Empty ones are deleted. The rest are closed at
        start + cards_reviewed * seconds_per_card and folded into the day they
        started on; the streak only moves forward, never back to an earlier
        day. Each session is closed in one transaction, so running this twice
        folds nothing the second time. A session the store fails to close is
        logged and left open for the next run.

        Returns:
            (deleted, recovered)
        """
        deleted = self.storage.delete_empty_open_sessions()
        active_id = self.current_session.session_id if self.current_session else None

        recovered = 0
        for session in self.storage.get_open_sessions():
            if session.session_id == active_id:
                continue
            session.end_time = session.start_time + timedelta(
                seconds=session.cards_reviewed * self.seconds_per_card
            )
            day = local_date(session.start_time)
            try:
                self.storage.close_session(session, day, self._streak_for_orphan(day))
            except StorageError as e:
                session.end_time = None
                logger.warning(f"Could not recover session {session.session_id}, leaving it open: {e}")
                continue
            recovered += 1
            logger.warning(
                f"Recovered unfinished session {session.session_id} from {day}: "
                f"{session.cards_reviewed} cards"
            )

        if deleted or recovered:
            logger.info(f"Orphan cleanup: {deleted} empty sessions deleted, {recovered} recovered")
        return deleted, recovered

    def _streak_for_orphan(self, day: date) -> Optional[LearningStreak]:
        streak = self.get_learning_streak()
        last = parse_study_date(streak.last_study_date)
        if last is not None and day < last:
            return None
        return update_streak(streak, day)

    # --- Queries ---

    def get_current_session(self) -> Optional[Session]:
        return self.current_session

    def current_session_duration(self, now: Optional[datetime] = None) -> timedelta:
        if self.current_session is None:
            return timedelta(0)
        return (now or self._clock()) - self.current_session.start_time

    def get_today_stats(self, now: Optional[datetime] = None) -> DailyStats:
        today = local_date(now or self._clock())
        return self.storage.get_daily_stats(today) or DailyStats(study_date=today)

    def _get_recent_stats(self, days: int, now: Optional[datetime]) -> List[DailyStats]:
        """The last `days` days ending today, oldest first, zero-filled."""
        today = local_date(now or self._clock())
        start = today - timedelta(days=days - 1)
        stored = {s.study_date: s for s in self.storage.get_daily_stats_range(start, today)}
        result = []
        for offset in range(days):
            day = start + timedelta(days=offset)
            result.append(stored.get(day) or DailyStats(study_date=day))
        return result

    def get_weekly_stats(self, now: Optional[datetime] = None) -> List[DailyStats]:
        return self._get_recent_stats(WEEK_DAYS, now)

    def get_monthly_stats(self, now: Optional[datetime] = None) -> List[DailyStats]:
        return self._get_recent_stats(MONTH_DAYS, now)

    def get_all_time_stats(self) -> AllTimeStats:
        totals = AllTimeStats()
        for stats in self.storage.get_all_daily_stats():
            totals.cards_reviewed += stats.cards_reviewed
            totals.session_minutes += stats.session_minutes
            totals.session_count += stats.session_count
            totals.new_cards += stats.new_cards
            totals.reviewed_cards += stats.reviewed_cards
        return totals

    def get_learning_streak(self) -> LearningStreak:
        return self.storage.get_learning_streak() or LearningStreak()

    # --- Maintenance ---

    def reset_statistics(self) -> None:
        """
        Raises:
            ValueError: If a session is active.
        """
        if self.current_session is not None:
            raise ValueError("Cannot reset statistics while a session is active.")
        self.storage.reset_statistics()

    def export_to_csv(self, path: Union[str, Path]) -> int:
        """
        Write every stored day, oldest first, to `path`.

        Returns:
            The number of data rows written.
        """
        rows = self.storage.get_all_daily_stats()
        try:
            with open(path, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(STATS_CSV_HEADER)
                for stats in rows:
                    writer.writerow(
                        [
                            stats.study_date.strftime(STATS_DATE_FORMAT),
                            stats.cards_reviewed,
                            stats.session_minutes,
                            stats.session_count,
                            stats.new_cards,
                            stats.reviewed_cards,
                        ]
                    )
        except OSError as e:
            logger.error(f"Failed to export statistics to {path}: {e}")
            raise StatsOperationError(
                f"Failed to export statistics to {path}: {e}", original_exception=e
            ) from e
        logger.info(f"Exported {len(rows)} days of statistics to {path}")
        return len(rows)
