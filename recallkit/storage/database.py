"""
DuckDB storage backend for recallkit.

DuckDBStorage is a facade over the connection handler, the schema manager and
the marshalling helpers in db_utils. Intended for use as a context manager.
"""

import logging
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Type, Union

import duckdb

from ..exceptions import (
    CardNotFoundError,
    CardOperationError,
    DuplicateCardError,
    MarshallingError,
    ReviewOperationError,
    SessionOperationError,
    StatsOperationError,
    StorageError,
)
from ..models import Card, DailyStats, LearningStreak, ReviewState, Session
from . import db_utils
from .base import StorageBackend
from .connection import ConnectionHandler, rollback_quietly
from .schema_manager import SchemaManager

logger = logging.getLogger(__name__)


def _rows_to_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    """Convert cursor results to list of dictionaries using column names."""
    rows = cursor.fetchall()
    if not rows:
        return []
    description = cursor.description
    if description is None:
        return []
    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in rows]


class DuckDBStorage(StorageBackend):
    """
    Relational backend. Every mutation runs in its own transaction; a failed
    statement rolls the whole transaction back before the error is raised.
    """

    has_card_ids = True

    def __init__(self, db_path: Union[str, Path]):
        self._handler = ConnectionHandler(db_path=db_path)
        self._schema_manager = SchemaManager(self._handler)
        logger.info(f"DuckDBStorage initialized for DB at: {self._handler.db_path_resolved}")

    @property
    def db_path_resolved(self) -> Path:
        return self._handler.db_path_resolved

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self._handler.get_connection()

    def open(self) -> "DuckDBStorage":
        """Connect and make sure all tables exist."""
        self.get_connection()
        self._schema_manager.initialize_schema()
        return self

    def close(self) -> None:
        self._handler.close_connection()

    # --- Helpers ---

    @contextmanager
    def _transaction(
        self, error_cls: Type[StorageError], context: str
    ) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Yields a cursor inside BEGIN/COMMIT. DuckDB errors are rolled back and
        re-raised as `error_cls`; StorageErrors raised by the body are rolled
        back and propagated unchanged.
        """
        conn = self.get_connection()
        with conn.cursor() as cursor:
            cursor.begin()
            try:
                yield cursor
                cursor.commit()
            except duckdb.Error as e:
                logger.error(f"Error during {context}: {e}")
                rollback_quietly(cursor, context)
                raise error_cls(f"Failed to {context}: {e}", original_exception=e) from e
            except Exception:
                rollback_quietly(cursor, context)
                raise

    def _fetch(
        self,
        sql: str,
        params: Sequence[Any],
        error_cls: Type[StorageError],
        context: str,
    ) -> List[Dict[str, Any]]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, params)
            return _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error during {context}: {e}")
            raise error_cls(f"Failed to {context}: {e}", original_exception=e) from e

    @staticmethod
    def _marshal(rows, converter, error_cls: Type[StorageError], context: str) -> list:
        try:
            return [converter(row) for row in rows]
        except MarshallingError as e:
            raise error_cls(f"Failed to parse {context} from database.", original_exception=e) from e

    # --- Card Operations ---

    _INSERT_CARD_SQL = """
        INSERT INTO cards (question, answer, source_file, source_line, source_context,
                           prompt_kind, tags, created_at, updated_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
        RETURNING card_id;
        """

    def card_exists(self, question: str, answer: str) -> bool:
        rows = self._fetch(
            "SELECT card_id FROM cards WHERE question = $1 AND answer = $2 LIMIT 1;",
            (question, answer),
            CardOperationError,
            "check for an existing card",
        )
        return bool(rows)

    def add_card(self, card: Card) -> Card:
        """
        Inserts a card and sets its generated `card_id`.

        Raises:
            DuplicateCardError: If the question/answer pair is already stored.
            CardOperationError: For any other database failure.
        """
        params = db_utils.card_to_db_params_tuple(card)
        with self._transaction(CardOperationError, "insert card") as cursor:
            try:
                cursor.execute(self._INSERT_CARD_SQL, params)
            except duckdb.ConstraintException as e:
                raise DuplicateCardError(
                    f"A card with question '{card.question}' and this answer already exists.",
                    original_exception=e,
                ) from e
            result = cursor.fetchone()
            if not result:
                raise CardOperationError("Failed to retrieve card_id after insertion.")
        card.card_id = result[0]
        logger.debug(f"Inserted card {card.card_id} from {card.location_key}")
        return card

    def get_card(self, card_id: int) -> Optional[Card]:
        rows = self._fetch(
            "SELECT * FROM cards WHERE card_id = $1;",
            (card_id,),
            CardOperationError,
            f"fetch card {card_id}",
        )
        if not rows:
            return None
        return self._marshal(rows, db_utils.db_row_to_card, CardOperationError, f"card {card_id}")[0]

    def find_card_by_location(self, source_file: str, source_line: int) -> Optional[Card]:
        rows = self._fetch(
            """
            SELECT * FROM cards
            WHERE source_file = $1 AND source_line = $2
            ORDER BY card_id
            LIMIT 1;
            """,
            (source_file, source_line),
            CardOperationError,
            f"find card at {source_file}:{source_line}",
        )
        if not rows:
            return None
        return self._marshal(rows, db_utils.db_row_to_card, CardOperationError, "card")[0]

    def get_all_cards(self) -> List[Card]:
        rows = self._fetch(
            "SELECT * FROM cards ORDER BY card_id;", (), CardOperationError, "get all cards"
        )
        return self._marshal(rows, db_utils.db_row_to_card, CardOperationError, "cards")

    def update_card(self, card: Card) -> Card:
        if card.card_id is None:
            raise CardNotFoundError("Cannot update a card that has no card_id.")
        sql = """
        UPDATE cards
        SET question = $1, answer = $2, source_context = $3, prompt_kind = $4,
            tags = $5, updated_at = $6
        WHERE card_id = $7
        RETURNING card_id;
        """
        params = (
            card.question,
            card.answer,
            card.source_context,
            card.prompt_kind.value,
            list(card.tags) if card.tags else None,
            db_utils.to_db_timestamp(card.updated_at),
            card.card_id,
        )
        with self._transaction(CardOperationError, f"update card {card.card_id}") as cursor:
            try:
                cursor.execute(sql, params)
            except duckdb.ConstraintException as e:
                raise DuplicateCardError(
                    "Another card already has this question and answer.",
                    original_exception=e,
                ) from e
            if not cursor.fetchall():
                raise CardNotFoundError(f"Card {card.card_id} not found.")
        logger.info(f"Updated card {card.card_id}.")
        return card

    def delete_card(self, card_id: int) -> bool:
        with self._transaction(CardOperationError, f"delete card {card_id}") as cursor:
            cursor.execute("DELETE FROM review_states WHERE card_id = $1;", (card_id,))
            cursor.execute("DELETE FROM cards WHERE card_id = $1 RETURNING card_id;", (card_id,))
            deleted = bool(cursor.fetchall())
        if deleted:
            logger.info(f"Deleted card {card_id}.")
        return deleted

    # --- Review State Operations ---

    _UPSERT_REVIEW_STATE_SQL = """
        INSERT INTO review_states (card_id, card_key, scheduler_state, last_review, review_count, due)
        VALUES ($1, $2, $3, $4, $5, $6)
        ON CONFLICT (card_id) DO UPDATE SET
            card_key = EXCLUDED.card_key,
            scheduler_state = EXCLUDED.scheduler_state,
            last_review = EXCLUDED.last_review,
            review_count = EXCLUDED.review_count,
            due = EXCLUDED.due;
        """

    def get_review_state(self, card: Card) -> Optional[ReviewState]:
        if card.card_id is None:
            return None
        rows = self._fetch(
            "SELECT * FROM review_states WHERE card_id = $1;",
            (card.card_id,),
            ReviewOperationError,
            f"fetch review state for card {card.card_id}",
        )
        if not rows:
            return None
        return self._marshal(
            rows, db_utils.db_row_to_review_state, ReviewOperationError, "review state"
        )[0]

    def create_review_state(self, state: ReviewState) -> ReviewState:
        if state.card_id is None:
            raise ReviewOperationError(
                f"Review state for {state.card_key} has no card_id to store it under."
            )
        sql = """
        INSERT INTO review_states (card_id, card_key, scheduler_state, last_review, review_count, due)
        VALUES ($1, $2, $3, $4, $5, $6)
        ON CONFLICT (card_id) DO NOTHING;
        """
        params = db_utils.review_state_to_db_params_tuple(state)
        with self._transaction(ReviewOperationError, "create review state") as cursor:
            cursor.execute(sql, params)
        logger.debug(f"Created review state for card {state.card_id}")
        return state

    def save_review_state(self, state: ReviewState) -> ReviewState:
        if state.card_id is None:
            raise ReviewOperationError(
                f"Review state for {state.card_key} has no card_id to store it under."
            )
        params = db_utils.review_state_to_db_params_tuple(state)
        with self._transaction(ReviewOperationError, "save review state") as cursor:
            cursor.execute(self._UPSERT_REVIEW_STATE_SQL, params)
        return state

    def delete_review_state(self, card_id: int) -> bool:
        with self._transaction(ReviewOperationError, f"delete review state for card {card_id}") as cursor:
            cursor.execute(
                "DELETE FROM review_states WHERE card_id = $1 RETURNING state_id;", (card_id,)
            )
            return bool(cursor.fetchall())

    def get_all_review_states(self) -> List[ReviewState]:
        rows = self._fetch(
            "SELECT * FROM review_states ORDER BY card_id;",
            (),
            ReviewOperationError,
            "get all review states",
        )
        return self._marshal(rows, db_utils.db_row_to_review_state, ReviewOperationError, "review states")

    # --- Session Operations ---

    def create_session(self, session: Session) -> Session:
        sql = """
        INSERT INTO sessions (start_time, end_time, cards_reviewed, new_cards, reviewed_cards)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING session_id;
        """
        params = db_utils.session_to_db_params_tuple(session)
        with self._transaction(SessionOperationError, "create session") as cursor:
            cursor.execute(sql, params)
            result = cursor.fetchone()
            if not result:
                raise SessionOperationError("Failed to retrieve session_id after insertion.")
        session.session_id = result[0]
        return session

    def _update_session_row(self, cursor, session: Session) -> None:
        if session.session_id is None:
            raise SessionOperationError("Session must have a session_id to be updated.")
        sql = """
        UPDATE sessions
        SET end_time = $1, cards_reviewed = $2, new_cards = $3, reviewed_cards = $4
        WHERE session_id = $5;
        """
        cursor.execute(
            sql,
            (
                db_utils.to_db_timestamp(session.end_time),
                session.cards_reviewed,
                session.new_cards,
                session.reviewed_cards,
                session.session_id,
            ),
        )

    def update_session(self, session: Session) -> Session:
        with self._transaction(SessionOperationError, f"update session {session.session_id}") as cursor:
            self._update_session_row(cursor, session)
        return session

    def get_session(self, session_id: int) -> Optional[Session]:
        rows = self._fetch(
            "SELECT * FROM sessions WHERE session_id = $1;",
            (session_id,),
            SessionOperationError,
            f"fetch session {session_id}",
        )
        if not rows:
            return None
        return self._marshal(rows, db_utils.db_row_to_session, SessionOperationError, "session")[0]

    def get_open_sessions(self) -> List[Session]:
        rows = self._fetch(
            "SELECT * FROM sessions WHERE end_time IS NULL ORDER BY start_time, session_id;",
            (),
            SessionOperationError,
            "get open sessions",
        )
        return self._marshal(rows, db_utils.db_row_to_session, SessionOperationError, "sessions")

    def delete_empty_open_sessions(self) -> int:
        with self._transaction(SessionOperationError, "delete empty open sessions") as cursor:
            cursor.execute(
                """
                DELETE FROM sessions
                WHERE end_time IS NULL AND cards_reviewed = 0
                RETURNING session_id;
                """
            )
            return len(cursor.fetchall())

    _FOLD_DAILY_STATS_SQL = """
        INSERT INTO daily_stats (date, cards_reviewed, session_minutes, session_count,
                                 new_cards, reviewed_cards)
        VALUES ($1, $2, $3, 1, $4, $5)
        ON CONFLICT (date) DO UPDATE SET
            cards_reviewed = daily_stats.cards_reviewed + EXCLUDED.cards_reviewed,
            session_minutes = daily_stats.session_minutes + EXCLUDED.session_minutes,
            session_count = daily_stats.session_count + 1,
            new_cards = daily_stats.new_cards + EXCLUDED.new_cards,
            reviewed_cards = daily_stats.reviewed_cards + EXCLUDED.reviewed_cards;
        """

    def close_session(
        self,
        session: Session,
        stats_date: date,
        streak: Optional[LearningStreak] = None,
    ) -> DailyStats:
        with self._transaction(SessionOperationError, f"close session {session.session_id}") as cursor:
            self._update_session_row(cursor, session)
            cursor.execute(
                self._FOLD_DAILY_STATS_SQL,
                (
                    stats_date,
                    session.cards_reviewed,
                    session.duration_minutes(),
                    session.new_cards,
                    session.reviewed_cards,
                ),
            )
            if streak is not None:
                self._upsert_streak(cursor, streak)
            cursor.execute("SELECT * FROM daily_stats WHERE date = $1;", (stats_date,))
            rows = _rows_to_dicts(cursor)
        logger.info(
            f"Session {session.session_id} closed: {session.cards_reviewed} cards, "
            f"{session.duration_minutes()} min folded into {stats_date}"
        )
        return self._marshal(rows, db_utils.db_row_to_daily_stats, StatsOperationError, "daily stats")[0]

    # --- Daily Stats Operations ---

    def get_daily_stats(self, stats_date: date) -> Optional[DailyStats]:
        rows = self._fetch(
            "SELECT * FROM daily_stats WHERE date = $1;",
            (stats_date,),
            StatsOperationError,
            f"fetch daily stats for {stats_date}",
        )
        if not rows:
            return None
        return self._marshal(rows, db_utils.db_row_to_daily_stats, StatsOperationError, "daily stats")[0]

    def get_daily_stats_range(self, start: date, end: date) -> List[DailyStats]:
        rows = self._fetch(
            "SELECT * FROM daily_stats WHERE date BETWEEN $1 AND $2 ORDER BY date;",
            (start, end),
            StatsOperationError,
            f"fetch daily stats from {start} to {end}",
        )
        return self._marshal(rows, db_utils.db_row_to_daily_stats, StatsOperationError, "daily stats")

    def get_all_daily_stats(self) -> List[DailyStats]:
        rows = self._fetch(
            "SELECT * FROM daily_stats ORDER BY date;", (), StatsOperationError, "fetch all daily stats"
        )
        return self._marshal(rows, db_utils.db_row_to_daily_stats, StatsOperationError, "daily stats")

    def create_daily_stats(self, stats: DailyStats) -> None:
        sql = """
        INSERT INTO daily_stats (date, cards_reviewed, session_minutes, session_count,
                                 new_cards, reviewed_cards)
        VALUES ($1, $2, $3, $4, $5, $6);
        """
        params = db_utils.daily_stats_to_db_params_tuple(stats)
        with self._transaction(StatsOperationError, f"create daily stats for {stats.study_date}") as cursor:
            cursor.execute(sql, params)

    # --- Streak Operations ---

    def _upsert_streak(self, cursor, streak: LearningStreak) -> None:
        cursor.execute(
            """
            INSERT INTO learning_streak (id, current_streak, longest_streak, last_study_date)
            VALUES (1, $1, $2, $3)
            ON CONFLICT (id) DO UPDATE SET
                current_streak = EXCLUDED.current_streak,
                longest_streak = EXCLUDED.longest_streak,
                last_study_date = EXCLUDED.last_study_date;
            """,
            (streak.current_streak, streak.longest_streak, streak.last_study_date),
        )

    def get_learning_streak(self) -> Optional[LearningStreak]:
        rows = self._fetch(
            "SELECT * FROM learning_streak WHERE id = 1;", (), StatsOperationError, "fetch learning streak"
        )
        if not rows:
            return None
        return self._marshal(rows, db_utils.db_row_to_learning_streak, StatsOperationError, "learning streak")[0]

    def save_learning_streak(self, streak: LearningStreak) -> None:
        with self._transaction(StatsOperationError, "save learning streak") as cursor:
            self._upsert_streak(cursor, streak)

    # --- Maintenance ---

    def reset_statistics(self) -> None:
        with self._transaction(StatsOperationError, "reset statistics") as cursor:
            cursor.execute("DELETE FROM sessions;")
            cursor.execute("DELETE FROM daily_stats;")
            cursor.execute("DELETE FROM learning_streak;")
        logger.warning("All sessions, daily statistics and the learning streak were deleted.")
