"""
Test suite for recallkit.storage.database (DuckDBStorage): connection, schema,
card CRUD with identities, transactional rollback and error wrapping.
"""

from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import duckdb
import pytest

from recallkit.exceptions import (
    CardNotFoundError,
    CardOperationError,
    DatabaseConnectionError,
    DuplicateCardError,
    ReviewOperationError,
    SchemaInitializationError,
    SessionOperationError,
)
from recallkit.models import Card, LearningStreak, PromptKind, ReviewState, Session
from recallkit.storage import DuckDBStorage
from recallkit.storage.connection import ConnectionHandler

UTC = timezone.utc


def _state_for(card: Card, due: datetime) -> ReviewState:
    return ReviewState(
        card_id=card.card_id,
        card_key=card.location_key,
        scheduler_state="{}",
        review_count=1,
        due=due,
    )


class TestConnection:
    def test_memory_path(self):
        handler = ConnectionHandler(":MEMORY:")
        assert handler.is_memory
        handler.get_connection()
        assert handler.is_new_db
        handler.close_connection()

    def test_file_path_creates_parent_dirs(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "recall.db"
        with ConnectionHandler(db_path) as conn:
            conn.execute("SELECT 1;")
        assert db_path.exists()

    def test_reopen_existing_file_is_not_new(self, db_path_file: Path):
        DuckDBStorage(db_path_file).open().close()
        handler = ConnectionHandler(db_path_file)
        handler.get_connection()
        assert not handler.is_new_db
        handler.close_connection()

    def test_connect_failure_is_wrapped(self, tmp_path: Path):
        with patch("duckdb.connect", side_effect=duckdb.IOException("disk gone")):
            storage = DuckDBStorage(tmp_path / "x.db")
            with pytest.raises(DatabaseConnectionError, match="disk gone"):
                storage.open()


class TestSchema:
    def test_open_is_idempotent(self, db_path_file: Path, sample_card: Card):
        with DuckDBStorage(db_path_file) as storage:
            storage.add_card(sample_card)
        with DuckDBStorage(db_path_file) as storage:
            assert len(storage.get_all_cards()) == 1

    def test_schema_failure_is_wrapped(self):
        storage = DuckDBStorage(":memory:")
        with patch("recallkit.storage.schema.DB_SCHEMA_SQL", "CREATE TABL broken;"):
            with pytest.raises(SchemaInitializationError):
                storage.open()
        storage.close()


class TestCards:
    def test_card_fields_roundtrip(self, db_storage: DuckDBStorage):
        card = Card(
            question="Q",
            answer="A",
            source_file="deck.txt",
            source_line=4,
            source_context="Chapter 2",
            prompt_kind=PromptKind.COMPARISON,
            tags="x, y",
            created_at=datetime(2024, 1, 1, 8, 30, tzinfo=UTC),
        )
        card_id = db_storage.add_card(card).card_id
        loaded = db_storage.get_card(card_id)
        assert loaded.source_context == "Chapter 2"
        assert loaded.prompt_kind is PromptKind.COMPARISON
        assert loaded.tags == ["x", "y"]
        assert loaded.created_at == datetime(2024, 1, 1, 8, 30, tzinfo=UTC)

    def test_card_ids_are_unique(self, db_storage: DuckDBStorage):
        ids = {
            db_storage.add_card(Card(question=f"Q{i}", answer="A")).card_id for i in range(3)
        }
        assert len(ids) == 3

    def test_get_missing_card_returns_none(self, db_storage: DuckDBStorage):
        assert db_storage.get_card(12345) is None

    def test_update_card(self, db_storage: DuckDBStorage, sample_card: Card):
        card = db_storage.add_card(sample_card)
        card.question = "What is 3+3?"
        card.answer = "6"
        db_storage.update_card(card)
        loaded = db_storage.get_card(card.card_id)
        assert (loaded.question, loaded.answer) == ("What is 3+3?", "6")
        assert loaded.source_file == "math.txt"

    def test_update_missing_card(self, db_storage: DuckDBStorage):
        ghost = Card(card_id=999, question="Q", answer="A")
        with pytest.raises(CardNotFoundError):
            db_storage.update_card(ghost)
        with pytest.raises(CardNotFoundError):
            db_storage.update_card(Card(question="Q", answer="A"))

    def test_update_into_duplicate_pair(self, db_storage: DuckDBStorage):
        db_storage.add_card(Card(question="Q1", answer="A1"))
        second = db_storage.add_card(Card(question="Q2", answer="A2"))
        second.question, second.answer = "Q1", "A1"
        with pytest.raises(DuplicateCardError):
            db_storage.update_card(second)
        assert db_storage.get_card(second.card_id).question == "Q2"

    def test_delete_card_removes_review_state(self, db_storage: DuckDBStorage, sample_card: Card, fixed_now):
        card = db_storage.add_card(sample_card)
        db_storage.save_review_state(_state_for(card, fixed_now))

        assert db_storage.delete_card(card.card_id)
        assert db_storage.get_card(card.card_id) is None
        assert db_storage.get_all_review_states() == []
        assert not db_storage.delete_card(card.card_id)

    def test_failed_insert_is_rolled_back(self, db_storage: DuckDBStorage, sample_card: Card):
        db_storage.add_card(sample_card)
        with pytest.raises(DuplicateCardError):
            db_storage.add_card(Card(question=sample_card.question, answer=sample_card.answer))
        # The connection is still usable after the rollback.
        db_storage.add_card(Card(question="Next", answer="Card"))
        assert len(db_storage.get_all_cards()) == 2


class TestReviewStates:
    def test_state_without_card_id_is_rejected(self, db_storage: DuckDBStorage, fixed_now):
        state = ReviewState(card_key="deck.txt:1", scheduler_state="{}", due=fixed_now)
        with pytest.raises(ReviewOperationError, match="no card_id"):
            db_storage.save_review_state(state)

    def test_timestamps_are_returned_aware(self, db_storage: DuckDBStorage, sample_card: Card):
        card = db_storage.add_card(sample_card)
        plus_five = timezone(timedelta(hours=5))
        due = datetime(2024, 3, 10, 17, 0, tzinfo=plus_five)
        db_storage.save_review_state(_state_for(card, due))
        loaded = db_storage.get_review_state(card)
        assert loaded.due == due
        assert loaded.due.tzinfo == UTC

    def test_delete_review_state(self, db_storage: DuckDBStorage, sample_card: Card, fixed_now):
        card = db_storage.add_card(sample_card)
        db_storage.save_review_state(_state_for(card, fixed_now))
        assert db_storage.delete_review_state(card.card_id)
        assert not db_storage.delete_review_state(card.card_id)
        assert db_storage.get_card(card.card_id) is not None


class TestSessions:
    def test_update_session_requires_id(self, db_storage: DuckDBStorage):
        with pytest.raises(SessionOperationError):
            db_storage.update_session(Session())

    def test_close_session_is_atomic(self, db_storage: DuckDBStorage, fixed_now):
        session = db_storage.create_session(Session(start_time=fixed_now))
        session.record_review(is_new=True)
        session.end_time = fixed_now + timedelta(minutes=3)
        streak = LearningStreak(current_streak=1, longest_streak=1, last_study_date="2024-03-10")

        with patch.object(DuckDBStorage, "_upsert_streak", side_effect=duckdb.Error("boom")):
            with pytest.raises(SessionOperationError):
                db_storage.close_session(session, date(2024, 3, 10), streak)

        assert db_storage.get_daily_stats(date(2024, 3, 10)) is None
        assert db_storage.get_session(session.session_id).is_active
        assert db_storage.get_learning_streak() is None


def test_query_errors_are_wrapped():
    storage = DuckDBStorage(":memory:")
    broken = MagicMock()
    broken.execute.side_effect = duckdb.Error("no such table")
    with patch.object(DuckDBStorage, "get_connection", return_value=broken):
        with pytest.raises(CardOperationError, match="no such table"):
            storage.get_all_cards()
