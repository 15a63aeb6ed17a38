"""
Tests for the JSON file backend: on-disk layout, atomic rewrites, lazy state
flushing and rollback of in-memory changes when a write fails.
"""

import json
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from recallkit.exceptions import CardOperationError, FileStoreError
from recallkit.models import Card, DailyStats, LearningStreak, ReviewState, Session
from recallkit.storage import FileStorage
from recallkit.storage.file_store import read_json, write_json_atomic


def _state(card: Card, due, review_count=1) -> ReviewState:
    return ReviewState(
        card_key=card.location_key,
        scheduler_state=json.dumps({"due": due.isoformat(), "reps": review_count}),
        review_count=review_count,
        last_review=due - timedelta(days=1),
        due=due,
    )


def test_write_json_atomic_leaves_no_temp_file(tmp_path: Path):
    target = tmp_path / "sub" / "data.json"
    write_json_atomic(target, {"a": 1})
    assert json.loads(target.read_text(encoding="utf-8")) == {"a": 1}
    assert not (tmp_path / "sub" / "data.json.tmp").exists()


def test_write_json_atomic_keeps_old_content_on_failure(tmp_path: Path):
    target = tmp_path / "data.json"
    write_json_atomic(target, {"v": 1})
    with patch("recallkit.storage.file_store.os.replace", side_effect=OSError("no space")):
        with pytest.raises(FileStoreError):
            write_json_atomic(target, {"v": 2})
    assert read_json(target) == {"v": 1}
    assert not (tmp_path / "data.json.tmp").exists()


def test_read_json_missing_and_corrupt(tmp_path: Path):
    assert read_json(tmp_path / "absent.json") is None
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json", encoding="utf-8")
    with pytest.raises(FileStoreError):
        read_json(corrupt)


def test_state_file_layout(file_storage: FileStorage, sample_card: Card, fixed_now):
    file_storage.add_card(sample_card)
    file_storage.save_review_state(_state(sample_card, fixed_now))

    data = json.loads(file_storage.state_file.read_text(encoding="utf-8"))
    entry = data["math.txt:1"]
    assert entry["card_key"] == "math.txt:1"
    assert entry["review_count"] == 1
    # The scheduler blob is nested JSON, not an escaped string.
    assert entry["scheduler_state"]["reps"] == 1
    assert entry["due"] == fixed_now.isoformat()


def test_stats_file_layout(file_storage: FileStorage):
    file_storage.create_daily_stats(DailyStats(study_date=date(2024, 3, 10), cards_reviewed=2, session_minutes=4))
    file_storage.save_learning_streak(LearningStreak(current_streak=1, longest_streak=3, last_study_date="2024-03-10"))

    data = json.loads(file_storage.stats_file.read_text(encoding="utf-8"))
    assert data["daily_stats"]["2024-03-10"]["date"] == "2024-03-10"
    assert data["daily_stats"]["2024-03-10"]["session_time"] == 4
    assert data["learning_streak"]["longest_streak"] == 3


def test_state_survives_reopen(tmp_path: Path, sample_card: Card, fixed_now):
    with FileStorage(tmp_path / "s.json", tmp_path / "t.json") as storage:
        storage.add_card(sample_card)
        storage.save_review_state(_state(sample_card, fixed_now, review_count=3))

    with FileStorage(tmp_path / "s.json", tmp_path / "t.json") as storage:
        # Cards are not persisted; states are found again by location.
        assert storage.get_all_cards() == []
        state = storage.get_review_state(sample_card)
        assert state.review_count == 3
        assert state.due == fixed_now


def test_created_states_flushed_on_close(tmp_path: Path, sample_card: Card, fixed_now):
    storage = FileStorage(tmp_path / "s.json", tmp_path / "t.json").open()
    storage.create_review_state(_state(sample_card, fixed_now, review_count=0))
    assert not (tmp_path / "s.json").exists()
    storage.close()
    assert "math.txt:1" in read_json(tmp_path / "s.json")


def test_failed_state_write_restores_previous(file_storage: FileStorage, sample_card: Card, fixed_now):
    file_storage.save_review_state(_state(sample_card, fixed_now, review_count=1))
    with patch("recallkit.storage.file_store.write_json_atomic", side_effect=FileStoreError("disk full")):
        with pytest.raises(FileStoreError):
            file_storage.save_review_state(_state(sample_card, fixed_now + timedelta(days=2), review_count=2))
    assert file_storage.get_review_state(sample_card).review_count == 1


def test_failed_close_session_restores_stats(file_storage: FileStorage, fixed_now):
    session = file_storage.create_session(Session(start_time=fixed_now))
    session.record_review(is_new=True)
    session.end_time = fixed_now + timedelta(minutes=2)
    with patch("recallkit.storage.file_store.write_json_atomic", side_effect=FileStoreError("disk full")):
        with pytest.raises(FileStoreError):
            file_storage.close_session(session, date(2024, 3, 10), LearningStreak(current_streak=1))
    assert file_storage.get_daily_stats(date(2024, 3, 10)) is None
    assert file_storage.get_learning_streak() is None


def test_failed_reset_keeps_statistics(file_storage: FileStorage, fixed_now):
    session = file_storage.create_session(Session(start_time=fixed_now))
    session.record_review(is_new=True)
    session.end_time = fixed_now + timedelta(minutes=2)
    streak = LearningStreak(current_streak=1, longest_streak=1, last_study_date="2024-03-10")
    file_storage.close_session(session, date(2024, 3, 10), streak)

    with patch("recallkit.storage.file_store.write_json_atomic", side_effect=FileStoreError("disk full")):
        with pytest.raises(FileStoreError):
            file_storage.reset_statistics()

    assert file_storage.get_daily_stats(date(2024, 3, 10)).cards_reviewed == 1
    assert file_storage.get_learning_streak() == streak
    assert file_storage.get_session(session.session_id) is not None


def test_legacy_state_entry_without_card_key(tmp_path: Path, fixed_now):
    state_file = tmp_path / "s.json"
    state_file.write_text(
        json.dumps(
            {
                "deck.txt:2": {
                    "scheduler_state": {"due": fixed_now.isoformat(), "reps": 1},
                    "last_review": None,
                    "review_count": 1,
                    "due": "2024-03-10T12:00:00",
                }
            }
        ),
        encoding="utf-8",
    )
    with FileStorage(state_file, tmp_path / "t.json") as storage:
        state = storage.get_review_state(Card(question="Q", answer="A", source_file="deck.txt", source_line=2))
    assert state.card_key == "deck.txt:2"
    assert state.due == fixed_now


def test_corrupt_state_file_fails_to_open(tmp_path: Path):
    state_file = tmp_path / "s.json"
    state_file.write_text(json.dumps({"deck.txt:1": {"review_count": "many"}}), encoding="utf-8")
    with pytest.raises(FileStoreError):
        FileStorage(state_file, tmp_path / "t.json").open()


def test_card_editing_not_supported(file_storage: FileStorage, sample_card: Card):
    file_storage.add_card(sample_card)
    assert file_storage.get_card(1) is None
    assert not file_storage.delete_card(1)
    with pytest.raises(CardOperationError):
        file_storage.update_card(sample_card)
