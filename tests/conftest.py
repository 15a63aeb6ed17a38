import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

from recallkit.models import Card, Rating
from recallkit.scheduler import BaseScheduler, ensure_utc
from recallkit.storage import DuckDBStorage, FileStorage, StorageBackend

UTC = timezone.utc


# each test runs on cwd to its temp dir
@pytest.fixture(autouse=True)
def go_to_tmpdir(tmp_path: Path, monkeypatch):
    """Run every test inside its own temporary working directory."""
    monkeypatch.chdir(tmp_path)
    for name in ("RECALLKIT_BACKEND", "RECALLKIT_DB_PATH", "RECALLKIT_TESTING_MODE"):
        monkeypatch.delenv(name, raising=False)
    yield


# --- Scheduler Fixtures ---


class FakeScheduler(BaseScheduler):
    """
    Deterministic scheduler for tests: the blob is {"due": iso, "reps": n} and
    each rating pushes the due date by a fixed interval.
    """

    INTERVALS = {
        Rating.Again: timedelta(minutes=1),
        Rating.Hard: timedelta(days=1),
        Rating.Good: timedelta(days=3),
        Rating.Easy: timedelta(days=7),
    }
    NEW_CARD_DUE = datetime(2000, 1, 1, tzinfo=UTC)

    def initial_state(self) -> str:
        return self.serialize({"due": self.NEW_CARD_DUE.isoformat(), "reps": 0})

    def next_state(self, state, rating, now):
        data = self.deserialize(state)
        due = ensure_utc(now) + self.INTERVALS[Rating(int(rating))]
        data.update(due=due.isoformat(), reps=data["reps"] + 1)
        return self.serialize(data), due

    def due_of(self, state):
        return datetime.fromisoformat(self.deserialize(state)["due"])

    def deserialize(self, blob):
        try:
            data = json.loads(blob) if isinstance(blob, str) else dict(blob)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Unreadable scheduler state: {e}") from e
        if "due" not in data:
            raise ValueError("Unreadable scheduler state: missing 'due'")
        data.setdefault("reps", 0)
        return data

    def serialize(self, native):
        return json.dumps(native)


@pytest.fixture
def fake_scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


# --- Storage Fixtures ---


@pytest.fixture
def db_path_file(tmp_path: Path) -> Path:
    return tmp_path / "test_recall.db"


@pytest.fixture(params=["memory", "file"])
def db_storage(request, db_path_file: Path) -> Generator[DuckDBStorage, None, None]:
    """An opened DuckDB backend, in memory or on disk."""
    storage = DuckDBStorage(":memory:" if request.param == "memory" else db_path_file)
    storage.open()
    try:
        yield storage
    finally:
        storage.close()


@pytest.fixture
def file_storage(tmp_path: Path) -> Generator[FileStorage, None, None]:
    storage = FileStorage(tmp_path / "state.json", tmp_path / "stats.json")
    storage.open()
    try:
        yield storage
    finally:
        storage.close()


@pytest.fixture(params=["duckdb-memory", "duckdb-file", "json"])
def storage(request, tmp_path: Path, db_path_file: Path) -> Generator[StorageBackend, None, None]:
    """Every backend, opened; tests using it must hold for all of them."""
    if request.param == "duckdb-memory":
        backend = DuckDBStorage(":memory:")
    elif request.param == "duckdb-file":
        backend = DuckDBStorage(db_path_file)
    else:
        backend = FileStorage(tmp_path / "state.json", tmp_path / "stats.json")
    backend.open()
    try:
        yield backend
    finally:
        backend.close()


# --- Data Fixtures ---


@pytest.fixture
def sample_card() -> Card:
    return Card(
        question="What is 2+2?",
        answer="4",
        source_file="math.txt",
        source_line=1,
        tags="math, basic",
        created_at=datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
        updated_at=datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
    )


@pytest.fixture
def deck_file(tmp_path: Path) -> Path:
    """A deck mixing every separator with comments, blanks and one bad line."""
    path = tmp_path / "deck.txt"
    path.write_text(
        "# Capitals\n"
        "What is the capital of France? >> Paris\n"
        "\n"
        "Largest planet :: Jupiter\n"
        "H2O | Water\n"
        "badline\n",
        encoding="utf-8",
    )
    return path
