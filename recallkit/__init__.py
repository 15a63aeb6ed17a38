"""Recallkit - A spaced repetition core for plain-text flashcard decks."""

from .models import Card, ReviewState, Session, DailyStats, LearningStreak, Rating
from .constants import DEFAULT_PARAMETERS, DEFAULT_DESIRED_RETENTION
from .storage import DuckDBStorage, FileStorage, StorageBackend
from .context import StudyContext

__all__ = [
    "Card",
    "ReviewState",
    "Session",
    "DailyStats",
    "LearningStreak",
    "Rating",
    "DEFAULT_PARAMETERS",
    "DEFAULT_DESIRED_RETENTION",
    "DuckDBStorage",
    "FileStorage",
    "StorageBackend",
    "StudyContext",
]
