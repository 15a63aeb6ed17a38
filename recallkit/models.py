"""
Pydantic models for cards, review state and study statistics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Rating(IntEnum):
    """
    Represents the user's rating of their recall performance.
    """

    Again = 1
    Hard = 2
    Good = 3
    Easy = 4


class PromptKind(str, Enum):
    """The kind of knowledge a card prompts for."""

    FACTUAL = "factual"
    CONCEPTUAL = "conceptual"
    APPLICATION = "application"
    COMPARISON = "comparison"


def location_key(source_file: str, source_line: int) -> str:
    """Build the file-backed identity of a card from its provenance."""
    return f"{source_file}:{source_line}"


class Card(BaseModel):
    """
    A question/answer pair parsed from a deck file or added by hand.

    `card_id` is the relational store identity; it stays None for cards that
    only live in the file-backed store.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    card_id: Optional[int] = Field(
        default=None,
        description="Store identity (None in pure file-backed mode).",
    )
    question: str = Field(..., description="Question text, trimmed.")
    answer: str = Field(..., description="Answer text, trimmed.")
    source_file: str = Field(
        default="",
        description="Deck file the card came from.",
    )
    source_line: int = Field(
        default=0,
        ge=0,
        description="1-based line number within source_file.",
    )
    source_context: str = Field(
        default="",
        description="Optional context label (book, article, project).",
    )
    prompt_kind: PromptKind = Field(default=PromptKind.FACTUAL)
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @field_validator("question", "answer")
    @classmethod
    def strip_and_require_text(cls, value: str) -> str:
        """Trim surrounding whitespace and reject empty text."""
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def split_tag_string(cls, value):
        """Accept tags as a comma-separated string as well as a list."""
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [tag.strip() for tag in value if tag and tag.strip()]

    @property
    def location_key(self) -> str:
        return location_key(self.source_file, self.source_line)


class ReviewState(BaseModel):
    """
    Scheduling state for one card.

    `scheduler_state` is an opaque blob owned by the scheduler; nothing in
    recallkit looks inside it.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    card_id: Optional[int] = None
    card_key: str = Field(..., description="Location key of the card.")
    scheduler_state: str = Field(..., description="Opaque scheduler blob.")
    last_review: Optional[datetime] = None
    review_count: int = Field(default=0, ge=0)
    due: datetime

    def is_due(self, now: datetime) -> bool:
        """Unreviewed cards are always due; otherwise compare with `due`."""
        if self.review_count == 0:
            return True
        return now >= self.due


class Session(BaseModel):
    """
    A study session, open until `end_time` is set.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    session_id: Optional[int] = Field(
        default=None,
        description="Store identity (None until persisted).",
    )
    start_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    end_time: Optional[datetime] = None
    cards_reviewed: int = Field(default=0, ge=0)
    new_cards: int = Field(default=0, ge=0)
    reviewed_cards: int = Field(default=0, ge=0)

    @property
    def is_active(self) -> bool:
        """Check if session is currently active (not ended)."""
        return self.end_time is None

    def record_review(self, is_new: bool) -> None:
        self.cards_reviewed += 1
        if is_new:
            self.new_cards += 1
        else:
            self.reviewed_cards += 1

    def duration_minutes(self) -> int:
        """Whole minutes between start and end; 0 while active."""
        if self.end_time is None:
            return 0
        seconds = (self.end_time - self.start_time).total_seconds()
        return max(0, int(seconds // 60))


class DailyStats(BaseModel):
    """
    Aggregated activity for one local calendar date.

    Aliases keep the legacy JSON keys (`date`, `session_time`).
    """

    model_config = ConfigDict(
        validate_assignment=True, extra="forbid", populate_by_name=True
    )

    study_date: date = Field(..., alias="date")
    cards_reviewed: int = Field(default=0, ge=0)
    session_minutes: int = Field(default=0, ge=0, alias="session_time")
    session_count: int = Field(default=0, ge=0)
    new_cards: int = Field(default=0, ge=0)
    reviewed_cards: int = Field(default=0, ge=0)

    def add_session(self, session: Session) -> None:
        """Accumulate a finished session into this day."""
        self.cards_reviewed += session.cards_reviewed
        self.session_minutes += session.duration_minutes()
        self.session_count += 1
        self.new_cards += session.new_cards
        self.reviewed_cards += session.reviewed_cards


class LearningStreak(BaseModel):
    """
    Consecutive study days. `last_study_date` is kept as the raw
    YYYY-MM-DD string so that a corrupt value resets the streak instead of
    failing to load.
    """

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_study_date: Optional[str] = None

    @field_validator("last_study_date", mode="before")
    @classmethod
    def coerce_date(cls, value):
        if isinstance(value, date):
            return value.isoformat()
        return value or None


@dataclass
class ParseIssue:
    """A deck line that was rejected or could not be stored."""

    line_number: int
    line: str
    reason: str

    def display_line(self, width: int = 50) -> str:
        if len(self.line) > width:
            return self.line[: width - 3] + "..."
        return self.line


@dataclass
class ParseResult:
    """Aggregate outcome of loading one deck source."""

    source: str
    cards: List[Card] = field(default_factory=list)
    issues: List[ParseIssue] = field(default_factory=list)
    total_lines: int = 0
    valid_cards: int = 0
    skipped_lines: int = 0
    stored_cards: int = 0
    duplicate_cards: int = 0

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)


@dataclass
class ProgressStats:
    total: int
    due: int
    reviewed: int


@dataclass
class AllTimeStats:
    cards_reviewed: int = 0
    session_minutes: int = 0
    session_count: int = 0
    new_cards: int = 0
    reviewed_cards: int = 0
