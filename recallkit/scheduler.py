# recallkit/scheduler.py

"""
Defines the BaseScheduler contract and the FSRSScheduler adapter over py-fsrs.

Scheduler state travels through the rest of recallkit as an opaque JSON text
blob. Only the scheduler itself knows how to read it.
"""

import datetime
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Union

from fsrs import Card as FSRSCard  # type: ignore
from fsrs import Rating as FSRSRating  # type: ignore
from fsrs import Scheduler as PyFSRSScheduler  # type: ignore
from pydantic import BaseModel, Field

from .constants import DEFAULT_DESIRED_RETENTION, DEFAULT_PARAMETERS
from .models import Rating

logger = logging.getLogger(__name__)


def ensure_utc(ts: datetime.datetime) -> datetime.datetime:
    """Ensures the given datetime is UTC. Assumes UTC if naive."""
    if ts.tzinfo is None or ts.tzinfo.utcoffset(ts) is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    if ts.tzinfo != datetime.timezone.utc:
        return ts.astimezone(datetime.timezone.utc)
    return ts


class BaseScheduler(ABC):
    """
    Abstract base class for all schedulers in recallkit.
    """

    @abstractmethod
    def initial_state(self) -> str:
        """Returns the serialized state of a card that has never been reviewed."""

    @abstractmethod
    def next_state(
        self, state: str, rating: Rating, now: datetime.datetime
    ) -> Tuple[str, datetime.datetime]:
        """
        Computes the next state of a card from its current blob and a rating.

        Args:
            state: The opaque serialized scheduler state.
            rating: The rating given for the current review.
            now: The UTC timestamp of the current review.

        Returns:
            A tuple of (new serialized state, next due timestamp).

        Raises:
            ValueError: If the rating or the state blob is invalid.
        """

    @abstractmethod
    def due_of(self, state: str) -> datetime.datetime:
        """Returns the due timestamp encoded in a state blob."""

    @abstractmethod
    def deserialize(self, blob: Union[str, Dict[str, Any]]) -> Any:
        """Loads a state blob (text or already-decoded JSON) into a native object."""

    @abstractmethod
    def serialize(self, native: Any) -> str:
        """Dumps a native scheduler object back into a state blob."""


class FSRSSchedulerConfig(BaseModel):
    """Configuration for the FSRS Scheduler."""

    parameters: Tuple[float, ...] = Field(
        default_factory=lambda: tuple(DEFAULT_PARAMETERS)
    )
    desired_retention: float = DEFAULT_DESIRED_RETENTION
    learning_steps: Tuple[datetime.timedelta, ...] = Field(
        default_factory=lambda: (
            datetime.timedelta(minutes=1),
            datetime.timedelta(minutes=10),
        )
    )
    relearning_steps: Tuple[datetime.timedelta, ...] = Field(
        default_factory=lambda: (datetime.timedelta(minutes=10),)
    )
    max_interval: int = 36500
    enable_fuzzing: bool = True


class FSRSScheduler(BaseScheduler):
    """
    FSRS (Free Spaced Repetition Scheduler) implementation for recallkit.
    This scheduler uses the py-fsrs library to compute next review dates.
    """

    RATING_MAP = {
        1: FSRSRating.Again,
        2: FSRSRating.Hard,
        3: FSRSRating.Good,
        4: FSRSRating.Easy,
    }

    def __init__(self, config: Optional[FSRSSchedulerConfig] = None):
        if config is None:
            config = FSRSSchedulerConfig()
        self.config = config

        self.fsrs_scheduler = PyFSRSScheduler(
            parameters=tuple(self.config.parameters),
            desired_retention=self.config.desired_retention,
            learning_steps=self.config.learning_steps,
            relearning_steps=self.config.relearning_steps,
            maximum_interval=self.config.max_interval,
            enable_fuzzing=self.config.enable_fuzzing,
        )

    def _map_rating_to_fsrs(self, rating: int) -> FSRSRating:
        """Maps recallkit rating (1-4) to FSRSRating and validates."""
        if not (1 <= int(rating) <= 4):
            raise ValueError(
                f"Invalid rating: {rating}. "
                "Must be 1-4 (1=Again, 2=Hard, 3=Good, 4=Easy)."
            )
        return self.RATING_MAP[int(rating)]

    def deserialize(self, blob: Union[str, Dict[str, Any]]) -> FSRSCard:
        try:
            data = json.loads(blob) if isinstance(blob, str) else dict(blob)
            if "Due" in data:
                data = self._upgrade_legacy_dict(data)
            return FSRSCard.from_dict(data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Unreadable scheduler state: {e}") from e

    # Older state files stored cards with capitalized keys and a numeric
    # state where 0 meant "new": {"Due", "Stability", "Difficulty", "State",
    # "LastReview", ...}.
    _LEGACY_ZERO_TIME = "0001-01-01T00:00:00Z"

    def _upgrade_legacy_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        legacy_state = int(data.get("State", 0))
        due = datetime.datetime.fromisoformat(data["Due"])
        last_review = data.get("LastReview")
        if not last_review or last_review == self._LEGACY_ZERO_TIME:
            last_review = None
        else:
            last_review = ensure_utc(datetime.datetime.fromisoformat(last_review)).isoformat()

        stability = data.get("Stability") or None
        difficulty = data.get("Difficulty") or None
        has_memory = stability is not None and difficulty is not None and last_review is not None

        if has_memory and legacy_state in (2, 3):
            state, step = legacy_state, (None if legacy_state == 2 else 0)
        else:
            # Everything else restarts the learning steps.
            state, step = 1, 0
            if not has_memory:
                stability = difficulty = None
        return {
            "card_id": FSRSCard().card_id,
            "state": state,
            "step": step,
            "stability": stability,
            "difficulty": difficulty,
            "due": ensure_utc(due).isoformat(),
            "last_review": last_review,
        }

    def serialize(self, native: FSRSCard) -> str:
        return json.dumps(native.to_dict())

    def initial_state(self) -> str:
        return self.serialize(FSRSCard())

    def due_of(self, state: str) -> datetime.datetime:
        return ensure_utc(self.deserialize(state).due)

    def next_state(
        self, state: str, rating: Rating, now: datetime.datetime
    ) -> Tuple[str, datetime.datetime]:
        fsrs_rating = self._map_rating_to_fsrs(rating)
        fsrs_card = self.deserialize(state)
        utc_now = ensure_utc(now)

        updated_card, _log = self.fsrs_scheduler.review_card(
            fsrs_card, fsrs_rating, review_datetime=utc_now
        )
        due = ensure_utc(updated_card.due)
        logger.debug(
            f"FSRS review: rating={fsrs_rating.name} state={updated_card.state.name} "
            f"due={due.isoformat()}"
        )
        return self.serialize(updated_card), due
