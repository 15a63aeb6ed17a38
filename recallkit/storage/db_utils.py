"""
Utility functions for data marshalling between Pydantic models and storage
formats (DuckDB rows and the JSON state/stats files).
"""

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from ..constants import BACKUP_TIMESTAMP_FORMAT
from ..exceptions import MarshallingError
from ..models import Card, DailyStats, LearningStreak, ReviewState, Session


def to_db_timestamp(ts: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime -> naive UTC for TIMESTAMP columns. Naive input is taken as UTC."""
    if ts is None:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def from_db_timestamp(ts: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC from the database -> aware UTC datetime."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# --- Cards ---


def card_to_db_params_tuple(card: Card) -> Tuple:
    """
    Returns:
        (question, answer, source_file, source_line, source_context,
         prompt_kind, tags, created_at, updated_at)
    """
    return (
        card.question,
        card.answer,
        card.source_file,
        card.source_line,
        card.source_context,
        card.prompt_kind.value,
        list(card.tags) if card.tags else None,
        to_db_timestamp(card.created_at),
        to_db_timestamp(card.updated_at),
    )


def db_row_to_card(row_dict: Dict[str, Any]) -> Card:
    """
    Create a Card model from a database row dictionary.

    Raises:
        MarshallingError: If the row cannot be validated into a Card.
    """
    data = row_dict.copy()
    data["tags"] = data.get("tags") or []
    data["created_at"] = from_db_timestamp(data.get("created_at"))
    data["updated_at"] = from_db_timestamp(data.get("updated_at"))
    try:
        return Card(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse card from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


# --- Review state ---


def review_state_to_db_params_tuple(state: ReviewState) -> Tuple:
    """
    Returns:
        (card_id, card_key, scheduler_state, last_review, review_count, due)
    """
    return (
        state.card_id,
        state.card_key,
        state.scheduler_state,
        to_db_timestamp(state.last_review),
        state.review_count,
        to_db_timestamp(state.due),
    )


def db_row_to_review_state(row_dict: Dict[str, Any]) -> ReviewState:
    data = row_dict.copy()
    data.pop("state_id", None)
    data["last_review"] = from_db_timestamp(data.get("last_review"))
    data["due"] = from_db_timestamp(data.get("due"))
    try:
        return ReviewState(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse review state from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def review_state_to_json(state: ReviewState) -> Dict[str, Any]:
    """
    Serialize a ReviewState for the JSON state file. The scheduler blob is
    embedded as nested JSON rather than an escaped string.
    """
    try:
        scheduler_state = json.loads(state.scheduler_state)
    except ValueError as e:
        raise MarshallingError(
            f"Scheduler state for {state.card_key} is not valid JSON.",
            original_exception=e,
        ) from e
    return {
        "card_key": state.card_key,
        "scheduler_state": scheduler_state,
        "last_review": state.last_review.isoformat() if state.last_review else None,
        "review_count": state.review_count,
        "due": state.due.isoformat(),
    }


def json_to_review_state(key: str, obj: Dict[str, Any]) -> ReviewState:
    """Build a ReviewState from one entry of the JSON state file."""
    try:
        data = dict(obj)
        blob = data.get("scheduler_state")
        if not isinstance(blob, str):
            data["scheduler_state"] = json.dumps(blob)
        data.setdefault("card_key", key)
        data.pop("card_id", None)
        state = ReviewState(**data)
    except (ValidationError, TypeError, ValueError) as e:
        raise MarshallingError(
            f"Failed to parse review state '{key}': {e}", original_exception=e
        ) from e
    # Timestamps without an offset are taken as UTC.
    state.due = from_db_timestamp(state.due)
    state.last_review = from_db_timestamp(state.last_review)
    return state


# --- Sessions ---


def session_to_db_params_tuple(session: Session) -> Tuple:
    """
    Returns:
        (start_time, end_time, cards_reviewed, new_cards, reviewed_cards)
    """
    return (
        to_db_timestamp(session.start_time),
        to_db_timestamp(session.end_time),
        session.cards_reviewed,
        session.new_cards,
        session.reviewed_cards,
    )


def db_row_to_session(row_dict: Dict[str, Any]) -> Session:
    data = row_dict.copy()
    data["start_time"] = from_db_timestamp(data.get("start_time"))
    data["end_time"] = from_db_timestamp(data.get("end_time"))
    try:
        return Session(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Data validation failed for session: {e}", original_exception=e
        ) from e


# --- Daily stats and streak ---


def daily_stats_to_db_params_tuple(stats: DailyStats) -> Tuple:
    """
    Returns:
        (date, cards_reviewed, session_minutes, session_count, new_cards,
         reviewed_cards)
    """
    return (
        stats.study_date,
        stats.cards_reviewed,
        stats.session_minutes,
        stats.session_count,
        stats.new_cards,
        stats.reviewed_cards,
    )


def db_row_to_daily_stats(row_dict: Dict[str, Any]) -> DailyStats:
    """Rows use the column names (`date`, `session_minutes`)."""
    data = row_dict.copy()
    data["study_date"] = data.pop("date")
    try:
        return DailyStats(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse daily stats from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def daily_stats_to_json(stats: DailyStats) -> Dict[str, Any]:
    return stats.model_dump(mode="json", by_alias=True)


def json_to_daily_stats(key: str, obj: Dict[str, Any]) -> DailyStats:
    data = dict(obj)
    data.setdefault("date", key)
    try:
        return DailyStats.model_validate(data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse daily stats for '{key}': {e}", original_exception=e
        ) from e


def db_row_to_learning_streak(row_dict: Dict[str, Any]) -> LearningStreak:
    data = row_dict.copy()
    data.pop("id", None)
    try:
        return LearningStreak(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Failed to parse learning streak: {e}", original_exception=e
        ) from e


# --- Files ---


def backup_file(path: Path, now: Optional[datetime] = None) -> Path:
    """
    Copies `path` next to itself as `<name>.backup_YYYYmmdd_HHMMSS`.

    Returns:
        The path of the created backup.

    Raises:
        OSError: If the copy fails.
    """
    timestamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)
    backup_path = path.with_name(f"{path.name}.backup_{timestamp}")
    shutil.copy2(path, backup_path)
    return backup_path
