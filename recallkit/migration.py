"""
One-way import of the JSON state and stats files into the active store.

Earlier releases kept review state and statistics in two JSON files next to the
deck. LegacyMigrator copies their content into the configured backend without
overwriting anything the store already holds, so running it again is harmless.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .constants import DEFAULT_STATE_FILE, DEFAULT_STATS_FILE
from .exceptions import FileStoreError, MarshallingError, StorageError
from .models import LearningStreak, ReviewState
from .scheduler import BaseScheduler, ensure_utc
from .storage import db_utils
from .storage.base import StorageBackend
from .storage.file_store import read_json

logger = logging.getLogger(__name__)

# Zero timestamp written by earlier releases for cards that were never reviewed.
LEGACY_ZERO_TIME = "0001-01-01T00:00:00Z"


@dataclass
class MigrationReport:
    """Counts of what a migration run copied and what it left alone."""

    states_migrated: int = 0
    states_skipped: int = 0
    days_migrated: int = 0
    days_skipped: int = 0
    streak_copied: bool = False
    backups: List[Path] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def migrated_anything(self) -> bool:
        return bool(self.states_migrated or self.days_migrated or self.streak_copied)


def _parse_legacy_time(value: Optional[str]) -> Optional[datetime]:
    if not value or value == LEGACY_ZERO_TIME:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def _split_location(key: str):
    """'decks/go.txt:12' -> ('decks/go.txt', 12); None if the key has no line."""
    source_file, sep, line = key.rpartition(":")
    if not sep or not line.isdigit():
        return None
    return source_file, int(line)


class LegacyMigrator:
    def __init__(
        self,
        storage: StorageBackend,
        scheduler: BaseScheduler,
        state_file: Union[str, Path] = DEFAULT_STATE_FILE,
        stats_file: Union[str, Path] = DEFAULT_STATS_FILE,
    ):
        self.storage = storage
        self.scheduler = scheduler
        self.state_file = Path(state_file)
        self.stats_file = Path(stats_file)

    def migrate_legacy_to_store(self) -> MigrationReport:
        """
        Import both legacy files. Each file is backed up before it is read; a
        file whose backup fails is left out of this run. A record the store
        rejects is reported as a warning and skipped.
        """
        report = MigrationReport()

        states = self._load_legacy_file(self.state_file, report)
        if states is not None:
            self._migrate_states(states, report)

        stats = self._load_legacy_file(self.stats_file, report)
        if stats is not None:
            self._migrate_stats(stats, report)

        logger.info(
            f"Migration finished: {report.states_migrated} states migrated, "
            f"{report.states_skipped} skipped; {report.days_migrated} days migrated, "
            f"{report.days_skipped} skipped"
        )
        return report

    def _warn(self, report: MigrationReport, message: str) -> None:
        logger.warning(message)
        report.warnings.append(message)

    def _load_legacy_file(self, path: Path, report: MigrationReport) -> Optional[Dict[str, Any]]:
        if not path.exists():
            logger.info(f"No legacy file at {path}; nothing to migrate.")
            return None
        try:
            backup = db_utils.backup_file(path)
        except OSError as e:
            self._warn(report, f"Could not back up {path}, skipping it: {e}")
            return None
        report.backups.append(backup)
        logger.info(f"Backed up {path} to {backup}")

        try:
            data = read_json(path)
        except FileStoreError as e:
            self._warn(report, f"Could not read {path}, skipping it: {e}")
            return None
        if not isinstance(data, dict):
            self._warn(report, f"{path} does not contain a JSON object, skipping it.")
            return None
        return data

    # --- Review states ---

    def _migrate_states(self, states: Dict[str, Any], report: MigrationReport) -> None:
        logger.info(f"Migrating {len(states)} review states from {self.state_file}")
        for key, entry in states.items():
            if self._migrate_state(key, entry, report):
                report.states_migrated += 1
            else:
                report.states_skipped += 1

    def _migrate_state(self, key: str, entry: Any, report: MigrationReport) -> bool:
        if not isinstance(entry, dict):
            self._warn(report, f"State {key} is not a JSON object, skipping.")
            return False

        location = _split_location(str(entry.get("card_key") or key))
        try:
            card = self.storage.find_card_by_location(*location) if location else None
            existing = self.storage.get_review_state(card) if card else None
        except StorageError as e:
            self._warn(report, f"Could not look up the card for {key}, skipping: {e}")
            return False
        if card is None:
            self._warn(report, f"No card found for {key}, skipping its state.")
            return False
        if existing is not None:
            logger.debug(f"State for {key} already present, skipping.")
            return False

        # Old files nest the go-fsrs card under "fsrs_card".
        blob = entry.get("scheduler_state", entry.get("fsrs_card"))
        try:
            scheduler_state = self.scheduler.serialize(self.scheduler.deserialize(blob))
            due = self.scheduler.due_of(scheduler_state)
        except (ValueError, TypeError) as e:
            self._warn(report, f"Unreadable scheduler state for {key}, skipping: {e}")
            return False

        last_review = entry.get("last_review")
        state = ReviewState(
            card_id=card.card_id,
            card_key=card.location_key,
            scheduler_state=scheduler_state,
            last_review=_parse_legacy_time(last_review) if isinstance(last_review, str) else None,
            review_count=max(0, int(entry.get("review_count") or 0)),
            due=due,
        )
        try:
            self.storage.save_review_state(state)
        except StorageError as e:
            self._warn(report, f"Failed to save review state for {key}, skipping: {e}")
            return False
        logger.debug(f"Migrated state for {card.location_key}")
        return True

    # --- Statistics ---

    def _migrate_stats(self, stats: Dict[str, Any], report: MigrationReport) -> None:
        daily = stats.get("daily_stats") or {}
        logger.info(f"Migrating {len(daily)} daily statistics records from {self.stats_file}")
        for key, entry in daily.items():
            try:
                day = db_utils.json_to_daily_stats(key, entry)
            except MarshallingError as e:
                self._warn(report, f"Invalid daily stats for {key}, skipping: {e}")
                report.days_skipped += 1
                continue
            try:
                if self.storage.get_daily_stats(day.study_date) is not None:
                    logger.debug(f"Daily stats already exist for {key}, skipping.")
                    report.days_skipped += 1
                    continue
                self.storage.create_daily_stats(day)
            except StorageError as e:
                self._warn(report, f"Failed to create daily stats for {key}: {e}")
                report.days_skipped += 1
                continue
            report.days_migrated += 1

        self._migrate_streak(stats.get("learning_streak"), report)

    def _migrate_streak(self, data: Any, report: MigrationReport) -> None:
        if not isinstance(data, dict):
            return
        try:
            streak = LearningStreak(**data)
        except ValueError as e:
            self._warn(report, f"Invalid learning streak, skipping: {e}")
            return
        if streak.current_streak == 0 and streak.longest_streak == 0 and not streak.last_study_date:
            return
        try:
            if self.storage.get_learning_streak() is not None:
                logger.debug("Store already has a learning streak; keeping it.")
                return
            self.storage.save_learning_streak(streak)
        except StorageError as e:
            self._warn(report, f"Failed to copy the learning streak: {e}")
            return
        report.streak_copied = True
        logger.info(
            f"Copied learning streak: current {streak.current_streak}, "
            f"longest {streak.longest_streak}"
        )
