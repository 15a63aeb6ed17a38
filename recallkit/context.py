"""
The explicit process context that wires storage, scheduler and the managers
together. Every entry point builds one StudyContext and passes it along; there
is no module-level state.
"""

import logging
import signal
from typing import Dict, Optional

from .config import Settings, get_settings
from .exceptions import StorageError
from .ingestion import CardIngestor
from .migration import LegacyMigrator, MigrationReport
from .review_manager import ReviewStateManager
from .scheduler import BaseScheduler, FSRSScheduler, FSRSSchedulerConfig
from .session_manager import StatisticsManager
from .storage import DuckDBStorage, FileStorage, StorageBackend

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def create_storage(settings: Settings) -> StorageBackend:
    """Select the backend named by `settings.backend`. The result is not opened yet."""
    if settings.backend == "file":
        return FileStorage(settings.state_file, settings.stats_file)
    return DuckDBStorage(settings.db_path)


def create_scheduler(settings: Settings) -> BaseScheduler:
    return FSRSScheduler(
        FSRSSchedulerConfig(desired_retention=settings.desired_retention)
    )


class StudyContext:
    """
    Owns one storage backend and the components built on it.

    Use it as a context manager; leaving the block ends any active session
    and closes the store.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[StorageBackend] = None,
        scheduler: Optional[BaseScheduler] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or create_storage(self.settings)
        self.scheduler = scheduler or create_scheduler(self.settings)
        self.review_manager = ReviewStateManager(self.storage, self.scheduler)
        self.stats_manager = StatisticsManager(
            self.storage, seconds_per_card=self.settings.seconds_per_card
        )
        self.ingestor = CardIngestor(self.storage, self.review_manager)
        self._previous_handlers: Dict[int, object] = {}
        self._open = False

    def open(self, migrate: bool = False) -> "StudyContext":
        """
        Open the store, optionally import the legacy JSON files, then close
        any sessions a previous run left open. Only opening the store is
        fatal; migration and recovery failures are logged.

        Raises:
            StorageError: If the store cannot be opened.
        """
        if self._open:
            return self
        self.storage.open()
        self._open = True
        if migrate:
            try:
                self.migrate_legacy()
            except StorageError as e:
                logger.error(f"Legacy migration failed, continuing without it: {e}")
        try:
            self.stats_manager.recover_orphan_sessions()
        except StorageError as e:
            logger.error(f"Could not recover unfinished sessions: {e}")
        return self

    def migrate_legacy(self) -> MigrationReport:
        migrator = LegacyMigrator(
            self.storage,
            self.scheduler,
            state_file=self.settings.state_file,
            stats_file=self.settings.stats_file,
        )
        return migrator.migrate_legacy_to_store()

    def close(self) -> None:
        """End the active session (if any) and release the store. Safe to call twice."""
        if not self._open:
            return
        try:
            if self.stats_manager.has_active_session:
                logger.info("Ending active session before shutdown")
                self.stats_manager.end_session()
        finally:
            self._open = False
            self.storage.close()
            self._restore_signal_handlers()

    def __enter__(self) -> "StudyContext":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # --- Signals ---

    def install_signal_handlers(self) -> None:
        """End the session and close the store on SIGINT or SIGTERM, then exit."""
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, ending session...")
        self.close()
        raise SystemExit(0)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
