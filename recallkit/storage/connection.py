import logging
from pathlib import Path
from typing import Optional, Union

import duckdb

from ..exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class ConnectionHandler:
    """Owns the single DuckDB connection used by the relational backend."""

    def __init__(self, db_path: Union[str, Path]):
        """
        Args:
            db_path: Path to the DuckDB file, or ":memory:" (any case) for a
                throwaway in-memory database.
        """
        if isinstance(db_path, str) and db_path.lower() == MEMORY_DB:
            self.db_path_resolved = Path(MEMORY_DB)
            logger.info("Using in-memory DuckDB database.")
        else:
            self.db_path_resolved = Path(db_path).resolve()
            logger.info(f"ConnectionHandler initialized for DB at: {self.db_path_resolved}")

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self.is_new_db: bool = False

    @property
    def is_memory(self) -> bool:
        return str(self.db_path_resolved) == MEMORY_DB

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        """
        Return the open connection, connecting on first use.

        `is_new_db` is set when the database file did not exist before this
        connection (always for in-memory databases).

        Raises:
            DatabaseConnectionError: If DuckDB cannot open the database.
        """
        if self._connection is None:
            try:
                if self.is_memory:
                    self.is_new_db = True
                else:
                    self.is_new_db = not self.db_path_resolved.exists()
                    self.db_path_resolved.parent.mkdir(parents=True, exist_ok=True)

                self._connection = duckdb.connect(database=str(self.db_path_resolved))
                logger.info("Successfully connected to the database.")
            except (duckdb.Error, OSError) as e:
                raise DatabaseConnectionError(
                    f"Failed to connect to database: {e}", original_exception=e
                ) from e
        return self._connection

    def close_connection(self) -> None:
        """Close the connection if open; a later get_connection reconnects."""
        if self._connection:
            try:
                self._connection.close()
                logger.info(f"Database connection to {self.db_path_resolved} closed.")
            except duckdb.Error as e:
                logger.error(f"Error closing the database connection: {e}")
            finally:
                self._connection = None

    def __enter__(self) -> duckdb.DuckDBPyConnection:
        return self.get_connection()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_connection()


def rollback_quietly(cursor, context: str) -> None:
    """Roll back the cursor's open transaction, logging rather than raising."""
    try:
        cursor.rollback()
        logger.info(f"Transaction rolled back due to {context} error.")
    except duckdb.Error as rb_err:
        logger.error(f"Failed to rollback transaction: {rb_err}")
