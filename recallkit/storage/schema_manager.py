import logging

import duckdb

from ..exceptions import SchemaInitializationError
from . import schema
from .connection import ConnectionHandler, rollback_quietly

logger = logging.getLogger(__name__)


class SchemaManager:
    """Creates the recallkit tables on a fresh (or partially created) database."""

    def __init__(self, handler: ConnectionHandler):
        self._handler = handler

    def initialize_schema(self) -> None:
        """
        Runs the schema DDL inside a single transaction. Every statement is
        idempotent, so calling this on an existing database is harmless.

        Raises:
            SchemaInitializationError: If any statement fails; the transaction
                is rolled back first.
        """
        conn = self._handler.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                try:
                    cursor.execute(schema.DB_SCHEMA_SQL)
                    cursor.commit()
                except duckdb.Error:
                    rollback_quietly(cursor, "schema initialization")
                    raise
            logger.info(
                f"Database schema at {self._handler.db_path_resolved} initialized successfully (or already exists)."
            )
        except duckdb.Error as e:
            logger.error(f"Error initializing database schema at {self._handler.db_path_resolved}: {e}")
            raise SchemaInitializationError(
                f"Failed to initialize schema: {e}", original_exception=e
            ) from e
