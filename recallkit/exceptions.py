from typing import Optional


class StorageError(Exception):
    """Base exception for persistence-related errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseConnectionError(StorageError):
    """Raised for errors connecting to the database."""

    pass


class SchemaInitializationError(StorageError):
    """Raised for errors during schema setup."""

    pass


class CardOperationError(StorageError):
    """Raised for errors during card operations (CRUD)."""

    pass


class CardNotFoundError(CardOperationError):
    """Raised when an operation requires a card that does not exist."""

    pass


class DuplicateCardError(CardOperationError):
    """Raised when adding a card whose question/answer pair already exists."""

    pass


class ReviewOperationError(StorageError):
    """Indicates an error while reading or writing review state."""

    pass


class SessionOperationError(StorageError):
    """Indicates an error during a session-related operation."""

    pass


class StatsOperationError(StorageError):
    """Indicates an error reading or writing daily stats or the streak."""

    pass


class MarshallingError(StorageError):
    """Indicates an error during data conversion between application models
    and the storage format."""

    pass


class FileStoreError(StorageError):
    """Raised when a JSON state or stats file cannot be read or written."""

    pass


class DeckLoadError(Exception):
    """Raised when a deck source cannot be opened or read."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")
