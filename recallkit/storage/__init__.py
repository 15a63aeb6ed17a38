"""Storage package for recallkit.

Two interchangeable backends implement StorageBackend: DuckDBStorage (one
embedded database file) and FileStorage (JSON state and stats files).
"""

from .base import StorageBackend
from .database import DuckDBStorage
from .file_store import FileStorage

__all__ = ["StorageBackend", "DuckDBStorage", "FileStorage"]
