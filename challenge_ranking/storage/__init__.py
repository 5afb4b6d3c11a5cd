"""
Storage implementations.

Provides implementations of the Store interface for persisting submissions,
ratings, comparisons and voting progress.

Available implementations:
- SQLiteStore: Transactional SQLite database shared across workers
- MemoryStore: In-process dictionaries for tests and simulations
"""

from .memory_storage import MemoryStore
from .sqlite_storage import SQLiteStore

__all__ = ["MemoryStore", "SQLiteStore"]
