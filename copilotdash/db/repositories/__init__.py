"""Repository package for database access."""

from .state import InMemoryStateRepository, SqliteStateRepository

__all__ = [
    "InMemoryStateRepository",
    "SqliteStateRepository",
]
