"""Repository adapters - Store implementations."""

from .memory import MemoryStore
from .postgres import PostgresStore, run_migrations

__all__ = ["MemoryStore", "PostgresStore", "run_migrations"]
