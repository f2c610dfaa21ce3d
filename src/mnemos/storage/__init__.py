"""Persistence: SQLite rows, FAISS neighbour index and the combined store."""

from mnemos.storage.faiss_store import FAISSStore
from mnemos.storage.memory_store import MemoryStore
from mnemos.storage.sqlite_store import SCHEMA_VERSION, SQLiteStore

__all__ = ["FAISSStore", "MemoryStore", "SQLiteStore", "SCHEMA_VERSION"]
