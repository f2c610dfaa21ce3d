"""Memory store: SQLite rows and audit log with a FAISS neighbour index."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Sequence

from mnemos.storage.faiss_store import FAISSStore
from mnemos.storage.sqlite_store import SQLiteStore
from mnemos.types import ConsolidationAction, ConsolidationLogEntry, MemoryArea, MemoryChunk

logger = logging.getLogger(__name__)


class MemoryStore:
    """Keeps the vector index in step with the chunk table.

    SQLite is the source of truth. On open the index (possibly loaded from a
    snapshot older than the table) is reconciled against stored blobs:
    missing vectors are added and entries without a row are dropped.
    """

    def __init__(self, sqlite: SQLiteStore, vectors: FAISSStore) -> None:
        self.sqlite = sqlite
        self.vectors = vectors
        self._sync_index()

    def _sync_index(self) -> None:
        stored: set[str] = set()
        added = 0
        for chunk_id, vector in self.sqlite.iter_chunk_vectors():
            if len(vector) != self.vectors.dims:
                continue
            stored.add(chunk_id)
            if chunk_id not in self.vectors:
                self.vectors.add(vector, chunk_id)
                added += 1
        orphans = [cid for cid in self.vectors.ids() if cid not in stored]
        for chunk_id in orphans:
            self.vectors.remove(chunk_id)
        if added or orphans:
            logger.info(
                "Reconciled vector index: added %d, dropped %d, total %d",
                added, len(orphans), self.vectors.size,
            )

    # --- Chunks ---

    def get_chunk(self, chunk_id: str) -> MemoryChunk | None:
        return self.sqlite.get_chunk(chunk_id)

    def chunk_exists(self, chunk_id: str) -> bool:
        return self.sqlite.chunk_exists(chunk_id)

    def insert_chunk(self, chunk: MemoryChunk) -> str:
        with self.sqlite.transaction():
            self.sqlite.insert_chunk(chunk)
            if chunk.embedding:
                self.vectors.add(chunk.embedding, chunk.id)
        return chunk.id

    def delete_chunk(self, chunk_id: str) -> bool:
        """Delete the row; its vector goes once the delete is committed."""
        deleted = self.sqlite.delete_chunk(chunk_id)
        self.sqlite.on_commit(lambda: self.vectors.remove(chunk_id))
        return deleted

    def update_chunk_text(self, chunk_id: str, text: str, absorbed_id: str | None = None) -> bool:
        return self.sqlite.update_chunk_text(chunk_id, text, absorbed_id=absorbed_id)

    def query_nearest(self, embedding: Sequence[float], k: int) -> list[tuple[MemoryChunk, float]]:
        """Return up to k (chunk, cosine_distance) pairs, nearest first."""
        out: list[tuple[MemoryChunk, float]] = []
        for chunk_id, distance in self.vectors.nearest(embedding, top_k=k):
            chunk = self.sqlite.get_chunk(chunk_id)
            if chunk is None:
                # Index entry outlived its row.
                self.vectors.remove(chunk_id)
                continue
            out.append((chunk, distance))
        return out

    def list_chunks(self, area: MemoryArea | str | None = None, limit: int = 100) -> list[MemoryChunk]:
        return self.sqlite.list_chunks(area=area, limit=limit)

    def count_chunks(self, area: MemoryArea | str | None = None) -> int:
        return self.sqlite.count_chunks(area)

    # --- Consolidation Log ---

    def append_consolidation_log(self, entry: ConsolidationLogEntry) -> str:
        return self.sqlite.insert_consolidation_log(entry)

    def list_consolidation_log(
        self,
        area: MemoryArea | str | None = None,
        action: ConsolidationAction | str | None = None,
        since: int | None = None,
        limit: int = 100,
    ) -> list[ConsolidationLogEntry]:
        return self.sqlite.list_consolidation_log(area=area, action=action, since=since, limit=limit)

    # --- Lifecycle ---

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.sqlite.transaction():
            yield

    def save(self) -> None:
        if self.vectors.faiss_dir:
            self.vectors.save()

    def close(self) -> None:
        self.save()
        self.sqlite.close()
