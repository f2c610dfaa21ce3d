"""SQLite-backed cache in front of an embedding backend."""

from __future__ import annotations

import numpy as np

from mnemos.embeddings.backends import EmbeddingBackend
from mnemos.storage.sqlite_store import SQLiteStore
from mnemos.utils import content_hash


class EmbeddingCache:
    """Keyed by model and text hash so a model switch never reuses vectors."""

    def __init__(self, backend: EmbeddingBackend, store: SQLiteStore) -> None:
        self.backend = backend
        self.store = store
        self.model = str(getattr(backend, "model", "") or type(backend).__name__)
        self.hits = 0
        self.misses = 0

    def _key(self, text: str) -> str:
        return content_hash(f"{self.model}\x00{text}".encode())

    async def embed_text(self, text: str) -> list[float]:
        key = self._key(text)
        blob = self.store.get_cached_embedding(key)
        if blob is not None:
            vec = np.frombuffer(blob, dtype=np.float32)
            if vec.shape[0] == self.backend.dims:
                self.hits += 1
                return vec.tolist()
        self.misses += 1
        vec = np.asarray(await self.backend.embed_single(text), dtype=np.float32)
        self.store.cache_embedding(key, vec.tobytes(), self.model)
        return vec.tolist()

    @property
    def stats(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses}
