"""FAISS cosine index over chunk embeddings."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import faiss
import numpy as np

from mnemos.exceptions import StorageError
from mnemos.utils import json_dumps, json_loads


class FAISSStore:
    """Inner-product index over L2-normalized vectors, keyed by chunk id.

    Scores are cosine similarities; ``nearest`` reports them as cosine
    distance (``1 - similarity``).
    """

    def __init__(self, dims: int, faiss_dir: Path | str | None = None) -> None:
        self.dims = dims
        self.faiss_dir = Path(faiss_dir) if faiss_dir else None
        # position → chunk id
        self._id_map: list[str] = []
        self._id_to_pos: dict[str, int] = {}
        self._index: faiss.Index = faiss.IndexFlatIP(dims)
        if self.faiss_dir:
            self.faiss_dir.mkdir(parents=True, exist_ok=True)
            self._try_load()

    @property
    def size(self) -> int:
        return self._index.ntotal

    def __contains__(self, chunk_id: str) -> bool:
        return chunk_id in self._id_to_pos

    def ids(self) -> list[str]:
        return list(self._id_map)

    def _as_matrix(self, vector: Sequence[float] | np.ndarray) -> np.ndarray:
        vec = np.ascontiguousarray(np.asarray(vector, dtype=np.float32).reshape(1, -1))
        if vec.shape[1] != self.dims:
            raise StorageError(f"embedding has {vec.shape[1]} dims, index expects {self.dims}")
        faiss.normalize_L2(vec)
        return vec

    def add(self, vector: Sequence[float] | np.ndarray, chunk_id: str) -> int:
        """Add one vector; re-adding an id replaces its previous vector."""
        if chunk_id in self._id_to_pos:
            self.remove(chunk_id)
        vec = self._as_matrix(vector)
        idx = self._index.ntotal
        self._index.add(vec)
        self._id_map.append(chunk_id)
        self._id_to_pos[chunk_id] = idx
        return idx

    def nearest(self, query_vector: Sequence[float] | np.ndarray, top_k: int = 10) -> list[tuple[str, float]]:
        """Return [(chunk_id, cosine_distance), ...] closest first."""
        if self._index.ntotal == 0:
            return []
        vec = self._as_matrix(query_vector)
        k = min(top_k, self._index.ntotal)
        scores, indices = self._index.search(vec, k)
        results = []
        for score, idx in zip(scores[0], indices[0]):
            if idx < 0 or idx >= len(self._id_map):
                continue
            results.append((self._id_map[idx], 1.0 - float(score)))
        return results

    def remove(self, chunk_id: str) -> bool:
        """Remove by chunk id. Rebuilds the flat index."""
        pos = self._id_to_pos.get(chunk_id)
        if pos is None:
            return False
        n = self._index.ntotal
        keep = [i for i in range(n) if i != pos]
        vectors = np.zeros((len(keep), self.dims), dtype=np.float32)
        for row, i in enumerate(keep):
            vectors[row] = self._index.reconstruct(i)
        self._id_map.pop(pos)
        self._id_to_pos = {cid: i for i, cid in enumerate(self._id_map)}
        self._index = faiss.IndexFlatIP(self.dims)
        if len(vectors) > 0:
            self._index.add(vectors)
        return True

    def save(self) -> None:
        """Persist index and id map to disk."""
        if not self.faiss_dir:
            raise StorageError("No faiss_dir configured")
        faiss.write_index(self._index, str(self.faiss_dir / "chunks.index"))
        (self.faiss_dir / "chunks.idmap").write_text(json_dumps(self._id_map), encoding="utf-8")

    def _try_load(self) -> None:
        index_path = self.faiss_dir / "chunks.index"
        idmap_path = self.faiss_dir / "chunks.idmap"
        if not (index_path.exists() and idmap_path.exists()):
            return
        index = faiss.read_index(str(index_path))
        if index.d != self.dims:
            # Embedding model changed; the owner rebuilds from stored vectors.
            return
        self._index = index
        self._id_map = json_loads(idmap_path.read_text(encoding="utf-8"))
        self._id_to_pos = {cid: i for i, cid in enumerate(self._id_map)}
