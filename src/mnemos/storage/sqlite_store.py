"""SQLite storage for memory chunks, the consolidation log and embedding cache."""

from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

import numpy as np

from mnemos.types import ConsolidationAction, ConsolidationLogEntry, MemoryArea, MemoryChunk
from mnemos.utils import content_hash, iso_str, json_dumps, json_loads, now_ms, utcnow

SCHEMA_VERSION = 2

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    path TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL DEFAULT 'memory',
    model TEXT NOT NULL DEFAULT '',
    hash TEXT NOT NULL DEFAULT '',
    text TEXT NOT NULL,
    embedding BLOB,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path);

CREATE TABLE IF NOT EXISTS embedding_cache (
    text_hash TEXT PRIMARY KEY,
    embedding BLOB NOT NULL,
    model TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""

# Additive columns on chunks; applied after the base table exists.
_CHUNK_COLUMNS: list[tuple[str, str]] = [
    ("area", "TEXT NOT NULL DEFAULT 'main'"),
    ("importance", "REAL NOT NULL DEFAULT 0.5"),
    ("consolidated_from", "TEXT DEFAULT NULL"),
]

_CONSOLIDATION_SCHEMA = """
CREATE TABLE IF NOT EXISTS consolidation_log (
    id TEXT PRIMARY KEY,
    timestamp INTEGER NOT NULL,
    action TEXT NOT NULL,
    source_ids TEXT NOT NULL,
    result_id TEXT,
    area TEXT NOT NULL DEFAULT 'main',
    model TEXT NOT NULL,
    reasoning TEXT,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_consolidation_log_timestamp ON consolidation_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_consolidation_log_action ON consolidation_log(action);
CREATE INDEX IF NOT EXISTS idx_chunks_area ON chunks(area);
"""


def _vector_to_blob(embedding: list[float]) -> bytes | None:
    if not embedding:
        return None
    return np.asarray(embedding, dtype=np.float32).tobytes()


def _blob_to_vector(blob: bytes | None) -> list[float]:
    if not blob:
        return []
    return np.frombuffer(blob, dtype=np.float32).tolist()


class SQLiteStore:
    """Main SQLite storage backend."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False,
                                     timeout=30.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=30000")
        self._tx_depth = 0
        self._after_commit: list[Callable[[], object]] = []
        self._init_schema()

    def _init_schema(self) -> None:
        for attempt in range(5):
            try:
                cur = self._conn.cursor()
                cur.executescript(_SCHEMA)
                for column, definition in _CHUNK_COLUMNS:
                    self._ensure_column("chunks", column, definition)
                cur.executescript(_CONSOLIDATION_SCHEMA)
                cur.execute(
                    """INSERT INTO meta(key, value) VALUES ('schema_version', ?)
                       ON CONFLICT(key) DO UPDATE SET value=excluded.value""",
                    (str(SCHEMA_VERSION),),
                )
                self._conn.commit()
                return
            except sqlite3.OperationalError as e:
                if "locked" in str(e) and attempt < 4:
                    time.sleep(2 * (attempt + 1))
                    continue
                raise

    def _ensure_column(self, table: str, column: str, definition: str) -> None:
        rows = self._conn.execute(f"PRAGMA table_info({table})").fetchall()
        if any(r["name"] == column for r in rows):
            return
        self._conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    def schema_version(self) -> int:
        row = self._conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        return int(row["value"]) if row else 1

    def table_columns(self, table: str) -> list[str]:
        return [r["name"] for r in self._conn.execute(f"PRAGMA table_info({table})").fetchall()]

    def close(self) -> None:
        self._conn.close()

    # --- Transactions ---

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into a single commit; nested blocks join the outer one.

        Callbacks registered with ``on_commit`` run after the outermost
        commit and are discarded on rollback.
        """
        self._tx_depth += 1
        try:
            yield
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.rollback()
                self._after_commit.clear()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._conn.commit()
            self._run_after_commit()

    def on_commit(self, callback: Callable[[], object]) -> None:
        """Run ``callback`` once the current transaction commits (now if none is open)."""
        if self._tx_depth == 0:
            callback()
        else:
            self._after_commit.append(callback)

    def _run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            callback()

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self._conn.commit()

    # --- Chunks ---

    def insert_chunk(self, chunk: MemoryChunk) -> str:
        self._conn.execute(
            """INSERT INTO chunks(id, path, source, model, hash, text, embedding,
               created_at, updated_at, area, importance, consolidated_from)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                chunk.id, chunk.path, chunk.source, chunk.model,
                content_hash(chunk.text.encode()), chunk.text,
                _vector_to_blob(chunk.embedding),
                chunk.created_at, chunk.updated_at,
                chunk.area.value, chunk.importance,
                json_dumps(chunk.consolidated_from) if chunk.consolidated_from is not None else None,
            ),
        )
        self._commit()
        return chunk.id

    def get_chunk(self, chunk_id: str) -> MemoryChunk | None:
        row = self._conn.execute("SELECT * FROM chunks WHERE id=?", (chunk_id,)).fetchone()
        if not row:
            return None
        return self._row_to_chunk(row)

    def chunk_exists(self, chunk_id: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM chunks WHERE id=?", (chunk_id,)).fetchone()
        return row is not None

    def delete_chunk(self, chunk_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM chunks WHERE id=?", (chunk_id,))
        self._commit()
        return cur.rowcount > 0

    def update_chunk_text(self, chunk_id: str, text: str, absorbed_id: str | None = None) -> bool:
        """Overwrite a chunk's text, optionally recording an absorbed chunk id."""
        row = self._conn.execute(
            "SELECT consolidated_from FROM chunks WHERE id=?", (chunk_id,)
        ).fetchone()
        if not row:
            return False
        absorbed = json_loads(row["consolidated_from"]) if row["consolidated_from"] else []
        if absorbed_id and absorbed_id not in absorbed:
            absorbed.append(absorbed_id)
        self._conn.execute(
            """UPDATE chunks SET text=?, hash=?, updated_at=?, consolidated_from=?
               WHERE id=?""",
            (
                text, content_hash(text.encode()), now_ms(),
                json_dumps(absorbed) if absorbed else None,
                chunk_id,
            ),
        )
        self._commit()
        return True

    def list_chunks(self, area: MemoryArea | str | None = None, limit: int = 100) -> list[MemoryChunk]:
        if area:
            rows = self._conn.execute(
                "SELECT * FROM chunks WHERE area=? ORDER BY updated_at DESC LIMIT ?",
                (MemoryArea(area).value, limit),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM chunks ORDER BY updated_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def iter_chunk_vectors(self) -> Iterator[tuple[str, list[float]]]:
        rows = self._conn.execute(
            "SELECT id, embedding FROM chunks WHERE embedding IS NOT NULL ORDER BY rowid"
        ).fetchall()
        for r in rows:
            yield r["id"], _blob_to_vector(r["embedding"])

    def count_chunks(self, area: MemoryArea | str | None = None) -> int:
        if area:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE area=?", (MemoryArea(area).value,)
            ).fetchone()
        else:
            row = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
        return row[0]

    # --- Consolidation Log ---

    def insert_consolidation_log(self, entry: ConsolidationLogEntry) -> str:
        self._conn.execute(
            """INSERT INTO consolidation_log(id, timestamp, action, source_ids, result_id,
               area, model, reasoning, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                entry.id, entry.timestamp, entry.action.value,
                json_dumps(entry.source_ids), entry.result_id,
                entry.area.value, entry.model, entry.reasoning, entry.created_at,
            ),
        )
        self._commit()
        return entry.id

    def list_consolidation_log(
        self,
        area: MemoryArea | str | None = None,
        action: ConsolidationAction | str | None = None,
        since: int | None = None,
        limit: int = 100,
    ) -> list[ConsolidationLogEntry]:
        conditions: list[str] = []
        values: list[object] = []
        if area:
            conditions.append("area = ?")
            values.append(MemoryArea(area).value)
        if action:
            conditions.append("action = ?")
            values.append(ConsolidationAction(action).value)
        if since is not None:
            conditions.append("timestamp >= ?")
            values.append(int(since))
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        values.append(limit)
        rows = self._conn.execute(
            f"""SELECT * FROM consolidation_log{where}
                ORDER BY timestamp DESC, rowid DESC
                LIMIT ?""",
            values,
        ).fetchall()
        return [self._row_to_log_entry(r) for r in rows]

    def count_consolidation_log(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM consolidation_log").fetchone()
        return row[0]

    # --- Embedding Cache ---

    def get_cached_embedding(self, text_hash: str) -> bytes | None:
        row = self._conn.execute(
            "SELECT embedding FROM embedding_cache WHERE text_hash=?", (text_hash,)
        ).fetchone()
        return row["embedding"] if row else None

    def cache_embedding(self, text_hash: str, embedding: bytes, model: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO embedding_cache(text_hash, embedding, model, created_at) VALUES (?, ?, ?, ?)",
            (text_hash, embedding, model, iso_str(utcnow())),
        )
        self._commit()

    # --- Row Converters ---

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> MemoryChunk:
        return MemoryChunk(
            id=row["id"],
            text=row["text"],
            embedding=_blob_to_vector(row["embedding"]),
            area=row["area"] or MemoryArea.MAIN,
            importance=row["importance"],
            consolidated_from=json_loads(row["consolidated_from"]) if row["consolidated_from"] else None,
            path=row["path"],
            source=row["source"],
            model=row["model"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_log_entry(row: sqlite3.Row) -> ConsolidationLogEntry:
        return ConsolidationLogEntry(
            id=row["id"],
            timestamp=row["timestamp"],
            action=row["action"],
            source_ids=json_loads(row["source_ids"]),
            result_id=row["result_id"],
            area=row["area"],
            model=row["model"],
            reasoning=row["reasoning"],
            created_at=row["created_at"],
        )
