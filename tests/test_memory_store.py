from __future__ import annotations

import pytest

from mnemos.exceptions import StorageError
from mnemos.storage import FAISSStore, MemoryStore, SQLiteStore
from mnemos.types import MemoryChunk


def test_nearest_reports_cosine_distance_closest_first():
    index = FAISSStore(dims=3)
    index.add([1.0, 0.0, 0.0], "x")
    index.add([0.0, 2.0, 0.0], "y")
    index.add([1.0, 1.0, 0.0], "xy")

    hits = index.nearest([3.0, 0.0, 0.0], top_k=2)

    assert [cid for cid, _ in hits] == ["x", "xy"]
    assert hits[0][1] == pytest.approx(0.0, abs=1e-6)
    assert hits[1][1] == pytest.approx(1 - 2 ** -0.5, abs=1e-6)
    assert FAISSStore(dims=3).nearest([1.0, 0.0, 0.0]) == []


def test_remove_and_readd_keep_ids_aligned():
    index = FAISSStore(dims=2)
    index.add([1.0, 0.0], "a")
    index.add([0.0, 1.0], "b")
    index.add([1.0, 1.0], "c")

    assert index.remove("a")
    assert not index.remove("a")
    assert "a" not in index and index.size == 2
    assert index.nearest([0.0, 1.0], top_k=1)[0][0] == "b"

    index.add([1.0, 0.0], "b")
    assert index.size == 2
    assert index.nearest([1.0, 0.0], top_k=1)[0][0] == "b"


def test_dimension_mismatch_raises():
    index = FAISSStore(dims=4)
    with pytest.raises(StorageError):
        index.add([1.0, 0.0], "short")


def test_save_and_reload(tmp_path):
    index = FAISSStore(dims=2, faiss_dir=tmp_path)
    index.add([1.0, 0.0], "a")
    index.add([0.0, 1.0], "b")
    index.save()

    reloaded = FAISSStore(dims=2, faiss_dir=tmp_path)
    assert reloaded.size == 2
    assert reloaded.nearest([0.0, 1.0], top_k=1)[0][0] == "b"

    # a different embedding width ignores the saved index
    assert FAISSStore(dims=3, faiss_dir=tmp_path).size == 0


def test_save_without_directory_raises():
    with pytest.raises(StorageError):
        FAISSStore(dims=2).save()


def test_memory_store_rebuilds_index_from_rows(tmp_path):
    sqlite = SQLiteStore(tmp_path / "m.db")
    sqlite.insert_chunk(MemoryChunk(id="a", text="a", embedding=[1.0, 0.0]))
    sqlite.insert_chunk(MemoryChunk(id="b", text="b", embedding=[0.0, 1.0]))
    sqlite.insert_chunk(MemoryChunk(id="none", text="no vector"))

    store = MemoryStore(sqlite, FAISSStore(dims=2))

    assert store.vectors.size == 2
    chunk, distance = store.query_nearest([0.0, 1.0], k=1)[0]
    assert chunk.id == "b"
    assert distance == pytest.approx(0.0, abs=1e-6)
    store.close()


def test_insert_and_delete_keep_index_in_step(tmp_path):
    store = MemoryStore(SQLiteStore(tmp_path / "m.db"), FAISSStore(dims=2))
    store.insert_chunk(MemoryChunk(id="a", text="a", embedding=[1.0, 0.0]))
    assert "a" in store.vectors

    assert store.delete_chunk("a")
    assert "a" not in store.vectors
    assert store.get_chunk("a") is None
    store.close()


def test_query_nearest_skips_rows_that_no_longer_exist(tmp_path):
    store = MemoryStore(SQLiteStore(tmp_path / "m.db"), FAISSStore(dims=2))
    store.insert_chunk(MemoryChunk(id="a", text="a", embedding=[1.0, 0.0]))
    store.insert_chunk(MemoryChunk(id="b", text="b", embedding=[0.9, 0.1]))
    store.sqlite.delete_chunk("a")

    hits = store.query_nearest([1.0, 0.0], k=2)

    assert [c.id for c, _ in hits] == ["b"]
    assert "a" not in store.vectors
    store.close()


def test_failed_insert_rolls_back_row(tmp_path):
    store = MemoryStore(SQLiteStore(tmp_path / "m.db"), FAISSStore(dims=2))
    with pytest.raises(StorageError):
        store.insert_chunk(MemoryChunk(id="bad", text="bad", embedding=[1.0, 0.0, 0.0]))
    assert not store.chunk_exists("bad")
    store.close()


def test_open_reconciles_stale_index_snapshot(tmp_path):
    faiss_dir = tmp_path / "faiss"
    snapshot = FAISSStore(dims=2, faiss_dir=faiss_dir)
    snapshot.add([1.0, 0.0], "a")
    snapshot.add([0.5, 0.5], "gone")
    snapshot.save()

    sqlite = SQLiteStore(tmp_path / "m.db")
    sqlite.insert_chunk(MemoryChunk(id="a", text="a", embedding=[1.0, 0.0]))
    sqlite.insert_chunk(MemoryChunk(id="b", text="b", embedding=[0.0, 1.0]))

    store = MemoryStore(sqlite, FAISSStore(dims=2, faiss_dir=faiss_dir))

    assert sorted(store.vectors.ids()) == ["a", "b"]
    assert store.query_nearest([0.0, 1.0], k=1)[0][0].id == "b"
    store.close()


def test_delete_inside_rolled_back_transaction_keeps_vector(tmp_path):
    store = MemoryStore(SQLiteStore(tmp_path / "m.db"), FAISSStore(dims=2))
    store.insert_chunk(MemoryChunk(id="a", text="a", embedding=[1.0, 0.0]))

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.delete_chunk("a")
            assert "a" in store.vectors
            raise RuntimeError("audit write failed")

    assert store.chunk_exists("a")
    assert "a" in store.vectors
    store.close()
