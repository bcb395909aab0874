"""Tests for VectorStore persistence and the shared binary framing."""

import io
import struct
from unittest.mock import patch
from uuid import uuid4

import numpy as np
import pytest

from dialogue_memory.embedding.vectors import cosine_similarity, l2_normalize
from dialogue_memory.exceptions import StorageError
from dialogue_memory.storage.binary import read_int32, read_vector, write_int32, write_vector
from dialogue_memory.storage.vector_store import VECTOR_STORE_VERSION, VectorStore


class TestBinaryFraming:
    def test_int32_little_endian(self):
        buffer = io.BytesIO()
        write_int32(buffer, 1)
        assert buffer.getvalue() == b"\x01\x00\x00\x00"

    def test_vector_layout(self):
        buffer = io.BytesIO()
        write_vector(buffer, np.array([1.0, -2.5], dtype=np.float32))
        assert buffer.getvalue() == struct.pack("<iff", 2, 1.0, -2.5)
        buffer.seek(0)
        assert np.allclose(read_vector(buffer), [1.0, -2.5])

    def test_truncated_input(self):
        with pytest.raises(EOFError):
            read_int32(io.BytesIO(b"\x01\x00"))


class TestVectorHelpers:
    def test_normalize(self):
        assert np.allclose(l2_normalize([3.0, 4.0]), [0.6, 0.8])

    def test_zero_vector_unchanged(self):
        assert not np.any(l2_normalize([0.0, 0.0]))

    def test_cosine_dimension_mismatch_is_zero(self):
        assert cosine_similarity(np.ones(3), np.ones(4)) == 0.0
        assert cosine_similarity(None, np.ones(4)) == 0.0


class TestVectorStore:
    def test_add_does_not_overwrite_by_default(self):
        store = VectorStore()
        memory_id = uuid4()
        assert store.add(memory_id, [1.0, 0.0]) is True
        assert store.add(memory_id, [0.0, 1.0]) is False
        assert np.allclose(store.get(memory_id), [1.0, 0.0])
        assert store.add(memory_id, [0.0, 1.0], overwrite=True) is True
        assert np.allclose(store.get(memory_id), [0.0, 1.0])

    def test_remove_and_clear(self):
        store = VectorStore()
        a, b = uuid4(), uuid4()
        store.add(a, [1.0])
        store.add(b, [1.0])
        assert store.remove(a) is True
        assert store.remove(a) is False
        store.clear()
        assert len(store) == 0

    def test_save_load_restores_vectors(self, tmp_path):
        path = tmp_path / "vectors.bin"
        store = VectorStore()
        ids = [uuid4() for _ in range(3)]
        for i, memory_id in enumerate(ids):
            store.add(memory_id, np.arange(4, dtype=np.float32) + i)

        assert store.save(path) == 3

        loaded = VectorStore()
        assert loaded.load(path) is True
        assert loaded.count == 3
        for memory_id in ids:
            assert np.array_equal(loaded.get(memory_id), store.get(memory_id))

    def test_save_filters_orphans(self, tmp_path):
        path = tmp_path / "vectors.bin"
        store = VectorStore()
        kept, orphan = uuid4(), uuid4()
        store.add(kept, [1.0, 0.0])
        store.add(orphan, [0.0, 1.0])

        assert store.save(path, valid_ids={kept}) == 1

        loaded = VectorStore()
        loaded.load(path)
        assert loaded.contains(kept)
        assert not loaded.contains(orphan)

    def test_guid_written_in_mixed_endian_layout(self, tmp_path):
        path = tmp_path / "vectors.bin"
        store = VectorStore()
        memory_id = uuid4()
        store.add(memory_id, [1.0])
        store.save(path)
        data = path.read_bytes()
        assert data[:8] == struct.pack("<ii", VECTOR_STORE_VERSION, 1)
        assert data[8:24] == memory_id.bytes_le

    def test_version_mismatch_discards_file(self, tmp_path):
        path = tmp_path / "vectors.bin"
        store = VectorStore()
        store.add(uuid4(), [1.0])
        store.save(path)
        raw = bytearray(path.read_bytes())
        raw[0:4] = struct.pack("<i", VECTOR_STORE_VERSION + 1)
        path.write_bytes(bytes(raw))

        loaded = VectorStore()
        assert loaded.load(path) is False
        assert loaded.count == 0

    def test_truncated_file_loads_nothing(self, tmp_path):
        path = tmp_path / "vectors.bin"
        store = VectorStore()
        for _ in range(2):
            store.add(uuid4(), [1.0, 2.0, 3.0])
        store.save(path)
        path.write_bytes(path.read_bytes()[:-6])

        existing = uuid4()
        loaded = VectorStore()
        loaded.add(existing, [1.0])
        assert loaded.load(path) is False
        assert loaded.count == 1

    def test_missing_file(self, tmp_path):
        assert VectorStore().load(tmp_path / "absent.bin") is False

    def test_unwritable_path_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = VectorStore()
        store.add(uuid4(), [1.0])
        with pytest.raises(StorageError):
            store.save(blocker / "vectors.bin")

    def test_failed_save_keeps_previous_file(self, tmp_path):
        path = tmp_path / "vectors.bin"
        store = VectorStore()
        kept = uuid4()
        store.add(kept, [1.0, 0.0])
        store.save(path)
        store.add(uuid4(), [0.0, 1.0])

        with patch(
            "dialogue_memory.storage.vector_store.write_vector",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(StorageError):
                store.save(path)

        loaded = VectorStore()
        assert loaded.load(path) is True
        assert loaded.count == 1
        assert loaded.contains(kept)
        assert list(tmp_path.iterdir()) == [path]
