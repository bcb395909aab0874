"""Memory id → embedding vector store with versioned binary persistence.

File layout (little-endian)::

    int32 version
    int32 count
    count × { 16-byte UUID, int32 length, length × float32 }

UUIDs are written in the mixed-endian GUID byte order (``UUID.bytes_le``).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from pathlib import Path
from uuid import UUID

import numpy as np
from loguru import logger

from ..embedding.vectors import as_vector
from ..exceptions import StorageError, VersionMismatchError
from .binary import read_exact, read_int32, read_vector, write_int32, write_vector

VECTOR_STORE_VERSION = 1


class VectorStore:
    """Concurrent map of memory ids to unit-length vectors.

    Reads are plain dict lookups; writes and removals take a lock so that
    "add if absent" is atomic under concurrent producers.
    """

    def __init__(self):
        self._vectors: dict[UUID, np.ndarray] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._vectors)

    @property
    def count(self) -> int:
        return len(self._vectors)

    def contains(self, memory_id: UUID) -> bool:
        return memory_id in self._vectors

    def get(self, memory_id: UUID) -> np.ndarray | None:
        return self._vectors.get(memory_id)

    def add(self, memory_id: UUID, vector, overwrite: bool = False) -> bool:
        """Store a vector.

        Args:
            memory_id: Owning memory record id
            vector: Float sequence
            overwrite: Replace an existing vector for this id

        Returns:
            True if the vector was stored
        """
        if vector is None:
            return False
        vector = as_vector(vector)
        with self._lock:
            if not overwrite and memory_id in self._vectors:
                return False
            self._vectors[memory_id] = vector
            return True

    def remove(self, memory_id: UUID) -> bool:
        with self._lock:
            return self._vectors.pop(memory_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()

    def save(self, path: str | Path, valid_ids: Iterable[UUID] | None = None) -> int:
        """Write reachable vectors to disk.

        Args:
            path: Destination file
            valid_ids: Ids still present in some entity's tiers. Vectors for
                other ids are orphans and are not written. ``None`` keeps all.

        Returns:
            Number of vectors written

        Raises:
            StorageError: The file could not be written
        """
        path = Path(path)
        with self._lock:
            items = list(self._vectors.items())
        total = len(items)
        if valid_ids is not None:
            keep = set(valid_ids)
            items = [(k, v) for k, v in items if k in keep]

        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "wb") as f:
                write_int32(f, VECTOR_STORE_VERSION)
                write_int32(f, len(items))
                for memory_id, vector in items:
                    f.write(memory_id.bytes_le)
                    write_vector(f, vector)
            temp_path.replace(path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StorageError(f"Vector store save failed: {e}", path=str(path)) from e

        logger.info(f"Vector store saved: {len(items)} vectors (filtered from {total})")
        return len(items)

    def load(self, path: str | Path) -> bool:
        """Load vectors from disk, merging into the current map.

        A version mismatch or a damaged file discards the whole file; the
        store is left as it was and vectors get recomputed on demand.

        Returns:
            True if the file was read completely
        """
        path = Path(path)
        if not path.is_file():
            return False

        try:
            loaded = self._read(path)
        except VersionMismatchError as e:
            logger.warning(f"{e}; discarding stored vectors")
            return False
        except (OSError, EOFError, ValueError) as e:
            logger.warning(f"Vector store load failed for {path}: {e}")
            return False

        with self._lock:
            self._vectors.update(loaded)
        logger.info(f"Vector store loaded: {len(loaded)} vectors")
        return True

    @staticmethod
    def _read(path: Path) -> dict[UUID, np.ndarray]:
        with open(path, "rb") as f:
            version = read_int32(f)
            if version != VECTOR_STORE_VERSION:
                raise VersionMismatchError(str(path), version, VECTOR_STORE_VERSION)
            count = read_int32(f)
            if count < 0:
                raise ValueError(f"Negative vector count: {count}")
            loaded: dict[UUID, np.ndarray] = {}
            for _ in range(count):
                memory_id = UUID(bytes_le=read_exact(f, 16))
                loaded[memory_id] = read_vector(f)
        return loaded
