"""Memoization cache for context-facet vectors.

Two independent maps: one keyed by a stable definition identity
(``TAG_DEFINITION``), one keyed by a hash of free text (``TAG_TEXT``).
The cache can be discarded at any time; everything in it is recomputable.

File layout (little-endian)::

    int32 version
    int32 def_count,  def_count  × { int32 key, int32 length, length × float32 }
    int32 text_count, text_count × { int32 key, int32 length, length × float32 }
"""

from __future__ import annotations

import threading
import zlib
from pathlib import Path

import numpy as np
from loguru import logger

from ..embedding.vectors import as_vector
from ..exceptions import StorageError, VersionMismatchError
from ..models import VectorKind
from .binary import read_int32, read_vector, write_int32, write_vector

SEMANTIC_CACHE_VERSION = 1


def stable_key(text: str) -> int:
    """Signed 32-bit key for a string, stable across processes."""
    value = zlib.crc32(text.encode("utf-8")) & 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def definition_key(name: str) -> int:
    return stable_key(f"def:{name}")


def text_key(text: str) -> int:
    return stable_key(text)


class SemanticCache:
    """Context vector cache with first-writer-wins semantics."""

    def __init__(self):
        self._definitions: dict[int, np.ndarray] = {}
        self._texts: dict[int, np.ndarray] = {}
        self._lock = threading.Lock()

    def _map_for(self, kind: VectorKind) -> dict[int, np.ndarray]:
        if kind is VectorKind.TAG_DEFINITION:
            return self._definitions
        if kind is VectorKind.TAG_TEXT:
            return self._texts
        raise ValueError(f"SemanticCache does not hold {kind.value} vectors")

    @property
    def definition_count(self) -> int:
        return len(self._definitions)

    @property
    def text_count(self) -> int:
        return len(self._texts)

    def has(self, kind: VectorKind, key: int) -> bool:
        return key in self._map_for(kind)

    def get(self, kind: VectorKind, key: int) -> np.ndarray | None:
        return self._map_for(kind).get(key)

    def add(self, kind: VectorKind, key: int, vector) -> bool:
        """Insert a vector unless the key is already cached.

        Returns:
            True if this call stored the vector
        """
        if vector is None:
            return False
        vector = as_vector(vector)
        with self._lock:
            target = self._map_for(kind)
            if key in target:
                return False
            target[key] = vector
            return True

    def clear(self) -> None:
        with self._lock:
            self._definitions.clear()
            self._texts.clear()

    def save(self, path: str | Path) -> None:
        """Write both maps to disk.

        Raises:
            StorageError: The file could not be written
        """
        path = Path(path)
        with self._lock:
            definitions = list(self._definitions.items())
            texts = list(self._texts.items())

        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "wb") as f:
                write_int32(f, SEMANTIC_CACHE_VERSION)
                for items in (definitions, texts):
                    write_int32(f, len(items))
                    for key, vector in items:
                        write_int32(f, key)
                        write_vector(f, vector)
            temp_path.replace(path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StorageError(f"Semantic cache save failed: {e}", path=str(path)) from e

        logger.info(
            f"Semantic cache saved: {len(definitions)} definitions, {len(texts)} texts"
        )

    def load(self, path: str | Path) -> bool:
        """Load both maps from disk without overwriting cached entries.

        Returns:
            True if the file was read completely; a version mismatch or
            damaged file is discarded and returns False
        """
        path = Path(path)
        if not path.is_file():
            return False

        try:
            definitions, texts = self._read(path)
        except VersionMismatchError as e:
            logger.warning(f"{e}; discarding semantic cache")
            return False
        except (OSError, EOFError, ValueError) as e:
            logger.warning(f"Semantic cache load failed for {path}: {e}")
            return False

        with self._lock:
            for key, vector in definitions.items():
                self._definitions.setdefault(key, vector)
            for key, vector in texts.items():
                self._texts.setdefault(key, vector)
        logger.info(
            f"Semantic cache loaded: {len(definitions)} definitions, {len(texts)} texts"
        )
        return True

    @staticmethod
    def _read(path: Path) -> tuple[dict[int, np.ndarray], dict[int, np.ndarray]]:
        with open(path, "rb") as f:
            version = read_int32(f)
            if version != SEMANTIC_CACHE_VERSION:
                raise VersionMismatchError(str(path), version, SEMANTIC_CACHE_VERSION)
            sections: list[dict[int, np.ndarray]] = []
            for _ in range(2):
                count = read_int32(f)
                if count < 0:
                    raise ValueError(f"Negative entry count: {count}")
                section: dict[int, np.ndarray] = {}
                for _ in range(count):
                    key = read_int32(f)
                    section[key] = read_vector(f)
                sections.append(section)
        return sections[0], sections[1]
