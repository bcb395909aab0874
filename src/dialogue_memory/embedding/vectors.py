"""Vector helpers shared by the embedding backends and stores."""

from __future__ import annotations

import numpy as np

NORM_EPSILON = 1e-12


def as_vector(values) -> np.ndarray:
    """Coerce a sequence of floats to a contiguous float32 array."""
    return np.ascontiguousarray(values, dtype=np.float32).reshape(-1)


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """Scale to unit length; vectors with a vanishing norm are returned as-is."""
    vector = as_vector(vector)
    norm = float(np.linalg.norm(vector))
    if norm > NORM_EPSILON:
        return (vector / norm).astype(np.float32)
    return vector


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors.

    Vectors produced by the embedding backends are already unit length, so
    this is a dot product. Mismatched dimensions (for example after switching
    backends) compare as 0.0 rather than raising.
    """
    if a is None or b is None:
        return 0.0
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    return float(np.dot(a, b))


def zero_vectors(count: int, dimension: int) -> list[np.ndarray]:
    return [np.zeros(dimension, dtype=np.float32) for _ in range(count)]
