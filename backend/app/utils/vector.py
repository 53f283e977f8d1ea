"""
Vector helpers

Embeddings are stored as little-endian float32 bytes and scored in float64.
"""

from typing import Sequence

import numpy as np

VECTOR_DTYPE = np.dtype("<f4")


def to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=VECTOR_DTYPE).tobytes()


def from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=VECTOR_DTYPE)


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of ``query`` against every row of ``matrix``.

    Zero-length vectors score 0.
    """
    q = np.asarray(query, dtype=np.float64)
    m = np.atleast_2d(np.asarray(matrix, dtype=np.float64))
    denominators = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    return np.divide(dots, denominators, out=np.zeros_like(dots), where=denominators != 0)
