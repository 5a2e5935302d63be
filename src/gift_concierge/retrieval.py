"""Dense similarity helpers."""

from __future__ import annotations

import numpy as np


def top_k_cosine(
    query: np.ndarray,
    matrix: np.ndarray,
    norms: np.ndarray,
    k: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Indices and cosine similarities of the ``k`` rows closest to ``query``."""
    if matrix.size == 0 or k <= 0:
        return np.asarray([], dtype=np.int64), np.asarray([], dtype=np.float32)

    query_norm = float(np.linalg.norm(query))
    safe_norms = np.where(norms > 0, norms, 1.0)
    if query_norm <= 0:
        scores = np.zeros(matrix.shape[0], dtype=np.float32)
    else:
        scores = (matrix @ query) / (safe_norms * query_norm)
        scores = np.where(norms > 0, scores, 0.0).astype(np.float32)

    k = min(int(k), scores.shape[0])
    if k == scores.shape[0]:
        idx = np.argsort(-scores, kind="stable")
    else:
        part = np.argpartition(-scores, k - 1)[:k]
        idx = part[np.argsort(-scores[part], kind="stable")]
    return idx[:k], scores[idx[:k]]


def similarity_to_unit(scores: np.ndarray) -> np.ndarray:
    """Maps cosine similarity from [-1, 1] onto [0, 1]."""
    return np.clip((scores + 1.0) / 2.0, 0.0, 1.0)
