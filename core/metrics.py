# core/metrics.py

"""
Distance metrics applied between a query vector and a matrix of stored
vectors. Every metric returns one non-negative distance per row, where a
smaller distance means more similar.
"""

from typing import Callable, Dict

import numpy as np

DistanceFunction = Callable[[np.ndarray, np.ndarray], np.ndarray]


def hamming_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Number of differing components (bit distance for hash fingerprints)"""
    return np.count_nonzero(matrix != query, axis=1).astype(np.float64)


def euclidean_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """L2 distance, computed in float64 so results do not depend on row order"""
    diff = matrix.astype(np.float64) - query.astype(np.float64)
    return np.sqrt(np.einsum('ij,ij->i', diff, diff))


def cosine_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """
    1 - cosine similarity, in the range [0, 2].

    Zero vectors have no direction; they are treated as orthogonal
    (distance 1.0) to everything except other zero vectors.
    """
    m = matrix.astype(np.float64)
    q = query.astype(np.float64)

    row_norms = np.linalg.norm(m, axis=1)
    query_norm = np.linalg.norm(q)

    if query_norm == 0:
        return np.where(row_norms == 0, 0.0, 1.0)

    denom = row_norms * query_norm
    with np.errstate(divide='ignore', invalid='ignore'):
        cosine = np.where(denom > 0, (m @ q) / denom, 0.0)

    return np.clip(1.0 - cosine, 0.0, 2.0)


METRICS: Dict[str, DistanceFunction] = {
    'hamming': hamming_distances,
    'euclidean': euclidean_distances,
    'cosine': cosine_distances,
}


def get_metric(name: str) -> DistanceFunction:
    """Look up a distance function by its configured name"""
    try:
        return METRICS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown distance metric '{name}'. "
            f"Options: {', '.join(sorted(METRICS))}"
        ) from None
