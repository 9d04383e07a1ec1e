# tests/test_metrics.py

import numpy as np
import pytest

from core.metrics import (cosine_distances, euclidean_distances, get_metric,
                          hamming_distances)


def test_hamming_counts_differing_bits():
    matrix = np.array([[0, 0, 0, 0],
                       [1, 0, 1, 0],
                       [1, 1, 1, 1]], dtype=np.float32)
    query = np.zeros(4, dtype=np.float32)

    assert hamming_distances(matrix, query).tolist() == [0.0, 2.0, 4.0]


def test_euclidean():
    matrix = np.array([[0, 0], [3, 4]], dtype=np.float32)
    query = np.zeros(2, dtype=np.float32)

    assert np.allclose(euclidean_distances(matrix, query), [0.0, 5.0])


def test_cosine_range_and_zero_vectors():
    matrix = np.array([[1, 0], [0, 1], [-1, 0], [0, 0]], dtype=np.float32)
    query = np.array([1, 0], dtype=np.float32)

    distances = cosine_distances(matrix, query)
    assert np.allclose(distances, [0.0, 1.0, 2.0, 1.0])

    zero_query = cosine_distances(matrix, np.zeros(2, dtype=np.float32))
    assert np.allclose(zero_query, [1.0, 1.0, 1.0, 0.0])


def test_get_metric():
    assert get_metric("Hamming") is hamming_distances
    with pytest.raises(ValueError):
        get_metric("manhattan")
