"""Pytest configuration and fixtures."""

import numpy as np
import pytest

from segmerge.types import LabeledResult


SCENARIO_A_LABELS = np.array([
    [1, 1, 3, 3],
    [1, 1, 3, 3],
    [2, 2, 2, 2],
    [2, 2, 2, 2],
])


def _same_partition(a: np.ndarray, b: np.ndarray) -> bool:
    if a.shape != b.shape:
        return False
    pairs = set(zip(a.ravel().tolist(), b.ravel().tolist()))
    return (len(pairs) == len(np.unique(a)) == len(np.unique(b)))


@pytest.fixture
def same_partition():
    """Predicate: two label maps group coordinates identically, ignoring label ids."""
    return _same_partition


@pytest.fixture
def scenario_a():
    """4x4 result with labels 1 (4 px), 3 (4 px) and 2 (8 px); values equal labels."""
    return LabeledResult.from_label_map(SCENARIO_A_LABELS.copy(), SCENARIO_A_LABELS.astype(float))


@pytest.fixture
def count_diff(scenario_a):
    """diff(r, n) = pixel_count(r) - pixel_count(n) over the scenario_a result."""
    def diff(r, n):
        return scenario_a.segment_pixel_count(r) - scenario_a.segment_pixel_count(n)
    return diff


@pytest.fixture
def single_region():
    """3x3 grid holding a single region."""
    return LabeledResult.from_label_map(np.ones((3, 3), dtype=np.int64), np.zeros((3, 3)))


@pytest.fixture
def block_result():
    """6x6 grid of nine 2x2 blocks labeled 1..9 with distinct random values."""
    labels = np.kron(np.arange(1, 10).reshape(3, 3), np.ones((2, 2), dtype=np.int64))
    rng = np.random.default_rng(7)
    values = rng.random((6, 6))
    return LabeledResult.from_label_map(labels, values)


@pytest.fixture
def two_blocks():
    """6x6 scalar grid: left half 0, right half 10."""
    grid = np.zeros((6, 6))
    grid[:, 3:] = 10.0
    return grid
