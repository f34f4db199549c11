"""
Kernels over syllable sequences for the word classifiers.
"""

import math
from typing import Callable, List, Sequence

import numpy as np

Kernel = Callable[[Sequence[str], Sequence[str]], float]


class StringKernel:
    """
    All-common-substrings kernel over syllable sequences.

    Every pair of equal contiguous substrings of length l contributes
    l ** exponent, so longer shared stems and affixes weigh more.
    """

    def __init__(self, exponent: float = 1.0):
        self.exponent = exponent

    def __call__(self, first: Sequence[str], second: Sequence[str]) -> float:
        if not first or not second:
            return 0.0
        # Prefix sums of l ** exponent for the runs of matching suffixes
        weights = [0.0]
        for length in range(1, min(len(first), len(second)) + 1):
            weights.append(weights[-1] + length ** self.exponent)
        total = 0.0
        previous = [0] * (len(second) + 1)
        for i in range(1, len(first) + 1):
            current = [0] * (len(second) + 1)
            for j in range(1, len(second) + 1):
                if first[i - 1] == second[j - 1]:
                    run = previous[j - 1] + 1
                    current[j] = run
                    total += weights[run]
            previous = current
        return total


class GaussianKernel:
    """exp(-||phi(x) - phi(y)||^2 / (2 sigma^2)) over the feature space of a base kernel."""

    def __init__(self, deviation: float, base: Kernel):
        if deviation <= 0.0:
            raise ValueError("The Gaussian deviation must be positive.")
        self.deviation = deviation
        self.base = base

    def __call__(self, first: Sequence[str], second: Sequence[str]) -> float:
        squared_distance = self.base(first, first) + self.base(second, second) - 2.0 * self.base(first, second)
        return math.exp(-max(squared_distance, 0.0) / (2.0 * self.deviation ** 2))


def gram_matrix(kernel: Kernel, rows: List[Sequence[str]], columns: List[Sequence[str]] = None) -> np.ndarray:
    """Kernel values between every row and column item; symmetric when columns is omitted."""
    if columns is None:
        size = len(rows)
        matrix = np.empty((size, size), dtype=float)
        for i in range(size):
            for j in range(i, size):
                matrix[i, j] = matrix[j, i] = kernel(rows[i], rows[j])
        return matrix
    matrix = np.empty((len(rows), len(columns)), dtype=float)
    for i, row in enumerate(rows):
        for j, column in enumerate(columns):
            matrix[i, j] = kernel(row, column)
    return matrix
