# src/cplan/geometry/kernels.py

import numpy as np
from numba import njit


# --- Chart-local linear algebra ---
@njit(cache=True)
def tangent_coordinates(basis: np.ndarray, anchor: np.ndarray, point: np.ndarray) -> np.ndarray:
    """
    Coordinates u = Φᵀ (x - x₀) of a point in a chart's tangent plane.

    Args:
        basis (np.ndarray): (n, k) orthonormal tangent basis Φ.
        anchor (np.ndarray): (n,) chart anchor x₀.
        point (np.ndarray): (n,) ambient point x.
    """
    n, k = basis.shape
    u = np.zeros(k)
    for j in range(k):
        acc = 0.0
        for i in range(n):
            acc += basis[i, j] * (point[i] - anchor[i])
        u[j] = acc
    return u


@njit(cache=True)
def from_tangent_coordinates(basis: np.ndarray, anchor: np.ndarray, u: np.ndarray) -> np.ndarray:
    """Ambient point x₀ + Φ u on the chart's tangent plane."""
    n, k = basis.shape
    x = anchor.copy()
    for i in range(n):
        acc = 0.0
        for j in range(k):
            acc += basis[i, j] * u[j]
        x[i] += acc
    return x


@njit(cache=True)
def distance_to_tangent_plane(basis: np.ndarray, anchor: np.ndarray, point: np.ndarray) -> float:
    """
    Distance from a point to the affine tangent plane x₀ + span(Φ).
    Removes the tangent component of (x - x₀) and measures what is left.
    """
    u = tangent_coordinates(basis, anchor, point)
    n, k = basis.shape
    acc = 0.0
    for i in range(n):
        r = point[i] - anchor[i]
        for j in range(k):
            r -= basis[i, j] * u[j]
        acc += r * r
    return np.sqrt(acc)


# --- Nearest-neighbour scans over growing trees ---
@njit(cache=True)
def nearest_index(points: np.ndarray, count: int, query: np.ndarray) -> int:
    """
    Index of the row of points[:count] closest to query (Euclidean).
    Returns -1 when count == 0.
    """
    best = -1
    best_d2 = np.inf
    dim = points.shape[1]
    for r in range(count):
        d2 = 0.0
        for c in range(dim):
            diff = points[r, c] - query[c]
            d2 += diff * diff
        if d2 < best_d2:
            best_d2 = d2
            best = r
    return best


@njit(cache=True)
def polyline_length(points: np.ndarray) -> float:
    """Sum of Euclidean segment lengths along an (m, n) polyline."""
    total = 0.0
    m, n = points.shape
    for r in range(1, m):
        acc = 0.0
        for c in range(n):
            diff = points[r, c] - points[r - 1, c]
            acc += diff * diff
        total += np.sqrt(acc)
    return total
