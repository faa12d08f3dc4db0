"""Small 2-D vector helpers on numpy arrays.

Positions are stored as float64 arrays of shape (2,). The helpers guard the
zero-length cases used throughout the force and projection code.
"""

from __future__ import annotations

import math

import numpy as np

EPS = 1e-12


def norm(v: np.ndarray) -> float:
    return math.hypot(float(v[0]), float(v[1]))


def dist(p: np.ndarray, q: np.ndarray) -> float:
    return math.hypot(float(p[0] - q[0]), float(p[1] - q[1]))


def set_mag(v: np.ndarray, mag: float) -> np.ndarray:
    """Return ``v`` rescaled to length ``mag`` (zero vector stays zero)."""
    length = norm(v)
    if length < EPS:
        return np.zeros(2, dtype=np.float64)
    return v * (mag / length)


def normalize(v: np.ndarray) -> np.ndarray:
    return set_mag(v, 1.0)


def rows_norm(v: np.ndarray) -> np.ndarray:
    """Row-wise Euclidean norm of an (n, 2) array."""
    return np.hypot(v[:, 0], v[:, 1])
