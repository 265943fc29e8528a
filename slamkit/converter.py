"""Conversions between pose, rotation and descriptor representations."""

from __future__ import annotations

from typing import Sequence

import numpy as np

__all__ = [
    "to_descriptor_vector",
    "to_se3",
    "to_sim3_matrix",
    "to_vector3",
    "to_matrix3",
    "to_quaternion",
]


def to_descriptor_vector(descriptors) -> list[np.ndarray]:
    """Split a descriptor matrix into a list of its rows, one per feature."""
    array = np.asarray(descriptors)
    if array.ndim != 2:
        raise ValueError(f"descriptors must be a 2-D matrix, got shape {array.shape}")
    return [row.copy() for row in array]


def _as_rotation(rotation) -> np.ndarray:
    matrix = np.asarray(rotation, dtype=np.float64)
    if matrix.shape != (3, 3):
        raise ValueError(f"rotation must be 3x3, got shape {matrix.shape}")
    return matrix


def to_vector3(values) -> np.ndarray:
    """Return a 3-element float vector from a sequence, row or column vector."""
    vector = np.asarray(values, dtype=np.float64).ravel()
    if vector.size != 3:
        raise ValueError(f"expected 3 values, got {vector.size}")
    return vector.copy()


def to_matrix3(matrix) -> np.ndarray:
    """Return the upper-left 3x3 block of a matrix as a float64 array."""
    array = np.asarray(matrix, dtype=np.float64)
    if array.ndim != 2 or array.shape[0] < 3 or array.shape[1] < 3:
        raise ValueError(f"matrix must be at least 3x3, got shape {array.shape}")
    return array[:3, :3].copy()


def to_se3(rotation, translation) -> np.ndarray:
    """Build a 4x4 rigid transform (float32) from a rotation and a translation."""
    transform = np.eye(4, dtype=np.float32)
    transform[:3, :3] = _as_rotation(rotation)
    transform[:3, 3] = to_vector3(translation)
    return transform


def to_sim3_matrix(rotation, translation, scale: float) -> np.ndarray:
    """Build a 4x4 similarity transform with the rotation block scaled by ``scale``."""
    return to_se3(float(scale) * _as_rotation(rotation), translation)


def to_quaternion(matrix) -> list[float]:
    """Return the unit quaternion ``[x, y, z, w]`` of a rotation matrix."""
    m = to_matrix3(matrix)
    q = [0.0, 0.0, 0.0]
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        t = np.sqrt(trace + 1.0)
        w = 0.5 * t
        t = 0.5 / t
        q = [
            (m[2, 1] - m[1, 2]) * t,
            (m[0, 2] - m[2, 0]) * t,
            (m[1, 0] - m[0, 1]) * t,
        ]
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = np.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * t
        t = 0.5 / t
        w = (m[k, j] - m[j, k]) * t
        q[j] = (m[j, i] + m[i, j]) * t
        q[k] = (m[k, i] + m[i, k]) * t
    return [float(np.float32(value)) for value in (*q, w)]