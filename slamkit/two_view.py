"""Two-view geometry: normalisation, homography and fundamental estimation,
triangulation, essential matrix decomposition and motion hypothesis checks."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np

__all__ = [
    "RTCheck",
    "normalize",
    "compute_h21",
    "compute_f21",
    "triangulate",
    "decompose_essential",
    "check_rt",
]

# Points whose viewing rays are closer to parallel than this are "at infinity".
_COS_PARALLAX_LIMIT = 0.99998
# The parallax reported is the one of the 51st smallest angle cosine.
_PARALLAX_RANK = 50


@dataclass
class RTCheck:
    """Outcome of testing one motion hypothesis against the matches.

    ``points3d`` and ``good`` are indexed like the keypoints of the first view.
    ``parallax`` is in degrees.
    """

    n_good: int
    points3d: np.ndarray
    good: list[bool] = field(default_factory=list)
    parallax: float = 0.0


def _xy(point: Any) -> tuple[float, float]:
    if hasattr(point, "x") and hasattr(point, "y"):
        return float(point.x), float(point.y)
    x, y = point
    return float(x), float(y)


def _as_points(points: Any) -> np.ndarray:
    if isinstance(points, np.ndarray):
        array = np.asarray(points, dtype=np.float64)
    else:
        array = np.array([_xy(p) for p in points], dtype=np.float64).reshape(-1, 2)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError(f"points must have shape (N, 2), got {array.shape}")
    return array


def _point_pair(p1: Any, p2: Any, minimum: int) -> tuple[np.ndarray, np.ndarray]:
    a = _as_points(p1)
    b = _as_points(p2)
    if len(a) != len(b):
        raise ValueError(f"point sets differ in size: {len(a)} and {len(b)}")
    if len(a) < minimum:
        raise ValueError(f"at least {minimum} correspondences are needed, got {len(a)}")
    return a, b


def normalize(points: Sequence[Any]) -> tuple[np.ndarray, np.ndarray]:
    """Centre points on their mean and scale them to unit mean absolute deviation.

    Returns the normalised ``(N, 2)`` points and the 3x3 transform ``T`` that
    maps homogeneous input points to them.
    """
    pts = _as_points(points)
    if len(pts) == 0:
        raise ValueError("cannot normalise an empty point set")
    mean = pts.mean(axis=0)
    centered = pts - mean
    mean_dev = np.abs(centered).mean(axis=0)
    if np.any(mean_dev == 0.0):
        raise ValueError("points have no spread along one axis")
    scale = 1.0 / mean_dev
    transform = np.eye(3)
    transform[0, 0] = scale[0]
    transform[1, 1] = scale[1]
    transform[0, 2] = -mean[0] * scale[0]
    transform[1, 2] = -mean[1] * scale[1]
    return centered * scale, transform


def compute_h21(p1: Sequence[Any], p2: Sequence[Any]) -> np.ndarray:
    """Homography mapping points of view 1 onto view 2 (DLT, up to scale)."""
    a, b = _point_pair(p1, p2, 4)
    u1, v1 = a[:, 0], a[:, 1]
    u2, v2 = b[:, 0], b[:, 1]
    zeros = np.zeros_like(u1)
    ones = np.ones_like(u1)
    system = np.empty((2 * len(a), 9))
    system[0::2] = np.column_stack([zeros, zeros, zeros, -u1, -v1, -ones, v2 * u1, v2 * v1, v2])
    system[1::2] = np.column_stack([u1, v1, ones, zeros, zeros, zeros, -u2 * u1, -u2 * v1, -u2])
    _, _, vt = np.linalg.svd(system, full_matrices=True)
    return vt[8].reshape(3, 3)


def compute_f21(p1: Sequence[Any], p2: Sequence[Any]) -> np.ndarray:
    """Rank-2 fundamental matrix with ``x2^T F x1 = 0`` (eight-point algorithm)."""
    a, b = _point_pair(p1, p2, 8)
    u1, v1 = a[:, 0], a[:, 1]
    u2, v2 = b[:, 0], b[:, 1]
    system = np.column_stack(
        [u2 * u1, u2 * v1, u2, v2 * u1, v2 * v1, v2, u1, v1, np.ones_like(u1)]
    )
    _, _, vt = np.linalg.svd(system, full_matrices=True)
    f_pre = vt[8].reshape(3, 3)
    u, w, vt = np.linalg.svd(f_pre, full_matrices=True)
    w[2] = 0.0
    return u @ np.diag(w) @ vt


def _projection(matrix: Any, name: str) -> np.ndarray:
    array = np.asarray(matrix, dtype=np.float64)
    if array.shape != (3, 4):
        raise ValueError(f"{name} must be a 3x4 projection matrix, got shape {array.shape}")
    return array


def triangulate(kp1: Any, kp2: Any, p1: Any, p2: Any) -> np.ndarray:
    """3-D point seen at ``kp1`` through ``p1`` and at ``kp2`` through ``p2`` (linear DLT).

    The result may hold non-finite values when the point lies at infinity.
    """
    proj1 = _projection(p1, "p1")
    proj2 = _projection(p2, "p2")
    x1, y1 = _xy(kp1)
    x2, y2 = _xy(kp2)
    system = np.vstack(
        [
            x1 * proj1[2] - proj1[0],
            y1 * proj1[2] - proj1[1],
            x2 * proj2[2] - proj2[0],
            y2 * proj2[2] - proj2[1],
        ]
    )
    _, _, vt = np.linalg.svd(system, full_matrices=True)
    homogeneous = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        return homogeneous[:3] / homogeneous[3]


def decompose_essential(e: Any) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an essential matrix into its two rotations and unit translation.

    The four motion hypotheses are ``(R1, t)``, ``(R2, t)``, ``(R1, -t)`` and ``(R2, -t)``.
    """
    matrix = np.asarray(e, dtype=np.float64)
    if matrix.shape != (3, 3):
        raise ValueError(f"essential matrix must be 3x3, got shape {matrix.shape}")
    u, _, vt = np.linalg.svd(matrix)
    t = u[:, 2].copy()
    norm = float(np.linalg.norm(t))
    if norm == 0.0:
        raise ValueError("essential matrix has no translation direction")
    t /= norm
    w = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    if np.linalg.det(r1) < 0:
        r1 = -r1
    r2 = u @ w.T @ vt
    if np.linalg.det(r2) < 0:
        r2 = -r2
    return r1, r2, t


def check_rt(
    r: Any,
    t: Any,
    keys1: Sequence[Any],
    keys2: Sequence[Any],
    matches: Sequence[tuple[int, int]],
    inliers: Sequence[bool],
    k: Any,
    th2: float,
) -> RTCheck:
    """Triangulate the inlier matches under motion ``(r, t)`` and count those that
    lie in front of both cameras and reproject within ``sqrt(th2)`` pixels."""
    rotation = np.asarray(r, dtype=np.float64)
    if rotation.shape != (3, 3):
        raise ValueError(f"rotation must be 3x3, got shape {rotation.shape}")
    translation = np.asarray(t, dtype=np.float64).ravel()
    if translation.size != 3:
        raise ValueError(f"translation must have 3 values, got {translation.size}")
    kmat = np.asarray(k, dtype=np.float64)
    if kmat.shape != (3, 3):
        raise ValueError(f"calibration matrix must be 3x3, got shape {kmat.shape}")
    if len(matches) != len(inliers):
        raise ValueError(f"{len(matches)} matches but {len(inliers)} inlier flags")

    fx, fy, cx, cy = kmat[0, 0], kmat[1, 1], kmat[0, 2], kmat[1, 2]
    count = len(keys1)
    good = [False] * count
    points3d = np.zeros((count, 3))
    cos_parallaxes: list[float] = []

    proj1 = np.hstack([kmat, np.zeros((3, 1))])
    proj2 = kmat @ np.hstack([rotation, translation[:, None]])
    center2 = -rotation.T @ translation

    n_good = 0
    with np.errstate(divide="ignore", invalid="ignore"):
        for (i1, i2), is_inlier in zip(matches, inliers):
            if not is_inlier:
                continue
            kp1x, kp1y = _xy(keys1[i1])
            kp2x, kp2y = _xy(keys2[i2])
            p3d_c1 = triangulate((kp1x, kp1y), (kp2x, kp2y), proj1, proj2)

            if not np.all(np.isfinite(p3d_c1)):
                good[i1] = False
                continue

            normal1 = p3d_c1
            normal2 = p3d_c1 - center2
            dist1 = float(np.linalg.norm(normal1))
            dist2 = float(np.linalg.norm(normal2))
            cos_parallax = float(normal1 @ normal2) / (dist1 * dist2)

            if p3d_c1[2] <= 0 and cos_parallax < _COS_PARALLAX_LIMIT:
                continue

            p3d_c2 = rotation @ p3d_c1 + translation
            if p3d_c2[2] <= 0 and cos_parallax < _COS_PARALLAX_LIMIT:
                continue

            inv_z1 = 1.0 / p3d_c1[2]
            im1x = fx * p3d_c1[0] * inv_z1 + cx
            im1y = fy * p3d_c1[1] * inv_z1 + cy
            if (im1x - kp1x) ** 2 + (im1y - kp1y) ** 2 > th2:
                continue

            inv_z2 = 1.0 / p3d_c2[2]
            im2x = fx * p3d_c2[0] * inv_z2 + cx
            im2y = fy * p3d_c2[1] * inv_z2 + cy
            if (im2x - kp2x) ** 2 + (im2y - kp2y) ** 2 > th2:
                continue

            cos_parallaxes.append(cos_parallax)
            points3d[i1] = p3d_c1
            n_good += 1
            if cos_parallax < _COS_PARALLAX_LIMIT:
                good[i1] = True

    parallax = 0.0
    if n_good > 0:
        cos_parallaxes.sort()
        chosen = cos_parallaxes[min(_PARALLAX_RANK, len(cos_parallaxes) - 1)]
        parallax = math.degrees(math.acos(max(-1.0, min(1.0, chosen))))

    return RTCheck(n_good=n_good, points3d=points3d, good=good, parallax=parallax)