"""Planes fitted to map points, used to anchor virtual objects in a scene."""

from __future__ import annotations

import math
import random
from typing import Any, Optional, Sequence

import numpy as np

from slamkit.converter import to_vector3

__all__ = ["Plane", "exp_so3", "exp_so3_vector", "detect_plane"]

_EPS = 1e-4
_UP = np.array([0.0, 1.0, 0.0])
_MIN_OBSERVATIONS = 5
_MIN_POINTS = 50


def exp_so3(x: float, y: float, z: float) -> np.ndarray:
    """Rotation matrix of the rotation vector ``(x, y, z)`` (Rodrigues' formula)."""
    identity = np.eye(3)
    d2 = x * x + y * y + z * z
    d = math.sqrt(d2)
    w = np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])
    if d < _EPS:
        return identity + w + 0.5 * (w @ w)
    return identity + w * (math.sin(d) / d) + (w @ w) * ((1.0 - math.cos(d)) / d2)


def exp_so3_vector(v) -> np.ndarray:
    """Rotation matrix of a 3-element rotation vector."""
    x, y, z = to_vector3(v)
    return exp_so3(x, y, z)


def _random_rang(rng: random.Random) -> float:
    return -3.14 / 2 + rng.random() * 3.14


def _position(point: Any) -> np.ndarray:
    value = getattr(point, "world_pos", point)
    if callable(value):
        value = value()
    return to_vector3(value)


def _is_bad(point: Any) -> bool:
    flag = getattr(point, "is_bad", False)
    if callable(flag):
        flag = flag()
    return bool(flag)


def _observations(point: Any) -> Optional[int]:
    count = getattr(point, "observations", None)
    if callable(count):
        count = count()
    return count


def _plane_transform(normal: np.ndarray, origin: np.ndarray, rang: float) -> np.ndarray:
    """World-to-plane transform: the plane's y axis along ``normal``, origin at ``origin``."""
    v = np.cross(_UP, normal)
    sa = float(np.linalg.norm(v))
    ca = float(_UP @ normal)
    angle = math.atan2(sa, ca)
    if sa > 0.0:
        axis_angle = v * (angle / sa)
    elif ca >= 0.0:
        axis_angle = np.zeros(3)
    else:
        axis_angle = np.array([math.pi, 0.0, 0.0])
    transform = np.eye(4)
    transform[:3, :3] = exp_so3_vector(axis_angle) @ exp_so3_vector(_UP * rang)
    transform[:3, 3] = origin
    return transform


class Plane:
    """A plane through a set of map points, with a pose for drawing on it.

    ``points`` are either 3-vectors or objects with a ``world_pos`` attribute
    (value or method) and optionally an ``is_bad`` flag; bad points are ignored.
    """

    def __init__(self, points: Sequence[Any], tcw, rang: Optional[float] = None) -> None:
        self.points = list(points)
        self.tcw = np.array(tcw, dtype=np.float64)
        if self.tcw.shape not in ((4, 4), (3, 4)):
            raise ValueError(f"tcw must be 3x4 or 4x4, got shape {self.tcw.shape}")
        self.rang = _random_rang(random.Random()) if rang is None else float(rang)
        self.xc: Optional[np.ndarray] = None
        self.n = np.zeros(3)
        self.o = np.zeros(3)
        self.tpw = np.eye(4)
        self.recompute()

    @classmethod
    def from_normal(cls, normal, origin, rang: Optional[float] = None) -> "Plane":
        """Build a plane directly from a normal and an origin, without points."""
        plane = cls.__new__(cls)
        plane.points = []
        plane.tcw = None
        plane.xc = None
        plane.rang = _random_rang(random.Random()) if rang is None else float(rang)
        plane.n = to_vector3(normal)
        plane.o = to_vector3(origin)
        plane.tpw = _plane_transform(plane.n, plane.o, plane.rang)
        return plane

    def recompute(self) -> None:
        """Refit the plane to all its good points and update its pose."""
        positions = [_position(p) for p in self.points if not _is_bad(p)]
        if not positions:
            raise ValueError("plane has no usable points to fit")
        xyz = np.vstack(positions)
        a_matrix = np.hstack([xyz, np.ones((len(xyz), 1))])
        _, _, vt = np.linalg.svd(a_matrix, full_matrices=True)
        abc = vt[3, :3].copy()

        self.o = xyz.mean(axis=0)
        scale = 1.0 / float(np.linalg.norm(abc))

        if self.xc is None:
            rotation = self.tcw[:3, :3]
            translation = self.tcw[:3, 3]
            camera_center = -rotation.T @ translation
            self.xc = camera_center - self.o

        if float(self.xc @ abc) > 0.0:
            abc = -abc

        self.n = abc * scale
        self.tpw = _plane_transform(self.n, self.o, self.rang)

    def gl_matrix(self) -> np.ndarray:
        """The plane pose as 16 values in column-major (OpenGL) order."""
        return self.tpw.flatten(order="F")


def detect_plane(
    tcw,
    points: Sequence[Any],
    iterations: int = 50,
    rng: Optional[random.Random] = None,
) -> Optional[Plane]:
    """Find a dominant plane among well-observed points by RANSAC.

    Points with ``observations`` of five or fewer are skipped (plain vectors
    are always used); ``None`` entries are ignored. Returns ``None`` when fewer
    than 50 points remain or no inliers are found.
    """
    rng = rng if rng is not None else random.Random()

    selected = []
    for point in points:
        if point is None:
            continue
        count = _observations(point)
        if count is not None and count <= _MIN_OBSERVATIONS:
            continue
        selected.append(point)

    total = len(selected)
    if total < _MIN_POINTS:
        return None

    xyz = np.vstack([_position(p) for p in selected])
    best_dist = 1e10
    best_distances: Optional[np.ndarray] = None
    nth = max(int(0.2 * total), 20)

    for _ in range(iterations):
        sample = rng.sample(range(total), 3)
        a_matrix = np.hstack([xyz[sample], np.ones((3, 1))])
        _, _, vt = np.linalg.svd(a_matrix, full_matrices=True)
        a, b, c, d = vt[3]
        f = 1.0 / math.sqrt(a * a + b * b + c * c + d * d)
        distances = np.abs(xyz @ np.array([a, b, c]) + d) * f
        median_dist = float(np.sort(distances)[nth])
        if median_dist < best_dist:
            best_dist = median_dist
            best_distances = distances

    if best_distances is None:
        return None

    threshold = 1.4 * best_dist
    inliers = [p for p, dist in zip(selected, best_distances) if dist < threshold]
    if not inliers:
        return None
    return Plane(inliers, tcw, _random_rang(rng))