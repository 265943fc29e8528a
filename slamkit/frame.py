"""Camera frames: undistorted keypoints, a spatial grid for lookup, and pose."""

from __future__ import annotations

import itertools
import math
from dataclasses import dataclass, replace
from typing import ClassVar, Optional, Sequence

import numpy as np

__all__ = [
    "FRAME_GRID_COLS",
    "FRAME_GRID_ROWS",
    "KeyPoint",
    "Frame",
    "undistort_points",
]

FRAME_GRID_COLS = 64
FRAME_GRID_ROWS = 48

_UNDISTORT_ITERATIONS = 5


@dataclass(frozen=True)
class KeyPoint:
    """An image feature location with its pyramid level."""

    x: float
    y: float
    octave: int = 0
    size: float = 0.0
    angle: float = -1.0
    response: float = 0.0


def _calibration(k) -> np.ndarray:
    matrix = np.asarray(k, dtype=np.float64)
    if matrix.shape != (3, 3):
        raise ValueError(f"calibration matrix must be 3x3, got shape {matrix.shape}")
    return matrix


def _distortion(dist_coef) -> np.ndarray:
    coefs = np.asarray(dist_coef, dtype=np.float64).ravel()
    if coefs.size not in (4, 5):
        raise ValueError(f"distortion needs 4 or 5 coefficients, got {coefs.size}")
    return coefs


def undistort_points(points, k, dist_coef) -> np.ndarray:
    """Remove lens distortion from pixel points and reproject them with ``k``.

    ``dist_coef`` holds ``k1, k2, p1, p2`` and optionally ``k3``. The inverse of
    the distortion model is found by fixed-point iteration.
    """
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"points must have shape (N, 2), got {pts.shape}")
    kmat = _calibration(k)
    coefs = _distortion(dist_coef)
    k1, k2, p1, p2 = coefs[:4]
    k3 = coefs[4] if coefs.size == 5 else 0.0
    fx, fy, cx, cy = kmat[0, 0], kmat[1, 1], kmat[0, 2], kmat[1, 2]

    x0 = (pts[:, 0] - cx) / fx
    y0 = (pts[:, 1] - cy) / fy
    x, y = x0.copy(), y0.copy()
    for _ in range(_UNDISTORT_ITERATIONS):
        r2 = x * x + y * y
        icdist = 1.0 / (1.0 + ((k3 * r2 + k2) * r2 + k1) * r2)
        delta_x = 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
        delta_y = p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
        x = (x0 - delta_x) * icdist
        y = (y0 - delta_y) * icdist
    return np.column_stack([x * fx + cx, y * fy + cy])


def _round_half_away(value: float) -> int:
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


class Frame:
    """A processed camera image: keypoints, stereo/depth data and an optional pose.

    ``image_size`` is ``(width, height)``. When ``depth`` (an image indexed as
    ``depth[row, col]``) is given, per-keypoint depth is read from it;
    otherwise no stereo information is set.
    """

    _ids: ClassVar[itertools.count] = itertools.count()

    def __init__(
        self,
        keypoints: Sequence[KeyPoint],
        k,
        dist_coef,
        image_size: tuple[int, int],
        timestamp: float = 0.0,
        bf: float = 0.0,
        th_depth: float = 0.0,
        depth=None,
    ) -> None:
        self.id = next(Frame._ids)
        self.keys = list(keypoints)
        self.k = _calibration(k).copy()
        self.dist_coef = _distortion(dist_coef).copy()
        self.timestamp = float(timestamp)
        self.bf = float(bf)
        self.th_depth = float(th_depth)
        self.n = len(self.keys)

        self.fx = float(self.k[0, 0])
        self.fy = float(self.k[1, 1])
        self.cx = float(self.k[0, 2])
        self.cy = float(self.k[1, 2])
        self.invfx = 1.0 / self.fx
        self.invfy = 1.0 / self.fy
        self.mb = self.bf / self.fx

        self.keys_un = self._undistort_keypoints()
        self._compute_image_bounds(image_size)
        self.grid_element_width_inv = FRAME_GRID_COLS / (self.max_x - self.min_x)
        self.grid_element_height_inv = FRAME_GRID_ROWS / (self.max_y - self.min_y)

        if depth is not None:
            self.compute_stereo_from_rgbd(depth)
        else:
            self.u_right = [-1.0] * self.n
            self.depth = [-1.0] * self.n

        self.map_points: list = [None] * self.n
        self.outliers = [False] * self.n

        self.tcw: Optional[np.ndarray] = None
        self.rcw: Optional[np.ndarray] = None
        self.rwc: Optional[np.ndarray] = None
        self.tcw_vec: Optional[np.ndarray] = None
        self.ow: Optional[np.ndarray] = None

        self.grid = self._assign_features_to_grid()

    def _undistort_keypoints(self) -> list[KeyPoint]:
        if self.dist_coef[0] == 0.0 or not self.keys:
            return list(self.keys)
        undistorted = undistort_points([(kp.x, kp.y) for kp in self.keys], self.k, self.dist_coef)
        return [replace(kp, x=float(u), y=float(v)) for kp, (u, v) in zip(self.keys, undistorted)]

    def _compute_image_bounds(self, image_size: tuple[int, int]) -> None:
        width, height = image_size
        if width <= 0 or height <= 0:
            raise ValueError(f"image size must be positive, got {image_size}")
        if self.dist_coef[0] != 0.0:
            corners = undistort_points(
                [(0.0, 0.0), (width, 0.0), (0.0, height), (width, height)],
                self.k,
                self.dist_coef,
            )
            self.min_x = float(min(corners[0, 0], corners[2, 0]))
            self.max_x = float(max(corners[1, 0], corners[3, 0]))
            self.min_y = float(min(corners[0, 1], corners[1, 1]))
            self.max_y = float(max(corners[2, 1], corners[3, 1]))
        else:
            self.min_x, self.max_x = 0.0, float(width)
            self.min_y, self.max_y = 0.0, float(height)

    def _assign_features_to_grid(self) -> list[list[list[int]]]:
        grid: list[list[list[int]]] = [[[] for _ in range(FRAME_GRID_ROWS)] for _ in range(FRAME_GRID_COLS)]
        for index, kp in enumerate(self.keys_un):
            cell = self.pos_in_grid(kp)
            if cell is not None:
                grid[cell[0]][cell[1]].append(index)
        return grid

    def set_pose(self, tcw) -> None:
        """Set the world-to-camera transform and derive rotation and camera centre."""
        transform = np.array(tcw, dtype=np.float64)
        if transform.shape not in ((4, 4), (3, 4)):
            raise ValueError(f"pose must be 3x4 or 4x4, got shape {transform.shape}")
        self.tcw = transform
        self.rcw = transform[:3, :3].copy()
        self.rwc = self.rcw.T.copy()
        self.tcw_vec = transform[:3, 3].copy()
        self.ow = -self.rwc @ self.tcw_vec

    def _require_pose(self) -> None:
        if self.tcw is None:
            raise RuntimeError("frame has no pose set")

    def camera_center(self) -> np.ndarray:
        """The camera centre in world coordinates."""
        self._require_pose()
        return self.ow.copy()

    def pos_in_grid(self, kp: KeyPoint) -> Optional[tuple[int, int]]:
        """Grid cell ``(col, row)`` of a keypoint, or ``None`` if it falls outside."""
        pos_x = _round_half_away((kp.x - self.min_x) * self.grid_element_width_inv)
        pos_y = _round_half_away((kp.y - self.min_y) * self.grid_element_height_inv)
        if pos_x < 0 or pos_x >= FRAME_GRID_COLS or pos_y < 0 or pos_y >= FRAME_GRID_ROWS:
            return None
        return pos_x, pos_y

    def get_features_in_area(
        self, x: float, y: float, r: float, min_level: int = -1, max_level: int = -1
    ) -> list[int]:
        """Indices of undistorted keypoints within the square of half-side ``r``.

        Levels are filtered when ``min_level > 0`` or ``max_level >= 0``.
        """
        min_cell_x = max(0, math.floor((x - self.min_x - r) * self.grid_element_width_inv))
        if min_cell_x >= FRAME_GRID_COLS:
            return []
        max_cell_x = min(FRAME_GRID_COLS - 1, math.ceil((x - self.min_x + r) * self.grid_element_width_inv))
        if max_cell_x < 0:
            return []
        min_cell_y = max(0, math.floor((y - self.min_y - r) * self.grid_element_height_inv))
        if min_cell_y >= FRAME_GRID_ROWS:
            return []
        max_cell_y = min(FRAME_GRID_ROWS - 1, math.ceil((y - self.min_y + r) * self.grid_element_height_inv))
        if max_cell_y < 0:
            return []

        check_levels = min_level > 0 or max_level >= 0
        found = []
        for ix in range(min_cell_x, max_cell_x + 1):
            for iy in range(min_cell_y, max_cell_y + 1):
                for index in self.grid[ix][iy]:
                    kp = self.keys_un[index]
                    if check_levels:
                        if kp.octave < min_level:
                            continue
                        if max_level >= 0 and kp.octave > max_level:
                            continue
                    if abs(kp.x - x) < r and abs(kp.y - y) < r:
                        found.append(index)
        return found

    def compute_stereo_from_rgbd(self, depth) -> None:
        """Read each keypoint's depth and derive a virtual right-image coordinate."""
        image = np.asarray(depth, dtype=np.float64)
        if image.ndim != 2:
            raise ValueError(f"depth image must be 2-D, got shape {image.shape}")
        self.u_right = [-1.0] * self.n
        self.depth = [-1.0] * self.n
        for i, (kp, kp_un) in enumerate(zip(self.keys, self.keys_un)):
            d = float(image[int(kp.y), int(kp.x)])
            if d > 0:
                self.depth[i] = d
                self.u_right[i] = kp_un.x - self.bf / d

    def unproject_stereo(self, i: int) -> Optional[np.ndarray]:
        """World position of keypoint ``i`` from its depth, or ``None`` without depth."""
        self._require_pose()
        z = self.depth[i]
        if z <= 0:
            return None
        kp = self.keys_un[i]
        x = (kp.x - self.cx) * z * self.invfx
        y = (kp.y - self.cy) * z * self.invfy
        return self.rwc @ np.array([x, y, z]) + self.ow