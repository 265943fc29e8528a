"""Loading of RGB-D and stereo image sequences and stereo rectification settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

import numpy as np

from slamkit.mono_sequences import (
    _data_lines,
    _kitti_image_names,
    _kitti_times,
    _parse_timestamp,
)

__all__ = [
    "RgbdSequence",
    "StereoSequence",
    "CameraRectification",
    "StereoRectification",
    "load_tum_rgbd",
    "load_euroc_stereo",
    "load_kitti_stereo",
    "check_rectification_settings",
]


@dataclass
class RgbdSequence:
    """Colour and depth image names with one timestamp (in seconds) per pair."""

    rgb_paths: list[str] = field(default_factory=list)
    depth_paths: list[str] = field(default_factory=list)
    timestamps: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rgb_paths)

    def __iter__(self) -> Iterator[tuple[str, str, float]]:
        return iter(zip(self.rgb_paths, self.depth_paths, self.timestamps))


@dataclass
class StereoSequence:
    """Left and right image paths with one timestamp (in seconds) per pair."""

    left_paths: list[str] = field(default_factory=list)
    right_paths: list[str] = field(default_factory=list)
    timestamps: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.left_paths)

    def __iter__(self) -> Iterator[tuple[str, str, float]]:
        return iter(zip(self.left_paths, self.right_paths, self.timestamps))


@dataclass(frozen=True)
class CameraRectification:
    """Rectification parameters of one camera of a stereo pair."""

    k: np.ndarray
    d: np.ndarray
    r: np.ndarray
    p: np.ndarray
    width: int
    height: int


@dataclass(frozen=True)
class StereoRectification:
    """Rectification parameters of both cameras of a stereo pair."""

    left: CameraRectification
    right: CameraRectification


def load_tum_rgbd(association_path: str) -> RgbdSequence:
    """Read a TUM association file of ``t rgb t depth`` lines.

    Image names are kept relative to the dataset folder; the timestamp of each
    pair is the one of its colour image.
    """
    sequence = RgbdSequence()
    for line in _data_lines(association_path):
        tokens = line.split()
        if len(tokens) < 4:
            raise ValueError(f"{association_path}: malformed association line {line!r}")
        sequence.timestamps.append(_parse_timestamp(tokens[0], association_path))
        sequence.rgb_paths.append(tokens[1])
        _parse_timestamp(tokens[2], association_path)
        sequence.depth_paths.append(tokens[3])
    return sequence


def load_euroc_stereo(left_path: str, right_path: str, times_path: str) -> StereoSequence:
    """Read a EuRoC times file; names are nanosecond stamps, times are seconds."""
    sequence = StereoSequence()
    for line in _data_lines(times_path):
        tokens = line.split()
        if not tokens:
            raise ValueError(f"{times_path}: blank timestamp line")
        sequence.left_paths.append(f"{left_path}/{line}.png")
        sequence.right_paths.append(f"{right_path}/{line}.png")
        sequence.timestamps.append(_parse_timestamp(tokens[0], times_path) / 1e9)
    return sequence


def load_kitti_stereo(sequence_path: str) -> StereoSequence:
    """Read ``times.txt`` of a KITTI sequence and name its ``image_0``/``image_1`` frames."""
    timestamps = _kitti_times(sequence_path)
    count = len(timestamps)
    return StereoSequence(
        _kitti_image_names(sequence_path, "image_0", count),
        _kitti_image_names(sequence_path, "image_1", count),
        timestamps,
    )


_MISSING = "Calibration parameters to rectify stereo are missing!"


def _matrix(settings: Mapping[str, Any], key: str) -> np.ndarray:
    value = settings.get(key)
    if value is None:
        raise ValueError(f"{_MISSING} ({key})")
    matrix = np.asarray(value, dtype=np.float64)
    if matrix.size == 0:
        raise ValueError(f"{_MISSING} ({key})")
    return matrix


def _dimension(settings: Mapping[str, Any], key: str) -> int:
    value = settings.get(key)
    try:
        size = int(value) if value is not None else 0
    except (TypeError, ValueError):
        raise ValueError(f"{key}: invalid image dimension {value!r}") from None
    if size == 0:
        raise ValueError(f"{_MISSING} ({key})")
    return size


def _side(settings: Mapping[str, Any], prefix: str) -> CameraRectification:
    return CameraRectification(
        k=_matrix(settings, f"{prefix}.K"),
        d=_matrix(settings, f"{prefix}.D"),
        r=_matrix(settings, f"{prefix}.R"),
        p=_matrix(settings, f"{prefix}.P"),
        width=_dimension(settings, f"{prefix}.width"),
        height=_dimension(settings, f"{prefix}.height"),
    )


def check_rectification_settings(settings: Mapping[str, Any]) -> StereoRectification:
    """Validate the LEFT/RIGHT rectification entries of a settings mapping.

    Raises ``ValueError`` if any matrix is missing or empty, or any image
    dimension is missing or zero.
    """
    return StereoRectification(left=_side(settings, "LEFT"), right=_side(settings, "RIGHT"))