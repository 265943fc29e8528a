"""Loading of monocular image sequences and tracking-time bookkeeping."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Iterator, Sequence

__all__ = [
    "MonoSequence",
    "TrackingStats",
    "load_euroc_mono",
    "load_kitti_mono",
    "load_tum_mono",
    "frame_wait_time",
    "tracking_time_stats",
]


@dataclass
class MonoSequence:
    """Image file paths with one timestamp (in seconds) per image."""

    image_paths: list[str] = field(default_factory=list)
    timestamps: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.image_paths)

    def __iter__(self) -> Iterator[tuple[str, float]]:
        return iter(zip(self.image_paths, self.timestamps))


@dataclass(frozen=True)
class TrackingStats:
    """Median and mean of per-frame tracking times."""

    median: float
    mean: float


def _parse_timestamp(token: str, path: str) -> float:
    try:
        return float(token)
    except ValueError:
        raise ValueError(f"{path}: invalid timestamp {token!r}") from None


def _data_lines(path: str) -> Iterator[str]:
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            line = line.rstrip("\n")
            if line:
                yield line


def load_euroc_mono(image_path: str, times_path: str) -> MonoSequence:
    """Read a EuRoC times file; names are nanosecond stamps, times are seconds."""
    sequence = MonoSequence()
    for line in _data_lines(times_path):
        tokens = line.split()
        if not tokens:
            raise ValueError(f"{times_path}: blank timestamp line")
        sequence.image_paths.append(f"{image_path}/{line}.png")
        sequence.timestamps.append(_parse_timestamp(tokens[0], times_path) / 1e9)
    return sequence


def _kitti_times(sequence_path: str) -> list[float]:
    times_path = os.path.join(sequence_path, "times.txt")
    timestamps = []
    for line in _data_lines(times_path):
        tokens = line.split()
        if not tokens:
            raise ValueError(f"{times_path}: blank timestamp line")
        timestamps.append(_parse_timestamp(tokens[0], times_path))
    return timestamps


def _kitti_image_names(sequence_path: str, folder: str, count: int) -> list[str]:
    prefix = f"{sequence_path}/{folder}/"
    return [f"{prefix}{i:06d}.png" for i in range(count)]


def load_kitti_mono(sequence_path: str) -> MonoSequence:
    """Read ``times.txt`` of a KITTI sequence and name its ``image_0`` frames."""
    timestamps = _kitti_times(sequence_path)
    paths = _kitti_image_names(sequence_path, "image_0", len(timestamps))
    return MonoSequence(paths, timestamps)


def load_tum_mono(sequence_path: str) -> MonoSequence:
    """Read ``rgb.txt`` of a TUM sequence, skipping its three header lines."""
    list_path = os.path.join(sequence_path, "rgb.txt")
    sequence = MonoSequence()
    with open(list_path, encoding="utf-8") as handle:
        for _ in range(3):
            handle.readline()
        for line in handle:
            line = line.rstrip("\n")
            if not line:
                continue
            tokens = line.split()
            if len(tokens) < 2:
                raise ValueError(f"{list_path}: malformed line {line!r}")
            sequence.timestamps.append(_parse_timestamp(tokens[0], list_path))
            sequence.image_paths.append(f"{sequence_path}/{tokens[1]}")
    return sequence


def frame_wait_time(timestamps: Sequence[float], index: int, track_time: float) -> float:
    """Seconds to wait after tracking frame ``index`` to keep real-time pacing."""
    count = len(timestamps)
    if not 0 <= index < count:
        raise IndexError(f"frame index {index} out of range for {count} frames")
    period = 0.0
    if index < count - 1:
        period = timestamps[index + 1] - timestamps[index]
    elif index > 0:
        period = timestamps[index] - timestamps[index - 1]
    return period - track_time if track_time < period else 0.0


def tracking_time_stats(track_times: Sequence[float]) -> TrackingStats:
    """Median (upper middle element) and mean of the tracking times."""
    if not track_times:
        raise ValueError("no tracking times given")
    ordered = sorted(track_times)
    return TrackingStats(median=ordered[len(ordered) // 2], mean=sum(ordered) / len(ordered))