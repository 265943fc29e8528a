# slamkit

Geometry building blocks for feature-based monocular, stereo and RGB-D SLAM,
built on NumPy.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

### `slamkit.converter`

Conversions between pose and rotation representations:

- `to_se3(rotation, translation)` – 4x4 rigid transform (float32).
- `to_sim3_matrix(rotation, translation, scale)` – 4x4 transform whose
  rotation block is scaled by `scale`.
- `to_vector3(values)`, `to_matrix3(matrix)` – 3-vector and upper-left 3x3
  block as float64 arrays.
- `to_quaternion(matrix)` – unit quaternion as `[x, y, z, w]`.
- `to_descriptor_vector(descriptors)` – split a descriptor matrix into rows.

### `slamkit.frame`

- `KeyPoint` – frozen dataclass with `x`, `y`, `octave`, `size`, `angle`,
  `response`.
- `undistort_points(points, k, dist_coef)` – removes radial/tangential
  distortion (`k1, k2, p1, p2[, k3]`) by fixed-point iteration.
- `Frame(keypoints, k, dist_coef, image_size, timestamp, bf, th_depth, depth)`
  – undistorts its keypoints, computes the image bounds, and indexes the
  keypoints in a 64x48 grid. Each frame gets an increasing `id`.
  - `get_features_in_area(x, y, r, min_level, max_level)` – keypoint indices
    inside a square window, optionally filtered by pyramid level.
  - `pos_in_grid(kp)` – grid cell of a keypoint or `None`.
  - `compute_stereo_from_rgbd(depth)` – per-keypoint depth and virtual right
    coordinate from a depth image.
  - `set_pose(tcw)`, `camera_center()`, `unproject_stereo(i)` – pose handling
    and back-projection of keypoints with depth (raise `RuntimeError` when no
    pose is set).

### `slamkit.two_view`

`normalize`, `compute_h21` (homography, DLT), `compute_f21` (rank-2
fundamental matrix, eight-point), `triangulate` (linear DLT),
`decompose_essential` (two rotations and a unit translation) and
`check_rt`, which triangulates inlier matches under one motion hypothesis and
returns an `RTCheck` with the number of good points, the 3-D points, per-point
flags and the parallax in degrees.

### `slamkit.initializer`

`Initializer(reference_frame, sigma=1.0, iterations=200)` initialises a map
from two views of one camera. `initialize(current_frame, matches12)` fits a
homography and a fundamental matrix by RANSAC (`find_homography`,
`find_fundamental`, each returning a `ModelFit`), picks the model by their
score ratio and decomposes it (`reconstruct_h`, `reconstruct_f`). It returns a
`Reconstruction` (rotation, unit translation, 3-D points and triangulation
flags indexed by reference keypoint) or `None`, and raises `ValueError` with
fewer than eight matches. Sampling uses a fixed seed, so results are
repeatable. Frames only need `k` and `keys_un`, so `slamkit.frame.Frame`
works directly.

### `slamkit.plane`

- `exp_so3(x, y, z)`, `exp_so3_vector(v)` – rotation from a rotation vector.
- `detect_plane(tcw, points, iterations=50, rng=None)` – RANSAC search for a
  dominant plane among at least 50 points; returns a `Plane` or `None`.
  Points may be 3-vectors or objects with `world_pos` and `observations`
  (points seen five times or fewer are skipped).
- `Plane(points, tcw, rang)` fits a plane to its points with the normal facing
  the camera; `Plane.from_normal(normal, origin, rang)` builds one directly.
  `recompute()` refits it, `tpw` holds the world-to-plane transform and
  `gl_matrix()` returns it as 16 column-major values.

### `slamkit.mono_sequences` and `slamkit.stereo_sequences`

Loaders for dataset image listings:

- `load_euroc_mono(image_path, times_path)`, `load_kitti_mono(sequence_path)`,
  `load_tum_mono(sequence_path)` → `MonoSequence`.
- `load_tum_rgbd(association_path)` → `RgbdSequence` (names relative to the
  dataset folder).
- `load_euroc_stereo(left_path, right_path, times_path)`,
  `load_kitti_stereo(sequence_path)` → `StereoSequence`.
- `check_rectification_settings(settings)` validates `LEFT.*`/`RIGHT.*`
  rectification entries of a mapping and returns a `StereoRectification`.
- `frame_wait_time(timestamps, index, track_time)` – seconds to wait to keep
  real-time pacing; `tracking_time_stats(track_times)` – `TrackingStats` with
  median and mean.

## Example

```python
import numpy as np
from slamkit.converter import to_se3, to_quaternion
from slamkit.mono_sequences import load_tum_mono, tracking_time_stats

sequence = load_tum_mono("rgbd_dataset_freiburg1_xyz")
print(len(sequence), "images")

pose = to_se3(np.eye(3), [0.0, 0.0, 1.0])
print(to_quaternion(pose[:3, :3]))  # [0.0, 0.0, 0.0, 1.0]

print(tracking_time_stats([0.03, 0.01, 0.02]))  # median 0.02, mean 0.02
```

## What it does not do

slamkit is a library of geometry pieces, not a running SLAM system. It does
not read or decode images, extract or match features, track a camera over a
sequence, build or optimise a map, close loops, or draw anything on screen.
The sequence loaders only produce file names and timestamps, and
`check_rectification_settings` only validates the parameters; no
rectification maps are computed. There is no command-line program.