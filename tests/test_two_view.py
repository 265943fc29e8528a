import math

import numpy as np
import pytest

from slamkit.frame import KeyPoint
from slamkit.two_view import (
    check_rt,
    compute_f21,
    compute_h21,
    decompose_essential,
    normalize,
    triangulate,
)

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def _rotation_y(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


R = _rotation_y(0.05)
T = np.array([-0.5, 0.05, 0.1])


def _scene(planar=False, count=30):
    rng = np.random.default_rng(0)
    xs = rng.uniform(-1.0, 1.0, count)
    ys = rng.uniform(-1.0, 1.0, count)
    zs = np.full(count, 5.0) if planar else rng.uniform(4.0, 6.0, count)
    return np.column_stack([xs, ys, zs])


def _project(points, rotation=np.eye(3), translation=np.zeros(3)):
    cam = points @ rotation.T + translation
    pix = cam @ K.T
    return pix[:, :2] / pix[:, 2:3]


def _skew(v):
    return np.array([[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]])


def _keypoints(pixels):
    return [KeyPoint(float(u), float(v)) for u, v in pixels]


def test_normalize_zero_mean_unit_deviation():
    pts = _project(_scene())
    normalized, transform = normalize(_keypoints(pts))
    assert np.allclose(normalized.mean(axis=0), 0.0, atol=1e-9)
    assert np.allclose(np.abs(normalized).mean(axis=0), 1.0)
    homogeneous = np.column_stack([pts, np.ones(len(pts))]) @ transform.T
    assert np.allclose(homogeneous[:, :2], normalized)
    assert transform[2].tolist() == [0.0, 0.0, 1.0]


def test_normalize_accepts_pairs():
    normalized, _ = normalize([(0.0, 0.0), (2.0, 4.0)])
    assert np.allclose(normalized, [[-1.0, -1.0], [1.0, 1.0]])


def test_normalize_errors():
    with pytest.raises(ValueError):
        normalize([])
    with pytest.raises(ValueError):
        normalize([(1.0, 1.0), (1.0, 1.0)])


def test_compute_h21_maps_planar_points():
    scene = _scene(planar=True)
    p1n, _ = normalize(_project(scene))
    p2n, _ = normalize(_project(scene, R, T))
    h = compute_h21(p1n[:8], p2n[:8])
    mapped = np.column_stack([p1n, np.ones(len(p1n))]) @ h.T
    mapped = mapped[:, :2] / mapped[:, 2:3]
    assert np.allclose(mapped, p2n, atol=1e-7)


def test_compute_h21_rejects_bad_input():
    with pytest.raises(ValueError):
        compute_h21([(0, 0), (1, 1), (2, 3)], [(0, 0), (1, 1), (2, 3)])
    with pytest.raises(ValueError):
        compute_h21([(0, 0)] * 5, [(0, 0)] * 4)


def test_compute_f21_epipolar_constraint_and_rank():
    scene = _scene()
    p1n, t1 = normalize(_project(scene))
    p2n, t2 = normalize(_project(scene, R, T))
    fn = compute_f21(p1n, p2n)
    h1 = np.column_stack([p1n, np.ones(len(p1n))])
    h2 = np.column_stack([p2n, np.ones(len(p2n))])
    residuals = np.einsum("ij,jk,ik->i", h2, fn, h1)
    assert np.max(np.abs(residuals)) < 1e-8
    assert abs(np.linalg.det(fn)) < 1e-12
    assert np.linalg.matrix_rank(t2.T @ fn @ t1, tol=1e-10) == 2


def test_compute_f21_needs_eight_points():
    pts = [(float(i), float(i * i)) for i in range(7)]
    with pytest.raises(ValueError):
        compute_f21(pts, pts)


def test_triangulate_recovers_point():
    point = np.array([0.3, -0.2, 5.0])
    p1 = np.hstack([K, np.zeros((3, 1))])
    p2 = K @ np.hstack([R, T[:, None]])
    (u1, v1), = _project(point[None, :])
    (u2, v2), = _project(point[None, :], R, T)
    result = triangulate(KeyPoint(u1, v1), (u2, v2), p1, p2)
    assert np.allclose(result, point, atol=1e-8)


def test_triangulate_rejects_bad_projection():
    with pytest.raises(ValueError):
        triangulate((0, 0), (0, 0), np.eye(3), np.eye(3))


def test_decompose_essential_contains_true_motion():
    e = _skew(T) @ R
    r1, r2, t = decompose_essential(e)
    for rotation in (r1, r2):
        assert np.isclose(np.linalg.det(rotation), 1.0)
        assert np.allclose(rotation @ rotation.T, np.eye(3), atol=1e-9)
    assert np.allclose(r1, R, atol=1e-9) or np.allclose(r2, R, atol=1e-9)
    unit = T / np.linalg.norm(T)
    assert np.allclose(t, unit, atol=1e-9) or np.allclose(t, -unit, atol=1e-9)


def test_decompose_essential_rejects_wrong_shape():
    with pytest.raises(ValueError):
        decompose_essential(np.eye(4))


def _two_views():
    scene = _scene()
    keys1 = _keypoints(_project(scene))
    keys2 = _keypoints(_project(scene, R, T))
    matches = [(i, i) for i in range(len(scene))]
    return scene, keys1, keys2, matches


def test_check_rt_true_motion_accepts_all():
    scene, keys1, keys2, matches = _two_views()
    result = check_rt(R, T, keys1, keys2, matches, [True] * len(matches), K, 4.0)
    assert result.n_good == len(scene)
    assert np.allclose(result.points3d, scene, atol=1e-6)
    assert all(result.good)
    assert result.parallax > 0.0


def test_check_rt_flipped_translation_rejects_all():
    _, keys1, keys2, matches = _two_views()
    result = check_rt(R, -T, keys1, keys2, matches, [True] * len(matches), K, 4.0)
    assert result.n_good == 0
    assert result.parallax == 0.0
    assert not any(result.good)


def test_check_rt_skips_outliers():
    scene, keys1, keys2, matches = _two_views()
    inliers = [i % 2 == 0 for i in range(len(matches))]
    result = check_rt(R, T, keys1, keys2, matches, inliers, K, 4.0)
    assert result.n_good == sum(inliers)
    assert result.good == inliers
    assert np.allclose(result.points3d[1], 0.0)


def test_check_rt_length_mismatch():
    _, keys1, keys2, matches = _two_views()
    with pytest.raises(ValueError):
        check_rt(R, T, keys1, keys2, matches, [True], K, 4.0)