import random
from dataclasses import dataclass
from typing import Any

import numpy as np
import pytest

from slamkit.plane import Plane, detect_plane, exp_so3, exp_so3_vector


@dataclass
class MapPointStub:
    world_pos: Any
    observations: int = 10
    is_bad: bool = False


def _grid_points(y=2.0, count=5):
    return [
        np.array([float(i), y, float(j)])
        for i in range(count)
        for j in range(count)
    ]


def test_exp_so3_zero_is_identity():
    np.testing.assert_allclose(exp_so3(0.0, 0.0, 0.0), np.eye(3))


@pytest.mark.parametrize("vec", [(0.3, -0.2, 0.5), (0.0, 0.0, 1.5), (2.0, 1.0, -1.0)])
def test_exp_so3_is_rotation_about_axis(vec):
    r = exp_so3(*vec)
    np.testing.assert_allclose(r @ r.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(r) == pytest.approx(1.0)
    axis = np.array(vec)
    np.testing.assert_allclose(r @ axis, axis, atol=1e-12)


def test_exp_so3_small_angle_branch():
    vec = (1e-5, -2e-5, 3e-5)
    r = exp_so3(*vec)
    np.testing.assert_allclose(r, np.eye(3), atol=1e-4)
    np.testing.assert_allclose(r @ np.array(vec), np.array(vec), atol=1e-15)


def test_exp_so3_vector_matches_scalar_form():
    np.testing.assert_allclose(exp_so3_vector([0.1, 0.2, 0.3]), exp_so3(0.1, 0.2, 0.3))


def test_exp_so3_vector_rejects_wrong_size():
    with pytest.raises(ValueError):
        exp_so3_vector([1.0, 2.0])


def test_from_normal_up_has_identity_rotation():
    plane = Plane.from_normal([0.0, 1.0, 0.0], [1.0, 2.0, 3.0], rang=0.0)
    np.testing.assert_allclose(plane.tpw[:3, :3], np.eye(3), atol=1e-12)
    np.testing.assert_allclose(plane.tpw[:3, 3], [1.0, 2.0, 3.0])


@pytest.mark.parametrize("rang", [0.0, 0.7, -1.2])
def test_from_normal_maps_up_to_normal(rang):
    normal = np.array([1.0, 0.0, 0.0])
    plane = Plane.from_normal(normal, [0.0, 0.0, 0.0], rang=rang)
    rotation = plane.tpw[:3, :3]
    np.testing.assert_allclose(rotation @ np.array([0.0, 1.0, 0.0]), normal, atol=1e-12)
    np.testing.assert_allclose(rotation @ rotation.T, np.eye(3), atol=1e-12)


def test_gl_matrix_is_column_major():
    plane = Plane.from_normal([0.0, 0.0, 1.0], [4.0, 5.0, 6.0], rang=0.3)
    gl = plane.gl_matrix()
    assert gl.shape == (16,)
    np.testing.assert_allclose(gl.reshape(4, 4).T, plane.tpw)
    np.testing.assert_allclose(gl[12:15], [4.0, 5.0, 6.0])
    assert gl[15] == 1.0
    assert gl[3] == 0.0


def test_plane_from_points_fits_and_faces_away_from_camera():
    points = _grid_points(y=2.0)
    plane = Plane(points, np.eye(4), rang=0.0)
    np.testing.assert_allclose(plane.o, np.mean(points, axis=0))
    assert abs(plane.n[1]) == pytest.approx(1.0)
    camera_center = np.zeros(3)
    assert float(plane.n @ (camera_center - plane.o)) < 0.0
    assert np.linalg.norm(plane.n) == pytest.approx(1.0)


def test_plane_ignores_bad_points():
    good = [MapPointStub(p) for p in _grid_points(y=0.0)]
    bad = MapPointStub(np.array([100.0, 50.0, 100.0]), is_bad=True)
    plane = Plane(good + [bad], np.eye(4), rang=0.0)
    np.testing.assert_allclose(plane.o, np.mean([g.world_pos for g in good], axis=0))


def test_recompute_follows_moved_points():
    stubs = [MapPointStub(p) for p in _grid_points(y=1.0)]
    plane = Plane(stubs, np.eye(4), rang=0.0)
    xc_before = plane.xc.copy()
    for stub in stubs:
        stub.world_pos = stub.world_pos + np.array([0.0, 3.0, 0.0])
    plane.recompute()
    np.testing.assert_allclose(plane.o, np.mean([s.world_pos for s in stubs], axis=0))
    np.testing.assert_allclose(plane.xc, xc_before)
    np.testing.assert_allclose(plane.tpw[:3, 3], plane.o)


def test_plane_without_points_raises():
    with pytest.raises(ValueError):
        Plane([], np.eye(4), rang=0.0)


def test_plane_rejects_bad_pose_shape():
    with pytest.raises(ValueError):
        Plane(_grid_points(), np.eye(3), rang=0.0)


def test_detect_plane_needs_enough_points():
    points = [MapPointStub(p) for p in _grid_points(count=5)]
    assert detect_plane(np.eye(4), points, 50, random.Random(0)) is None


def test_detect_plane_skips_poorly_observed_points():
    points = [MapPointStub(p, observations=3) for p in _grid_points(count=8)]
    assert detect_plane(np.eye(4), points, 50, random.Random(0)) is None


def test_detect_plane_finds_dominant_plane():
    gen = np.random.default_rng(1)
    plane_points = [
        MapPointStub(np.array([x, 1.0 + n, z]))
        for x, z, n in zip(
            gen.uniform(-2, 2, 80), gen.uniform(2, 6, 80), gen.uniform(-0.01, 0.01, 80)
        )
    ]
    outliers = [MapPointStub(gen.uniform(-5, 5, 3) + np.array([0.0, 10.0, 0.0])) for _ in range(20)]
    ignored = [None, MapPointStub(np.array([0.0, 40.0, 0.0]), observations=2)]
    plane = detect_plane(np.eye(4), plane_points + outliers + ignored, 50, random.Random(0))
    assert plane is not None
    assert abs(plane.n[1]) > 0.99
    assert len(plane.points) > 0
    inlier_ids = {id(p) for p in plane_points}
    assert all(id(p) in inlier_ids for p in plane.points)
    assert -3.14 / 2 <= plane.rang <= 3.14 / 2