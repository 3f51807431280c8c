"""
Pinhole projection: analytic (autodiff) Jacobians against central
finite differences, and the cheirality flag.
"""

from __future__ import annotations

import jax.numpy as jnp
import pytest

from ba_jit.core.math3d import se3_retract_left
from ba_jit.slam.camera import project

EPS = 1e-6


def numerical_jacobian(f, x, eps=EPS):
    x = jnp.asarray(x)
    cols = []
    for i in range(x.shape[0]):
        dx = jnp.zeros_like(x).at[i].set(eps)
        cols.append((f(x + dx) - f(x - dx)) / (2.0 * eps))
    return jnp.stack(cols, axis=1)


def test_projection_of_point_on_optical_axis(calib):
    p = project(jnp.zeros(6), jnp.array([0.0, 0.0, 2.0]), calib)
    assert bool(p.valid)
    assert jnp.allclose(p.uv, jnp.array([320.0, 240.0]))


def test_pose_jacobian_matches_finite_differences(pose, point_in_front, calib):
    p = project(pose, point_in_front, calib)
    H_fd = numerical_jacobian(
        lambda d: project(se3_retract_left(pose, d), point_in_front, calib).uv, jnp.zeros(6)
    )
    assert p.H_pose.shape == (2, 6)
    assert jnp.allclose(p.H_pose, H_fd, rtol=1e-6, atol=1e-5)


def test_point_jacobian_matches_finite_differences(pose, point_in_front, calib):
    p = project(pose, point_in_front, calib)
    H_fd = numerical_jacobian(lambda x: project(pose, x, calib).uv, point_in_front)
    assert p.H_point.shape == (2, 3)
    assert jnp.allclose(p.H_point, H_fd, rtol=1e-6, atol=1e-5)


def test_calibration_jacobian_matches_finite_differences(pose, point_in_front, calib):
    p = project(pose, point_in_front, calib)
    H_fd = numerical_jacobian(lambda k: project(pose, point_in_front, k).uv, calib)
    assert p.H_calib.shape == (2, 5)
    assert jnp.allclose(p.H_calib, H_fd, rtol=1e-6, atol=1e-5)


def test_point_behind_camera_is_flagged_and_zeroed(pose, point_behind, calib):
    p = project(pose, point_behind, calib)
    assert not bool(p.valid)
    for field in (p.uv, p.H_pose, p.H_point, p.H_calib):
        assert jnp.all(field == 0.0)


def test_project_rejects_wrong_shapes(calib):
    with pytest.raises(ValueError):
        project(jnp.zeros(7), jnp.zeros(3), calib)
