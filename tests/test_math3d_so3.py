import jax.numpy as jnp

from ba_jit.core.math3d import (
    se3_identity,
    se3_retract_left,
    so3_exp,
    so3_log,
    transform_to,
    transform_to_perturbed,
)


def test_so3_log_exp_roundtrip_small_angle():
    w = jnp.array([0.1, -0.05, 0.02])
    R = so3_exp(w)
    w_est = so3_log(R)
    assert jnp.all(jnp.isfinite(w_est))
    assert jnp.allclose(w_est, w, atol=1e-10)


def test_so3_log_no_nan_for_identity():
    w = so3_log(jnp.eye(3))
    assert jnp.all(jnp.isfinite(w))
    assert jnp.linalg.norm(w) < 1e-12


def test_so3_exp_is_orthonormal():
    R = so3_exp(jnp.array([0.4, -1.1, 0.3]))
    assert jnp.allclose(R.T @ R, jnp.eye(3), atol=1e-12)
    assert jnp.linalg.det(R) > 0.0


def test_se3_retract_zero_delta_is_identity():
    pose = jnp.array([1.0, 2.0, 3.0, 0.1, 0.2, -0.1])
    assert jnp.allclose(se3_retract_left(pose, jnp.zeros(6)), pose, atol=1e-12)


def test_se3_retract_pure_translation():
    pose_new = se3_retract_left(se3_identity(), jnp.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0]))
    assert jnp.allclose(pose_new[:3], jnp.array([1.0, 0.0, 0.0]))
    assert jnp.allclose(pose_new[3:], jnp.zeros(3))


def test_transform_to_inverts_pose():
    # camera at x = 1 looking down +z: a world point at x = 1 is on the axis
    pose = jnp.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    pc = transform_to(pose, jnp.array([1.0, 0.0, 4.0]))
    assert jnp.allclose(pc, jnp.array([0.0, 0.0, 4.0]))


def test_perturbed_transform_matches_retraction():
    pose = jnp.array([0.3, -0.1, 0.2, 0.05, 0.1, -0.2])
    delta = jnp.array([0.01, -0.02, 0.03, 0.02, -0.01, 0.015])
    point = jnp.array([0.4, 0.7, 3.0])
    expected = transform_to(se3_retract_left(pose, delta), point)
    assert jnp.allclose(transform_to_perturbed(pose, delta, point), expected, atol=1e-12)
