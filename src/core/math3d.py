"""
SO(3) and SE(3) operations for BA-JIT.

Poses are 6-vectors `[tx, ty, tz, wx, wy, wz]`: a translation followed by
an axis-angle rotation. A pose represents world_T_camera, i.e. it maps
camera-frame coordinates into the world frame.

Key Functions
-------------
so3_exp(w) / so3_log(R)
    Rodrigues' formula and its inverse, with small-angle fallbacks so that
    forward-mode derivatives at zero rotation are exact.

pose_to_rt(pose)
    Rotation matrix and translation of a 6-vector pose.

se3_retract_left(pose, delta)
    Left-multiplicative update `Exp(delta) * T`. This is the local
    parameterization the reprojection Jacobians are taken with respect to.

transform_to(pose, point)
    Express a world point in the camera frame: R^T (p - t).

transform_to_perturbed(pose, delta, point)
    Same as `transform_to(se3_retract_left(pose, delta), point)` but without
    the log/exp round trip, so that jacfwd at delta = 0 is well conditioned.

All functions are pure JAX and safe under `jax.jit` and `jax.jacfwd`.
"""

from __future__ import annotations

from .jax_init import jax, jnp

_SMALL_ANGLE = 1e-5


def hat(v: jnp.ndarray) -> jnp.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = v[0], v[1], v[2]
    return jnp.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def vee(W: jnp.ndarray) -> jnp.ndarray:
    """Inverse of `hat`, averaging the antisymmetric part."""
    return jnp.array([W[2, 1] - W[1, 2], W[0, 2] - W[2, 0], W[1, 0] - W[0, 1]]) / 2.0


def so3_exp(w: jnp.ndarray) -> jnp.ndarray:
    w = jnp.asarray(w)
    theta = jnp.linalg.norm(w)
    I = jnp.eye(3, dtype=w.dtype)

    def small_angle() -> jnp.ndarray:
        # exact to first order, which is all jacfwd at w = 0 needs
        return I + hat(w)

    def normal_angle() -> jnp.ndarray:
        K = hat(w / theta)
        return I + jnp.sin(theta) * K + (1.0 - jnp.cos(theta)) * (K @ K)

    return jax.lax.cond(theta < _SMALL_ANGLE, small_angle, normal_angle)


def so3_log(R: jnp.ndarray) -> jnp.ndarray:
    R = jnp.asarray(R)
    cos_theta = jnp.clip((jnp.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    theta = jnp.arccos(cos_theta)

    def small_angle(_) -> jnp.ndarray:
        return vee(R - jnp.eye(3, dtype=R.dtype))

    def general(_) -> jnp.ndarray:
        factor = theta / (2.0 * jnp.sin(theta) + 1e-12)
        return factor * vee(R - R.T)

    return jax.lax.cond(theta < _SMALL_ANGLE, small_angle, general, operand=None)


def se3_identity() -> jnp.ndarray:
    return jnp.zeros(6)


def pose_to_rt(pose: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Return (R, t) for a 6-vector pose."""
    pose = jnp.asarray(pose)
    return so3_exp(pose[3:6]), pose[0:3]


def se3_retract_left(pose: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
    """
    Left retraction on 6-vector poses:

        T_new = Exp(delta) * T
        R_new = R_d R,   t_new = R_d t + t_d
    """
    R, t = pose_to_rt(pose)
    R_d, t_d = pose_to_rt(delta)
    R_new = R_d @ R
    t_new = R_d @ t + t_d
    return jnp.concatenate([t_new, so3_log(R_new)])


def transform_to(pose: jnp.ndarray, point: jnp.ndarray) -> jnp.ndarray:
    """World point -> camera frame."""
    R, t = pose_to_rt(pose)
    return R.T @ (jnp.asarray(point) - t)


def transform_to_perturbed(
    pose: jnp.ndarray, delta: jnp.ndarray, point: jnp.ndarray
) -> jnp.ndarray:
    """`transform_to` evaluated at `se3_retract_left(pose, delta)`."""
    R, t = pose_to_rt(pose)
    R_d, t_d = pose_to_rt(delta)
    R_new = R_d @ R
    t_new = R_d @ t + t_d
    return R_new.T @ (jnp.asarray(point) - t_new)
