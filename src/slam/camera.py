# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Pinhole projection with a Cal3_S2 calibration.

This is the projection capability consumed by the reprojection factors. It
maps a world point through an SE(3) camera pose and a five-parameter
calibration to pixel coordinates, and returns the Jacobians with respect to
all three arguments:

    uv, H_pose (2x6), H_point (2x3), H_calib (2x5), valid

Calibration vector
------------------
    [fx, fy, s, u0, v0]

    u = fx * x + s * y + u0
    v = fy * y + v0

where (x, y) are the normalized image-plane coordinates X/Z, Y/Z of the
point in the camera frame.

Cheirality
----------
A point with depth Z <= MIN_DEPTH cannot be projected. Rather than raising,
`project` returns `valid = False` together with zero-filled outputs of the
right shape; the caller decides what a degenerate observation contributes.

Jacobians
---------
Derived with `jax.jacfwd`. The pose Jacobian is taken with respect to the
left perturbation used by `core.math3d.se3_retract_left`; the point and
calibration Jacobians are plain Euclidean derivatives.
"""

from __future__ import annotations

from typing import NamedTuple

from ..core.jax_init import jax, jnp
from ..core.math3d import transform_to_perturbed

POSE_DIM = 6
POINT_DIM = 3
CALIB_DIM = 5
CAMERA_DIM = POSE_DIM + CALIB_DIM
MEASUREMENT_DIM = 2

MIN_DEPTH = 1e-6


class Projection(NamedTuple):
    uv: jnp.ndarray
    H_pose: jnp.ndarray
    H_point: jnp.ndarray
    H_calib: jnp.ndarray
    valid: jnp.ndarray


def uncalibrate(calib: jnp.ndarray, pn: jnp.ndarray) -> jnp.ndarray:
    """Normalized image coordinates -> pixels."""
    fx, fy, s, u0, v0 = calib[0], calib[1], calib[2], calib[3], calib[4]
    x, y = pn[0], pn[1]
    return jnp.array([fx * x + s * y + u0, fy * y + v0])


def _project_local(delta, point, pose, calib):
    pc = transform_to_perturbed(pose, delta, point)
    pn = pc[:2] / pc[2]
    return uncalibrate(calib, pn)


def _depth(pose, point):
    pc = transform_to_perturbed(pose, jnp.zeros(POSE_DIM, dtype=pose.dtype), point)
    return pc[2]


@jax.jit
def _project(pose, point, calib) -> Projection:
    delta0 = jnp.zeros(POSE_DIM, dtype=pose.dtype)
    valid = _depth(pose, point) > MIN_DEPTH

    uv = _project_local(delta0, point, pose, calib)
    H_pose, H_point = jax.jacfwd(_project_local, argnums=(0, 1))(
        delta0, point, pose, calib
    )
    H_calib = jax.jacfwd(_project_local, argnums=3)(delta0, point, pose, calib)

    # A point behind the camera divides by a non-positive depth; mask every
    # output so no inf/nan escapes.
    return Projection(
        uv=jnp.where(valid, uv, 0.0),
        H_pose=jnp.where(valid, H_pose, 0.0),
        H_point=jnp.where(valid, H_point, 0.0),
        H_calib=jnp.where(valid, H_calib, 0.0),
        valid=valid,
    )


def project(pose, point, calib) -> Projection:
    """
    Project a world point into a camera.

    Args:
        pose: (6,) world_T_camera as [tx, ty, tz, wx, wy, wz]
        point: (3,) world point
        calib: (5,) [fx, fy, s, u0, v0]

    Returns:
        Projection(uv, H_pose, H_point, H_calib, valid). When `valid` is
        False every other field is zero.
    """
    pose = jnp.asarray(pose, dtype=jnp.float64)
    point = jnp.asarray(point, dtype=jnp.float64)
    calib = jnp.asarray(calib, dtype=jnp.float64)
    if pose.shape != (POSE_DIM,) or point.shape != (POINT_DIM,) or calib.shape != (CALIB_DIM,):
        raise ValueError(
            "project expects pose (6,), point (3,), calib (5,); got "
            f"{pose.shape}, {point.shape}, {calib.shape}"
        )
    return _project(pose, point, calib)


def split_camera(camera: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Split an 11-vector camera into its pose and calibration parts."""
    camera = jnp.asarray(camera)
    return camera[:POSE_DIM], camera[POSE_DIM:CAMERA_DIM]


def make_camera(pose, calib) -> jnp.ndarray:
    return jnp.concatenate([jnp.asarray(pose, dtype=jnp.float64), jnp.asarray(calib, dtype=jnp.float64)])
