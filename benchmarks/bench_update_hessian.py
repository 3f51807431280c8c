# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.

import time

import jax
import jax.numpy as jnp

from ba_jit.core.factor_graph import NonlinearFactorGraph
from ba_jit.core.noise import Isotropic
from ba_jit.core.types import symbol
from ba_jit.slam.camera import make_camera, project
from ba_jit.slam.reprojection import CameraLandmarkFactor


def build_ring_problem(num_cameras: int = 8, num_points: int = 40):
    """
    Cameras on a circle of radius 10 looking at a cloud of points near the
    origin; every camera observes every point with 0.5 px noise.
    """
    graph = NonlinearFactorGraph()
    values = {}
    calib = jnp.array([500.0, 500.0, 0.0, 320.0, 240.0])
    model = Isotropic.sigma(2, 0.5)

    key = jax.random.PRNGKey(0)
    points = 0.5 * jax.random.normal(key, (num_points, 3))
    for j in range(num_points):
        values[symbol("l", j)] = points[j]

    for i in range(num_cameras):
        # camera on the -z side, small yaw around the ring
        yaw = 0.3 * (i / max(num_cameras - 1, 1) - 0.5)
        pose = jnp.array([10.0 * jnp.sin(yaw), 0.0, -10.0 * jnp.cos(yaw), 0.0, -yaw, 0.0])
        values[symbol("c", i)] = make_camera(pose, calib)
        for j in range(num_points):
            uv = project(pose, points[j], calib).uv
            graph.add_factor(
                CameraLandmarkFactor.create(uv + 0.5, model, symbol("c", i), symbol("l", j))
            )
    return graph, values


def run_benchmark(num_cameras: int = 8, num_points: int = 40):
    print("=== Information matrix assembly benchmark ===")
    print(f"num_cameras = {num_cameras}, num_points = {num_points}")

    graph, values = build_ring_problem(num_cameras, num_points)

    # Warmup: compiles the projection and the fixed-size kernels once
    info = graph.hessian(values)
    info.full().block_until_ready()

    t0 = time.time()
    linear = graph.linearize(values)
    t1 = time.time()
    info = graph.hessian(values)
    info.full().block_until_ready()
    t2 = time.time()

    print(f"factors:        {len(linear)}")
    print(f"linearize:      {(t1 - t0) * 1000:.3f} ms")
    print(f"linearize+sum:  {(t2 - t1) * 1000:.3f} ms")
    print(f"b^T b:          {info.constant_term():.3f}")


if __name__ == "__main__":
    run_benchmark()
