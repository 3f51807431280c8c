# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Jitted fixed-size kernels for the linear factors.

Each kernel is traced once per distinct block shape, so a bundle adjustment
problem with (2x11, 2x3) camera/landmark blocks compiles exactly one
version of `binary_hessian_blocks` and reuses it for every factor. Keep
these functions free of Python-side branching on values.
"""

from __future__ import annotations

from ..core.jax_init import jax, jnp


@jax.jit
def binary_hessian_blocks(A1: jnp.ndarray, A2: jnp.ndarray, b: jnp.ndarray):
    """
    Upper-triangular blocks of [A1 A2 b]^T [A1 A2 b]:

        (A1^T A1, A1^T A2, A1^T b, A2^T A2, A2^T b, b^T b)
    """
    return (
        A1.T @ A1,
        A1.T @ A2,
        (A1.T @ b)[:, None],
        A2.T @ A2,
        (A2.T @ b)[:, None],
        jnp.dot(b, b).reshape(1, 1),
    )


@jax.jit
def gram_block(Ai: jnp.ndarray, Aj: jnp.ndarray) -> jnp.ndarray:
    return Ai.T @ Aj


@jax.jit
def column_squared_norms(A: jnp.ndarray) -> jnp.ndarray:
    """Diagonal of A^T A."""
    return jnp.sum(A * A, axis=0)


@jax.jit
def apply_block(A: jnp.ndarray, x: jnp.ndarray) -> jnp.ndarray:
    return A @ x


@jax.jit
def apply_block_transpose(A: jnp.ndarray, e: jnp.ndarray) -> jnp.ndarray:
    return A.T @ e
