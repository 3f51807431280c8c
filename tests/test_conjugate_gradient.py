from __future__ import annotations

import jax
import jax.numpy as jnp

from ba_jit.core.noise import Diagonal
from ba_jit.linear.binary import BinaryLinearFactor
from ba_jit.linear.layout import VectorLayout
from ba_jit.linear.regular import FixedBlockLinearFactor
from ba_jit.optimization.solvers import (
    CGConfig,
    conjugate_gradient,
    gradient_at_zero,
    hessian_diagonal,
    multiply_hessian,
)


def build_problem():
    """Chain of 3-D blocks with an anchor, all factors of width 3."""
    key = jax.random.PRNGKey(3)
    layout = VectorLayout.from_dims([0, 1, 2, 3], [3, 3, 3, 3])
    factors = [FixedBlockLinearFactor([(0, jnp.eye(3))], jnp.array([0.1, -0.2, 0.3]))]
    for i in range(3):
        key, k1, k2, k3 = jax.random.split(key, 4)
        A1 = jnp.eye(3) + 0.1 * jax.random.normal(k1, (3, 3))
        A2 = -jnp.eye(3) + 0.1 * jax.random.normal(k2, (3, 3))
        b = jax.random.normal(k3, (3,))
        model = Diagonal.from_sigmas([0.5, 1.0, 2.0])
        factors.append(FixedBlockLinearFactor([(i, A1), (i + 1, A2)], b, model))
    return factors, layout


def dense_system(factors, layout):
    rows, rhs = [], []
    for f in factors:
        A, b = f.jacobian()
        row = jnp.zeros((f.rows, layout.size))
        col = 0
        for key, width in zip(f.keys, f.dims()):
            offset, _ = layout.span(key)
            row = row.at[:, offset : offset + width].set(A[:, col : col + width])
            col += width
        rows.append(row)
        rhs.append(b)
    A = jnp.concatenate(rows, axis=0)
    b = jnp.concatenate(rhs)
    return A.T @ A, A.T @ b


def test_matrix_free_operations_match_dense():
    factors, layout = build_problem()
    H, g = dense_system(factors, layout)
    x = jnp.linspace(-1.0, 1.0, layout.size)

    assert jnp.allclose(multiply_hessian(factors, x, layout), H @ x, atol=1e-10)
    assert jnp.allclose(hessian_diagonal(factors, layout), jnp.diag(H), atol=1e-10)
    assert jnp.allclose(gradient_at_zero(factors, layout), -g, atol=1e-10)


def test_pcg_solves_normal_equations():
    factors, layout = build_problem()
    H, g = dense_system(factors, layout)

    result = conjugate_gradient(factors, layout, CGConfig(max_iters=50, tol=1e-12))
    assert result.converged
    assert jnp.allclose(result.x, jnp.linalg.solve(H, g), atol=1e-8)


def test_pcg_handles_general_factors_through_container_form():
    layout = VectorLayout.from_dims(["a", "b"], [2, 1])
    factors = [
        BinaryLinearFactor("a", jnp.eye(2), "b", jnp.array([[1.0], [2.0]]), jnp.array([1.0, 0.0])),
        BinaryLinearFactor("a", jnp.array([[1.0, 1.0], [0.0, 2.0]]), "b", jnp.array([[0.0], [1.0]]), jnp.array([0.5, -1.0])),
    ]
    H, g = dense_system(factors, layout)
    result = conjugate_gradient(factors, layout, CGConfig(max_iters=20, tol=1e-12, use_preconditioner=False))
    assert result.converged
    assert jnp.allclose(result.x, jnp.linalg.solve(H, g), atol=1e-8)
