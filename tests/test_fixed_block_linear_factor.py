"""
Hessian diagonal and matrix-free Hessian-vector products of fixed-width
linear factors, in container and flat-array form.
"""

from __future__ import annotations

import jax.numpy as jnp
import pytest

from ba_jit.core.errors import (
    ContractViolation,
    DimensionMismatchError,
    RawAccessNotSupportedError,
)
from ba_jit.core.noise import Diagonal
from ba_jit.linear.layout import VectorLayout
from ba_jit.linear.regular import FixedBlockLinearFactor
from ba_jit.linear.symmetric import SymmetricBlockMatrix

A0 = jnp.array([[1.0, 2.0, 0.0], [0.0, 1.0, -1.0], [3.0, 0.0, 1.0]])
A2 = jnp.array([[0.5, 0.0, 1.0], [2.0, -1.0, 0.0], [1.0, 1.0, 1.0]])
B = jnp.array([1.0, -2.0, 0.5])
SIGMAS = jnp.array([0.5, 2.0, 4.0])


def make_factor(model=None):
    # keys 0 and 2 with D = 3: uniform-stride slices x[0:3] and x[6:9]
    return FixedBlockLinearFactor([(0, A0), (2, A2)], B, model)


def dense_a(n=12):
    A = jnp.zeros((3, n))
    A = A.at[:, 0:3].set(A0)
    return A.at[:, 6:9].set(A2)


X = jnp.arange(12, dtype=jnp.float64) * 0.1 - 0.4


@pytest.mark.parametrize("model", [None, Diagonal.from_sigmas(SIGMAS)])
def test_multiply_hessian_add_raw_matches_dense(model):
    factor = make_factor(model)
    alpha = 0.7
    A = dense_a()
    # whitening applied twice: A^T Σ^{-1} A
    precision = jnp.ones(3) if model is None else 1.0 / (SIGMAS * SIGMAS)
    expected = alpha * A.T @ (precision * (A @ X))

    y = factor.multiply_hessian_add_raw(alpha, X, jnp.zeros(12))
    assert jnp.allclose(y, expected, atol=1e-12)


def test_multiply_hessian_add_raw_accumulates():
    factor = make_factor()
    y0 = jnp.ones(12)
    y = factor.multiply_hessian_add_raw(1.0, X, y0)
    assert jnp.allclose(y - y0, factor.multiply_hessian_add_raw(1.0, X, jnp.zeros(12)))
    # untouched slice stays as it was
    assert jnp.all(y[3:6] == 1.0)
    assert jnp.all(y0 == 1.0)


def test_offset_table_addressing_matches_uniform_stride():
    factor = make_factor(Diagonal.from_sigmas(SIGMAS))
    layout = VectorLayout.from_offsets([0, 3, 6, 9, 12])
    y_uniform = factor.multiply_hessian_add_raw(2.0, X, jnp.zeros(12))
    y_layout = factor.multiply_hessian_add_raw(2.0, X, jnp.zeros(12), layout)
    assert jnp.allclose(y_uniform, y_layout)


def test_irregular_layout_places_blocks_at_offsets():
    factor = FixedBlockLinearFactor([("a", A0), ("b", A2)], B)
    layout = VectorLayout.from_dims(["b", "pad", "a"], [3, 2, 3])
    x = jnp.arange(8, dtype=jnp.float64)
    y = factor.multiply_hessian_add_raw(1.0, x, jnp.zeros(8), layout)

    Ax = A0 @ x[5:8] + A2 @ x[0:3]
    assert jnp.allclose(y[5:8], A0.T @ Ax)
    assert jnp.allclose(y[0:3], A2.T @ Ax)
    assert jnp.all(y[3:5] == 0.0)


@pytest.mark.parametrize("model", [None, Diagonal.from_sigmas(SIGMAS)])
def test_container_multiply_matches_raw(model):
    factor = make_factor(model)
    x = {0: X[0:3], 2: X[6:9]}
    y = factor.multiply_hessian_add(0.3, x, {})
    y_raw = factor.multiply_hessian_add_raw(0.3, X, jnp.zeros(12))
    assert jnp.allclose(y[0], y_raw[0:3])
    assert jnp.allclose(y[2], y_raw[6:9])


@pytest.mark.parametrize("model", [None, Diagonal.from_sigmas(SIGMAS)])
def test_hessian_diagonal_matches_dense(model):
    factor = make_factor(model)
    A = dense_a()
    if model is not None:
        A = A / SIGMAS[:, None]
    expected = jnp.diag(A.T @ A)

    diag = factor.hessian_diagonal()
    assert jnp.allclose(diag[0], expected[0:3])
    assert jnp.allclose(diag[2], expected[6:9])

    d0 = jnp.full(12, 5.0)
    d = factor.hessian_diagonal_raw(d0)
    assert jnp.allclose(d, 5.0 + expected)


def test_hessian_diagonal_raw_with_offset_table():
    factor = make_factor()
    layout = VectorLayout.from_offsets([0, 3, 6, 9])
    d = factor.hessian_diagonal_raw(jnp.ones(9), layout)
    assert jnp.allclose(d[0:3], 1.0 + jnp.sum(A0 * A0, axis=0))
    assert jnp.allclose(d[6:9], 1.0 + jnp.sum(A2 * A2, axis=0))
    assert jnp.all(d[3:6] == 1.0)


def test_gradient_at_zero():
    model = Diagonal.from_sigmas(SIGMAS)
    factor = make_factor(model)
    g = factor.gradient_at_zero()
    Wb = B / (SIGMAS * SIGMAS)
    assert jnp.allclose(g[0], -A0.T @ Wb)
    assert jnp.allclose(g[2], -A2.T @ Wb)


def test_gradient_at_zero_raw_is_reported_unsupported():
    with pytest.raises(RawAccessNotSupportedError):
        make_factor().gradient_at_zero_raw(jnp.zeros(12))
    # still a NotImplementedError for generic callers
    with pytest.raises(NotImplementedError):
        make_factor().gradient_at_zero_raw(jnp.zeros(12))


def test_empty_factor_is_a_no_op():
    factor = FixedBlockLinearFactor([], jnp.zeros(2))
    y0 = jnp.arange(6, dtype=jnp.float64)
    assert factor.empty()
    assert jnp.array_equal(factor.multiply_hessian_add_raw(1.0, y0, y0), y0)
    assert jnp.array_equal(factor.hessian_diagonal_raw(y0), y0)
    assert factor.hessian_diagonal() == {}
    assert factor.multiply_hessian_add(1.0, {}, {}) == {}


def test_empty_factor_leaves_information_matrix_untouched():
    factor = FixedBlockLinearFactor([], jnp.array([1.0, 2.0]))
    info = SymmetricBlockMatrix([3, 3])
    factor.update_hessian([0, 1], info)
    assert info.stored_blocks() == []
    assert info.constant_term() == 0.0


def test_mixed_widths_are_rejected():
    with pytest.raises(DimensionMismatchError):
        FixedBlockLinearFactor([(0, jnp.ones((2, 3))), (1, jnp.ones((2, 2)))], jnp.zeros(2))


def test_out_of_bounds_access_fails_loudly():
    with pytest.raises(ContractViolation):
        make_factor().multiply_hessian_add_raw(1.0, jnp.zeros(6), jnp.zeros(6))
