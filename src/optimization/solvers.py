# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Matrix-free linear solvers for BA-JIT.

Solves the Gauss–Newton normal equations of one linearization,

    (A^T Σ^{-1} A + λ D) Δx = A^T Σ^{-1} b,

by preconditioned conjugate gradients, touching the factors only through
their per-factor operations:

    • multiply_hessian_add   → the Hessian-vector product
    • hessian_diagonal       → the Jacobi preconditioner D
    • gradient_at_zero       → the right-hand side

A^T A is never formed. All vectors are flat arrays addressed through a
`VectorLayout`. `FixedBlockLinearFactor`s use their flat-array overloads;
any other linear factor goes through its container form and is
gathered/scattered through the layout.

The outer nonlinear loop (when to relinearize, how to pick λ) is the
caller's business.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from loguru import logger

from ..core.errors import RawAccessNotSupportedError
from ..core.jax_init import jnp
from ..linear.jacobian import JacobianFactor
from ..linear.layout import VectorLayout
from ..linear.regular import FixedBlockLinearFactor


@dataclass
class CGConfig:
    max_iters: int = 100
    tol: float = 1e-10          # stop when ||r|| <= tol * ||rhs||
    damping: float = 0.0        # LM-style λ, scales the Hessian diagonal
    use_preconditioner: bool = True


@dataclass
class CGResult:
    x: jnp.ndarray
    iterations: int
    residual_norm: float
    converged: bool


def hessian_diagonal(factors: Sequence[JacobianFactor], layout: VectorLayout) -> jnp.ndarray:
    d = layout.zeros()
    for factor in factors:
        if isinstance(factor, FixedBlockLinearFactor):
            d = factor.hessian_diagonal_raw(d, layout)
        else:
            for key, dk in factor.hessian_diagonal().items():
                d = layout.scatter_add(d, key, dk)
    return d


def multiply_hessian(
    factors: Sequence[JacobianFactor], x: jnp.ndarray, layout: VectorLayout, alpha: float = 1.0
) -> jnp.ndarray:
    """alpha * H x, summed over all factors."""
    y = layout.zeros()
    for factor in factors:
        if isinstance(factor, FixedBlockLinearFactor):
            y = factor.multiply_hessian_add_raw(alpha, x, y, layout)
        else:
            xs = {key: layout.gather(x, key) for key in factor.keys}
            for key, yk in factor.multiply_hessian_add(alpha, xs, {}).items():
                y = layout.scatter_add(y, key, yk)
    return y


def gradient_at_zero(factors: Sequence[JacobianFactor], layout: VectorLayout) -> jnp.ndarray:
    g = layout.zeros()
    for factor in factors:
        if isinstance(factor, FixedBlockLinearFactor):
            try:
                g = factor.gradient_at_zero_raw(g, layout)
                continue
            except RawAccessNotSupportedError:
                pass
        for key, gk in factor.gradient_at_zero().items():
            g = layout.scatter_add(g, key, gk)
    return g


def conjugate_gradient(
    factors: Sequence[JacobianFactor], layout: VectorLayout, cfg: CGConfig
) -> CGResult:
    """
    Jacobi-preconditioned CG on the normal equations of `factors`.

    Returns the step Δx as a flat array in `layout` order.
    """
    rhs = -gradient_at_zero(factors, layout)
    diag = hessian_diagonal(factors, layout)

    def apply_h(v: jnp.ndarray) -> jnp.ndarray:
        Hv = multiply_hessian(factors, v, layout)
        if cfg.damping > 0.0:
            Hv = Hv + cfg.damping * diag * v
        return Hv

    if cfg.use_preconditioner:
        precond = diag * (1.0 + cfg.damping)
        inv_m = jnp.where(precond > 0.0, 1.0 / jnp.where(precond > 0.0, precond, 1.0), 1.0)
    else:
        inv_m = jnp.ones_like(rhs)

    x = jnp.zeros_like(rhs)
    r = rhs
    z = inv_m * r
    p = z
    rz = float(jnp.dot(r, z))
    rhs_norm = float(jnp.linalg.norm(rhs))
    threshold = cfg.tol * rhs_norm

    r_norm = rhs_norm
    if r_norm <= threshold:
        return CGResult(x, 0, r_norm, True)

    for it in range(1, cfg.max_iters + 1):
        Hp = apply_h(p)
        pHp = float(jnp.dot(p, Hp))
        if pHp <= 0.0:
            logger.warning("CG stopped at iteration {}: non-positive curvature {:.3e}", it, pHp)
            return CGResult(x, it, r_norm, False)
        step = rz / pHp
        x = x + step * p
        r = r - step * Hp
        r_norm = float(jnp.linalg.norm(r))
        logger.debug("CG iter {}: |r| = {:.3e}", it, r_norm)
        if r_norm <= threshold:
            return CGResult(x, it, r_norm, True)
        z = inv_m * r
        rz_new = float(jnp.dot(r, z))
        p = z + (rz_new / rz) * p
        rz = rz_new

    return CGResult(x, cfg.max_iters, r_norm, False)
