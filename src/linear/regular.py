# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Linear factor whose blocks all share one column width D.

Iterative solvers (see `optimization.solvers`) never form A^T A. They only
need, per factor:

    • the diagonal of A^T Σ^{-1} A, as a Jacobi preconditioner,
    • the product y += alpha * A^T Σ^{-1} A x.

`FixedBlockLinearFactor` provides both directly on flat JAX arrays. Two
addressing modes are supported:

    layout=None     uniform stride: integer key k owns x[D*k : D*(k+1)]
    layout=...      a `VectorLayout` (irregular offsets, any hashable key)

JAX arrays are immutable, so the flat-array overloads return the updated
buffer; the argument itself is left untouched.

The noise model is applied twice to A x in the product. A single whiten
only gives Σ^{-1/2}; the information matrix needs Σ^{-1}.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from ..core.errors import ContractViolation, DimensionMismatchError, RawAccessNotSupportedError
from ..core.jax_init import jnp
from ..core.noise import NoiseModel
from ..core.types import Key
from . import kernels
from .jacobian import JacobianFactor, Term
from .layout import VectorLayout


class FixedBlockLinearFactor(JacobianFactor):
    def __init__(
        self,
        terms: Sequence[Term],
        b: jnp.ndarray,
        model: Optional[NoiseModel] = None,
        dim: Optional[int] = None,
    ):
        super().__init__(terms, b, model)
        widths = set(self.dims())
        if dim is None:
            if len(widths) > 1:
                raise DimensionMismatchError(f"blocks have mixed widths {sorted(widths)}")
            dim = widths.pop() if widths else 0
        if any(w != dim for w in self.dims()):
            raise DimensionMismatchError(
                f"all blocks must have width {dim}, got {self.dims()}"
            )
        self.dim = int(dim)

    def _rebuild(self, blocks, b, model) -> "FixedBlockLinearFactor":
        return FixedBlockLinearFactor(list(zip(self.keys, blocks)), b, model, dim=self.dim)

    def _span(self, buffer: jnp.ndarray, key: Key, layout: Optional[VectorLayout]) -> Tuple[int, int]:
        if layout is not None:
            offset, length = layout.span(key)
            if length != self.dim:
                raise DimensionMismatchError(
                    f"layout gives key {key!r} length {length}, factor width is {self.dim}"
                )
        else:
            if not isinstance(key, int) or key < 0:
                raise ContractViolation(
                    f"uniform-stride addressing needs non-negative int keys, got {key!r}"
                )
            offset, length = self.dim * key, self.dim
        if buffer.ndim != 1 or offset + length > buffer.shape[0]:
            raise ContractViolation(
                f"slice [{offset}, {offset + length}) for key {key!r} "
                f"out of bounds for buffer of shape {buffer.shape}"
            )
        return offset, length

    def hessian_diagonal_raw(
        self, d: jnp.ndarray, layout: Optional[VectorLayout] = None
    ) -> jnp.ndarray:
        """Add this factor's Hessian diagonal onto the flat array `d`."""
        d = jnp.asarray(d)
        if self.empty():
            return d
        spans = [self._span(d, key, layout) for key in self.keys]
        blocks, _ = self.whitened_system()
        for (offset, length), A in zip(spans, blocks):
            d = d.at[offset : offset + length].add(kernels.column_squared_norms(A))
        return d

    def multiply_hessian_add_raw(
        self,
        alpha: float,
        x: jnp.ndarray,
        y: jnp.ndarray,
        layout: Optional[VectorLayout] = None,
    ) -> jnp.ndarray:
        """Return y + alpha * A^T Σ^{-1} A x over flat arrays."""
        x = jnp.asarray(x)
        y = jnp.asarray(y)
        if self.empty():
            return y
        x_spans = [self._span(x, key, layout) for key in self.keys]
        y_spans = [self._span(y, key, layout) for key in self.keys]

        Ax = jnp.zeros((self.rows,))
        for (offset, length), A in zip(x_spans, self.blocks):
            Ax = Ax + kernels.apply_block(A, x[offset : offset + length])

        Ax = alpha * self._whiten_twice(Ax)

        for (offset, length), A in zip(y_spans, self.blocks):
            y = y.at[offset : offset + length].add(kernels.apply_block_transpose(A, Ax))
        return y

    def gradient_at_zero_raw(
        self, d: jnp.ndarray, layout: Optional[VectorLayout] = None
    ) -> jnp.ndarray:
        raise RawAccessNotSupportedError(
            "FixedBlockLinearFactor.gradient_at_zero_raw is not implemented; "
            "use gradient_at_zero() and pack it with a VectorLayout"
        )
