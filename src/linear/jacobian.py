# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
General linear (Jacobian) factor.

A `JacobianFactor` is the linearization of one measurement:

    error(x) = 0.5 * || W (sum_j A_j x_j - b) ||^2

with one block A_j per variable key, a right-hand side b and an optional
diagonal noise model whose whitening operator is W. It is the n-ary
general variant of the closed family of linear factors used by BA-JIT:

    JacobianFactor
      ├── BinaryLinearFactor       (linear.binary, two fixed-size blocks)
      └── FixedBlockLinearFactor   (linear.regular, all blocks width D)

The subclasses specialize the hot paths (`update_hessian`, flat-array
products); the container-form operations below are shared.

Container forms
---------------
"Container" arguments are dicts Key -> 1-D array. They are never modified:
operations that accumulate (`multiply_hessian_add`) return an updated copy.

Noise handling
--------------
Quantities that belong to the information form A^T Σ^{-1} A are whitened
twice (W applied to A x, and again implicitly through A^T W), matching the
definition Σ^{-1} = W^T W for diagonal models:

    hessian_diagonal     = diag(A^T W^2 A)
    gradient_at_zero     = -A^T W^2 b
    multiply_hessian_add : y += alpha * A^T W^2 A x
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..core.errors import (
    ContractViolation,
    DimensionMismatchError,
    MissingSlotError,
    UnsupportedOperationError,
)
from ..core.jax_init import jnp
from ..core.noise import NoiseModel, models_equal, needs_whitening
from ..core.types import Key
from . import kernels
from .symmetric import SlotTable, SymmetricBlockMatrix, slot, slot_map

Term = Tuple[Key, jnp.ndarray]


class JacobianFactor:
    """
    Linear factor with one dense block per key, a right-hand side `b` and
    an optional diagonal noise model. Keys must be distinct and every block
    must have as many rows as `b`.
    """

    def __init__(
        self,
        terms: Sequence[Term],
        b: jnp.ndarray,
        model: Optional[NoiseModel] = None,
    ):
        b = jnp.asarray(b, dtype=jnp.float64).reshape(-1)
        rows = b.shape[0]
        keys: List[Key] = []
        blocks: List[jnp.ndarray] = []
        for key, A in terms:
            A = jnp.asarray(A, dtype=jnp.float64)
            if A.ndim != 2 or A.shape[0] != rows:
                raise DimensionMismatchError(
                    f"block for key {key!r} has shape {A.shape}, expected ({rows}, n)"
                )
            if key in keys:
                raise ValueError(f"duplicate key {key!r} in linear factor")
            keys.append(key)
            blocks.append(A)
        if model is not None and model.dim != rows:
            raise DimensionMismatchError(
                f"noise model dimension {model.dim} does not match {rows} rows"
            )
        self._keys: Tuple[Key, ...] = tuple(keys)
        self._blocks: Tuple[jnp.ndarray, ...] = tuple(blocks)
        self._b = b
        self._model = model

    # --- Accessors ---

    @property
    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    @property
    def blocks(self) -> Tuple[jnp.ndarray, ...]:
        return self._blocks

    @property
    def b(self) -> jnp.ndarray:
        return self._b

    @property
    def model(self) -> Optional[NoiseModel]:
        return self._model

    @property
    def rows(self) -> int:
        """Number of measurement rows (length of b)."""
        return int(self._b.shape[0])

    def __len__(self) -> int:
        return len(self._keys)

    def empty(self) -> bool:
        """True when the factor involves no variables."""
        return len(self._keys) == 0

    def dims(self) -> List[int]:
        """Column widths of the blocks, in key order."""
        return [int(A.shape[1]) for A in self._blocks]

    def get_a(self, key: Key) -> jnp.ndarray:
        """Block for `key`; MissingSlotError when the key is not involved."""
        try:
            return self._blocks[self._keys.index(key)]
        except ValueError:
            raise MissingSlotError(f"key {key!r} not in factor") from None

    def equals(self, other: "JacobianFactor", tol: float = 1e-9) -> bool:
        """Same variant, keys and noise model, with A and b equal within `tol`."""
        if type(other) is not type(self) or other.keys != self.keys:
            return False
        if not models_equal(self.model, other.model, tol):
            return False
        if not jnp.allclose(self.b, other.b, atol=tol):
            return False
        return all(
            A.shape == B.shape and bool(jnp.allclose(A, B, atol=tol))
            for A, B in zip(self.blocks, other.blocks)
        )

    # --- Whitening ---

    def _rebuild(self, blocks, b, model) -> "JacobianFactor":
        return type(self)(list(zip(self._keys, blocks)), b, model)

    def whitened_system(self) -> Tuple[Tuple[jnp.ndarray, ...], jnp.ndarray]:
        """(blocks, b) with the noise model applied once."""
        if self._model is None:
            return self._blocks, self._b
        return tuple(self._model.whiten(A) for A in self._blocks), self._model.whiten(self._b)

    def whiten(self) -> "JacobianFactor":
        """
        Equivalent factor with the weighting folded into A and b.

        Constrained models keep their unit version so the hard rows stay
        marked; every other model is dropped.
        """
        if self._model is None:
            return self
        blocks, b = self.whitened_system()
        model = self._model.unit() if self._model.is_constrained() else None
        return self._rebuild(blocks, b, model)

    def _whiten_twice(self, v: jnp.ndarray) -> jnp.ndarray:
        if self._model is None:
            return v
        return self._model.whiten(self._model.whiten(v))

    # --- Dense views ---

    def jacobian(self) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """Whitened dense (A, b), blocks in key order."""
        blocks, b = self.whitened_system()
        if not blocks:
            return jnp.zeros((self.rows, 0)), b
        return jnp.concatenate(blocks, axis=1), b

    def error_vector(self, x: Mapping[Key, jnp.ndarray]) -> jnp.ndarray:
        """Whitened residual W (A x - b) at the container-form point `x`."""
        e = -self._b
        for key, A in zip(self._keys, self._blocks):
            e = e + kernels.apply_block(A, _lookup(x, key))
        return self._model.whiten(e) if self._model is not None else e

    def error(self, x: Mapping[Key, jnp.ndarray]) -> float:
        """0.5 * ||W (A x - b)||^2."""
        e = self.error_vector(x)
        return 0.5 * float(jnp.dot(e, e))

    # --- Information form ---

    def update_hessian(self, slot_table: SlotTable, info: SymmetricBlockMatrix) -> None:
        """
        Add [A b]^T [A b] into `info` at the slots of this factor's keys.

        Weighted models are whitened first. Constrained models raise
        UnsupportedOperationError, and an empty factor leaves `info`
        untouched. Slots and block widths are checked before the first
        write.
        """
        if self.empty():
            return
        if needs_whitening(self._model):
            if self._model.is_constrained():
                raise UnsupportedOperationError(
                    f"{type(self).__name__}.update_hessian: cannot update information "
                    "with a constrained noise model"
                )
            self.whiten().update_hessian(slot_table, info)
            return

        table = slot_map(slot_table)
        slots = [slot(table, key) for key in self._keys]
        slot_b = info.augmented_slot
        _check_block_dims(info, slots, self.dims())

        order = sorted(range(len(slots)), key=lambda pos: slots[pos])
        for a, i in enumerate(order):
            Ai = self._blocks[i]
            for j in order[a:]:
                info.add_block(slots[i], slots[j], kernels.gram_block(Ai, self._blocks[j]))
            info.add_block(slots[i], slot_b, (Ai.T @ self._b)[:, None])
        info.add_block(slot_b, slot_b, jnp.dot(self._b, self._b).reshape(1, 1))

    def hessian_diagonal(self) -> Dict[Key, jnp.ndarray]:
        """Per-key diagonal of A^T Σ^{-1} A (squared whitened column norms)."""
        blocks, _ = self.whitened_system()
        return {key: kernels.column_squared_norms(A) for key, A in zip(self._keys, blocks)}

    def hessian_block_diagonal(self) -> Dict[Key, jnp.ndarray]:
        """Per-key diagonal blocks A_j^T Σ^{-1} A_j."""
        blocks, _ = self.whitened_system()
        return {key: kernels.gram_block(A, A) for key, A in zip(self._keys, blocks)}

    def gradient_at_zero(self) -> Dict[Key, jnp.ndarray]:
        """Gradient of the error at x = 0: -A^T Σ^{-1} b per key."""
        e = self._whiten_twice(self._b)
        return {key: -kernels.apply_block_transpose(A, e) for key, A in zip(self._keys, self._blocks)}

    def multiply_hessian_add(
        self,
        alpha: float,
        x: Mapping[Key, jnp.ndarray],
        y: Mapping[Key, jnp.ndarray],
    ) -> Dict[Key, jnp.ndarray]:
        """Return a copy of y with alpha * A^T Σ^{-1} A x added per key."""
        out = dict(y)
        if self.empty():
            return out
        Ax = jnp.zeros((self.rows,))
        for key, A in zip(self._keys, self._blocks):
            Ax = Ax + kernels.apply_block(A, _lookup(x, key))
        Ax = alpha * self._whiten_twice(Ax)
        for key, A in zip(self._keys, self._blocks):
            contribution = kernels.apply_block_transpose(A, Ax)
            out[key] = out[key] + contribution if key in out else contribution
        return out


def _lookup(x: Mapping[Key, jnp.ndarray], key: Key) -> jnp.ndarray:
    try:
        return jnp.asarray(x[key])
    except KeyError:
        raise MissingSlotError(f"key {key!r} missing from vector values") from None


def _check_block_dims(info: SymmetricBlockMatrix, slots: Sequence[int], widths: Sequence[int]) -> None:
    # runs before any write: a rejected factor leaves `info` unchanged
    if len(set(slots)) != len(slots):
        raise ContractViolation(f"distinct keys share a slot: {list(slots)}")
    dims = info.dims
    for s, w in zip(slots, widths):
        if not 0 <= s < info.augmented_slot:
            raise ContractViolation(f"slot {s} is not a variable block of the matrix")
        if dims[s] != w:
            raise DimensionMismatchError(f"slot {s} has width {dims[s]}, block has {w}")
