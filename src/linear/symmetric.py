# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Shared block-structured information matrix.

`SymmetricBlockMatrix` holds the augmented normal equations

    [ A^T A   A^T b ]
    [ b^T A   b^T b ]

split into blocks: one block row/column per variable (in slot order) plus
a final one-wide "augmented" block that carries A^T b and b^T b. Only the
upper block triangle (row <= col) is ever written; diagonal blocks are
stored in full.

Storage is sparse at block granularity: each written block (i, j) is its
own dims[i] x dims[j] array, created on first write. A write therefore
costs the size of the block, never the size of the matrix, and blocks no
factor touches take no memory. Dense views (`full`, `information`) are
assembled on demand.

The matrix is shared mutable state. Factors add into it through
`add_block`; the object itself takes no locks, so callers running factors
concurrently must make sure no two writers touch the same block.

Slot tables
-----------
A slot table maps each variable key to its block row. It is either an
ordered mapping Key -> slot, or a sequence of keys whose positions are the
slots. `slot_map()` normalizes either form to a mapping once, and `slot()`
resolves keys, raising `MissingSlotError` for unknown ones before anything
is written.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Sequence, Tuple, Union

from loguru import logger

from ..core.errors import ContractViolation, DimensionMismatchError, MissingSlotError
from ..core.jax_init import jnp
from ..core.types import Key

SlotTable = Union[Mapping[Key, int], Sequence[Key]]


def slot_map(slot_table: SlotTable) -> Mapping[Key, int]:
    """
    Key -> slot mapping for `slot_table`.

    Mappings are returned unchanged. A sequence of keys is indexed by
    position; duplicate keys are rejected.
    """
    if isinstance(slot_table, Mapping):
        return slot_table
    table: Dict[Key, int] = {}
    for index, key in enumerate(slot_table):
        if key in table:
            raise ValueError(f"slot table contains duplicate key {key!r}")
        table[key] = index
    return table


def slot(slot_table: SlotTable, key: Key) -> int:
    """Block row assigned to `key`."""
    try:
        return int(slot_map(slot_table)[key])
    except KeyError:
        raise MissingSlotError(f"key {key!r} not in slot table") from None


class SymmetricBlockMatrix:
    def __init__(self, dims: Sequence[int], append_one_dimension: bool = True):
        block_dims = [int(d) for d in dims]
        if append_one_dimension:
            block_dims.append(1)
        if any(d <= 0 for d in block_dims):
            raise ValueError(f"block dimensions must be positive, got {block_dims}")
        self._dims: List[int] = block_dims
        self._offsets: List[int] = [0]
        for d in block_dims:
            self._offsets.append(self._offsets[-1] + d)
        self._blocks: Dict[Tuple[int, int], jnp.ndarray] = {}

    @property
    def n_blocks(self) -> int:
        """Number of block rows, the augmented one included."""
        return len(self._dims)

    @property
    def dims(self) -> List[int]:
        return list(self._dims)

    @property
    def augmented_slot(self) -> int:
        """Index of the final one-wide block carrying A^T b and b^T b."""
        return self.n_blocks - 1

    def _check_index(self, i: int) -> None:
        if not 0 <= i < self.n_blocks:
            raise ContractViolation(f"block index {i} out of range [0, {self.n_blocks})")

    def stored_blocks(self) -> List[Tuple[int, int]]:
        """Upper-triangle block indices that have been written, sorted."""
        return sorted(self._blocks)

    def block(self, i: int, j: int) -> jnp.ndarray:
        """Block (i, j) of the symmetric matrix; lower blocks are mirrored."""
        if i > j:
            return self.block(j, i).T
        self._check_index(i)
        self._check_index(j)
        stored = self._blocks.get((i, j))
        if stored is None:
            return jnp.zeros((self._dims[i], self._dims[j]))
        return stored

    def add_block(self, i: int, j: int, value: jnp.ndarray) -> None:
        """
        M(i, j) += value, for i <= j only.

        Raises ContractViolation for lower-triangle or out-of-range indices
        and DimensionMismatchError when `value` is not dims[i] x dims[j].
        """
        if i > j:
            raise ContractViolation(
                f"write to lower-triangular block ({i}, {j}); normalize slots first"
            )
        self._check_index(i)
        self._check_index(j)
        value = jnp.asarray(value)
        expected = (self._dims[i], self._dims[j])
        if value.shape != expected:
            raise DimensionMismatchError(
                f"block ({i}, {j}) expects shape {expected}, got {value.shape}"
            )
        stored = self._blocks.get((i, j))
        self._blocks[(i, j)] = value if stored is None else stored + value

    def full(self) -> jnp.ndarray:
        """Dense symmetric matrix reconstructed from the upper block triangle."""
        n = self._offsets[-1]
        dense = jnp.zeros((n, n))
        for (i, j), value in self._blocks.items():
            rows = slice(self._offsets[i], self._offsets[i + 1])
            cols = slice(self._offsets[j], self._offsets[j + 1])
            dense = dense.at[rows, cols].set(value)
            if i != j:
                dense = dense.at[cols, rows].set(value.T)
        return dense

    def information(self) -> jnp.ndarray:
        """A^T A, i.e. the full matrix without the augmented block."""
        n = self._offsets[-2]
        return self.full()[:n, :n]

    def linear_term(self) -> jnp.ndarray:
        """A^T b as a flat vector."""
        aug = self.augmented_slot
        parts = [self.block(i, aug)[:, 0] for i in range(aug)]
        if not parts:
            return jnp.zeros((0,))
        return jnp.concatenate(parts)

    def constant_term(self) -> float:
        """b^T b, the augmented diagonal entry."""
        aug = self.augmented_slot
        return float(self.block(aug, aug)[0, 0])

    def copy(self) -> "SymmetricBlockMatrix":
        """Independent matrix with the same blocks; later writes do not alias."""
        other = SymmetricBlockMatrix(self._dims, append_one_dimension=False)
        other._blocks = dict(self._blocks)
        return other


def accumulate_hessian(
    factors: Iterable, slot_table: SlotTable, dims: Sequence[int]
) -> SymmetricBlockMatrix:
    """
    Fold linear factors into a fresh information matrix.

    `dims[s]` is the tangent width of the variable in slot `s`. Factors
    that are None (inactive at linearization) are skipped.
    """
    slots = slot_map(slot_table)
    if len(dims) != len(slots):
        raise ValueError("dims and slot_table must have the same length")
    info = SymmetricBlockMatrix(dims)
    count = 0
    for factor in factors:
        if factor is None:
            continue
        factor.update_hessian(slots, info)
        count += 1
    logger.debug("accumulated {} linear factors into {} blocks", count, len(info.stored_blocks()))
    return info
