# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Two-block linear factor with a fixed-size information update.

Produced by linearizing a camera/landmark reprojection factor: two keys,
blocks A1 (2 x D1) and A2 (2 x D2), and a 2-vector b. Its only reason to
exist next to the general `JacobianFactor` is `update_hessian`, which
writes the six upper-triangular blocks

    M(s1, s1) += A1^T A1     M(s1, s2) += A1^T A2     M(s1, sB) += A1^T b
                             M(s2, s2) += A2^T A2     M(s2, sB) += A2^T b
                                                      M(sB, sB) += b^T b

with one jitted kernel call instead of a loop over key pairs.
"""

from __future__ import annotations

from typing import Optional

from ..core.errors import DimensionMismatchError, UnsupportedOperationError
from ..core.jax_init import jnp
from ..core.noise import NoiseModel, needs_whitening
from ..core.types import Key
from . import kernels
from .jacobian import JacobianFactor, _check_block_dims
from .symmetric import SlotTable, SymmetricBlockMatrix, slot, slot_map

MEASUREMENT_ROWS = 2


class BinaryLinearFactor(JacobianFactor):
    def __init__(
        self,
        key1: Key,
        A1: jnp.ndarray,
        key2: Key,
        A2: jnp.ndarray,
        b: jnp.ndarray,
        model: Optional[NoiseModel] = None,
    ):
        super().__init__([(key1, A1), (key2, A2)], b, model)
        if self.rows != MEASUREMENT_ROWS:
            raise DimensionMismatchError(
                f"BinaryLinearFactor expects {MEASUREMENT_ROWS} rows, got {self.rows}"
            )

    def _rebuild(self, blocks, b, model) -> "BinaryLinearFactor":
        return BinaryLinearFactor(self.keys[0], blocks[0], self.keys[1], blocks[1], b, model)

    @property
    def key1(self) -> Key:
        return self.keys[0]

    @property
    def key2(self) -> Key:
        return self.keys[1]

    def update_hessian(self, slot_table: SlotTable, info: SymmetricBlockMatrix) -> None:
        """Six-block scatter-add of [A1 A2 b]^T [A1 A2 b], upper triangle only."""
        model = self.model
        if needs_whitening(model):
            if model.is_constrained():
                raise UnsupportedOperationError(
                    "BinaryLinearFactor.update_hessian: cannot update information "
                    "with a constrained noise model"
                )
            self.whiten().update_hessian(slot_table, info)
            return

        table = slot_map(slot_table)
        slot1 = slot(table, self.key1)
        slot2 = slot(table, self.key2)
        slot_b = info.augmented_slot
        A1, A2 = self.blocks
        _check_block_dims(info, (slot1, slot2), (A1.shape[1], A2.shape[1]))

        # only the upper triangle is stored
        if slot1 > slot2:
            slot1, slot2 = slot2, slot1
            A1, A2 = A2, A1

        H11, H12, g1, H22, g2, f = kernels.binary_hessian_blocks(A1, A2, self.b)
        info.add_block(slot1, slot1, H11)
        info.add_block(slot1, slot2, H12)
        info.add_block(slot1, slot_b, g1)
        info.add_block(slot2, slot2, H22)
        info.add_block(slot2, slot_b, g2)
        info.add_block(slot_b, slot_b, f)
