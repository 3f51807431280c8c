"""
Nonlinear factor graph container for BA-JIT.

The FactorGraph stores:
    - Variables: key -> variable type ("camera", "pose_se3", "landmark3d",
      "cal3_s2"), which fixes each variable's tangent width
    - Factors: reprojection factors, in insertion order

It runs the per-iteration accumulation pass on behalf of an outer
optimizer:

    values ──linearize()──▶ [linear factors] ──hessian()──▶ SymmetricBlockMatrix
                                              └─layout()──▶ flat-vector solvers

Primary Methods
---------------
linearize(values)
    Linearize every factor; inactive factors are dropped.

error(values)
    Total 0.5 * Σ ||W r||² over all factors.

hessian(values, ordering)
    Assemble the augmented information matrix for an externally supplied
    key ordering (the slot table).

Notes
-----
Estimates are plain dicts; nothing here owns or mutates them. Choosing an
elimination ordering and solving the assembled system are the caller's
business.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from loguru import logger

from ..linear.jacobian import JacobianFactor
from ..linear.layout import VectorLayout
from ..linear.symmetric import SymmetricBlockMatrix, accumulate_hessian
from ..slam.manifold import block_dims, build_layout, build_slot_table
from ..slam.reprojection import ReprojectionFactor
from .types import Key, Values


@dataclass
class NonlinearFactorGraph:
    var_types: Dict[Key, str] = field(default_factory=dict)
    factors: List[ReprojectionFactor] = field(default_factory=list)

    def add_variable(self, key: Key, var_type: str) -> None:
        existing = self.var_types.get(key)
        if existing is not None and existing != var_type:
            raise ValueError(f"key {key!r} already registered as '{existing}'")
        self.var_types[key] = var_type

    def add_factor(self, factor: ReprojectionFactor) -> None:
        for key, var_type in zip(factor.keys, factor.VAR_TYPES):
            self.add_variable(key, var_type)
        self.factors.append(factor)

    def __len__(self) -> int:
        return len(self.factors)

    def keys(self) -> List[Key]:
        return list(self.var_types)

    def linearize(self, values: Values) -> List[JacobianFactor]:
        linear: List[Optional[JacobianFactor]] = [f.linearize(values) for f in self.factors]
        kept = [lf for lf in linear if lf is not None]
        if len(kept) != len(linear):
            logger.debug("skipped {} inactive factors", len(linear) - len(kept))
        return kept

    def error(self, values: Values) -> float:
        return sum(f.error(values) for f in self.factors)

    def hessian(self, values: Values, ordering: Optional[Sequence[Key]] = None) -> SymmetricBlockMatrix:
        """Augmented information matrix [A b]^T [A b] in the given ordering."""
        slot_table = build_slot_table(ordering if ordering is not None else self.keys())
        dims = block_dims(slot_table, self.var_types)
        return accumulate_hessian(self.linearize(values), slot_table, dims)

    def layout(self, ordering: Optional[Sequence[Key]] = None) -> VectorLayout:
        return build_layout(ordering if ordering is not None else self.keys(), self.var_types)
