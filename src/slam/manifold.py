# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Manifold metadata for the variable types used in bundle adjustment.

The linear layer only sees tangent-space blocks; this module records, per
variable type, how wide that block is and how a tangent update is applied
back onto the estimate:

    • "pose_se3"   → 6, left SE(3) retraction
    • "landmark3d" → 3, Euclidean
    • "cal3_s2"    → 5, Euclidean
    • "camera"     → 11, SE(3) on the first 6 entries, Euclidean on the rest

It also builds the two index structures the linear layer consumes from an
externally chosen key ordering:

    • a slot table (ordered key → slot mapping) for `SymmetricBlockMatrix`
      assembly,
    • a `VectorLayout` (key → offset, length) for flat-array operations.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Sequence

from ..core.jax_init import jnp
from ..core.math3d import se3_retract_left
from ..core.types import Key
from ..linear.layout import VectorLayout
from ..linear.symmetric import slot_map
from .camera import CALIB_DIM, CAMERA_DIM, POINT_DIM, POSE_DIM

TYPE_TO_DIM: Dict[str, int] = {
    "pose_se3": POSE_DIM,
    "landmark3d": POINT_DIM,
    "cal3_s2": CALIB_DIM,
    "camera": CAMERA_DIM,
}

TYPE_TO_MANIFOLD: Dict[str, str] = {
    "pose_se3": "se3",
    "landmark3d": "euclidean",
    "cal3_s2": "euclidean",
    "camera": "se3_x_euclidean",
}


def get_manifold_for_var_type(var_type: str) -> str:
    return TYPE_TO_MANIFOLD.get(var_type, "euclidean")


def tangent_dim(var_type: str) -> int:
    try:
        return TYPE_TO_DIM[var_type]
    except KeyError:
        raise ValueError(f"Unknown variable type '{var_type}'") from None


def retract(var_type: str, value: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
    """Apply a tangent-space update to one variable."""
    value = jnp.asarray(value)
    delta = jnp.asarray(delta)
    manifold = get_manifold_for_var_type(var_type)
    if manifold == "se3":
        return se3_retract_left(value, delta)
    if manifold == "se3_x_euclidean":
        pose = se3_retract_left(value[:POSE_DIM], delta[:POSE_DIM])
        return jnp.concatenate([pose, value[POSE_DIM:] + delta[POSE_DIM:]])
    return value + delta


def retract_values(
    values: Mapping[Key, jnp.ndarray],
    var_types: Mapping[Key, str],
    deltas: Mapping[Key, jnp.ndarray],
) -> Dict[Key, jnp.ndarray]:
    """Return a new Values with `deltas` applied; keys without a delta are copied."""
    out = dict(values)
    for key, delta in deltas.items():
        out[key] = retract(var_types[key], values[key], delta)
    return out


def build_slot_table(ordering: Sequence[Key]) -> Dict[Key, int]:
    """Ordered Key -> slot mapping for an elimination ordering; rejects duplicate keys."""
    return dict(slot_map(list(ordering)))


def block_dims(ordering: Iterable[Key], var_types: Mapping[Key, str]) -> List[int]:
    return [tangent_dim(var_types[key]) for key in ordering]


def build_layout(ordering: Sequence[Key], var_types: Mapping[Key, str]) -> VectorLayout:
    return VectorLayout.from_dims(ordering, block_dims(ordering, var_types))
