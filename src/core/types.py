# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Core typed data structures for BA-JIT.

These types are intentionally minimal: variables are identified by opaque
keys and their current estimates live in a plain dictionary. All numerical
work happens in the factor classes.

Key
    Hashable identifier of an unknown (camera, pose, landmark,
    calibration). In practice an int; `symbol` packs a character and an
    index into one int so that keys print readably.

Values
    Mapping Key -> 1-D JAX array holding the current estimate:
        - pose_se3:    [tx, ty, tz, wx, wy, wz]
        - landmark3d:  [x, y, z]
        - cal3_s2:     [fx, fy, s, u0, v0]
        - camera:      pose_se3 followed by cal3_s2 (11 entries)
"""

from __future__ import annotations

from typing import Dict, Hashable

from .jax_init import jnp

Key = Hashable
Values = Dict[Key, jnp.ndarray]

_CHAR_SHIFT = 56
_INDEX_MASK = (1 << _CHAR_SHIFT) - 1


def symbol(char: str, index: int) -> int:
    """Pack a one-character tag and an index into an integer key."""
    if len(char) != 1:
        raise ValueError(f"symbol tag must be a single character, got {char!r}")
    if not 0 <= index <= _INDEX_MASK:
        raise ValueError(f"symbol index out of range: {index}")
    return (ord(char) << _CHAR_SHIFT) | index


def format_key(key: Key) -> str:
    """Render keys built by `symbol` as e.g. 'x3'; anything else via str()."""
    if isinstance(key, int) and key > _INDEX_MASK:
        char = chr(key >> _CHAR_SHIFT)
        if char.isprintable():
            return f"{char}{key & _INDEX_MASK}"
    return str(key)
