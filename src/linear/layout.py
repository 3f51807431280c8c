# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Addressed slices over flat numeric buffers.

Iterative solvers keep their vectors as one flat array. A `VectorLayout`
says where each variable's block lives inside such an array:

    key -> (offset, length)

Two ways to build one:

    • `from_dims(keys, dims)`: consecutive blocks in the given order.
    • `from_offsets(offsets)`: an offset table indexed by integer key, with
      key k spanning offsets[k] .. offsets[k + 1].

Every access is bounds-checked against the buffer. JAX clamps
out-of-range slices silently, so an unchecked access would read or write
the wrong entries instead of failing.

The uniform-stride case (all blocks width D, key k at D * k) does not need
a layout at all; `linear.regular` handles it directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Sequence, Tuple

from ..core.errors import ContractViolation, MissingSlotError
from ..core.jax_init import jnp
from ..core.types import Key


@dataclass(frozen=True)
class VectorLayout:
    spans: Dict[Key, Tuple[int, int]]
    size: int

    @classmethod
    def from_dims(cls, keys: Sequence[Key], dims: Sequence[int]) -> "VectorLayout":
        if len(keys) != len(dims):
            raise ValueError("keys and dims must have the same length")
        spans: Dict[Key, Tuple[int, int]] = {}
        offset = 0
        for key, dim in zip(keys, dims):
            if key in spans:
                raise ValueError(f"duplicate key {key!r} in layout")
            spans[key] = (offset, int(dim))
            offset += int(dim)
        return cls(spans, offset)

    @classmethod
    def from_offsets(cls, offsets: Sequence[int]) -> "VectorLayout":
        offsets = [int(o) for o in offsets]
        if not offsets:
            return cls({}, 0)
        spans: Dict[Key, Tuple[int, int]] = {}
        for k in range(len(offsets) - 1):
            length = offsets[k + 1] - offsets[k]
            if length < 0:
                raise ValueError("offset table must be non-decreasing")
            spans[k] = (offsets[k], length)
        return cls(spans, offsets[-1])

    def __contains__(self, key: Key) -> bool:
        return key in self.spans

    def __iter__(self) -> Iterator[Key]:
        return iter(self.spans)

    def span(self, key: Key) -> Tuple[int, int]:
        try:
            return self.spans[key]
        except KeyError:
            raise MissingSlotError(f"key {key!r} not in vector layout") from None

    def _checked(self, buffer: jnp.ndarray, key: Key) -> Tuple[int, int]:
        offset, length = self.span(key)
        if buffer.ndim != 1 or offset + length > buffer.shape[0]:
            raise ContractViolation(
                f"slice [{offset}, {offset + length}) for key {key!r} "
                f"out of bounds for buffer of shape {buffer.shape}"
            )
        return offset, length

    def gather(self, buffer: jnp.ndarray, key: Key) -> jnp.ndarray:
        offset, length = self._checked(buffer, key)
        return buffer[offset : offset + length]

    def scatter_add(self, buffer: jnp.ndarray, key: Key, value: jnp.ndarray) -> jnp.ndarray:
        offset, length = self._checked(buffer, key)
        value = jnp.asarray(value)
        if value.shape != (length,):
            raise ContractViolation(
                f"value of shape {value.shape} does not fit slice of length {length}"
            )
        return buffer.at[offset : offset + length].add(value)

    def zeros(self) -> jnp.ndarray:
        return jnp.zeros((self.size,))

    def pack(self, blocks: Mapping[Key, jnp.ndarray]) -> jnp.ndarray:
        """Dict of per-key blocks -> flat array; missing keys stay zero."""
        out = self.zeros()
        for key, value in blocks.items():
            out = self.scatter_add(out, key, value)
        return out

    def unpack(self, buffer: jnp.ndarray) -> Dict[Key, jnp.ndarray]:
        return {key: self.gather(buffer, key) for key in self.spans}
