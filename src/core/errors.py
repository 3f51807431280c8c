# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Exception types raised by BA-JIT.

Geometric degeneracy (a landmark behind the camera) is *not* an error: the
reprojection factors recover from it locally and only log a warning. The
classes below cover the remaining cases, all of which abort the enclosing
iteration.
"""


class BaJitError(Exception):
    """Base class for all BA-JIT errors."""


class ContractViolation(BaJitError):
    """Raised when a data contract between components is violated."""


class UnsupportedOperationError(BaJitError):
    """Raised when an operation is illegal for this factor's noise model."""


class RawAccessNotSupportedError(UnsupportedOperationError, NotImplementedError):
    """Raised by flat-array overloads that have no implementation.

    Callers are expected to catch this and fall back to the container form.
    """


class DimensionMismatchError(BaJitError, ValueError):
    """Raised when block or vector shapes do not agree."""


class MissingSlotError(BaJitError, KeyError):
    """Raised when a key is absent from a slot table or vector layout."""
