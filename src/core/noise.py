# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Gaussian noise models for BA-JIT factors.

A noise model turns a raw residual r with covariance Σ into a unit-weight
residual Σ^{-1/2} r ("whitening"). Every model here is diagonal, so
whitening is a per-row division by the standard deviations:

    whiten(v)  = v / sigmas              (vectors)
    whiten(A)  = A / sigmas[:, None]     (Jacobian blocks, row-wise)

Classes
-------
Diagonal
    Independent per-row sigmas.

Isotropic
    One sigma shared by every row.

Unit
    sigma = 1; whitening is the identity and `is_unit()` is True, which lets
    the factors skip it entirely.

Constrained
    Some sigmas are exactly zero (hard constraints). Those rows are left
    unscaled by `whiten`; `unit()` returns a copy with all non-zero sigmas
    set to 1 and the zeros kept, so the constraint survives while the
    weighting is stripped.

`None` is accepted everywhere a model is expected and means "unweighted".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .jax_init import jnp


@dataclass(frozen=True, eq=False)
class Diagonal:
    sigmas: jnp.ndarray

    @classmethod
    def from_sigmas(cls, sigmas) -> "Diagonal":
        """Model with the given per-row standard deviations."""
        return cls(jnp.asarray(sigmas, dtype=jnp.float64).reshape(-1))

    @property
    def dim(self) -> int:
        """Number of residual rows the model applies to."""
        return int(self.sigmas.shape[0])

    def _inv_sigmas(self) -> jnp.ndarray:
        return 1.0 / self.sigmas

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        """Whiten a vector, or every column of a matrix."""
        v = jnp.asarray(v)
        if v.shape[0] != self.dim:
            raise ValueError(
                f"whiten: expected leading dimension {self.dim}, got {v.shape}"
            )
        scale = self._inv_sigmas().reshape((-1,) + (1,) * (v.ndim - 1))
        return v * scale

    def precisions(self) -> jnp.ndarray:
        """Diagonal of Σ^{-1}, i.e. 1 / sigmas²."""
        inv = self._inv_sigmas()
        return inv * inv

    def is_unit(self) -> bool:
        """True when every sigma is exactly 1, so whitening can be skipped."""
        return bool(jnp.all(self.sigmas == 1.0))

    def is_constrained(self) -> bool:
        """True when some rows are hard constraints (zero sigma)."""
        return False

    def unit(self) -> "Unit":
        """Same-dimension model with the weighting removed."""
        return Unit.create(self.dim)

    def equals(self, other: Optional["NoiseModel"], tol: float = 1e-9) -> bool:
        """Same model type, dimension and sigmas (within `tol`)."""
        if other is None or type(other) is not type(self):
            return False
        if other.dim != self.dim:
            return False
        return bool(jnp.allclose(self.sigmas, other.sigmas, atol=tol))


@dataclass(frozen=True, eq=False)
class Isotropic(Diagonal):
    @classmethod
    def sigma(cls, dim: int, sigma: float) -> "Isotropic":
        """`dim` rows sharing one standard deviation."""
        return cls(jnp.full((dim,), float(sigma)))


@dataclass(frozen=True, eq=False)
class Unit(Isotropic):
    @classmethod
    def create(cls, dim: int) -> "Unit":
        """Unit-sigma model of dimension `dim`."""
        return cls(jnp.ones((dim,)))

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return jnp.asarray(v)

    def is_unit(self) -> bool:
        return True


@dataclass(frozen=True, eq=False)
class Constrained(Diagonal):
    """Diagonal model where zero sigmas mark hard constraints."""

    mu: float = 1000.0

    def _inv_sigmas(self) -> jnp.ndarray:
        # constrained rows pass through unscaled
        safe = jnp.where(self.sigmas == 0.0, 1.0, self.sigmas)
        return 1.0 / safe

    def is_unit(self) -> bool:
        return False

    def is_constrained(self) -> bool:
        return bool(jnp.any(self.sigmas == 0.0))

    def unit(self) -> "Constrained":
        """Copy with non-zero sigmas set to 1 and the constrained zeros kept."""
        sigmas = jnp.where(self.sigmas == 0.0, 0.0, 1.0)
        return Constrained(sigmas, mu=self.mu)

    def equals(self, other: Optional["NoiseModel"], tol: float = 1e-9) -> bool:
        return super().equals(other, tol) and other.mu == self.mu


NoiseModel = Union[Diagonal, Isotropic, Unit, Constrained]


def needs_whitening(model: Optional[NoiseModel]) -> bool:
    """True when `model` is present and not the identity."""
    return model is not None and not model.is_unit()


def models_equal(
    a: Optional[NoiseModel], b: Optional[NoiseModel], tol: float = 1e-9
) -> bool:
    """Compare two optional models; two `None`s are equal."""
    if a is None or b is None:
        return a is None and b is None
    return a.equals(b, tol)
