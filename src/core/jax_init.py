# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Single import point for JAX.

Finite-difference checks and the normal equations assembled by the linear
layer need double precision, so x64 mode is switched on here, once, before
any array is allocated. Everything else in the package imports
`jax` / `jnp` from this module.
"""

from __future__ import annotations

import jax

jax.config.update("jax_enable_x64", True)

import jax.numpy as jnp  # noqa: E402

__all__ = ["jax", "jnp"]
