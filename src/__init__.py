# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
BA-JIT: linearization and assembly engine for sparse bundle adjustment.

Importing the package enables 64-bit floats in JAX (see `core.jax_init`)
before any array is created.
"""

from .core import jax_init as _jax_init  # noqa: F401

__version__ = "0.1.0"
