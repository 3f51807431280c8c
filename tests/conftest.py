from __future__ import annotations

import pytest
from loguru import logger

import ba_jit  # noqa: F401  (enables x64 before any array is built)
import jax.numpy as jnp


@pytest.fixture
def calib():
    # fx, fy, s, u0, v0
    return jnp.array([500.0, 480.0, 0.1, 320.0, 240.0])


@pytest.fixture
def pose():
    return jnp.array([0.1, -0.2, 0.05, 0.02, -0.03, 0.01])


@pytest.fixture
def point_in_front():
    return jnp.array([0.5, -0.3, 5.0])


@pytest.fixture
def point_behind():
    return jnp.array([0.2, 0.1, -4.0])


@pytest.fixture
def warnings_logged():
    """Collect loguru WARNING messages emitted during the test."""
    messages = []
    handler_id = logger.add(lambda msg: messages.append(msg.record["message"]), level="WARNING")
    yield messages
    logger.remove(handler_id)
