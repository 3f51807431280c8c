# Copyright (c) 2025.
# This file is part of BA-JIT, released under the MIT License.
"""
Reprojection factors for structure-from-motion with unknown calibration.

Each factor ties one 2D image measurement to the unknowns that predict it:

    r(x) = project(x) - measured  ∈ ℝ²

Two variants are provided:

    • `CameraLandmarkFactor`
        keys (camera, landmark). The camera is an 11-vector holding the
        SE(3) pose followed by the Cal3_S2 calibration, so every image can
        carry its own intrinsics. Linearizes to a `BinaryLinearFactor`
        with blocks 2x11 and 2x3.

    • `PoseLandmarkCalibrationFactor`
        keys (pose, landmark, calibration). The calibration is a separate
        variable that many poses can share. Linearizes to a general
        `JacobianFactor` with blocks 2x6, 2x3 and 2x5.

Degenerate geometry
-------------------
When the landmark is not in front of the camera the projection is
undefined. The factor then contributes nothing: `evaluate_error` returns a
zero residual and zero Jacobians of the correct shapes and logs a warning
naming the landmark and camera keys. It never raises, so one bad
observation cannot abort an optimization over thousands.

Linearization
-------------
    b = -r
    if the noise model is present and not unit: A_j ← W A_j, b ← W b
    constrained models stay attached in their unit form; all others are
    folded in and dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Mapping, Optional, Tuple

from loguru import logger

from ..core.errors import DimensionMismatchError, MissingSlotError
from ..core.jax_init import jnp
from ..core.noise import NoiseModel, models_equal, needs_whitening
from ..core.types import Key, format_key
from ..linear.binary import BinaryLinearFactor
from ..linear.jacobian import JacobianFactor
from .camera import MEASUREMENT_DIM, project, split_camera


@dataclass(eq=False)
class ReprojectionFactor:
    measured: jnp.ndarray
    noise_model: Optional[NoiseModel]
    keys: Tuple[Key, ...]
    enabled: bool = True

    VAR_TYPES: ClassVar[Tuple[str, ...]] = ()

    def __post_init__(self) -> None:
        self.measured = jnp.asarray(self.measured, dtype=jnp.float64).reshape(-1)
        if self.measured.shape != (MEASUREMENT_DIM,):
            raise DimensionMismatchError(
                f"measurement must have {MEASUREMENT_DIM} entries, got {self.measured.shape}"
            )
        self.keys = tuple(self.keys)
        if len(self.keys) != len(self.VAR_TYPES):
            raise DimensionMismatchError(
                f"{type(self).__name__} expects {len(self.VAR_TYPES)} keys, got {len(self.keys)}"
            )
        if self.noise_model is not None and self.noise_model.dim != MEASUREMENT_DIM:
            raise DimensionMismatchError(
                f"noise model dimension {self.noise_model.dim} != {MEASUREMENT_DIM}"
            )

    # --- Hooks for the concrete variants ---

    def _project(self, *values):
        raise NotImplementedError

    def _make_linear(self, jacobians, b, model) -> JacobianFactor:
        return JacobianFactor(list(zip(self.keys, jacobians)), b, model)

    # --- Evaluation ---

    def active(self, values: Mapping[Key, jnp.ndarray]) -> bool:
        return self.enabled

    def values_for(self, values: Mapping[Key, jnp.ndarray]) -> Tuple[jnp.ndarray, ...]:
        try:
            return tuple(jnp.asarray(values[key]) for key in self.keys)
        except KeyError as exc:
            raise MissingSlotError(f"no estimate for key {exc.args[0]!r}") from None

    def evaluate_error(self, *values) -> Tuple[jnp.ndarray, Tuple[jnp.ndarray, ...]]:
        """
        Reprojection error and its Jacobians, one per key.

        Returns (zeros(2), zero Jacobians) when the landmark is behind the
        camera.
        """
        if len(values) != len(self.keys):
            raise DimensionMismatchError(
                f"{type(self).__name__}.evaluate_error expects {len(self.keys)} values, "
                f"got {len(values)}"
            )
        uv, jacobians, valid = self._project(*values)
        if not bool(valid):
            logger.warning(
                "cheirality: landmark {} behind camera {}",
                format_key(self.keys[1]),
                format_key(self.keys[0]),
            )
            return jnp.zeros(MEASUREMENT_DIM), tuple(jnp.zeros_like(H) for H in jacobians)
        return uv - self.measured, jacobians

    def whitened_error(self, values: Mapping[Key, jnp.ndarray]) -> jnp.ndarray:
        r, _ = self.evaluate_error(*self.values_for(values))
        return self.noise_model.whiten(r) if self.noise_model is not None else r

    def error(self, values: Mapping[Key, jnp.ndarray]) -> float:
        """0.5 * ||W r||², zero for inactive factors."""
        if not self.active(values):
            return 0.0
        e = self.whitened_error(values)
        return 0.5 * float(jnp.dot(e, e))

    def linearize(self, values: Mapping[Key, jnp.ndarray]) -> Optional[JacobianFactor]:
        if not self.active(values):
            return None

        r, jacobians = self.evaluate_error(*self.values_for(values))
        b = -r

        model = self.noise_model
        if needs_whitening(model):
            jacobians = tuple(model.whiten(H) for H in jacobians)
            b = model.whiten(b)

        if model is not None and model.is_constrained():
            return self._make_linear(jacobians, b, model.unit())
        return self._make_linear(jacobians, b, None)

    def equals(self, other: "ReprojectionFactor", tol: float = 1e-9) -> bool:
        return (
            type(other) is type(self)
            and other.keys == self.keys
            and models_equal(self.noise_model, other.noise_model, tol)
            and bool(jnp.allclose(self.measured, other.measured, atol=tol))
        )


@dataclass(eq=False)
class CameraLandmarkFactor(ReprojectionFactor):
    VAR_TYPES: ClassVar[Tuple[str, ...]] = ("camera", "landmark3d")

    @classmethod
    def create(cls, measured, noise_model, camera_key: Key, landmark_key: Key) -> "CameraLandmarkFactor":
        return cls(measured, noise_model, (camera_key, landmark_key))

    def _project(self, camera, point):
        pose, calib = split_camera(camera)
        p = project(pose, point, calib)
        H_camera = jnp.concatenate([p.H_pose, p.H_calib], axis=1)
        return p.uv, (H_camera, p.H_point), p.valid

    def _make_linear(self, jacobians, b, model) -> BinaryLinearFactor:
        return BinaryLinearFactor(self.keys[0], jacobians[0], self.keys[1], jacobians[1], b, model)


@dataclass(eq=False)
class PoseLandmarkCalibrationFactor(ReprojectionFactor):
    VAR_TYPES: ClassVar[Tuple[str, ...]] = ("pose_se3", "landmark3d", "cal3_s2")

    @classmethod
    def create(
        cls, measured, noise_model, pose_key: Key, landmark_key: Key, calib_key: Key
    ) -> "PoseLandmarkCalibrationFactor":
        return cls(measured, noise_model, (pose_key, landmark_key, calib_key))

    def _project(self, pose, point, calib):
        p = project(pose, point, calib)
        return p.uv, (p.H_pose, p.H_point, p.H_calib), p.valid
