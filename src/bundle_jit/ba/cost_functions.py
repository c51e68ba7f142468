# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.
"""
Bundle-adjustment residuals for bundle-jit.

This module defines the measurement-level building blocks a bundle
adjustment solver minimizes:

    • Each residual is a pure function
          r(parameter blocks; observation) ∈ ℝᵏ
      written with `jax.numpy` only, so it can be evaluated on concrete
      arrays, differentiated with `jax.jacfwd` / `jax.jvp` (dual numbers),
      JIT-compiled and batched with `jax.vmap`.

    • Each residual also has a small frozen functor that captures the
      per-observation constants once and is then called repeatedly with the
      solver's current parameter values. Functors declare `num_residuals`
      and `parameter_block_sizes`, and `Functor.create(...)` wraps one in an
      `AutoDiffCostFunction` ready to hand to a solver.

The residuals fall into two families:

1. Reprojection residuals (2 residuals, pixels)
-----------------------------------------------
All three share one pipeline:

    p_cam  = R(qvec) · point3D + tvec        rotate, then translate
    (u, v) = (p_cam.x / p_cam.z, p_cam.y / p_cam.z)
    (x, y) = camera_model.world_to_image(camera_params, u, v)
    r      = (x - observed_x, y - observed_y)

    • `ReprojectionResidual`
        blocks: qvec(4), tvec(3), point3D(3), camera_params(N)

    • `FixedPoseReprojectionResidual`
        blocks: point3D(3), camera_params(N)
        qvec / tvec are constants, e.g. from an already registered image.

    • `RigReprojectionResidual`
        blocks: rig_qvec(4), rig_tvec(3), rel_qvec(4), rel_tvec(3),
                point3D(3), camera_params(N)
        The world point is taken into the rig frame and then into the
        camera's frame within the rig:

            qvec = rel_qvec * rig_qvec
            tvec = R(rel_qvec) · rig_tvec + rel_tvec

2. Two-view geometry (1 residual)
---------------------------------
    • `RelativePoseResidual`
        blocks: qvec(4), tvec(3)
        Squared Sampson error of a normalized correspondence (x1, x2) under
        the essential matrix E = [t]× R:

            r = (x2ᵀ E x1)² / ((E x1)₀² + (E x1)₁² + (Eᵀ x2)₀² + (Eᵀ x2)₁²)

        The first view sits at the origin; tvec is a direction that the
        solver must keep on the unit sphere.

Degenerate configurations
-------------------------
Nothing here guards a division. A point on the camera plane (zero depth) or
a vanishing epipolar denominator produces inf/NaN residuals and success is
still reported. Bounding, robust losses and outlier rejection are the
solver's business.

Unit-norm constraints on qvec (and on tvec for the relative pose) are
likewise assumed, never enforced: the reprojection residuals rotate with
`unit_quaternion_rotate_point`, which is exact only for |qvec| = 1.

Notes
-----
To batch many observations of the same camera model, bind the model and
vectorize the pure function:

    from functools import partial
    from bundle_jit.core.cost_function import batch_residual_function

    batched = batch_residual_function(
        partial(reprojection_residual, camera_model=PinholeCameraModel),
        in_axes=(0, 0, 0, None, 0),
    )
    r = batched(qvecs, tvecs, points3D, camera_params, points2D)  # (M, 2)
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple, Type, Union

import jax.numpy as jnp

from ..cameras.models import CameraModel, get_camera_model
from ..core.cost_function import AutoDiffConfig, AutoDiffCostFunction
from ..core.quaternion import (
    hat,
    quaternion_product,
    quaternion_to_rotation,
    unit_quaternion_rotate_point,
)

CameraModelLike = Union[str, int, Type[CameraModel]]


def _as_constant(value, size: int, name: str) -> jnp.ndarray:
    arr = jnp.asarray(value, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{name} must be a {size}-element vector, got shape {arr.shape}")
    return arr


# --- Pure residual functions ---


def _reprojection_error(
    qvec: jnp.ndarray,
    tvec: jnp.ndarray,
    point3D: jnp.ndarray,
    camera_params: jnp.ndarray,
    point2D: jnp.ndarray,
    camera_model: Type[CameraModel],
) -> jnp.ndarray:
    # Rotate and translate.
    p_cam = unit_quaternion_rotate_point(qvec, point3D) + tvec

    # Normalize to image plane.
    u = p_cam[0] / p_cam[2]
    v = p_cam[1] / p_cam[2]

    # Distort and transform to pixel space.
    x, y = camera_model.world_to_image(camera_params, u, v)

    return jnp.stack([x - point2D[0], y - point2D[1]])


def reprojection_residual(
    qvec: jnp.ndarray,
    tvec: jnp.ndarray,
    point3D: jnp.ndarray,
    camera_params: jnp.ndarray,
    point2D: jnp.ndarray,
    *,
    camera_model: Type[CameraModel],
) -> jnp.ndarray:
    """Reprojection error of `point3D` seen by a camera with pose (qvec, tvec)."""
    return _reprojection_error(qvec, tvec, point3D, camera_params, point2D, camera_model)


def fixed_pose_reprojection_residual(
    point3D: jnp.ndarray,
    camera_params: jnp.ndarray,
    qvec: jnp.ndarray,
    tvec: jnp.ndarray,
    point2D: jnp.ndarray,
    *,
    camera_model: Type[CameraModel],
) -> jnp.ndarray:
    """Reprojection error with the optimized blocks (point, intrinsics) first."""
    return _reprojection_error(qvec, tvec, point3D, camera_params, point2D, camera_model)


def rig_reprojection_residual(
    rig_qvec: jnp.ndarray,
    rig_tvec: jnp.ndarray,
    rel_qvec: jnp.ndarray,
    rel_tvec: jnp.ndarray,
    point3D: jnp.ndarray,
    camera_params: jnp.ndarray,
    point2D: jnp.ndarray,
    *,
    camera_model: Type[CameraModel],
) -> jnp.ndarray:
    """
    Reprojection error for a camera mounted in a rig.

    The rig pose maps world -> rig, the relative pose maps rig -> camera.
    """
    # Concatenate rotations.
    qvec = quaternion_product(rel_qvec, rig_qvec)

    # Concatenate translations.
    tvec = unit_quaternion_rotate_point(rel_qvec, rig_tvec) + rel_tvec

    return _reprojection_error(qvec, tvec, point3D, camera_params, point2D, camera_model)


def relative_pose_residual(
    qvec: jnp.ndarray,
    tvec: jnp.ndarray,
    x1: jnp.ndarray,
    x2: jnp.ndarray,
) -> jnp.ndarray:
    """Squared Sampson error of the normalized correspondence (x1, x2), shape (1,)."""
    R = quaternion_to_rotation(qvec)

    # Essential matrix.
    E = hat(tvec) @ R

    # Homogeneous image coordinates.
    x1 = jnp.asarray(x1)
    x2 = jnp.asarray(x2)
    x1_h = jnp.concatenate([x1, jnp.ones((1,), dtype=x1.dtype)])
    x2_h = jnp.concatenate([x2, jnp.ones((1,), dtype=x2.dtype)])

    Ex1 = E @ x1_h
    Etx2 = E.T @ x2_h
    x2tEx1 = x2_h @ Ex1

    denom = Ex1[0] * Ex1[0] + Ex1[1] * Ex1[1] + Etx2[0] * Etx2[0] + Etx2[1] * Etx2[1]
    return jnp.reshape(x2tEx1 * x2tEx1 / denom, (1,))


# --- Functors ---


@dataclass(frozen=True, eq=False)
class ReprojectionResidual:
    """Variable pose, intrinsics and point; fixed 2D observation."""
    camera_model: Type[CameraModel]
    point2D: jnp.ndarray

    num_residuals: ClassVar[int] = 2

    def __post_init__(self) -> None:
        object.__setattr__(self, "camera_model", get_camera_model(self.camera_model))
        object.__setattr__(self, "point2D", _as_constant(self.point2D, 2, "point2D"))

    @property
    def parameter_block_sizes(self) -> Tuple[int, ...]:
        return (4, 3, 3, self.camera_model.num_params)

    def __call__(self, qvec, tvec, point3D, camera_params) -> jnp.ndarray:
        return _reprojection_error(
            qvec, tvec, point3D, camera_params, self.point2D, self.camera_model
        )

    @classmethod
    def create(
        cls,
        camera_model: CameraModelLike,
        point2D,
        config: Optional[AutoDiffConfig] = None,
    ) -> AutoDiffCostFunction:
        return AutoDiffCostFunction(cls(camera_model, point2D), config=config)


@dataclass(frozen=True, eq=False)
class FixedPoseReprojectionResidual:
    """Variable intrinsics and point; pose and 2D observation are constants."""
    camera_model: Type[CameraModel]
    qvec: jnp.ndarray
    tvec: jnp.ndarray
    point2D: jnp.ndarray

    num_residuals: ClassVar[int] = 2

    def __post_init__(self) -> None:
        object.__setattr__(self, "camera_model", get_camera_model(self.camera_model))
        object.__setattr__(self, "qvec", _as_constant(self.qvec, 4, "qvec"))
        object.__setattr__(self, "tvec", _as_constant(self.tvec, 3, "tvec"))
        object.__setattr__(self, "point2D", _as_constant(self.point2D, 2, "point2D"))

    @property
    def parameter_block_sizes(self) -> Tuple[int, ...]:
        return (3, self.camera_model.num_params)

    def __call__(self, point3D, camera_params) -> jnp.ndarray:
        return _reprojection_error(
            self.qvec, self.tvec, point3D, camera_params, self.point2D, self.camera_model
        )

    @classmethod
    def create(
        cls,
        camera_model: CameraModelLike,
        qvec,
        tvec,
        point2D,
        config: Optional[AutoDiffConfig] = None,
    ) -> AutoDiffCostFunction:
        return AutoDiffCostFunction(cls(camera_model, qvec, tvec, point2D), config=config)


@dataclass(frozen=True, eq=False)
class RigReprojectionResidual:
    """
    Variable rig pose, relative pose, intrinsics and point.

    Callers that keep the camera-within-rig pose calibrated hold the
    rel_qvec / rel_tvec blocks constant on the solver side.
    """
    camera_model: Type[CameraModel]
    point2D: jnp.ndarray

    num_residuals: ClassVar[int] = 2

    def __post_init__(self) -> None:
        object.__setattr__(self, "camera_model", get_camera_model(self.camera_model))
        object.__setattr__(self, "point2D", _as_constant(self.point2D, 2, "point2D"))

    @property
    def parameter_block_sizes(self) -> Tuple[int, ...]:
        return (4, 3, 4, 3, 3, self.camera_model.num_params)

    def __call__(
        self, rig_qvec, rig_tvec, rel_qvec, rel_tvec, point3D, camera_params
    ) -> jnp.ndarray:
        return rig_reprojection_residual(
            rig_qvec,
            rig_tvec,
            rel_qvec,
            rel_tvec,
            point3D,
            camera_params,
            self.point2D,
            camera_model=self.camera_model,
        )

    @classmethod
    def create(
        cls,
        camera_model: CameraModelLike,
        point2D,
        config: Optional[AutoDiffConfig] = None,
    ) -> AutoDiffCostFunction:
        return AutoDiffCostFunction(cls(camera_model, point2D), config=config)


@dataclass(frozen=True, eq=False)
class RelativePoseResidual:
    """Sampson residual of one normalized correspondence between two views."""
    x1: jnp.ndarray
    x2: jnp.ndarray

    num_residuals: ClassVar[int] = 1
    parameter_block_sizes: ClassVar[Tuple[int, ...]] = (4, 3)

    def __post_init__(self) -> None:
        object.__setattr__(self, "x1", _as_constant(self.x1, 2, "x1"))
        object.__setattr__(self, "x2", _as_constant(self.x2, 2, "x2"))

    def __call__(self, qvec, tvec) -> jnp.ndarray:
        return relative_pose_residual(qvec, tvec, self.x1, self.x2)

    @classmethod
    def create(cls, x1, x2, config: Optional[AutoDiffConfig] = None) -> AutoDiffCostFunction:
        return AutoDiffCostFunction(cls(x1, x2), config=config)
