# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.
"""
Core typed data structures for bundle-jit.

This module defines the lightweight value types shared by the residual,
camera and cost-function layers. They are intentionally minimal: they carry
parameter values and evaluation results, while all numerical work happens in
pure `jax.numpy` functions that can be traced, differentiated and batched.

Classes
-------
Pose
    Immutable rotation + translation pair:
    - qvec: unit quaternion [w, x, y, z], shape (4,)
    - tvec: translation, shape (3,)
    The pose maps world coordinates into the local frame:
        p_local = R(qvec) p_world + tvec

CostEvaluation
    Result of evaluating a cost function once:
    - success: always True for the residuals in this package
    - residuals: (num_residuals,) array
    - jacobians: one (num_residuals, block_size) array per parameter block,
                 or None when only residuals were requested

Notes
-----
Parameter blocks are plain 1-D arrays; nothing here is required inside a
traced function. The solver that owns the blocks keeps quaternions and
relative translations unit-norm; these types never renormalize.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

import jax.numpy as jnp

from . import quaternion

BlockSizes = Tuple[int, ...]


@dataclass(frozen=True)
class Pose:
    """World-to-local rigid transform stored as (qvec, tvec)."""
    qvec: jnp.ndarray
    tvec: jnp.ndarray

    def __post_init__(self) -> None:
        qvec = jnp.asarray(self.qvec, dtype=float)
        tvec = jnp.asarray(self.tvec, dtype=float)
        if qvec.shape != (4,):
            raise ValueError(f"qvec must be a 4-element vector, got shape {qvec.shape}")
        if tvec.shape != (3,):
            raise ValueError(f"tvec must be a 3-element vector, got shape {tvec.shape}")
        object.__setattr__(self, "qvec", qvec)
        object.__setattr__(self, "tvec", tvec)

    @staticmethod
    def identity() -> "Pose":
        return Pose(qvec=jnp.array([1.0, 0.0, 0.0, 0.0]), tvec=jnp.zeros(3))

    def transform(self, point: jnp.ndarray) -> jnp.ndarray:
        return quaternion.transform_point(self.qvec, self.tvec, point)

    def compose(self, other: "Pose") -> "Pose":
        """
        Pose that applies `self` first and then `other`.

        For a rig pose followed by a camera-within-rig pose this is
        `rig.compose(rel)`.
        """
        q, t = quaternion.concatenate_poses(self.qvec, self.tvec, other.qvec, other.tvec)
        return Pose(qvec=q, tvec=t)

    def inverse(self) -> "Pose":
        q, t = quaternion.invert_pose(self.qvec, self.tvec)
        return Pose(qvec=q, tvec=t)

    def projection_center(self) -> jnp.ndarray:
        """Origin of the local frame expressed in world coordinates."""
        return self.inverse().tvec


@dataclass(frozen=True)
class CostEvaluation:
    """Residuals (and optionally Jacobians) from a single evaluation."""
    success: bool
    residuals: jnp.ndarray
    jacobians: Optional[Tuple[jnp.ndarray, ...]] = None
