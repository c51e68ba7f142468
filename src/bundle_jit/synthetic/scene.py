# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.
"""
Synthetic ground-truth scenes.

Scenes are built from known poses, intrinsics and points, and their
observations are produced by forward projection. Evaluating any residual at
the ground-truth parameters therefore gives zero up to floating-point error,
which is what the tests, experiments and benchmarks rely on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Type

import jax
import jax.numpy as jnp
import numpy as np

from ..cameras.models import CameraModel, get_camera_model
from ..core.quaternion import (
    concatenate_poses,
    quaternion_from_axis_angle,
    rotation_to_quaternion,
    transform_point,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyntheticScene:
    """
    Cameras sharing one set of intrinsics observing a point cloud.

    qvecs: (C, 4), tvecs: (C, 3), points3D: (P, 3), points2D: (C, P, 2)
    """
    camera_model: Type[CameraModel]
    camera_params: np.ndarray
    qvecs: np.ndarray
    tvecs: np.ndarray
    points3D: np.ndarray
    points2D: np.ndarray

    @property
    def num_cameras(self) -> int:
        return self.qvecs.shape[0]

    @property
    def num_points(self) -> int:
        return self.points3D.shape[0]


@dataclass(frozen=True)
class SyntheticRig:
    """
    A rig captured at several snapshots.

    rig_qvecs/rig_tvecs: (S, 4)/(S, 3) world -> rig
    rel_qvecs/rel_tvecs: (K, 4)/(K, 3) rig -> camera k
    points2D: (S, K, P, 2)
    """
    camera_model: Type[CameraModel]
    camera_params: np.ndarray
    rig_qvecs: np.ndarray
    rig_tvecs: np.ndarray
    rel_qvecs: np.ndarray
    rel_tvecs: np.ndarray
    points3D: np.ndarray
    points2D: np.ndarray


def project_point(
    qvec: jnp.ndarray,
    tvec: jnp.ndarray,
    point3D: jnp.ndarray,
    camera_params: jnp.ndarray,
    camera_model: Type[CameraModel],
) -> jnp.ndarray:
    """Pixel coordinates of a world point, shape (2,)."""
    p_cam = transform_point(qvec, tvec, point3D)
    x, y = camera_model.world_to_image(camera_params, p_cam[0] / p_cam[2], p_cam[1] / p_cam[2])
    return jnp.stack([x, y])


def _project_all(qvecs, tvecs, points3D, camera_params, camera_model) -> np.ndarray:
    def per_camera(q, t):
        return jax.vmap(lambda X: project_point(q, t, X, camera_params, camera_model))(points3D)

    return np.asarray(jax.vmap(per_camera)(jnp.asarray(qvecs), jnp.asarray(tvecs)))


def look_at_pose(
    center: Sequence[float],
    target: Sequence[float],
    up: Sequence[float] = (0.0, 0.0, 1.0),
) -> Tuple[np.ndarray, np.ndarray]:
    """
    World-to-camera pose of a camera at `center` looking at `target`.

    The camera z-axis points at the target, x is right and y is down.
    """
    center = np.asarray(center, dtype=float)
    target = np.asarray(target, dtype=float)
    up = np.asarray(up, dtype=float)

    z_cam = target - center
    z_norm = np.linalg.norm(z_cam)
    if z_norm < 1e-12:
        raise ValueError("Camera center and target coincide")
    z_cam = z_cam / z_norm

    x_cam = np.cross(z_cam, up)
    x_norm = np.linalg.norm(x_cam)
    if x_norm < 1e-12:
        raise ValueError("Viewing direction is parallel to the up vector")
    x_cam = x_cam / x_norm

    y_cam = np.cross(z_cam, x_cam)

    R = np.stack([x_cam, y_cam, z_cam])
    qvec = np.asarray(rotation_to_quaternion(jnp.asarray(R)))
    tvec = -R @ center
    return qvec, tvec


def _ring_poses(num_cameras: int, radius: float, height: float) -> Tuple[np.ndarray, np.ndarray]:
    angles = np.linspace(0.0, 2.0 * np.pi, num_cameras, endpoint=False)
    qvecs, tvecs = [], []
    for angle in angles:
        center = np.array([radius * np.cos(angle), radius * np.sin(angle), height])
        q, t = look_at_pose(center, np.zeros(3))
        qvecs.append(q)
        tvecs.append(t)
    return np.stack(qvecs), np.stack(tvecs)


def _random_points(rng: np.random.Generator, num_points: int, spread: float) -> np.ndarray:
    return rng.uniform(-spread, spread, size=(num_points, 3))


def make_ring_scene(
    num_cameras: int = 4,
    num_points: int = 20,
    camera_model="PINHOLE",
    camera_params: Optional[Sequence[float]] = None,
    radius: float = 6.0,
    height: float = 1.0,
    point_spread: float = 1.0,
    seed: Optional[int] = 0,
) -> SyntheticScene:
    """
    Cameras evenly spaced on a circle around the origin, all looking at a
    point cloud drawn uniformly from [-point_spread, point_spread]^3.
    """
    model = get_camera_model(camera_model)
    if camera_params is None:
        params = model.initialize_params(500.0, 640, 480)
    else:
        params = jnp.asarray(camera_params, dtype=float)
    if not model.verify_params(params):
        raise ValueError(
            f"{model.model_name} expects {model.num_params} parameters, got shape {jnp.shape(params)}"
        )

    rng = np.random.default_rng(seed)
    qvecs, tvecs = _ring_poses(num_cameras, radius, height)
    points3D = _random_points(rng, num_points, point_spread)
    points2D = _project_all(qvecs, tvecs, jnp.asarray(points3D), params, model)

    logger.debug(
        "Generated ring scene: %d cameras, %d points, model %s",
        num_cameras,
        num_points,
        model.model_name,
    )
    return SyntheticScene(
        camera_model=model,
        camera_params=np.asarray(params),
        qvecs=qvecs,
        tvecs=tvecs,
        points3D=points3D,
        points2D=points2D,
    )


def make_rig_scene(
    num_snapshots: int = 3,
    num_rig_cameras: int = 2,
    num_points: int = 20,
    camera_model="PINHOLE",
    camera_params: Optional[Sequence[float]] = None,
    baseline: float = 0.3,
    toe_in: float = 0.05,
    seed: Optional[int] = 0,
) -> SyntheticRig:
    """
    A horizontal rig of cameras spaced `baseline` apart, each turned by a
    small `toe_in` angle about its y-axis, captured from ring poses.
    """
    model = get_camera_model(camera_model)
    if camera_params is None:
        params = model.initialize_params(500.0, 640, 480)
    else:
        params = jnp.asarray(camera_params, dtype=float)

    rng = np.random.default_rng(seed)
    rig_qvecs, rig_tvecs = _ring_poses(num_snapshots, radius=6.0, height=1.0)

    offsets = np.arange(num_rig_cameras) - 0.5 * (num_rig_cameras - 1)
    rel_qvecs = np.stack(
        [np.asarray(quaternion_from_axis_angle(jnp.array([0.0, 1.0, 0.0]), toe_in * k)) for k in offsets]
    )
    rel_tvecs = np.stack([np.array([-baseline * k, 0.0, 0.0]) for k in offsets])

    points3D = _random_points(rng, num_points, 1.0)

    observations = []
    for rig_q, rig_t in zip(rig_qvecs, rig_tvecs):
        per_camera = []
        for rel_q, rel_t in zip(rel_qvecs, rel_tvecs):
            q, t = concatenate_poses(
                jnp.asarray(rig_q), jnp.asarray(rig_t), jnp.asarray(rel_q), jnp.asarray(rel_t)
            )
            per_camera.append(_project_all(q[None], t[None], jnp.asarray(points3D), params, model)[0])
        observations.append(np.stack(per_camera))

    logger.debug(
        "Generated rig scene: %d snapshots x %d cameras, %d points",
        num_snapshots,
        num_rig_cameras,
        num_points,
    )
    return SyntheticRig(
        camera_model=model,
        camera_params=np.asarray(params),
        rig_qvecs=rig_qvecs,
        rig_tvecs=rig_tvecs,
        rel_qvecs=rel_qvecs,
        rel_tvecs=rel_tvecs,
        points3D=points3D,
        points2D=np.stack(observations),
    )


def make_two_view_correspondences(
    qvec: Sequence[float],
    tvec: Sequence[float],
    num_points: int = 20,
    seed: Optional[int] = 0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Normalized correspondences (x1, x2), each (num_points, 2), between a
    camera at the origin and a second camera with pose (qvec, tvec).

    Points are drawn in front of the first camera at depths 4..8.
    """
    rng = np.random.default_rng(seed)
    X1 = np.column_stack(
        [
            rng.uniform(-1.0, 1.0, num_points),
            rng.uniform(-1.0, 1.0, num_points),
            rng.uniform(4.0, 8.0, num_points),
        ]
    )
    q = jnp.asarray(qvec, dtype=float)
    t = jnp.asarray(tvec, dtype=float)
    X2 = np.asarray(jax.vmap(lambda X: transform_point(q, t, X))(jnp.asarray(X1)))

    x1 = X1[:, :2] / X1[:, 2:3]
    x2 = X2[:, :2] / X2[:, 2:3]
    return x1, x2
