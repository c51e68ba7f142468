# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.
"""
Camera projection models for bundle-jit.

A camera model is the capability every reprojection residual depends on:
given an intrinsic parameter vector and a point already divided by its
depth, it returns pixel coordinates.

    (u, v) = (X / Z, Y / Z)          normalized camera-plane coordinates
    (x, y) = world_to_image(params, u, v)

Models are plain classes whose members are all class-level, so a residual
selects one by holding the class itself (no instance state, nothing to
trace). Every projection is written with `jax.numpy` arithmetic only and is
therefore differentiable with respect to both the parameters and (u, v).

Available models
----------------
Name             id  parameters
---------------  --  -------------------------------
SIMPLE_PINHOLE    0  f, cx, cy
PINHOLE           1  fx, fy, cx, cy
SIMPLE_RADIAL     2  f, cx, cy, k
RADIAL            3  f, cx, cy, k1, k2
OPENCV            4  fx, fy, cx, cy, k1, k2, p1, p2

Distortion is applied in the normalized plane before focal scaling:

    x = fx * (u + du(u, v)) + cx
    y = fy * (v + dv(u, v)) + cy

Registry
--------
`CAMERA_MODELS` maps model names to classes and `get_camera_model` resolves
a name, numeric id, or class. Unknown models raise `ValueError`.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple, Type, Union

import jax
import jax.numpy as jnp
import numpy as np

logger = logging.getLogger(__name__)


class CameraModel:
    """
    Base class for projection models.

    Subclasses declare their parameter layout and, if they distort, override
    :meth:`distortion`. The base class supplies the pinhole projection and its
    inverse around that hook.
    """

    model_name: str = ""
    model_id: int = -1
    num_params: int = 0
    params_info: str = ""
    focal_length_idxs: Tuple[int, ...] = ()
    principal_point_idxs: Tuple[int, ...] = ()
    extra_params_idxs: Tuple[int, ...] = ()

    # fixed-point iterations used by image_to_world for distorted models
    num_undistortion_iters: int = 100

    @classmethod
    def focal_lengths(cls, params: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
        if len(cls.focal_length_idxs) == 1:
            f = params[cls.focal_length_idxs[0]]
            return f, f
        fx_idx, fy_idx = cls.focal_length_idxs
        return params[fx_idx], params[fy_idx]

    @classmethod
    def principal_point(cls, params: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
        cx_idx, cy_idx = cls.principal_point_idxs
        return params[cx_idx], params[cy_idx]

    @classmethod
    def distortion(cls, params: jnp.ndarray, u, v) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """Offsets (du, dv) added to normalized coordinates. Zero for pinhole models."""
        return jnp.zeros_like(u), jnp.zeros_like(v)

    @classmethod
    def world_to_image(cls, params: jnp.ndarray, u, v) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """Map normalized camera-plane coordinates to pixel coordinates."""
        du, dv = cls.distortion(params, u, v)
        fx, fy = cls.focal_lengths(params)
        cx, cy = cls.principal_point(params)
        x = fx * (u + du) + cx
        y = fy * (v + dv) + cy
        return x, y

    @classmethod
    def image_to_world(cls, params: jnp.ndarray, x, y) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """
        Map pixel coordinates back to normalized camera-plane coordinates.

        Pinhole models invert exactly. Distorted models solve
        u + du(u, v) = x_d by fixed-point iteration, which converges for the
        moderate distortion found in real lenses.
        """
        fx, fy = cls.focal_lengths(params)
        cx, cy = cls.principal_point(params)
        x_d = (x - cx) / fx
        y_d = (y - cy) / fy

        if not cls.extra_params_idxs:
            return x_d, y_d

        def body(_, uv):
            u, v = uv
            du, dv = cls.distortion(params, u, v)
            return x_d - du, y_d - dv

        return jax.lax.fori_loop(0, cls.num_undistortion_iters, body, (x_d, y_d))

    @classmethod
    def verify_params(cls, params) -> bool:
        return jnp.shape(params) == (cls.num_params,)

    @classmethod
    def initialize_params(cls, focal_length: float, width: int, height: int) -> jnp.ndarray:
        """Parameter vector with the given focal length, centered principal point and no distortion."""
        params = jnp.zeros(cls.num_params)
        for idx in cls.focal_length_idxs:
            params = params.at[idx].set(focal_length)
        params = params.at[cls.principal_point_idxs[0]].set(width / 2.0)
        params = params.at[cls.principal_point_idxs[1]].set(height / 2.0)
        return params


class SimplePinholeCameraModel(CameraModel):
    model_name = "SIMPLE_PINHOLE"
    model_id = 0
    num_params = 3
    params_info = "f, cx, cy"
    focal_length_idxs = (0,)
    principal_point_idxs = (1, 2)
    extra_params_idxs = ()


class PinholeCameraModel(CameraModel):
    model_name = "PINHOLE"
    model_id = 1
    num_params = 4
    params_info = "fx, fy, cx, cy"
    focal_length_idxs = (0, 1)
    principal_point_idxs = (2, 3)
    extra_params_idxs = ()


class SimpleRadialCameraModel(CameraModel):
    model_name = "SIMPLE_RADIAL"
    model_id = 2
    num_params = 4
    params_info = "f, cx, cy, k"
    focal_length_idxs = (0,)
    principal_point_idxs = (1, 2)
    extra_params_idxs = (3,)

    @classmethod
    def distortion(cls, params, u, v):
        k = params[3]
        radial = k * (u * u + v * v)
        return u * radial, v * radial


class RadialCameraModel(CameraModel):
    model_name = "RADIAL"
    model_id = 3
    num_params = 5
    params_info = "f, cx, cy, k1, k2"
    focal_length_idxs = (0,)
    principal_point_idxs = (1, 2)
    extra_params_idxs = (3, 4)

    @classmethod
    def distortion(cls, params, u, v):
        k1, k2 = params[3], params[4]
        r2 = u * u + v * v
        radial = k1 * r2 + k2 * r2 * r2
        return u * radial, v * radial


class OpenCVCameraModel(CameraModel):
    model_name = "OPENCV"
    model_id = 4
    num_params = 8
    params_info = "fx, fy, cx, cy, k1, k2, p1, p2"
    focal_length_idxs = (0, 1)
    principal_point_idxs = (2, 3)
    extra_params_idxs = (4, 5, 6, 7)

    @classmethod
    def distortion(cls, params, u, v):
        k1, k2, p1, p2 = params[4], params[5], params[6], params[7]
        uu, vv, uv = u * u, v * v, u * v
        r2 = uu + vv
        radial = k1 * r2 + k2 * r2 * r2
        du = u * radial + 2.0 * p1 * uv + p2 * (r2 + 2.0 * uu)
        dv = v * radial + 2.0 * p2 * uv + p1 * (r2 + 2.0 * vv)
        return du, dv


CAMERA_MODELS: Dict[str, Type[CameraModel]] = {
    model.model_name: model
    for model in (
        SimplePinholeCameraModel,
        PinholeCameraModel,
        SimpleRadialCameraModel,
        RadialCameraModel,
        OpenCVCameraModel,
    )
}

_MODELS_BY_ID: Dict[int, Type[CameraModel]] = {m.model_id: m for m in CAMERA_MODELS.values()}


def camera_model_names() -> List[str]:
    return list(CAMERA_MODELS.keys())


def get_camera_model(model: Union[str, int, Type[CameraModel]]) -> Type[CameraModel]:
    """
    Resolve a camera model from its name, numeric id, or class.

    Raises:
        ValueError: if the model is not registered.
    """
    if isinstance(model, type) and issubclass(model, CameraModel):
        if model.num_params <= 0:
            raise ValueError(f"Camera model {model.__name__} declares no parameters")
        return model
    if isinstance(model, str):
        resolved = CAMERA_MODELS.get(model.upper())
    elif isinstance(model, (int, np.integer)):
        resolved = _MODELS_BY_ID.get(int(model))
    else:
        resolved = None
    if resolved is None:
        raise ValueError(f"Unknown camera model: {model!r}")
    logger.debug("Resolved camera model %r -> %s", model, resolved.model_name)
    return resolved
