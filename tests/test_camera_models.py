from __future__ import annotations

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from bundle_jit.cameras.models import (
    CAMERA_MODELS,
    CameraModel,
    OpenCVCameraModel,
    PinholeCameraModel,
    RadialCameraModel,
    SimplePinholeCameraModel,
    SimpleRadialCameraModel,
    camera_model_names,
    get_camera_model,
)


def test_registry_resolves_names_ids_and_classes():
    assert get_camera_model("PINHOLE") is PinholeCameraModel
    assert get_camera_model("simple_radial") is SimpleRadialCameraModel
    assert get_camera_model(4) is OpenCVCameraModel
    assert get_camera_model(RadialCameraModel) is RadialCameraModel
    assert camera_model_names() == list(CAMERA_MODELS.keys())


@pytest.mark.parametrize("model", ["FISHEYE", 42, 3.5, CameraModel])
def test_registry_rejects_unknown_models(model):
    with pytest.raises(ValueError):
        get_camera_model(model)


@pytest.mark.parametrize(
    "model, num_params",
    [
        (SimplePinholeCameraModel, 3),
        (PinholeCameraModel, 4),
        (SimpleRadialCameraModel, 4),
        (RadialCameraModel, 5),
        (OpenCVCameraModel, 8),
    ],
)
def test_parameter_layout(model, num_params):
    assert model.num_params == num_params
    assert len(model.params_info.split(",")) == num_params
    idxs = model.focal_length_idxs + model.principal_point_idxs + model.extra_params_idxs
    assert sorted(idxs) == list(range(num_params))


def test_pinhole_center_projects_to_principal_point():
    params = jnp.array([1000.0, 1000.0, 500.0, 500.0])
    x, y = PinholeCameraModel.world_to_image(params, 0.0, 0.0)
    assert float(x) == pytest.approx(500.0)
    assert float(y) == pytest.approx(500.0)


def test_pinhole_uses_separate_focal_lengths():
    params = jnp.array([800.0, 600.0, 320.0, 240.0])
    x, y = PinholeCameraModel.world_to_image(params, 0.1, -0.2)
    assert float(x) == pytest.approx(800.0 * 0.1 + 320.0)
    assert float(y) == pytest.approx(600.0 * -0.2 + 240.0)


def test_simple_pinhole_shares_focal_length():
    params = jnp.array([700.0, 320.0, 240.0])
    x, y = SimplePinholeCameraModel.world_to_image(params, 0.1, 0.2)
    assert float(x) == pytest.approx(390.0)
    assert float(y) == pytest.approx(380.0)


def test_simple_radial_distortion():
    params = jnp.array([500.0, 320.0, 240.0, 0.1])
    u, v = 0.2, -0.1
    radial = 0.1 * (u * u + v * v)
    x, y = SimpleRadialCameraModel.world_to_image(params, u, v)
    assert float(x) == pytest.approx(500.0 * (u + u * radial) + 320.0)
    assert float(y) == pytest.approx(500.0 * (v + v * radial) + 240.0)


def test_opencv_distortion_matches_formula():
    fx, fy, cx, cy, k1, k2, p1, p2 = 600.0, 610.0, 320.0, 240.0, -0.2, 0.05, 0.001, -0.002
    params = jnp.array([fx, fy, cx, cy, k1, k2, p1, p2])
    u, v = 0.15, -0.25

    r2 = u * u + v * v
    radial = k1 * r2 + k2 * r2 * r2
    du = u * radial + 2 * p1 * u * v + p2 * (r2 + 2 * u * u)
    dv = v * radial + 2 * p2 * u * v + p1 * (r2 + 2 * v * v)

    x, y = OpenCVCameraModel.world_to_image(params, u, v)
    assert float(x) == pytest.approx(fx * (u + du) + cx)
    assert float(y) == pytest.approx(fy * (v + dv) + cy)


@pytest.mark.parametrize(
    "model, params",
    [
        (PinholeCameraModel, [800.0, 600.0, 320.0, 240.0]),
        (SimpleRadialCameraModel, [500.0, 320.0, 240.0, 0.08]),
        (RadialCameraModel, [500.0, 320.0, 240.0, 0.05, -0.01]),
        (OpenCVCameraModel, [600.0, 610.0, 320.0, 240.0, -0.1, 0.01, 0.001, -0.001]),
    ],
)
def test_image_to_world_inverts_world_to_image(model, params):
    params = jnp.asarray(params)
    u, v = 0.21, -0.13
    x, y = model.world_to_image(params, u, v)
    u_est, v_est = model.image_to_world(params, x, y)
    assert float(u_est) == pytest.approx(u, abs=1e-9)
    assert float(v_est) == pytest.approx(v, abs=1e-9)


def test_initialize_params():
    params = OpenCVCameraModel.initialize_params(700.0, 640, 480)
    assert jnp.allclose(params, jnp.array([700.0, 700.0, 320.0, 240.0, 0.0, 0.0, 0.0, 0.0]))
    assert OpenCVCameraModel.verify_params(params)
    assert not PinholeCameraModel.verify_params(params)


def test_projection_is_differentiable_in_params_and_coordinates():
    params = jnp.array([500.0, 320.0, 240.0, 0.05, -0.01])

    def project_x(p, u, v):
        return RadialCameraModel.world_to_image(p, u, v)[0]

    dp, du, dv = jax.grad(project_x, argnums=(0, 1, 2))(params, 0.1, 0.2)
    r2 = 0.1 ** 2 + 0.2 ** 2
    # d x / d f = u + du, d x / d cx = 1, d x / d cy = 0
    assert float(dp[0]) == pytest.approx(0.1 * (1 + 0.05 * r2 - 0.01 * r2 * r2))
    assert float(dp[1]) == pytest.approx(1.0)
    assert float(dp[2]) == pytest.approx(0.0)
    assert jnp.isfinite(du) and jnp.isfinite(dv)


def test_registry_resolves_numpy_integer_ids():
    ids = np.array([1, 4])
    assert get_camera_model(ids[0]) is PinholeCameraModel
    assert get_camera_model(np.int32(4)) is OpenCVCameraModel
    with pytest.raises(ValueError):
        get_camera_model(np.int64(42))
