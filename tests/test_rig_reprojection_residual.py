from __future__ import annotations

import jax.numpy as jnp
import numpy as np

from bundle_jit.ba.cost_functions import (
    FixedPoseReprojectionResidual,
    ReprojectionResidual,
    RigReprojectionResidual,
)
from bundle_jit.core.types import Pose

IDENTITY = jnp.array([1.0, 0.0, 0.0, 0.0])
PARAMS = jnp.array([500.0, 510.0, 320.0, 240.0])


def _unit(q):
    q = jnp.asarray(q, dtype=float)
    return q / jnp.linalg.norm(q)


def test_identity_relative_pose_reduces_to_single_camera():
    q = _unit([0.9, 0.2, -0.1, 0.3])
    t = jnp.array([0.3, -0.4, 5.0])
    X = jnp.array([0.5, 0.1, -0.2])
    obs = jnp.array([310.0, 255.0])

    rig = RigReprojectionResidual("PINHOLE", obs)
    single = ReprojectionResidual("PINHOLE", obs)
    fixed = FixedPoseReprojectionResidual("PINHOLE", q, t, obs)

    r = rig(q, t, IDENTITY, jnp.zeros(3), X, PARAMS)
    assert jnp.allclose(r, single(q, t, X, PARAMS))
    assert jnp.allclose(r, fixed(X, PARAMS))


def test_matches_composed_pose():
    rig_pose = Pose(qvec=_unit([0.7, 0.1, 0.6, -0.2]), tvec=[0.2, 0.0, 6.0])
    rel_pose = Pose(qvec=_unit([0.99, 0.0, 0.1, 0.0]), tvec=[-0.3, 0.05, 0.0])
    X = jnp.array([0.4, -0.6, 0.3])
    obs = jnp.array([300.0, 260.0])

    # world -> rig, then rig -> camera
    cam_pose = rig_pose.compose(rel_pose)

    rig = RigReprojectionResidual("PINHOLE", obs)
    single = ReprojectionResidual("PINHOLE", obs)
    r_rig = rig(rig_pose.qvec, rig_pose.tvec, rel_pose.qvec, rel_pose.tvec, X, PARAMS)
    r_single = single(cam_pose.qvec, cam_pose.tvec, X, PARAMS)
    assert jnp.allclose(r_rig, r_single, atol=1e-9)


def test_composition_order_matters():
    rig_q = _unit([0.7, 0.1, 0.6, -0.2])
    rig_t = jnp.array([0.2, 0.0, 6.0])
    rel_q = _unit([0.9, 0.3, 0.0, 0.2])
    rel_t = jnp.array([-0.3, 0.05, 0.1])
    X = jnp.array([0.4, -0.6, 0.3])

    rig = RigReprojectionResidual("PINHOLE", [300.0, 260.0])
    r = rig(rig_q, rig_t, rel_q, rel_t, X, PARAMS)
    r_swapped = rig(rel_q, rel_t, rig_q, rig_t, X, PARAMS)
    assert not jnp.allclose(r, r_swapped, atol=1e-6)


def test_ground_truth_rig_scene(rig_scene):
    s = rig_scene
    for i in range(s.rig_qvecs.shape[0]):
        for k in range(s.rel_qvecs.shape[0]):
            for p in range(s.points3D.shape[0]):
                functor = RigReprojectionResidual(s.camera_model, s.points2D[i, k, p])
                r = functor(
                    s.rig_qvecs[i],
                    s.rig_tvecs[i],
                    s.rel_qvecs[k],
                    s.rel_tvecs[k],
                    s.points3D[p],
                    s.camera_params,
                )
                assert jnp.allclose(r, jnp.zeros(2), atol=1e-8)


def test_rig_cameras_see_different_pixels(rig_scene):
    # Each camera in the rig has its own relative pose.
    assert not np.allclose(rig_scene.points2D[:, 0], rig_scene.points2D[:, 1])


def test_block_sizes_and_jacobian_shapes():
    cost = RigReprojectionResidual.create("RADIAL", [300.0, 250.0])
    assert cost.parameter_block_sizes == (4, 3, 4, 3, 3, 5)
    assert cost.num_residuals == 2

    ev = cost.evaluate(
        _unit([0.9, 0.1, 0.1, 0.1]),
        jnp.array([0.0, 0.0, 5.0]),
        IDENTITY,
        jnp.array([0.1, 0.0, 0.0]),
        jnp.array([0.2, 0.3, 0.1]),
        jnp.array([500.0, 320.0, 240.0, 0.01, 0.0]),
        jacobians=True,
    )
    assert [J.shape for J in ev.jacobians] == [(2, 4), (2, 3), (2, 4), (2, 3), (2, 3), (2, 5)]
    assert all(bool(jnp.all(jnp.isfinite(J))) for J in ev.jacobians)


def test_rel_translation_jacobian_matches_rig_translation_for_identity_rel():
    # With rel_q = identity, tvec = rig_tvec + rel_tvec.
    cost = RigReprojectionResidual.create("PINHOLE", [300.0, 250.0])
    ev = cost.evaluate(
        _unit([0.9, 0.1, 0.1, 0.1]),
        jnp.array([0.0, 0.0, 5.0]),
        IDENTITY,
        jnp.array([0.1, 0.0, 0.0]),
        jnp.array([0.2, 0.3, 0.1]),
        PARAMS,
        jacobians=True,
    )
    assert jnp.allclose(ev.jacobians[1], ev.jacobians[3])
