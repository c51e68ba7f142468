from __future__ import annotations

import jax

# Residual tolerances below assume double precision.
jax.config.update("jax_enable_x64", True)

import pytest

from bundle_jit.synthetic.scene import make_ring_scene, make_rig_scene


@pytest.fixture
def ring_scene():
    """Four pinhole cameras on a ring observing 12 points."""
    return make_ring_scene(num_cameras=4, num_points=12, camera_model="PINHOLE", seed=0)


@pytest.fixture
def radial_scene():
    """Same layout with a RADIAL lens."""
    return make_ring_scene(
        num_cameras=3,
        num_points=10,
        camera_model="RADIAL",
        camera_params=[520.0, 320.0, 240.0, 0.05, -0.01],
        seed=1,
    )


@pytest.fixture
def rig_scene():
    """Two-camera rig captured at three snapshots."""
    return make_rig_scene(num_snapshots=3, num_rig_cameras=2, num_points=10, seed=2)
