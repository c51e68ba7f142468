# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.

import time
from functools import partial

import jax
import jax.numpy as jnp

from bundle_jit.ba.cost_functions import reprojection_residual
from bundle_jit.core.cost_function import batch_residual_function
from bundle_jit.synthetic.scene import make_ring_scene


def build_observation_batch(num_cameras: int = 20, num_points: int = 500):
    """
    Flatten a ring scene into one row per observation:

        qvecs (M, 4), tvecs (M, 3), points3D (M, 3), points2D (M, 2)

    with M = num_cameras * num_points. Intrinsics are shared.
    """
    scene = make_ring_scene(
        num_cameras=num_cameras,
        num_points=num_points,
        camera_model="OPENCV",
        camera_params=[600.0, 600.0, 320.0, 240.0, -0.05, 0.01, 0.001, -0.001],
    )
    C, P = scene.num_cameras, scene.num_points
    qvecs = jnp.repeat(jnp.asarray(scene.qvecs), P, axis=0)
    tvecs = jnp.repeat(jnp.asarray(scene.tvecs), P, axis=0)
    points3D = jnp.tile(jnp.asarray(scene.points3D), (C, 1))
    points2D = jnp.asarray(scene.points2D).reshape(C * P, 2)
    return scene, (qvecs, tvecs, points3D, jnp.asarray(scene.camera_params), points2D)


def run_benchmark(num_cameras: int = 20, num_points: int = 500, with_jacobians: bool = False):
    print("=== Batched Reprojection Residual Benchmark ===")
    print(
        f"num_cameras = {num_cameras}, num_points = {num_points}, "
        f"with_jacobians = {with_jacobians}"
    )

    scene, args = build_observation_batch(num_cameras, num_points)
    fn = partial(reprojection_residual, camera_model=scene.camera_model)

    if with_jacobians:
        # Jacobians w.r.t. pose, point and intrinsics for every observation
        fn = jax.jacfwd(fn, argnums=(0, 1, 2, 3))

    evaluate = batch_residual_function(fn, in_axes=(0, 0, 0, None, 0), jit=True)

    # Warmup (forces compilation)
    out = evaluate(*args)
    jax.block_until_ready(out)

    t0 = time.time()
    out = evaluate(*args)
    jax.block_until_ready(out)
    t1 = time.time()

    elapsed = (t1 - t0) * 1000.0
    num_obs = num_cameras * num_points
    print(f"Elapsed time: {elapsed:.3f} ms ({1e3 * elapsed / num_obs:.3f} us / observation)")

    if not with_jacobians:
        print(f"max |r| at ground truth: {float(jnp.max(jnp.abs(out))):.3e}")


if __name__ == "__main__":
    # Example:
    #   PYTHONPATH=src python3 benchmarks/bench_reprojection_batch.py
    run_benchmark(num_cameras=20, num_points=500, with_jacobians=False)
    run_benchmark(num_cameras=20, num_points=500, with_jacobians=True)
