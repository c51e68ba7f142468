# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.

import jax
import jax.numpy as jnp

from bundle_jit.ba.cost_functions import relative_pose_residual
from bundle_jit.core.quaternion import quaternion_from_axis_angle
from bundle_jit.synthetic.scene import make_two_view_correspondences


def total_sampson_error(qvec, tvec, x1, x2):
    r = jax.vmap(lambda a, b: relative_pose_residual(qvec, tvec, a, b))(x1, x2)
    return jnp.sum(r)


def main():
    qvec = quaternion_from_axis_angle(jnp.array([0.0, 1.0, 0.0]), 0.15)
    tvec = jnp.array([-1.0, 0.05, 0.1])
    tvec = tvec / jnp.linalg.norm(tvec)

    x1, x2 = make_two_view_correspondences(qvec, tvec, num_points=50, seed=0)
    x1 = jnp.asarray(x1)
    x2 = jnp.asarray(x2)

    print("=== Sampson error vs. rotation error ===")
    for angle in [0.0, 0.01, 0.02, 0.05, 0.1]:
        q_err = quaternion_from_axis_angle(jnp.array([0.0, 1.0, 0.0]), 0.15 + angle)
        err = total_sampson_error(q_err, tvec, x1, x2)
        print(f"d_angle = {angle:5.2f} rad  ->  sum r = {float(err):.3e}")

    # Scale of the translation is unobservable.
    print("\n=== Translation scale ===")
    for scale in [0.5, 1.0, 3.0]:
        err = total_sampson_error(qvec, scale * tvec, x1 + 0.001, x2)
        print(f"|t| = {scale:3.1f}  ->  sum r = {float(err):.6e}")

    grad_q, grad_t = jax.grad(total_sampson_error, argnums=(0, 1))(qvec, tvec, x1 + 0.001, x2)
    print("\nGradient of the noisy error:")
    print(f"  d / d qvec = {grad_q}")
    print(f"  d / d tvec = {grad_t}")


if __name__ == "__main__":
    main()
