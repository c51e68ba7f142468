# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.
"""
Quaternion and rigid-pose operations for bundle-jit.

This module implements the minimal rotation mathematics required by the
bundle-adjustment residuals:

    • Hamilton product, conjugate and normalization of quaternions
    • Rotating points by unit and non-unit quaternions
    • Quaternion <-> rotation matrix conversion
    • Pose concatenation and inversion in (qvec, tvec) form
    • The cross-product (hat) operator

Conventions
-----------
Quaternions are stored as [w, x, y, z] with w the scalar part. A pose
(qvec, tvec) maps a world point into the local frame by rotating first and
translating second:

    p_local = R(qvec) p_world + tvec

All functions are written in JAX and support:
    - JIT compilation
    - Forward- and reverse-mode automatic differentiation
    - Batching through `jax.vmap`

No function branches on a traced value, so the same expression is evaluated
for concrete arrays and for JVP tracers (dual numbers). Unit-norm
constraints are the caller's responsibility; `unit_quaternion_rotate_point`
in particular assumes |q| = 1 and does not renormalize.

Key Functions
-------------
quaternion_product(z, w)
    Hamilton product z * w: applying w first, then z.

unit_quaternion_rotate_point(q, p)
    Rotate p by a unit quaternion using the expanded rotation-matrix form.

quaternion_to_rotation(q)
    3×3 rotation matrix of q / |q|.

concatenate_poses(q1, t1, q2, t2)
    Pose applying (q1, t1) then (q2, t2).
"""

from __future__ import annotations
from typing import Tuple

import jax.numpy as jnp


def hat(v: jnp.ndarray) -> jnp.ndarray:
    """Cross-product operator: R^3 -> 3x3 skew-symmetric matrix, hat(a) @ b = a × b."""
    x, y, z = v[0], v[1], v[2]
    zero = jnp.zeros_like(x)
    return jnp.stack(
        [
            jnp.stack([zero, -z, y]),
            jnp.stack([z, zero, -x]),
            jnp.stack([-y, x, zero]),
        ]
    )


def quaternion_product(z: jnp.ndarray, w: jnp.ndarray) -> jnp.ndarray:
    """Hamilton product z * w of two [w, x, y, z] quaternions."""
    z0, z1, z2, z3 = z[0], z[1], z[2], z[3]
    w0, w1, w2, w3 = w[0], w[1], w[2], w[3]
    return jnp.stack(
        [
            z0 * w0 - z1 * w1 - z2 * w2 - z3 * w3,
            z0 * w1 + z1 * w0 + z2 * w3 - z3 * w2,
            z0 * w2 - z1 * w3 + z2 * w0 + z3 * w1,
            z0 * w3 + z1 * w2 - z2 * w1 + z3 * w0,
        ]
    )


def quaternion_conjugate(q: jnp.ndarray) -> jnp.ndarray:
    """Conjugate [w, -x, -y, -z]; the inverse rotation for unit quaternions."""
    return jnp.stack([q[0], -q[1], -q[2], -q[3]])


def quaternion_normalize(q: jnp.ndarray) -> jnp.ndarray:
    """
    Scale q to unit length.

    There is deliberately no zero guard: a zero quaternion yields NaNs,
    consistent with the pass-through behaviour of the residuals.
    """
    return q / jnp.sqrt(jnp.sum(q * q))


def quaternion_from_axis_angle(axis: jnp.ndarray, angle) -> jnp.ndarray:
    """
    Unit quaternion rotating by `angle` radians about `axis`.

    A zero axis gives the identity rotation.
    """
    axis = jnp.asarray(axis, dtype=float)
    norm = jnp.linalg.norm(axis)
    safe_norm = jnp.where(norm > 0.0, norm, 1.0)
    unit = jnp.where(norm > 0.0, axis / safe_norm, jnp.zeros_like(axis))
    half = 0.5 * jnp.asarray(angle, dtype=axis.dtype)
    s = jnp.where(norm > 0.0, jnp.sin(half), 0.0)
    c = jnp.where(norm > 0.0, jnp.cos(half), 1.0)
    return jnp.concatenate([jnp.reshape(c, (1,)), s * unit])


def unit_quaternion_rotate_point(q: jnp.ndarray, p: jnp.ndarray) -> jnp.ndarray:
    """
    Rotate a 3D point by a unit quaternion.

    Expanded form of R(q) p, valid only for |q| = 1. This avoids the
    normalization (and its derivative) on the hot path of the reprojection
    residuals.
    """
    a0, a1, a2, a3 = q[0], q[1], q[2], q[3]
    p0, p1, p2 = p[0], p[1], p[2]

    t2 = a0 * a1
    t3 = a0 * a2
    t4 = a0 * a3
    t5 = -a1 * a1
    t6 = a1 * a2
    t7 = a1 * a3
    t8 = -a2 * a2
    t9 = a2 * a3
    t1 = -a3 * a3

    return jnp.stack(
        [
            2.0 * ((t8 + t1) * p0 + (t6 - t4) * p1 + (t3 + t7) * p2) + p0,
            2.0 * ((t4 + t6) * p0 + (t5 + t1) * p1 + (t9 - t2) * p2) + p1,
            2.0 * ((t7 - t3) * p0 + (t2 + t9) * p1 + (t5 + t8) * p2) + p2,
        ]
    )


def quaternion_rotate_point(q: jnp.ndarray, p: jnp.ndarray) -> jnp.ndarray:
    """Rotate a 3D point by q / |q|."""
    return unit_quaternion_rotate_point(quaternion_normalize(q), p)


def quaternion_to_rotation(q: jnp.ndarray) -> jnp.ndarray:
    """
    Rotation matrix of q / |q|.

    The scaled matrix is built from the raw components and divided by |q|²,
    so the result is orthonormal even for a non-unit input.
    """
    a, b, c, d = q[0], q[1], q[2], q[3]
    aa, ab, ac, ad = a * a, a * b, a * c, a * d
    bb, bc, bd = b * b, b * c, b * d
    cc, cd = c * c, c * d
    dd = d * d

    scaled = jnp.stack(
        [
            jnp.stack([aa + bb - cc - dd, 2.0 * (bc - ad), 2.0 * (ac + bd)]),
            jnp.stack([2.0 * (ad + bc), aa - bb + cc - dd, 2.0 * (cd - ab)]),
            jnp.stack([2.0 * (bd - ac), 2.0 * (ab + cd), aa - bb - cc + dd]),
        ]
    )
    return scaled / (aa + bb + cc + dd)


def rotation_to_quaternion(R: jnp.ndarray) -> jnp.ndarray:
    """
    Convert a rotation matrix to a unit quaternion with w >= 0.

    Shepperd's method: all four candidate solutions are formed and the one
    built from the largest diagonal term is selected, so no Python branch
    depends on the matrix values.
    """
    R = jnp.asarray(R, dtype=float)
    trace = R[0, 0] + R[1, 1] + R[2, 2]
    pivots = jnp.stack([trace, R[0, 0], R[1, 1], R[2, 2]])

    def _root(x):
        return 2.0 * jnp.sqrt(jnp.maximum(x, 1e-12))

    s_w = _root(1.0 + trace)
    s_x = _root(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
    s_y = _root(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
    s_z = _root(1.0 + R[2, 2] - R[0, 0] - R[1, 1])

    candidates = jnp.stack(
        [
            jnp.stack([0.25 * s_w, (R[2, 1] - R[1, 2]) / s_w, (R[0, 2] - R[2, 0]) / s_w, (R[1, 0] - R[0, 1]) / s_w]),
            jnp.stack([(R[2, 1] - R[1, 2]) / s_x, 0.25 * s_x, (R[0, 1] + R[1, 0]) / s_x, (R[0, 2] + R[2, 0]) / s_x]),
            jnp.stack([(R[0, 2] - R[2, 0]) / s_y, (R[0, 1] + R[1, 0]) / s_y, 0.25 * s_y, (R[1, 2] + R[2, 1]) / s_y]),
            jnp.stack([(R[1, 0] - R[0, 1]) / s_z, (R[0, 2] + R[2, 0]) / s_z, (R[1, 2] + R[2, 1]) / s_z, 0.25 * s_z]),
        ]
    )
    q = candidates[jnp.argmax(pivots)]
    q = quaternion_normalize(q)
    return jnp.where(q[0] < 0.0, -q, q)


def transform_point(q: jnp.ndarray, t: jnp.ndarray, p: jnp.ndarray) -> jnp.ndarray:
    """Rotate then translate: R(q) p + t."""
    return unit_quaternion_rotate_point(q, p) + t


def concatenate_poses(
    q1: jnp.ndarray, t1: jnp.ndarray, q2: jnp.ndarray, t2: jnp.ndarray
) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """
    Pose that applies (q1, t1) first and (q2, t2) second:

        R = R2 R1
        t = R2 t1 + t2
    """
    q = quaternion_product(q2, q1)
    t = unit_quaternion_rotate_point(q2, t1) + t2
    return q, t


def invert_pose(q: jnp.ndarray, t: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
    q_inv = quaternion_conjugate(q)
    t_inv = -unit_quaternion_rotate_point(q_inv, t)
    return q_inv, t_inv
