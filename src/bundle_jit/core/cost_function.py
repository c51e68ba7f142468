# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.
"""
Automatic-differentiation cost functions for bundle-jit.

This module is the boundary between the residual formulas and an external
nonlinear least-squares solver. A residual functor is a small immutable
object that

    • declares `num_residuals` and `parameter_block_sizes`
    • computes r(block_0, ..., block_k) with pure `jax.numpy` arithmetic

`AutoDiffCostFunction` wraps such a functor and exposes exactly what a
solver asks for on each iteration: the residual vector, and on request the
Jacobian of the residual with respect to every parameter block.

Key Features
------------
• One formula, two numeric types
    Residual-only evaluation runs the functor on concrete arrays. Jacobian
    evaluation pushes JVP tracers (dual numbers carrying a derivative)
    through the very same code via `jax.jacfwd`, or uses `jax.jacrev` when
    configured for reverse mode.

• Parameter-block contract
    Declared sizes are checked when the cost function is created and every
    block is shape-checked before evaluation. Mismatches raise `ValueError`
    eagerly, outside any traced code.

• Always a value
    Evaluation always reports success. Degenerate geometry (zero depth,
    vanishing epipolar lines) shows up as inf/NaN in the residuals, and the
    solver decides what to do with it.

• Batching
    `batch_residual_function` vectorizes the pure residual functions over
    many observations with `jax.vmap`.

Primary API
-----------
AutoDiffConfig
    jit / Jacobian-mode switches.

AutoDiffCostFunction(functor, num_residuals=None, parameter_block_sizes=None, config=None)
    evaluate(*blocks, jacobians=False) -> CostEvaluation
    residuals(*blocks) -> (num_residuals,)
    directional_derivative(blocks, tangents) -> (residuals, J·tangent)

batch_residual_function(fn, in_axes=0, jit=True)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp

from .types import BlockSizes, CostEvaluation

logger = logging.getLogger(__name__)

# Type aliases for clarity
ResidualFn = Callable[..., jnp.ndarray]

JACOBIAN_MODES: Dict[str, Callable] = {
    "forward": jax.jacfwd,
    "reverse": jax.jacrev,
}


@dataclass
class AutoDiffConfig:
    jit: bool = True
    jacobian_mode: str = "forward"  # "forward" (dual numbers) or "reverse"


class AutoDiffCostFunction:
    """
    Cost function with Jacobians derived by automatic differentiation.

    Usage:
        functor = ReprojectionResidual(PinholeCameraModel, point2D)
        cost = AutoDiffCostFunction(functor)
        ev = cost.evaluate(qvec, tvec, point3D, camera_params, jacobians=True)
        ev.residuals      # (2,)
        ev.jacobians[0]   # (2, 4) d r / d qvec
    """

    def __init__(
        self,
        functor: ResidualFn,
        num_residuals: Optional[int] = None,
        parameter_block_sizes: Optional[Sequence[int]] = None,
        config: Optional[AutoDiffConfig] = None,
    ) -> None:
        cfg = config if config is not None else AutoDiffConfig()
        if cfg.jacobian_mode not in JACOBIAN_MODES:
            raise ValueError(
                f"Unknown Jacobian mode '{cfg.jacobian_mode}', "
                f"expected one of {sorted(JACOBIAN_MODES)}"
            )

        declared_residuals = int(functor.num_residuals)
        declared_sizes: BlockSizes = tuple(int(s) for s in functor.parameter_block_sizes)

        if num_residuals is not None and int(num_residuals) != declared_residuals:
            raise ValueError(
                f"{type(functor).__name__} produces {declared_residuals} residuals, "
                f"but {num_residuals} were requested"
            )
        if parameter_block_sizes is not None and tuple(parameter_block_sizes) != declared_sizes:
            raise ValueError(
                f"{type(functor).__name__} expects parameter blocks {declared_sizes}, "
                f"but {tuple(parameter_block_sizes)} were requested"
            )
        if declared_residuals <= 0:
            raise ValueError("A cost function must produce at least one residual")
        if not declared_sizes or any(s <= 0 for s in declared_sizes):
            raise ValueError(f"Invalid parameter block sizes {declared_sizes}")

        self.functor = functor
        self.num_residuals = declared_residuals
        self.parameter_block_sizes = declared_sizes
        self.config = cfg

        # jax transforms only ever see a plain function closing over the functor
        def residual_fn(*blocks):
            return functor(*blocks)

        argnums = tuple(range(len(declared_sizes)))
        jacobian_fn = JACOBIAN_MODES[cfg.jacobian_mode](residual_fn, argnums=argnums)

        def residual_and_jacobians(*blocks):
            return residual_fn(*blocks), jacobian_fn(*blocks)

        self._pure_residual_fn = residual_fn
        if cfg.jit:
            self._residual_fn = jax.jit(residual_fn)
            self._residual_and_jacobians_fn = jax.jit(residual_and_jacobians)
        else:
            self._residual_fn = residual_fn
            self._residual_and_jacobians_fn = residual_and_jacobians

        logger.debug(
            "Created %s cost function: %d residuals, blocks %s, mode=%s, jit=%s",
            type(functor).__name__,
            declared_residuals,
            declared_sizes,
            cfg.jacobian_mode,
            cfg.jit,
        )

    # --- Parameter-block contract ---

    def _check_blocks(self, blocks: Sequence) -> Tuple[jnp.ndarray, ...]:
        if len(blocks) != len(self.parameter_block_sizes):
            raise ValueError(
                f"Expected {len(self.parameter_block_sizes)} parameter blocks, got {len(blocks)}"
            )
        checked = []
        for i, (block, size) in enumerate(zip(blocks, self.parameter_block_sizes)):
            arr = jnp.asarray(block, dtype=float)
            if arr.shape != (size,):
                raise ValueError(
                    f"Parameter block {i} must have shape ({size},), got {arr.shape}"
                )
            checked.append(arr)
        return tuple(checked)

    def _check_residuals(self, r: jnp.ndarray) -> jnp.ndarray:
        if r.shape != (self.num_residuals,):
            raise ValueError(
                f"{type(self.functor).__name__} returned residuals of shape {r.shape}, "
                f"expected ({self.num_residuals},)"
            )
        return r

    # --- Evaluation ---

    def residuals(self, *blocks) -> jnp.ndarray:
        checked = self._check_blocks(blocks)
        return self._check_residuals(self._residual_fn(*checked))

    __call__ = residuals

    def evaluate(self, *blocks, jacobians: bool = False) -> CostEvaluation:
        """
        Evaluate the residuals and, if requested, the per-block Jacobians.

        Returns:
            CostEvaluation with success=True; jacobians[i] has shape
            (num_residuals, parameter_block_sizes[i]).
        """
        checked = self._check_blocks(blocks)
        if not jacobians:
            r = self._check_residuals(self._residual_fn(*checked))
            return CostEvaluation(success=True, residuals=r)

        r, jac = self._residual_and_jacobians_fn(*checked)
        r = self._check_residuals(r)
        return CostEvaluation(success=True, residuals=r, jacobians=tuple(jac))

    def directional_derivative(
        self, blocks: Sequence, tangents: Sequence
    ) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """
        Evaluate the functor on dual numbers: returns (r(x), J(x) · dx).

        `tangents` holds one perturbation per parameter block.
        """
        primals = self._check_blocks(blocks)
        dirs = self._check_blocks(tangents)
        return jax.jvp(self._pure_residual_fn, primals, dirs)


def batch_residual_function(fn: ResidualFn, in_axes=0, jit: bool = True) -> ResidualFn:
    """
    Vectorize a pure residual function over a leading observation axis.

    Bind non-array arguments (such as the camera model) before batching:

        batched = batch_residual_function(
            functools.partial(reprojection_residual, camera_model=PinholeCameraModel),
            in_axes=(0, 0, 0, None, 0),
        )
    """
    batched = jax.vmap(fn, in_axes=in_axes)
    if jit:
        return jax.jit(batched)
    return batched
