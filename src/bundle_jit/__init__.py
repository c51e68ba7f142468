# Copyright (c) 2025.
# This file is part of bundle-jit, released under the MIT License.
"""bundle-jit: differentiable bundle-adjustment residuals in JAX."""

__version__ = "0.1.0"

from .core.types import Pose, CostEvaluation
from .core.cost_function import AutoDiffConfig, AutoDiffCostFunction, batch_residual_function
from .cameras.models import CameraModel, get_camera_model
from .ba.cost_functions import (
    ReprojectionResidual,
    FixedPoseReprojectionResidual,
    RigReprojectionResidual,
    RelativePoseResidual,
)

__all__ = [
    "__version__",
    "Pose",
    "CostEvaluation",
    "AutoDiffConfig",
    "AutoDiffCostFunction",
    "batch_residual_function",
    "CameraModel",
    "get_camera_model",
    "ReprojectionResidual",
    "FixedPoseReprojectionResidual",
    "RigReprojectionResidual",
    "RelativePoseResidual",
]
