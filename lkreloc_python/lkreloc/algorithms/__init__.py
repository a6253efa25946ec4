"""Alignment algorithms: gradients, SE(2) warp and the Gauss-Newton solver."""

from .gradients import GradientComputer, compute_gradients
from .warp import WarpModel, apply_warp, warp_points
from .alignment import (
    AlignmentSolver,
    AlignmentResult,
    IterationRecord,
    pseudo_inverse,
    run_alignment,
)

__all__ = [
    "GradientComputer",
    "compute_gradients",
    "WarpModel",
    "apply_warp",
    "warp_points",
    "AlignmentSolver",
    "AlignmentResult",
    "IterationRecord",
    "pseudo_inverse",
    "run_alignment",
]
