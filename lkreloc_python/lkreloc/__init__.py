"""
lkreloc - SE(2) Lucas-Kanade relocalization for camera frames.

Estimates the rotation and translation that brings a live frame back onto a
stored keyframe by forward-additive Gauss-Newton alignment over a pixel mask.
"""

from .core.status import Status, AlignmentStatus, ConfigurationError
from .core.warp_parameters import WarpParameters
from .core.image import IntensityImage
from .core.mask import PixelMask
from .core.alignment_parameters import AlignmentParameters
from .algorithms.gradients import GradientComputer, compute_gradients
from .algorithms.warp import WarpModel, apply_warp
from .algorithms.alignment import AlignmentSolver, AlignmentResult, IterationRecord, run_alignment
from .main import RelocalizationSession, AlignmentReport

__version__ = "0.1.0"

__all__ = [
    "RelocalizationSession",
    "AlignmentReport",
    "Status",
    "AlignmentStatus",
    "ConfigurationError",
    "WarpParameters",
    "IntensityImage",
    "PixelMask",
    "AlignmentParameters",
    "GradientComputer",
    "compute_gradients",
    "WarpModel",
    "apply_warp",
    "AlignmentSolver",
    "AlignmentResult",
    "IterationRecord",
    "run_alignment",
]
