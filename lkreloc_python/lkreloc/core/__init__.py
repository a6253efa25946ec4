"""Core data structures for lkreloc."""

from .status import Status, AlignmentStatus, ConfigurationError
from .warp_parameters import WarpParameters
from .image import IntensityImage
from .mask import PixelMask
from .alignment_parameters import AlignmentParameters

__all__ = [
    "Status",
    "AlignmentStatus",
    "ConfigurationError",
    "WarpParameters",
    "IntensityImage",
    "PixelMask",
    "AlignmentParameters",
]
