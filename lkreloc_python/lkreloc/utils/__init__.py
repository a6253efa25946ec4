"""Utility functions for lkreloc."""

from .validation import is_real_bounded, is_int_bounded, validate_alignment_parameters
from .image_loader import load_image, load_images, load_mask, validate_image_format

__all__ = [
    "load_image",
    "load_images",
    "load_mask",
    "validate_image_format",
    "is_real_bounded",
    "is_int_bounded",
    "validate_alignment_parameters",
]
