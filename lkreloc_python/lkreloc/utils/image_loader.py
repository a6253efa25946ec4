"""
Image and mask loading utilities.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from PIL import Image

from .validation import is_finite_array, is_real_bounded
from ..core.image import IntensityImage
from ..core.mask import PixelMask


# Supported image formats
SUPPORTED_FORMATS = {".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".pgm"}


def validate_image_format(img_array: NDArray) -> Tuple[bool, str]:
    """
    Validate image format for alignment.

    Supported formats:
    - Grayscale (H x W)
    - RGB / RGBA (H x W x 3 or 4)
    - 8-bit, 16-bit or floating point depth

    Args:
        img_array: Image array to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if img_array is None:
        return False, "Image is None"

    if img_array.ndim not in (2, 3):
        return False, f"Invalid dimensions: {img_array.ndim}, expected 2 or 3"

    if img_array.ndim == 3 and img_array.shape[2] not in (3, 4):
        return False, f"Invalid number of channels: {img_array.shape[2]}"

    if img_array.dtype not in (np.uint8, np.uint16, np.int32, np.float32, np.float64):
        return False, f"Unsupported dtype: {img_array.dtype}"

    if img_array.shape[0] == 0 or img_array.shape[1] == 0:
        return False, "Image has zero area"

    if not is_finite_array(img_array):
        return False, "Image contains non-finite values"

    return True, ""


def _read_array(path: Path) -> NDArray:
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    if path.suffix.lower() not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported format: {path.suffix}")

    with Image.open(path) as pil_img:
        return np.array(pil_img)


def load_image(path: Union[str, Path]) -> IntensityImage:
    """
    Load a single image as grayscale intensities.

    Raises:
        FileNotFoundError: If file not found
        ValueError: If invalid format
    """
    path = Path(path)
    img_array = _read_array(path)

    is_valid, error = validate_image_format(img_array)
    if not is_valid:
        raise ValueError(f"Invalid image format for {path}: {error}")

    return IntensityImage(gs=img_array, name=path.name, path=str(path.parent))


def load_images(paths: Union[str, Path, List[Union[str, Path]]]) -> List[IntensityImage]:
    """
    Load images from file paths.

    Args:
        paths: Single path or list of paths

    Returns:
        List of IntensityImage objects, in the order given
    """
    if isinstance(paths, (str, Path)):
        paths = [paths]

    return [load_image(path) for path in paths]


def load_mask(path: Union[str, Path], threshold: float = 0.5) -> PixelMask:
    """
    Load a mask image; pixels brighter than ``threshold`` are selected.

    Args:
        path: Path to a mask image (any depth, converted to [0, 1] grayscale)
        threshold: Selection threshold in [0, 1)

    Returns:
        PixelMask on the grid of the mask image
    """
    valid, threshold, msg = is_real_bounded(threshold, 0.0, 1.0, include_upper=False)
    if not valid:
        raise ValueError(f"Invalid mask threshold: {msg}")

    img = load_image(path)
    return PixelMask.from_grid(img.gs > threshold)


def images_compatible(img1: IntensityImage, img2: IntensityImage) -> Tuple[bool, str]:
    """
    Check if two images can be aligned against each other.

    Images must have the same dimensions.

    Args:
        img1: First image
        img2: Second image

    Returns:
        Tuple of (is_compatible, reason)
    """
    if img1.height != img2.height:
        return False, f"Height mismatch: {img1.height} vs {img2.height}"

    if img1.width != img2.width:
        return False, f"Width mismatch: {img1.width} vs {img2.width}"

    return True, ""
