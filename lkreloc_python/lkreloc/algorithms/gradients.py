"""
Spatial image gradients.

Central differences with a normalized [-1, 0, 1] kernel: a ramp of unit
slope yields a gradient of exactly 1. Borders replicate the edge pixel,
which is the same rule the warp uses for its last row and column.
"""

from __future__ import annotations

from typing import Tuple, Union

import numpy as np
from numpy.typing import NDArray
from scipy import ndimage

from ..core.image import IntensityImage


class GradientComputer:
    """Horizontal and vertical derivative images of an intensity image."""

    # [-1, 0, 1] scaled so that the response to a unit ramp is 1
    KERNEL = np.array([-1.0, 0.0, 1.0], dtype=np.float64) / 2.0
    BORDER_MODE = "nearest"

    @classmethod
    def compute(
        cls,
        image: Union[IntensityImage, NDArray],
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Compute (grad_x, grad_y).

        grad_x differentiates along columns (x), grad_y along rows (y).

        Raises:
            ConfigurationError: If the image is not 2D, empty or non-finite
        """
        img = IntensityImage.coerce(image)
        img.validate()
        gs = img.gs

        grad_x = ndimage.correlate1d(gs, cls.KERNEL, axis=1, mode=cls.BORDER_MODE)
        grad_y = ndimage.correlate1d(gs, cls.KERNEL, axis=0, mode=cls.BORDER_MODE)
        return grad_x, grad_y


def compute_gradients(
    image: Union[IntensityImage, NDArray],
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Convenience function for GradientComputer.compute."""
    return GradientComputer.compute(image)
