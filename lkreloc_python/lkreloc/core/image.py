"""
Intensity image container for alignment.

Holds the grayscale float64 samples used by the solver, converted from
whatever the frame source delivered (8/16-bit, float, RGB or mono).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

import numpy as np
from numpy.typing import NDArray

from .status import ConfigurationError


@dataclass
class IntensityImage:
    """
    Grayscale intensity image.

    Attributes:
        gs: Grayscale values (float64, shape: H x W)
        height: Image height in pixels
        width: Image width in pixels
        name: Image name (file name or caller supplied label)
        path: Directory the image was read from, empty for arrays
    """

    gs: NDArray[np.float64] = field(repr=False, default_factory=lambda: np.zeros((0, 0)))
    height: int = 0
    width: int = 0
    name: str = ""
    path: str = ""

    def __post_init__(self):
        gs = np.asarray(self.gs)
        if gs.ndim == 3:
            gs = self._rgb_to_grayscale(gs)
        self.gs = self._to_double(gs)
        if self.gs.ndim == 2:
            self.height, self.width = self.gs.shape

    @property
    def shape(self) -> tuple:
        """(height, width) of the image."""
        return (self.height, self.width)

    def validate(self) -> None:
        """
        Check the image can take part in an alignment.

        Raises:
            ConfigurationError: If the image is not 2D, has zero area or
                contains non-finite samples
        """
        if self.gs.ndim != 2:
            raise ConfigurationError(
                f"Image '{self.name}' must be 2D, got {self.gs.ndim} dimensions"
            )
        if self.gs.size == 0:
            raise ConfigurationError(f"Image '{self.name}' has zero area")
        if not np.all(np.isfinite(self.gs)):
            raise ConfigurationError(f"Image '{self.name}' contains non-finite values")

    @staticmethod
    def _to_double(img: NDArray) -> NDArray[np.float64]:
        """Convert image to float64; integer types are scaled to [0, 1]."""
        if img.dtype == np.float64:
            return img
        if img.dtype == np.uint8:
            return img.astype(np.float64) / 255.0
        if img.dtype == np.uint16:
            return img.astype(np.float64) / 65535.0
        return img.astype(np.float64)

    @staticmethod
    def _rgb_to_grayscale(img: NDArray) -> NDArray[np.float64]:
        """Convert RGB(A) image to grayscale using ITU-R 601-2 luma transform."""
        if img.shape[2] not in (3, 4):
            raise ConfigurationError(
                f"Expected 3 or 4 color channels, got {img.shape[2]}"
            )
        img_double = IntensityImage._to_double(img[:, :, :3])
        return (
            0.299 * img_double[:, :, 0] +
            0.587 * img_double[:, :, 1] +
            0.114 * img_double[:, :, 2]
        )

    @classmethod
    def from_array(cls, img_array: NDArray, name: str = "array") -> "IntensityImage":
        """
        Create image from numpy array.

        Args:
            img_array: Image data (H x W, or H x W x 3 for color)
            name: Optional name for the image
        """
        return cls(gs=np.asarray(img_array), name=name)

    @classmethod
    def coerce(cls, source: Union["IntensityImage", NDArray], name: str = "array") -> "IntensityImage":
        """Return source unchanged if already an IntensityImage, else wrap it."""
        if isinstance(source, IntensityImage):
            return source
        return cls.from_array(source, name=name)
