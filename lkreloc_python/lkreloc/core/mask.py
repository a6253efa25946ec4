"""
Pixel mask selecting the residual domain of an alignment.
"""

from __future__ import annotations

from typing import Iterable, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .status import ConfigurationError


class PixelMask:
    """
    Fixed, ordered set of (row, col) pixels taking part in the alignment.

    The coordinate order is row-major (the order ``np.nonzero`` returns for
    a boolean grid) and never changes after construction, so every
    per-pixel vector built from the mask lines up with every other one.

    Example:
        >>> grid = np.zeros((64, 64), dtype=bool)
        >>> grid[16:48, 16:48] = True
        >>> mask = PixelMask.from_grid(grid)
        >>> mask.count
        1024
    """

    def __init__(self, rows: NDArray[np.intp], cols: NDArray[np.intp], shape: Tuple[int, int]):
        self._rows = np.ascontiguousarray(rows, dtype=np.intp)
        self._cols = np.ascontiguousarray(cols, dtype=np.intp)
        self._rows.setflags(write=False)
        self._cols.setflags(write=False)
        self._shape = (int(shape[0]), int(shape[1]))

    @classmethod
    def from_grid(cls, grid: NDArray) -> "PixelMask":
        """Create from a boolean grid of the image size."""
        grid = np.asarray(grid)
        if grid.ndim != 2:
            raise ConfigurationError(f"Mask grid must be 2D, got {grid.ndim} dimensions")
        rows, cols = np.nonzero(grid.astype(np.bool_))
        return cls(rows, cols, grid.shape)

    @classmethod
    def from_coordinates(
        cls,
        coords: Iterable[Tuple[int, int]],
        shape: Tuple[int, int],
    ) -> "PixelMask":
        """
        Create from (row, col) pairs.

        Duplicates are dropped and the pairs are sorted into row-major order.

        Raises:
            ConfigurationError: If a coordinate lies outside ``shape``
        """
        pairs = np.asarray(list(coords), dtype=np.int64).reshape(-1, 2)
        height, width = int(shape[0]), int(shape[1])

        outside = (
            (pairs[:, 0] < 0) | (pairs[:, 0] >= height) |
            (pairs[:, 1] < 0) | (pairs[:, 1] >= width)
        )
        if np.any(outside):
            bad = tuple(int(v) for v in pairs[np.argmax(outside)])
            raise ConfigurationError(
                f"Mask coordinate {bad} lies outside image of shape {(height, width)}"
            )

        grid = np.zeros((height, width), dtype=np.bool_)
        grid[pairs[:, 0], pairs[:, 1]] = True
        return cls.from_grid(grid)

    @classmethod
    def coerce(
        cls,
        source: Union["PixelMask", NDArray, Iterable[Tuple[int, int]]],
        shape: Tuple[int, int],
    ) -> "PixelMask":
        """
        Build a mask from a PixelMask, a grid or coordinate pairs.

        Any 2D array is read as a grid, except an integer N x 2 array that
        does not have the image shape, which holds (row, col) pairs. Grids of
        the wrong size keep their own shape and are rejected by the caller.
        """
        if isinstance(source, PixelMask):
            return source
        if isinstance(source, np.ndarray):
            is_pairs = (
                source.ndim == 2 and source.shape[1] == 2 and
                np.issubdtype(source.dtype, np.integer) and
                source.shape != tuple(shape)
            )
            if not is_pairs:
                return cls.from_grid(source)
        return cls.from_coordinates(source, shape)

    @property
    def rows(self) -> NDArray[np.intp]:
        """Row index of every masked pixel, in canonical order."""
        return self._rows

    @property
    def cols(self) -> NDArray[np.intp]:
        """Column index of every masked pixel, in canonical order."""
        return self._cols

    @property
    def shape(self) -> Tuple[int, int]:
        """(height, width) of the grid the mask was defined on."""
        return self._shape

    @property
    def count(self) -> int:
        """Number of masked pixels."""
        return int(self._rows.size)

    def is_empty(self) -> bool:
        """Check if mask selects no pixels."""
        return self.count == 0

    def coordinates(self) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Nominal (x, y) = (col, row) image coordinates as float64."""
        return self._cols.astype(np.float64), self._rows.astype(np.float64)

    def extract(self, data: NDArray) -> NDArray:
        """Vectorize a full-size array in canonical mask order."""
        if data.shape[:2] != self._shape:
            raise ConfigurationError(
                f"Array shape {data.shape[:2]} does not match mask shape {self._shape}"
            )
        return data[self._rows, self._cols]

    def to_grid(self) -> NDArray[np.bool_]:
        """Boolean grid representation."""
        grid = np.zeros(self._shape, dtype=np.bool_)
        grid[self._rows, self._cols] = True
        return grid

    def __len__(self) -> int:
        return self.count

    def __repr__(self) -> str:
        return f"PixelMask(count={self.count}, shape={self._shape})"
