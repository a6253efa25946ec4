"""
SE(2) warp model.

The warp matrix rotates by theta and then translates by (tx, ty), mapping
candidate coordinates onto reference coordinates. Warping an image reads,
for every destination pixel x, the source image at the sampling coordinate

    s = R(theta)^T (x - t)

with bilinear interpolation. Sampling coordinates outside
[0, width) x [0, height) are invalid and zero-filled in every channel.
Inside that domain the upper interpolation neighbour is clamped to the
last row/column, i.e. the border is replicated.

The Jacobian returned by `WarpModel.jacobian` is the derivative of s with
respect to (theta, tx, ty). It is derived from this exact composition order
and must change together with `source_coordinates`.

Per-pixel sampling is Numba-accelerated at module level.
"""

from __future__ import annotations

from typing import Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from numba import njit, prange

from ..core.image import IntensityImage
from ..core.status import ConfigurationError
from ..core.warp_parameters import WarpParameters


# =============================================================================
# Module-level Numba-accelerated functions
# =============================================================================

@njit(cache=True, parallel=True)
def _sample_bilinear(
    channels: NDArray[np.float64],
    src_x: NDArray[np.float64],
    src_y: NDArray[np.float64],
) -> Tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """
    Bilinearly sample a stack of channels at the given source coordinates.

    Args:
        channels: C x H x W stack of images sharing one grid
        src_x: Source x (column) coordinate per sample
        src_y: Source y (row) coordinate per sample

    Returns:
        Tuple of (C x N samples, N validity flags). Invalid samples are 0.
    """
    n_channels, h, w = channels.shape
    n = src_x.shape[0]
    out = np.zeros((n_channels, n), dtype=np.float64)
    valid = np.zeros(n, dtype=np.bool_)

    for idx in prange(n):
        sx = src_x[idx]
        sy = src_y[idx]

        if not (sx >= 0.0 and sx < w and sy >= 0.0 and sy < h):
            continue

        x0 = int(sx)
        y0 = int(sy)
        fx = sx - x0
        fy = sy - y0
        x1 = min(x0 + 1, w - 1)
        y1 = min(y0 + 1, h - 1)

        w00 = (1.0 - fx) * (1.0 - fy)
        w01 = fx * (1.0 - fy)
        w10 = (1.0 - fx) * fy
        w11 = fx * fy

        for c in range(n_channels):
            out[c, idx] = (
                w00 * channels[c, y0, x0] +
                w01 * channels[c, y0, x1] +
                w10 * channels[c, y1, x0] +
                w11 * channels[c, y1, x1]
            )
        valid[idx] = True

    return out, valid


# =============================================================================
# Warp model
# =============================================================================

def _as_params(params: Union[WarpParameters, Sequence[float]]) -> WarpParameters:
    if not isinstance(params, WarpParameters):
        params = WarpParameters.from_vector(params)
    if not params.is_finite():
        raise ConfigurationError(f"Warp parameters must be finite, got {params}")
    return params


def _as_stack(channels: Union[NDArray, Sequence[NDArray]]) -> NDArray[np.float64]:
    stack = np.asarray(channels, dtype=np.float64)
    if stack.ndim == 2:
        stack = stack[np.newaxis]
    if stack.ndim != 3:
        raise ConfigurationError(
            f"Expected a 2D image or a stack of 2D images, got {stack.ndim} dimensions"
        )
    if stack.shape[1] == 0 or stack.shape[2] == 0:
        raise ConfigurationError("Cannot warp an image with zero area")
    return np.ascontiguousarray(stack)


class WarpModel:
    """
    Rigid 2D warp: matrix, image/point warping and Jacobian.

    All methods are pure functions of their arguments.
    """

    @staticmethod
    def matrix(params: Union[WarpParameters, Sequence[float]]) -> NDArray[np.float64]:
        """3x3 homogeneous matrix mapping candidate onto reference coordinates."""
        return _as_params(params).matrix()

    @staticmethod
    def source_coordinates(
        params: Union[WarpParameters, Sequence[float]],
        xs: NDArray[np.float64],
        ys: NDArray[np.float64],
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Sampling coordinates s = R^T (x - t) for destination pixels (xs, ys).
        """
        p = _as_params(params)
        c = np.cos(p.theta)
        s = np.sin(p.theta)
        dx = np.asarray(xs, dtype=np.float64) - p.tx
        dy = np.asarray(ys, dtype=np.float64) - p.ty
        return c * dx + s * dy, -s * dx + c * dy

    @staticmethod
    def jacobian(
        params: Union[WarpParameters, Sequence[float]],
        xs: NDArray[np.float64],
        ys: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """
        Derivatives of the sampling coordinates w.r.t. (theta, tx, ty).

        Args:
            params: Current warp estimate
            xs, ys: Nominal (unwarped) destination coordinates

        Returns:
            N x 2 x 3 array; row 0 is d(s_x)/dp, row 1 is d(s_y)/dp
        """
        p = _as_params(params)
        c = np.cos(p.theta)
        s = np.sin(p.theta)
        dx = np.asarray(xs, dtype=np.float64) - p.tx
        dy = np.asarray(ys, dtype=np.float64) - p.ty

        jac = np.empty((dx.shape[0], 2, 3), dtype=np.float64)
        jac[:, 0, 0] = -s * dx + c * dy
        jac[:, 0, 1] = -c
        jac[:, 0, 2] = -s
        jac[:, 1, 0] = -c * dx - s * dy
        jac[:, 1, 1] = s
        jac[:, 1, 2] = -c
        return jac

    @staticmethod
    def warp_points(
        channels: Union[NDArray, Sequence[NDArray]],
        params: Union[WarpParameters, Sequence[float]],
        xs: NDArray[np.float64],
        ys: NDArray[np.float64],
    ) -> Tuple[NDArray[np.float64], NDArray[np.bool_]]:
        """
        Warp one or more same-sized images, evaluated only at (xs, ys).

        The sampling coordinates are computed once and shared by every
        channel, so all channels get the same validity pattern.

        Returns:
            Tuple of (C x N samples, N validity flags)
        """
        stack = _as_stack(channels)
        src_x, src_y = WarpModel.source_coordinates(params, xs, ys)
        return _sample_bilinear(
            stack,
            np.ascontiguousarray(src_x),
            np.ascontiguousarray(src_y),
        )

    @staticmethod
    def apply(
        image: Union[IntensityImage, NDArray],
        params: Union[WarpParameters, Sequence[float]],
        return_valid: bool = False,
    ):
        """
        Warp a full image; the result has the dimensions of the input.

        Args:
            image: Image to warp
            params: Warp parameters
            return_valid: Also return the boolean validity grid

        Returns:
            Warped image, or (warped image, validity grid)

        Raises:
            ConfigurationError: For images that are not 2D, zero-area images
                or non-finite parameters
        """
        gs = np.asarray(image.gs if isinstance(image, IntensityImage) else image)
        if gs.ndim != 2:
            raise ConfigurationError(
                f"Expected a 2D image, got {gs.ndim} dimensions; use warp_points for stacks"
            )
        stack = _as_stack(gs)
        h, w = stack.shape[1:]

        rows, cols = np.mgrid[0:h, 0:w]
        samples, valid = WarpModel.warp_points(
            stack, params,
            cols.ravel().astype(np.float64),
            rows.ravel().astype(np.float64),
        )

        warped = samples[0].reshape(h, w)
        if return_valid:
            return warped, valid.reshape(h, w)
        return warped


# =============================================================================
# Convenience functions
# =============================================================================

def apply_warp(
    image: Union[IntensityImage, NDArray],
    params: Union[WarpParameters, Sequence[float]],
    return_valid: bool = False,
):
    """Convenience function for WarpModel.apply."""
    return WarpModel.apply(image, params, return_valid=return_valid)


def warp_points(
    channels: Union[NDArray, Sequence[NDArray]],
    params: Union[WarpParameters, Sequence[float]],
    xs: NDArray[np.float64],
    ys: NDArray[np.float64],
) -> Tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """Convenience function for WarpModel.warp_points."""
    return WarpModel.warp_points(channels, params, xs, ys)
