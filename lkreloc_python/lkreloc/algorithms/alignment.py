"""
Forward-additive Lucas-Kanade alignment with an SE(2) warp.

Estimates the rotation + translation that maps a candidate frame onto a
reference keyframe by Gauss-Newton minimization of the summed squared
intensity error over a fixed pixel mask. Every iteration re-warps the
candidate and its (precomputed, unwarped) gradients with the current
estimate, builds steepest-descent vectors from the warped gradients and
the warp Jacobian, and adds the solved update directly onto the estimate.

The normal-equation reduction runs sequentially in mask order, so repeated
solves on identical inputs are bit-identical.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from numba import njit

from .gradients import compute_gradients
from .warp import WarpModel
from ..core.alignment_parameters import AlignmentParameters
from ..core.image import IntensityImage
from ..core.mask import PixelMask
from ..core.status import AlignmentStatus, ConfigurationError
from ..core.warp_parameters import WarpParameters

_logger = logging.getLogger(__name__)

ImageLike = Union[IntensityImage, NDArray]
MaskLike = Union[PixelMask, NDArray, Iterable[Tuple[int, int]]]


# =============================================================================
# Data classes
# =============================================================================

@dataclass
class IterationRecord:
    """
    State after one Gauss-Newton iteration.

    Attributes:
        iteration: 1-based iteration index
        params: Parameters after the update
        delta: Update vector (dtheta, dtx, dty)
        delta_norm: Euclidean norm of the update
        cost: Sum of squared residuals before the update
        valid_pixels: Masked pixels whose warp stayed inside the image
    """

    iteration: int
    params: WarpParameters
    delta: NDArray[np.float64]
    delta_norm: float
    cost: float
    valid_pixels: int

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "iteration": self.iteration,
            "params": self.params.to_dict(),
            "delta": [float(d) for d in self.delta],
            "delta_norm": self.delta_norm,
            "cost": self.cost,
            "valid_pixels": self.valid_pixels,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "IterationRecord":
        """Create from dictionary."""
        return cls(
            iteration=int(d["iteration"]),
            params=WarpParameters.from_dict(d["params"]),
            delta=np.asarray(d["delta"], dtype=np.float64),
            delta_norm=float(d["delta_norm"]),
            cost=float(d["cost"]),
            valid_pixels=int(d["valid_pixels"]),
        )


@dataclass
class AlignmentResult:
    """
    Result of one alignment solve.

    Attributes:
        params: Final warp estimate
        status: Why the iteration stopped
        iterations: Number of parameter updates performed
        cost: Sum of squared residuals at ``params`` over valid pixels
        valid_pixels: Masked pixels inside the image at ``params``
        mask_pixels: Total number of masked pixels
        history: One record per iteration
    """

    params: WarpParameters
    status: AlignmentStatus
    iterations: int = 0
    cost: float = float("nan")
    valid_pixels: int = 0
    mask_pixels: int = 0
    history: List[IterationRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True if the solve converged."""
        return self.status.ok

    @property
    def rms_residual(self) -> float:
        """Root-mean-square residual over valid pixels."""
        if self.valid_pixels == 0:
            return float("nan")
        return float(np.sqrt(self.cost / self.valid_pixels))

    def get_diagnostics(self) -> dict:
        """Get convergence diagnostics for the result."""
        diagnostics = {
            "status": self.status.name,
            "iterations": self.iterations,
            "cost": self.cost,
            "rms_residual": self.rms_residual,
            "valid_pixels": self.valid_pixels,
            "mask_pixels": self.mask_pixels,
            "valid_percent": (
                float(self.valid_pixels / self.mask_pixels * 100) if self.mask_pixels else 0.0
            ),
        }

        if self.history:
            diagnostics["initial_cost"] = self.history[0].cost
            diagnostics["final_delta_norm"] = self.history[-1].delta_norm

        return diagnostics

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "params": self.params.to_dict(),
            "status": self.status.name,
            "iterations": self.iterations,
            "cost": self.cost,
            "valid_pixels": self.valid_pixels,
            "mask_pixels": self.mask_pixels,
            "history": [record.to_dict() for record in self.history],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "AlignmentResult":
        """Create from dictionary."""
        return cls(
            params=WarpParameters.from_dict(d["params"]),
            status=AlignmentStatus[d["status"]],
            iterations=int(d.get("iterations", 0)),
            cost=float(d.get("cost", float("nan"))),
            valid_pixels=int(d.get("valid_pixels", 0)),
            mask_pixels=int(d.get("mask_pixels", 0)),
            history=[IterationRecord.from_dict(r) for r in d.get("history", [])],
        )


# =============================================================================
# Module-level numerical helpers
# =============================================================================

@njit(cache=True)
def _accumulate_normal_equations(
    grad_x: NDArray[np.float64],
    grad_y: NDArray[np.float64],
    jac: NDArray[np.float64],
    residual: NDArray[np.float64],
    valid: NDArray[np.bool_],
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Build the Gauss-Newton Hessian and right-hand side.

    For every valid pixel i the steepest-descent vector is
    sd_i = [grad_x_i, grad_y_i] . J_i (1x3); the Hessian is sum(sd_i^T sd_i)
    and the right-hand side is sum(sd_i^T residual_i). Pixels are visited in
    mask order.
    """
    hessian = np.zeros((3, 3), dtype=np.float64)
    rhs = np.zeros(3, dtype=np.float64)
    sd = np.empty(3, dtype=np.float64)

    for i in range(residual.shape[0]):
        if not valid[i]:
            continue

        gx = grad_x[i]
        gy = grad_y[i]
        for k in range(3):
            sd[k] = gx * jac[i, 0, k] + gy * jac[i, 1, k]

        err = residual[i]
        for k in range(3):
            rhs[k] += sd[k] * err
            for m in range(3):
                hessian[k, m] += sd[k] * sd[m]

    return hessian, rhs


def pseudo_inverse(matrix: NDArray[np.float64], rcond: float = 1e-10) -> NDArray[np.float64]:
    """
    Moore-Penrose pseudo-inverse via SVD.

    Singular values at or below ``rcond`` times the largest one are treated
    as zero, so rank-deficient and all-zero matrices yield the minimum-norm
    inverse instead of an error.
    """
    u, s, vt = np.linalg.svd(matrix)
    cutoff = rcond * (s[0] if s.size else 0.0)
    s_inv = np.zeros_like(s)
    keep = s > cutoff
    s_inv[keep] = 1.0 / s[keep]
    return (vt.T * s_inv) @ u.T


def _hessian_is_solvable(hessian: NDArray[np.float64], params: AlignmentParameters) -> bool:
    """Check the Hessian has full numerical rank."""
    s = np.linalg.svd(hessian, compute_uv=False)
    if s[0] <= params.hessian_floor:
        return False
    return bool(s[-1] > params.singular_value_cutoff * s[0])


# =============================================================================
# Main AlignmentSolver class
# =============================================================================

class AlignmentSolver:
    """
    SE(2) forward-additive Lucas-Kanade solver.

    A solver instance holds configuration and an optional iteration hook;
    all working buffers are local to each `align` call.

    Example:
        >>> solver = AlignmentSolver(AlignmentParameters(cutoff_iteration=50))
        >>> result = solver.align(keyframe, frame, mask)
        >>> if result.ok:
        ...     theta, tx, ty = result.params.as_vector()
    """

    def __init__(self, params: Optional[AlignmentParameters] = None):
        """
        Initialize the solver.

        Args:
            params: Solver parameters (defaults are used if None)

        Raises:
            ConfigurationError: If the parameters are out of range
        """
        self.params = params if params is not None else AlignmentParameters()
        self.params.validate()
        self._iteration_callback: Optional[Callable[[IterationRecord], None]] = None

    def set_iteration_callback(self, callback: Optional[Callable[[IterationRecord], None]]) -> None:
        """Set callback invoked with an IterationRecord after every iteration."""
        self._iteration_callback = callback

    def _report_iteration(self, record: IterationRecord) -> None:
        """Report iteration to callback if set."""
        if self._iteration_callback:
            self._iteration_callback(record)

    @staticmethod
    def _prepare(
        reference: ImageLike,
        candidate: ImageLike,
        mask: MaskLike,
        initial: Optional[WarpParameters],
    ) -> Tuple[IntensityImage, IntensityImage, PixelMask, WarpParameters]:
        """Validate inputs before any work is done."""
        ref_img = IntensityImage.coerce(reference, name="reference")
        cur_img = IntensityImage.coerce(candidate, name="candidate")
        ref_img.validate()
        cur_img.validate()

        if ref_img.shape != cur_img.shape:
            raise ConfigurationError(
                f"Reference shape {ref_img.shape} does not match candidate shape {cur_img.shape}"
            )

        pixel_mask = PixelMask.coerce(mask, ref_img.shape)
        if pixel_mask.shape != ref_img.shape:
            raise ConfigurationError(
                f"Mask shape {pixel_mask.shape} does not match image shape {ref_img.shape}"
            )
        if pixel_mask.is_empty():
            raise ConfigurationError("Mask selects no pixels")

        start = initial if initial is not None else WarpParameters.identity()
        if not start.is_finite():
            raise ConfigurationError(f"Initial warp parameters must be finite, got {start}")

        return ref_img, cur_img, pixel_mask, start

    def align(
        self,
        reference: ImageLike,
        candidate: ImageLike,
        mask: MaskLike,
        initial: Optional[WarpParameters] = None,
    ) -> AlignmentResult:
        """
        Estimate the SE(2) warp mapping ``candidate`` onto ``reference``.

        The rotation is about the image origin (0, 0), not the mask centre,
        so a pixel at distance r from the origin moves by about |theta| * r.
        Gauss-Newton only finds the true warp when that motion stays within
        a fraction of the dominant texture wavelength of the start. Larger
        motions can converge to a wrong local minimum, which still reports
        CONVERGED; a high ``rms_residual`` is the sign of it.

        Args:
            reference: Keyframe intensity image
            candidate: Live frame intensity image, same size as reference
            mask: Pixels forming the residual domain (PixelMask, boolean
                grid or iterable of (row, col))
            initial: Starting estimate (identity if None)

        Returns:
            AlignmentResult; check ``result.ok`` before using ``result.params``

        Raises:
            ConfigurationError: For invalid or inconsistent inputs
        """
        ref_img, cur_img, pixel_mask, start = self._prepare(reference, candidate, mask, initial)
        cfg = self.params

        grad_x, grad_y = compute_gradients(cur_img)
        channels = np.ascontiguousarray(np.stack([cur_img.gs, grad_x, grad_y]))
        xs, ys = pixel_mask.coordinates()
        ref_vec = pixel_mask.extract(ref_img.gs)
        min_valid = max(cfg.min_valid_pixels, 1)

        p = start.as_vector()
        history: List[IterationRecord] = []
        status = AlignmentStatus.MAX_ITERATIONS
        prev_norm = np.inf
        growth = 0

        _logger.debug(
            "Aligning %s against %s over %d pixels",
            cur_img.name, ref_img.name, pixel_mask.count,
        )

        for iteration in range(1, cfg.cutoff_iteration + 1):
            current = WarpParameters.from_vector(p)

            # Warp candidate and gradients with the same sampling coordinates
            samples, valid = WarpModel.warp_points(channels, current, xs, ys)
            n_valid = int(np.count_nonzero(valid))
            residual = ref_vec - samples[0]
            cost = float(np.sum(residual[valid] ** 2))

            if n_valid < min_valid:
                _logger.warning(
                    "Iteration %d: only %d of %d masked pixels inside the image",
                    iteration, n_valid, pixel_mask.count,
                )
                status = AlignmentStatus.NUMERICAL_FAILURE
                break

            jac = WarpModel.jacobian(current, xs, ys)
            hessian, rhs = _accumulate_normal_equations(
                samples[1], samples[2], jac, residual, valid,
            )

            if not _hessian_is_solvable(hessian, cfg):
                _logger.warning("Iteration %d: Hessian is rank deficient", iteration)
                status = AlignmentStatus.NUMERICAL_FAILURE
                break

            delta = pseudo_inverse(hessian, cfg.singular_value_cutoff) @ rhs
            p_next = p + delta
            delta_norm = float(np.linalg.norm(delta))

            if not np.all(np.isfinite(p_next)):
                status = AlignmentStatus.DIVERGED
                break

            p = p_next
            record = IterationRecord(
                iteration=iteration,
                params=WarpParameters.from_vector(p),
                delta=delta,
                delta_norm=delta_norm,
                cost=cost,
                valid_pixels=n_valid,
            )
            history.append(record)
            self._report_iteration(record)

            _logger.debug(
                "Iteration %d: cost=%.6g |delta|=%.3g params=(%.5f, %.3f, %.3f)",
                iteration, cost, delta_norm, p[0], p[1], p[2],
            )

            if delta_norm <= cfg.cutoff_diffnorm:
                status = AlignmentStatus.CONVERGED
                break

            growth = growth + 1 if delta_norm > prev_norm else 0
            if growth >= cfg.divergence_patience:
                status = AlignmentStatus.DIVERGED
                break
            prev_norm = delta_norm

        final = WarpParameters.from_vector(p)
        samples, valid = WarpModel.warp_points(channels[:1], final, xs, ys)
        final_residual = ref_vec[valid] - samples[0][valid]

        result = AlignmentResult(
            params=final,
            status=status,
            iterations=len(history),
            cost=float(np.sum(final_residual ** 2)),
            valid_pixels=int(np.count_nonzero(valid)),
            mask_pixels=pixel_mask.count,
            history=history,
        )

        if result.ok:
            _logger.info(
                "Converged in %d iterations: theta=%.5f tx=%.3f ty=%.3f rms=%.4g",
                result.iterations, final.theta, final.tx, final.ty, result.rms_residual,
            )
        else:
            _logger.warning(
                "Alignment stopped with %s after %d iterations",
                status.name, result.iterations,
            )

        return result


# =============================================================================
# Convenience function
# =============================================================================

def run_alignment(
    reference: ImageLike,
    candidate: ImageLike,
    mask: MaskLike,
    parameters: Optional[AlignmentParameters] = None,
    callback: Optional[Callable[[IterationRecord], None]] = None,
    initial: Optional[WarpParameters] = None,
) -> AlignmentResult:
    """
    Convenience function to run one alignment.

    Args:
        reference: Keyframe intensity image
        candidate: Live frame intensity image
        mask: Residual domain
        parameters: Solver parameters
        callback: Optional per-iteration hook
        initial: Optional starting estimate

    Returns:
        AlignmentResult
    """
    solver = AlignmentSolver(parameters)
    if callback:
        solver.set_iteration_callback(callback)

    return solver.align(reference, candidate, mask, initial=initial)
