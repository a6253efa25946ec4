"""
Main lkreloc application module.

Provides the keyframe relocalization workflow: one reference keyframe, one or
more candidate frames, a pixel mask and solver parameters.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray
from tqdm import tqdm

from .core.alignment_parameters import AlignmentParameters
from .core.image import IntensityImage
from .core.mask import PixelMask
from .core.status import ConfigurationError, Status
from .core.warp_parameters import WarpParameters
from .algorithms.alignment import AlignmentResult, AlignmentSolver, IterationRecord
from .utils.image_loader import images_compatible, load_image, load_mask

_logger = logging.getLogger(__name__)

ImageSource = Union[str, Path, NDArray, IntensityImage]


@dataclass
class AlignmentReport:
    """
    Results of a relocalization session.

    Attributes:
        reference_name: Name of the keyframe
        candidate_names: Name of every candidate, in processing order
        results: One AlignmentResult per candidate
        parameters: Solver parameters used
    """

    reference_name: str = ""
    candidate_names: List[str] = field(default_factory=list)
    results: List[AlignmentResult] = field(default_factory=list)
    parameters: Optional[AlignmentParameters] = None

    @property
    def all_converged(self) -> bool:
        """True if every candidate converged."""
        return bool(self.results) and all(r.ok for r in self.results)

    def summary(self) -> List[dict]:
        """One row per candidate with the estimate and its diagnostics."""
        rows = []
        for name, result in zip(self.candidate_names, self.results):
            row = {"candidate": name}
            row.update(result.params.to_dict())
            row.update(result.get_diagnostics())
            rows.append(row)
        return rows

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "reference": self.reference_name,
            "parameters": self.parameters.to_dict() if self.parameters else None,
            "candidates": [
                {"name": name, "result": result.to_dict()}
                for name, result in zip(self.candidate_names, self.results)
            ],
        }

    def save(self, filepath: Union[str, Path]) -> None:
        """Save report as JSON."""
        filepath = Path(filepath).with_suffix(".json")
        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> "AlignmentReport":
        """Load report from JSON."""
        with open(Path(filepath).with_suffix(".json")) as f:
            data = json.load(f)

        return cls(
            reference_name=data.get("reference", ""),
            candidate_names=[c["name"] for c in data.get("candidates", [])],
            results=[AlignmentResult.from_dict(c["result"]) for c in data.get("candidates", [])],
            parameters=AlignmentParameters.from_dict(data["parameters"]) if data.get("parameters") else None,
        )


class RelocalizationSession:
    """
    Main relocalization workflow.

    1. Set the reference keyframe
    2. Set one or more candidate frames
    3. Set the mask (all pixels if omitted)
    4. Set solver parameters
    5. Run the alignment for every candidate

    Example:
        >>> session = RelocalizationSession()
        >>> session.set_reference("keyframe.png")
        >>> session.set_candidates(["frame_001.png", "frame_002.png"])
        >>> session.set_mask("mask.png")
        >>> report = session.run()
        >>> report.all_converged
        True
    """

    def __init__(self):
        """Initialize session."""
        self._ref_img: Optional[IntensityImage] = None
        self._cand_imgs: List[IntensityImage] = []
        self._mask: Optional[PixelMask] = None
        self._params: AlignmentParameters = AlignmentParameters()
        self._initial: WarpParameters = WarpParameters.identity()
        self._report: Optional[AlignmentReport] = None
        self._iteration_callback: Optional[Callable[[IterationRecord], None]] = None

    def set_iteration_callback(self, callback: Optional[Callable[[IterationRecord], None]]) -> None:
        """Set callback passed on to the solver for every candidate."""
        self._iteration_callback = callback

    @staticmethod
    def _to_image(source: ImageSource, name: str) -> IntensityImage:
        if isinstance(source, IntensityImage):
            return source
        if isinstance(source, np.ndarray):
            return IntensityImage.from_array(source, name=name)
        return load_image(source)

    # Image management

    def set_reference(self, source: ImageSource) -> Status:
        """
        Set the reference keyframe.

        Args:
            source: Image file path, numpy array, or IntensityImage

        Returns:
            Status
        """
        try:
            img = self._to_image(source, "reference")
            img.validate()
            self._ref_img = img

            # Clear dependent data
            self._mask = None
            self._report = None

            return Status.SUCCESS

        except (ConfigurationError, OSError, ValueError) as e:
            _logger.error("Error setting reference: %s", e)
            return Status.FAILED

    def set_candidates(self, sources: Union[ImageSource, Sequence[ImageSource]]) -> Status:
        """
        Set candidate frame(s).

        Candidates must match the reference dimensions.

        Returns:
            Status
        """
        if self._ref_img is None:
            _logger.error("Reference image must be set before candidates")
            return Status.FAILED

        try:
            if not isinstance(sources, (list, tuple)):
                sources = [sources]

            imgs = []
            for i, source in enumerate(sources):
                img = self._to_image(source, f"candidate_{i}")
                img.validate()

                compatible, reason = images_compatible(self._ref_img, img)
                if not compatible:
                    raise ConfigurationError(f"{img.name}: {reason}")
                imgs.append(img)

            self._cand_imgs = imgs
            self._report = None

            return Status.SUCCESS

        except (ConfigurationError, OSError, ValueError) as e:
            _logger.error("Error setting candidates: %s", e)
            return Status.FAILED

    # Mask management

    def set_mask(
        self,
        source: Union[str, Path, PixelMask, NDArray, Sequence],
        threshold: float = 0.5,
    ) -> Status:
        """
        Set the residual mask.

        Args:
            source: Mask image path, PixelMask, boolean grid or (row, col) pairs
            threshold: Binarization threshold for mask images

        Returns:
            Status
        """
        if self._ref_img is None:
            _logger.error("Reference image must be set before the mask")
            return Status.FAILED

        try:
            if isinstance(source, (str, Path)):
                mask = load_mask(source, threshold)
            else:
                mask = PixelMask.coerce(source, self._ref_img.shape)

            if mask.shape != self._ref_img.shape:
                raise ConfigurationError(
                    f"Mask shape {mask.shape} does not match image shape {self._ref_img.shape}"
                )
            if mask.is_empty():
                raise ConfigurationError("Mask selects no pixels")

            self._mask = mask
            self._report = None

            return Status.SUCCESS

        except (ConfigurationError, OSError, ValueError) as e:
            _logger.error("Error setting mask: %s", e)
            return Status.FAILED

    # Parameter management

    def set_parameters(self, params: AlignmentParameters) -> Status:
        """
        Set solver parameters.

        Returns:
            Status
        """
        try:
            params.validate()
            self._params = params
            self._report = None

            return Status.SUCCESS

        except ConfigurationError as e:
            _logger.error("Invalid parameters: %s", e)
            return Status.FAILED

    def set_initial_guess(self, params: WarpParameters) -> Status:
        """
        Set the starting estimate used for the first candidate.

        Returns:
            Status
        """
        if not params.is_finite():
            _logger.error("Initial guess must be finite, got %s", params)
            return Status.FAILED

        self._initial = params
        self._report = None
        return Status.SUCCESS

    # Alignment

    def run(self, propagate: bool = False, progress: bool = True) -> AlignmentReport:
        """
        Align every candidate against the reference.

        Args:
            propagate: Start each candidate from the previous converged
                estimate instead of the initial guess (frame sequences)
            progress: Show a progress bar

        Returns:
            AlignmentReport
        """
        if self._ref_img is None or not self._cand_imgs:
            raise RuntimeError("Reference and candidate images must be set")

        mask = self._mask
        if mask is None:
            mask = PixelMask.from_grid(np.ones(self._ref_img.shape, dtype=np.bool_))

        solver = AlignmentSolver(self._params)
        solver.set_iteration_callback(self._iteration_callback)

        report = AlignmentReport(reference_name=self._ref_img.name, parameters=self._params)
        start = self._initial

        pbar = tqdm(self._cand_imgs, desc="Aligning", unit="img", disable=not progress)
        for img in pbar:
            pbar.set_postfix({"current": img.name[:20]})

            result = solver.align(self._ref_img, img, mask, initial=start)
            report.candidate_names.append(img.name)
            report.results.append(result)

            if propagate and result.ok:
                start = result.params

        converged = sum(r.ok for r in report.results)
        _logger.info("Aligned %d candidates, %d converged", len(report.results), converged)

        self._report = report
        return report

    # Getters

    @property
    def reference_image(self) -> Optional[IntensityImage]:
        """Get reference image."""
        return self._ref_img

    @property
    def candidate_images(self) -> List[IntensityImage]:
        """Get candidate images."""
        return self._cand_imgs

    @property
    def mask(self) -> Optional[PixelMask]:
        """Get mask."""
        return self._mask

    @property
    def parameters(self) -> AlignmentParameters:
        """Get solver parameters."""
        return self._params

    @property
    def report(self) -> Optional[AlignmentReport]:
        """Get last report."""
        return self._report


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="lkreloc",
        description="Align candidate frames to a keyframe with SE(2) Lucas-Kanade",
    )
    parser.add_argument("reference", help="Reference keyframe image")
    parser.add_argument("candidates", nargs="+", help="Candidate frame image(s)")
    parser.add_argument(
        "--mask",
        default=None,
        help="Mask image; pixels brighter than --mask-threshold are used (default: all pixels)",
    )
    parser.add_argument(
        "--mask-threshold",
        type=float,
        default=0.5,
        help="Mask binarization threshold in [0, 1) (default: 0.5)",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=AlignmentParameters.cutoff_diffnorm,
        help="Convergence tolerance on the update norm (default: %(default)s)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=AlignmentParameters.cutoff_iteration,
        help="Maximum Gauss-Newton iterations (default: %(default)s)",
    )
    parser.add_argument(
        "--propagate",
        action="store_true",
        help="Start each candidate from the previous converged estimate",
    )
    parser.add_argument("--output", default=None, help="Write a JSON report to this path")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: %(default)s)",
    )
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")

    from . import __version__
    parser.add_argument("--version", action="version", version=f"lkreloc {__version__}")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    session = RelocalizationSession()
    params = AlignmentParameters(
        cutoff_diffnorm=args.tolerance,
        cutoff_iteration=args.max_iterations,
    )

    if session.set_parameters(params) != Status.SUCCESS:
        return 2
    if session.set_reference(args.reference) != Status.SUCCESS:
        return 2
    if session.set_candidates(args.candidates) != Status.SUCCESS:
        return 2
    if args.mask is not None and session.set_mask(args.mask, args.mask_threshold) != Status.SUCCESS:
        return 2

    report = session.run(propagate=args.propagate, progress=not args.no_progress)

    for row in report.summary():
        print(
            f"{row['candidate']}: {row['status']} theta={row['theta']:.6f} "
            f"tx={row['tx']:.3f} ty={row['ty']:.3f} "
            f"iterations={row['iterations']} rms={row['rms_residual']:.5g}"
        )

    if args.output:
        report.save(args.output)
        _logger.info("Report written to %s", Path(args.output).with_suffix(".json"))

    return 0 if report.all_converged else 1


if __name__ == "__main__":
    raise SystemExit(main())
