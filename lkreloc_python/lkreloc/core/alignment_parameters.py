"""
Alignment solver configuration.

Stores the convergence, iteration-bound and conditioning settings used by
the Gauss-Newton alignment loop.
"""

from dataclasses import asdict, dataclass

from .status import ConfigurationError
from ..utils.validation import validate_alignment_parameters


@dataclass
class AlignmentParameters:
    """
    Alignment solver parameters.

    Attributes:
        cutoff_diffnorm: Convergence tolerance on the Euclidean norm of the
            parameter update (theta in radians, translation in pixels)
        cutoff_iteration: Maximum number of Gauss-Newton iterations
        divergence_patience: Number of consecutive iterations with a growing
            update norm after which the solve is declared diverged
        singular_value_cutoff: Relative singular value cutoff for the
            Hessian pseudo-inverse and the rank test
        hessian_floor: Absolute floor on the largest Hessian singular value;
            below it the Hessian is treated as zero
        min_valid_pixels: Minimum number of in-bounds masked pixels needed
            to form the normal equations
    """

    cutoff_diffnorm: float = 0.1
    cutoff_iteration: int = 100
    divergence_patience: int = 5
    singular_value_cutoff: float = 1e-10
    hessian_floor: float = 1e-12
    min_valid_pixels: int = 3

    def validate(self) -> bool:
        """
        Validate parameters are within acceptable ranges.

        Returns:
            True if parameters are valid

        Raises:
            ConfigurationError: naming the first invalid field
        """
        valid, msg = validate_alignment_parameters(self.to_dict())
        if not valid:
            raise ConfigurationError(msg)
        return True

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "AlignmentParameters":
        """Create from dictionary, using defaults for missing keys."""
        defaults = cls()
        return cls(
            cutoff_diffnorm=d.get("cutoff_diffnorm", defaults.cutoff_diffnorm),
            cutoff_iteration=d.get("cutoff_iteration", defaults.cutoff_iteration),
            divergence_patience=d.get("divergence_patience", defaults.divergence_patience),
            singular_value_cutoff=d.get("singular_value_cutoff", defaults.singular_value_cutoff),
            hessian_floor=d.get("hessian_floor", defaults.hessian_floor),
            min_valid_pixels=d.get("min_valid_pixels", defaults.min_valid_pixels),
        )
