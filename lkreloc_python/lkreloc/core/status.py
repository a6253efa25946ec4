"""
Status enumerations and error types for alignment results.
"""

from enum import IntEnum


class ConfigurationError(ValueError):
    """Raised when inputs or parameters cannot define an alignment problem."""


class Status(IntEnum):
    """
    Enumeration for operation status results.

    Returned by the session setters so callers can check whether an input
    was accepted without handling exceptions.

    Examples:
        >>> status = session.set_reference("keyframe.png")
        >>> if status == Status.SUCCESS:
        ...     print("Keyframe loaded")
    """

    SUCCESS = 1
    FAILED = 0

    @classmethod
    def success(cls) -> "Status":
        """Return success status."""
        return cls.SUCCESS

    @classmethod
    def failed(cls) -> "Status":
        """Return failed status."""
        return cls.FAILED


class AlignmentStatus(IntEnum):
    """
    Outcome of a single alignment solve.

    CONVERGED is the only successful outcome. The remaining values describe
    why the iteration stopped without meeting the update-norm tolerance.
    """

    CONVERGED = 1
    MAX_ITERATIONS = 0
    DIVERGED = -1
    NUMERICAL_FAILURE = -2

    @property
    def ok(self) -> bool:
        """True if the solve converged."""
        return self is AlignmentStatus.CONVERGED
