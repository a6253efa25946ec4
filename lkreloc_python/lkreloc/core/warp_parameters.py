"""
SE(2) warp parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class WarpParameters:
    """
    Rigid 2D motion (rotation + translation).

    The homogeneous matrix rotates by ``theta`` and then translates by
    ``(tx, ty)``; it maps candidate image coordinates (x = column,
    y = row) onto reference image coordinates.

    Attributes:
        theta: Rotation angle in radians
        tx: Translation along x (columns) in pixels
        ty: Translation along y (rows) in pixels
    """

    theta: float = 0.0
    tx: float = 0.0
    ty: float = 0.0

    @classmethod
    def identity(cls) -> "WarpParameters":
        """Return the identity warp (0, 0, 0)."""
        return cls()

    @classmethod
    def from_vector(cls, p: Sequence[float]) -> "WarpParameters":
        """Create from an ordered (theta, tx, ty) vector."""
        if len(p) != 3:
            raise ValueError(f"Expected 3 warp parameters, got {len(p)}")
        return cls(theta=float(p[0]), tx=float(p[1]), ty=float(p[2]))

    def as_vector(self) -> NDArray[np.float64]:
        """Return parameters as a float64 array [theta, tx, ty]."""
        return np.array([self.theta, self.tx, self.ty], dtype=np.float64)

    def is_finite(self) -> bool:
        """Check that all parameters are finite."""
        return bool(np.all(np.isfinite(self.as_vector())))

    def matrix(self) -> NDArray[np.float64]:
        """3x3 homogeneous SE(2) matrix (rotate, then translate)."""
        c = np.cos(self.theta)
        s = np.sin(self.theta)
        return np.array(
            [
                [c, -s, self.tx],
                [s, c, self.ty],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    def inverse(self) -> "WarpParameters":
        """Parameters of the inverse transform."""
        c = np.cos(self.theta)
        s = np.sin(self.theta)
        # -R^T t
        return WarpParameters(
            theta=-self.theta,
            tx=float(-(c * self.tx + s * self.ty)),
            ty=float(-(-s * self.tx + c * self.ty)),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"theta": self.theta, "tx": self.tx, "ty": self.ty}

    @classmethod
    def from_dict(cls, d: dict) -> "WarpParameters":
        """Create from dictionary."""
        return cls(
            theta=float(d.get("theta", 0.0)),
            tx=float(d.get("tx", 0.0)),
            ty=float(d.get("ty", 0.0)),
        )
