"""
Validation utilities for numeric inputs and alignment parameters.
"""

from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray


def _check_bounds(
    value: float,
    lower: float,
    upper: float,
    include_lower: bool,
    include_upper: bool,
) -> str:
    """Return an error message if value violates the bounds, else ''."""
    if include_lower and value < lower:
        return f"Value {value} < {lower} (minimum)"
    if not include_lower and value <= lower:
        return f"Value {value} <= {lower} (must be greater)"
    if include_upper and value > upper:
        return f"Value {value} > {upper} (maximum)"
    if not include_upper and value >= upper:
        return f"Value {value} >= {upper} (must be less)"
    return ""


def is_real_bounded(
    value: Union[float, int, str],
    lower: float,
    upper: float,
    include_lower: bool = True,
    include_upper: bool = True,
) -> Tuple[bool, Optional[float], str]:
    """
    Check if value is a finite real number within bounds.

    Args:
        value: Value to check (strings are parsed, e.g. from the command line)
        lower: Lower bound
        upper: Upper bound
        include_lower: Include lower bound (>=) vs (>)
        include_upper: Include upper bound (<=) vs (<)

    Returns:
        Tuple of (is_valid, parsed_value, error_message)
    """
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return False, None, f"'{value}' is not a valid number"

    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        return False, None, f"{value!r} is not a real number"

    if not np.isfinite(value):
        return False, None, f"Value must be finite, got {value}"

    msg = _check_bounds(float(value), lower, upper, include_lower, include_upper)
    if msg:
        return False, None, msg

    return True, float(value), ""


def is_int_bounded(
    value: Union[int, float, str],
    lower: int,
    upper: int,
    include_lower: bool = True,
    include_upper: bool = True,
) -> Tuple[bool, Optional[int], str]:
    """
    Check if value is an integer within bounds.

    Integral floats such as ``20.0`` are accepted and converted.

    Returns:
        Tuple of (is_valid, parsed_value, error_message)
    """
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return False, None, f"'{value}' is not a valid integer"

    if isinstance(value, bool):
        return False, None, f"{value!r} is not an integer"

    if isinstance(value, (float, np.floating)):
        if not np.isfinite(value) or not float(value).is_integer():
            return False, None, f"Value {value} is not an integer"
        value = int(value)

    if not isinstance(value, (int, np.integer)):
        return False, None, f"{value!r} is not an integer"

    msg = _check_bounds(int(value), lower, upper, include_lower, include_upper)
    if msg:
        return False, None, msg

    return True, int(value), ""


def is_finite_array(data: NDArray) -> bool:
    """Check that every element of a numeric array is finite."""
    return bool(np.all(np.isfinite(data)))


def validate_alignment_parameters(params: Dict[str, Any]) -> Tuple[bool, str]:
    """
    Validate an alignment parameter dictionary.

    Missing keys are checked against their defaults.

    Returns:
        Tuple of (is_valid, error_message)
    """
    checks = (
        ("cutoff_diffnorm", is_real_bounded(params.get("cutoff_diffnorm", 0.1), 0.0, 10.0, include_lower=False)),
        ("cutoff_iteration", is_int_bounded(params.get("cutoff_iteration", 100), 1, 100000)),
        ("divergence_patience", is_int_bounded(params.get("divergence_patience", 5), 1, 1000)),
        ("singular_value_cutoff", is_real_bounded(params.get("singular_value_cutoff", 1e-10), 0.0, 1.0, include_lower=False, include_upper=False)),
        ("hessian_floor", is_real_bounded(params.get("hessian_floor", 1e-12), 0.0, 1.0)),
        ("min_valid_pixels", is_int_bounded(params.get("min_valid_pixels", 3), 1, 10 ** 9)),
    )

    for name, (valid, _, msg) in checks:
        if not valid:
            return False, f"Invalid {name}: {msg}"

    return True, ""
