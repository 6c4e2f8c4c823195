"""
Shared helpers for planar motion and observation models.

All functions operate on batched inputs where the first axis is the particle
dimension and the second axis is (x, y).
"""

import numpy as np

from ..exceptions import PreconditionError


SQRT_2PI = np.sqrt(2.0 * np.pi)


def gaussian_pdf(x: np.ndarray, mean: float, std: float) -> np.ndarray:
    """
    Univariate Gaussian density.

    pdf(x) = exp(-0.5 * ((x - mean) / std)^2) / (std * sqrt(2 pi))

    Args:
        x: Points to evaluate (any shape)
        mean: Distribution mean
        std: Standard deviation (> 0)

    Returns:
        Density values, same shape as x
    """
    d = (x - mean) / std
    return np.exp(-0.5 * d * d) / (SQRT_2PI * std)


def as_points(points, name: str, dtype=np.float64) -> np.ndarray:
    """
    Validate and convert an array-like of 2D points.

    Args:
        points: Array-like of shape [M, 2] (a single [2] point is promoted)
        name: Argument name used in error messages
        dtype: Output dtype

    Returns:
        points: [M, 2] array
    """
    arr = np.asarray(points, dtype=dtype)
    if arr.ndim == 1 and arr.shape[0] == 2:
        arr = arr[np.newaxis, :]
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise PreconditionError(
            f"{name} must have shape [M, 2], got {np.shape(points)}"
        )
    if not np.all(np.isfinite(arr)):
        raise PreconditionError(f"{name} must be finite")
    return arr


def check_std(value: float, name: str, allow_zero: bool = False) -> float:
    """Validate a standard deviation argument."""
    value = float(value)
    if not np.isfinite(value):
        raise PreconditionError(f"{name} must be finite, got {value}")
    if allow_zero:
        if value < 0.0:
            raise PreconditionError(f"{name} must be >= 0, got {value}")
    elif value <= 0.0:
        raise PreconditionError(f"{name} must be > 0, got {value}")
    return value
