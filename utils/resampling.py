"""
Resampling algorithms for particle filters.
"""

import numpy as np
from typing import Literal, Tuple
from numpy.random import Generator

from ..exceptions import PreconditionError, ResamplingInvariantError


RESAMPLE_METHODS = ("systematic", "stratified")
REINJECT_MODES = ("fixed", "random")

# Largest float64 strictly below 1.0
_BELOW_ONE = np.nextafter(1.0, 0.0)


def systematic_positions(n: int, rng: Generator) -> np.ndarray:
    """
    Evenly spaced draw points with a single random offset.

    u ~ U(0, 1), draw_i = (u + i) / n

    Args:
        n: Number of draws
        rng: NumPy random generator

    Returns:
        draws: [n] strictly increasing points in [0, 1)
    """
    u = rng.uniform(0.0, 1.0)
    draws = (u + np.arange(n)) / n
    return np.minimum(draws, _BELOW_ONE)


def stratified_positions(n: int, rng: Generator) -> np.ndarray:
    """
    One independent uniform draw inside each stratum [i/n, (i+1)/n).

    Args:
        n: Number of draws
        rng: NumPy random generator

    Returns:
        draws: [n] strictly increasing points in [0, 1)
    """
    draws = (np.arange(n) + rng.uniform(0.0, 1.0, n)) / n
    return np.minimum(draws, _BELOW_ONE)


def ancestor_indices(weights: np.ndarray, draws: np.ndarray) -> np.ndarray:
    """
    Map sorted draw points to ancestor indices through the weight CDF.

    For each draw picks the smallest j with draw < cdf[j]. This is the result
    of walking draws and the CDF with two monotone pointers; searchsorted
    gives the same assignment in O(n log n) without a Python loop.

    Args:
        weights: [N] Normalized weights
        draws: [n] Sorted draw points in [0, 1)

    Returns:
        indices: [n] Ancestor indices in [0, N)

    Raises:
        ResamplingInvariantError: if any index falls outside [0, N)
    """
    N = len(weights)

    cdf = np.cumsum(weights, dtype=np.float64)
    cdf[-1] = 1.0  # Ensure exactly 1.0 so the last slot stays reachable

    indices = np.searchsorted(cdf, draws, side="right")

    if indices.size and (indices.min() < 0 or indices.max() >= N):
        raise ResamplingInvariantError(
            f"Ancestor index out of range [0, {N}): "
            f"min={indices.min()}, max={indices.max()}"
        )

    return indices


def systematic_resample(weights: np.ndarray, rng: Generator) -> np.ndarray:
    """
    Systematic resampling.

    Deterministic spacing with single random offset. Low variance.

    Args:
        weights: [N] Normalized weights (must sum to 1)
        rng: NumPy random generator

    Returns:
        indices: [N] Resampled particle indices
    """
    return ancestor_indices(weights, systematic_positions(len(weights), rng))


def stratified_resample(weights: np.ndarray, rng: Generator) -> np.ndarray:
    """
    Stratified resampling.

    Independent random draw within each stratum. Slightly higher variance
    than systematic but still good.

    Args:
        weights: [N] Normalized weights (must sum to 1)
        rng: NumPy random generator

    Returns:
        indices: [N] Resampled particle indices
    """
    return ancestor_indices(weights, stratified_positions(len(weights), rng))


def get_resampler(method: Literal["systematic", "stratified"]):
    """Get resampling function by name."""
    resamplers = {
        "systematic": systematic_resample,
        "stratified": stratified_resample,
    }
    if method not in resamplers:
        raise PreconditionError(
            f"Unknown resample method: {method!r} (expected one of {RESAMPLE_METHODS})"
        )
    return resamplers[method]


def roughen(
    positions: np.ndarray,
    velocities: np.ndarray,
    rng: Generator,
    position_std: float = 1.0,
    velocity_std: float = 0.1,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Add zero-mean Gaussian jitter to restore diversity after resampling.

    Args:
        positions: [N, 2] resampled positions
        velocities: [N, 2] resampled velocities
        rng: NumPy random generator
        position_std: Jitter std for positions
        velocity_std: Jitter std for velocities

    Returns:
        positions, velocities: new [N, 2] arrays
    """
    dtype = positions.dtype
    pos_noise = rng.normal(0.0, position_std, size=positions.shape).astype(dtype)
    vel_noise = rng.normal(0.0, velocity_std, size=velocities.shape).astype(dtype)
    return positions + pos_noise, velocities + vel_noise


def reinjection_count(
    n: int,
    fraction: float,
    mode: Literal["fixed", "random"],
    rng: Generator,
) -> int:
    """
    Number of particles to overwrite with exploratory draws.

    "fixed":  floor(n * fraction)
    "random": uniform integer in [0, floor(n * fraction)]
    """
    upper = int(np.floor(n * fraction))
    if mode == "fixed":
        return upper
    elif mode == "random":
        return int(rng.integers(0, upper + 1))
    else:
        raise PreconditionError(
            f"Unknown reinject mode: {mode!r} (expected one of {REINJECT_MODES})"
        )


def reinject_uniform(
    positions: np.ndarray,
    bound: float,
    count: int,
    rng: Generator,
) -> np.ndarray:
    """
    Overwrite `count` distinct particle positions with U([-bound, bound]^2) draws.

    Modifies positions in place.

    Args:
        positions: [N, 2] positions (a freshly gathered buffer)
        bound: Search space radius
        count: Number of particles to reinject (clipped to N)
        rng: NumPy random generator

    Returns:
        indices: [count] reinjected particle indices
    """
    N = positions.shape[0]
    count = min(max(count, 0), N)
    indices = rng.choice(N, size=count, replace=False)
    positions[indices] = rng.uniform(-bound, bound, size=(count, 2)).astype(positions.dtype)
    return indices


def effective_sample_size(weights: np.ndarray) -> float:
    """
    Compute effective sample size (ESS).

    ESS = 1 / sum(w_i^2), where weights are normalized.

    Args:
        weights: [N] Normalized weights (must sum to 1)

    Returns:
        ESS value in [1, N]
    """
    w = np.asarray(weights, dtype=np.float64)
    return float(1.0 / np.sum(w ** 2))


def normalize_weights(weights: np.ndarray, floor: float = 0.0) -> np.ndarray:
    """
    Normalize weights to sum to 1 after adding a non-negative floor.

    Args:
        weights: [N] Unnormalized non-negative weights
        floor: Value added to every weight before normalization

    Returns:
        weights: [N] Normalized weights (new array)
    """
    w = weights + weights.dtype.type(floor)
    total = np.sum(w)
    if not np.isfinite(total) or total <= 0.0:
        raise PreconditionError(f"Cannot normalize weights with total {total}")
    return w / total
