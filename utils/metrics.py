"""
Evaluation metrics for filtering and tracking.
"""

import numpy as np
from scipy.optimize import linear_sum_assignment
from typing import Sequence, Tuple

from ..exceptions import PreconditionError


def compute_ospa(
    true_positions: np.ndarray,
    estimated_positions: np.ndarray,
    cutoff: float = 10.0,
    p: int = 1,
) -> float:
    """
    Optimal Sub-Pattern Assignment (OSPA) distance between two 2D point sets.

    Finds the optimal assignment between true and estimated positions using
    the Hungarian algorithm on cutoff-saturated distances. Unassigned points
    (cardinality mismatch) are each charged the cutoff.

    Reference: Schuhmacher et al. (2008), "A consistent metric for performance
    evaluation of multi-object filters"

    Args:
        true_positions: [C, 2] true target positions
        estimated_positions: [M, 2] estimated positions
        cutoff: Saturation distance c (> 0)
        p: Order parameter (>= 1)

    Returns:
        OSPA distance in [0, cutoff]
    """
    X = np.asarray(true_positions, dtype=np.float64).reshape(-1, 2)
    Y = np.asarray(estimated_positions, dtype=np.float64).reshape(-1, 2)
    if cutoff <= 0 or p < 1:
        raise PreconditionError(f"Need cutoff > 0 and p >= 1, got cutoff={cutoff}, p={p}")

    m, n = X.shape[0], Y.shape[0]
    if m == 0 and n == 0:
        return 0.0
    if m == 0 or n == 0:
        return float(cutoff)

    # Build cost matrix: min(distance, c)^p between all pairs
    dist = np.sqrt(np.sum((X[:, np.newaxis, :] - Y[np.newaxis, :, :]) ** 2, axis=-1))
    cost_matrix = np.minimum(dist, cutoff) ** p

    # Optimal assignment via Hungarian algorithm (rectangular is fine)
    row_ind, col_ind = linear_sum_assignment(cost_matrix)
    total_cost = cost_matrix[row_ind, col_ind].sum()

    total_cost += (cutoff ** p) * abs(m - n)
    return float((total_cost / max(m, n)) ** (1 / p))


def compute_ospa_series(
    true_positions: np.ndarray,
    estimated_per_step: Sequence[np.ndarray],
    cutoff: float = 10.0,
    p: int = 1,
) -> Tuple[np.ndarray, float]:
    """
    OSPA distance at every time step.

    Args:
        true_positions: [T, C, 2] true target positions per step
        estimated_per_step: length-T sequence of [M_t, 2] estimates
        cutoff: Saturation distance
        p: Order parameter

    Returns:
        ospa_per_step: [T] OSPA at each time step
        ospa_mean: Mean OSPA over all time steps
    """
    T = len(estimated_per_step)
    if true_positions.shape[0] != T:
        raise PreconditionError(
            f"true_positions has {true_positions.shape[0]} steps, estimates have {T}"
        )

    ospa_per_step = np.zeros(T)
    for t in range(T):
        ospa_per_step[t] = compute_ospa(
            true_positions[t], estimated_per_step[t], cutoff=cutoff, p=p
        )

    return ospa_per_step, float(np.mean(ospa_per_step)) if T else 0.0


def compute_position_rmse(
    xs_true: np.ndarray,
    xs_est: np.ndarray,
) -> Tuple[np.ndarray, float]:
    """
    Compute position RMSE per time step.

    Args:
        xs_true: [T, 2] True positions
        xs_est: [T, 2] Estimated positions

    Returns:
        rmse_per_step: [T] Euclidean position error at each time step
        rmse_mean: Root of the mean squared error over all time steps
    """
    if xs_true.shape != xs_est.shape:
        raise PreconditionError(
            f"Shape mismatch: true {xs_true.shape} vs estimated {xs_est.shape}"
        )

    err_sq = np.sum((xs_true - xs_est) ** 2, axis=-1)
    rmse_per_step = np.sqrt(err_sq)

    return rmse_per_step, float(np.sqrt(np.mean(err_sq)))
