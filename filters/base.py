"""
Filter result containers.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..utils.clustering import ClusterEstimate


@dataclass
class FilterSnapshot:
    """
    Read-only copy of the particle set after one filter step.

    Attributes:
        positions: [N, 2] particle positions
        velocities: [N, 2] particle velocities
        weights: [N] normalized weights
        cluster_labels: [N] latest cluster assignment
        estimates: Cluster estimates for this step (empty if skipped or failed)
        ess: Effective sample size after the update (before any resampling)
        resampled: Whether the step resampled
        estimate_failed: Whether clustering raised a recoverable error
        upper_bounds: (x, y) per-axis max magnitude of positions
    """
    positions: np.ndarray
    velocities: np.ndarray
    weights: np.ndarray
    cluster_labels: np.ndarray
    estimates: List[ClusterEstimate] = field(default_factory=list)
    ess: float = np.nan
    resampled: bool = False
    estimate_failed: bool = False
    upper_bounds: Tuple[float, float] = (np.nan, np.nan)

    @property
    def n_particles(self) -> int:
        return self.positions.shape[0]

    def weighted_mean(self) -> np.ndarray:
        """Weighted mean position [2] over the whole cloud."""
        return np.sum(self.weights[:, np.newaxis] * self.positions, axis=0)

    def estimate_means(self) -> np.ndarray:
        """Cluster means as a [K, 2] array."""
        if not self.estimates:
            return np.zeros((0, 2))
        return np.array([e.mean for e in self.estimates])


@dataclass
class FilterResult:
    """
    Container for filter outputs over T steps.

    Attributes:
        means: [T, 2] Weighted mean position after each update
        covariances: [T, 2, 2] Weighted position covariance after each update
        ess: [T] Effective sample size at each step
        resampled: [T] Boolean mask of resampling events
        estimates: length-T list of per-step cluster estimates

        # Optional histories
        particles: [T, N, 2] Position history
        weights: [T, N] Weight history
        labels: [T, N] Cluster label history
    """
    means: np.ndarray
    covariances: Optional[np.ndarray] = None
    ess: Optional[np.ndarray] = None
    resampled: Optional[np.ndarray] = None
    estimates: Optional[List[List[ClusterEstimate]]] = None

    particles: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None
    labels: Optional[np.ndarray] = None

    @property
    def T(self) -> int:
        """Number of time steps (observations)."""
        return self.means.shape[0]

    def position_rmse(self, true_positions: np.ndarray) -> np.ndarray:
        """
        Per-timestep Euclidean error of the weighted mean.

        Args:
            true_positions: [T, 2] True positions

        Returns:
            rmse: [T] Position error at each time step
        """
        pos_error = self.means - true_positions
        return np.sqrt(np.sum(pos_error ** 2, axis=1))

    def mean_rmse(self, true_positions: np.ndarray) -> float:
        """Average position error over all time steps."""
        return float(np.mean(self.position_rmse(true_positions)))

    def estimate_means(self) -> List[np.ndarray]:
        """Per-step cluster means, each [K_t, 2]."""
        if self.estimates is None:
            return []
        return [
            np.array([e.mean for e in step]) if step else np.zeros((0, 2))
            for step in self.estimates
        ]

    def average_ess(self) -> float:
        """Return average ESS if available."""
        if self.ess is None:
            return np.nan
        return float(np.mean(self.ess))

    def resample_rate(self) -> float:
        """Fraction of steps that resampled."""
        if self.resampled is None or self.resampled.size == 0:
            return np.nan
        return float(np.mean(self.resampled))
