"""
Multi-modal state extraction by clustering the particle cloud.

Two interchangeable backends partition positions into k groups:
- "gmm":    Gaussian mixture model (scikit-learn), multiple restarts
- "kmeans": k-means (SciPy), multiple restarts

Each populated group is then summarized by its weighted mean and weighted
population variance per axis.
"""

import warnings
import numpy as np
from dataclasses import dataclass
from typing import List, Literal, Tuple

from scipy.cluster.vq import kmeans, vq
from sklearn.exceptions import ConvergenceWarning
from sklearn.mixture import GaussianMixture

from ..exceptions import ClusteringError, PreconditionError


CLUSTER_METHODS = ("gmm", "kmeans")


@dataclass(frozen=True)
class ClusterEstimate:
    """
    State estimate for one cluster of particles.

    Attributes:
        mean: (x, y) weighted mean position
        variance: (var_x, var_y) weighted population variance
        label: Cluster label in [0, k)
        weight: Total particle weight in the cluster
        size: Number of particles in the cluster
    """
    mean: Tuple[float, float]
    variance: Tuple[float, float]
    label: int = 0
    weight: float = 0.0
    size: int = 0

    def as_tuple(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """Return ((x, y), (var_x, var_y))."""
        return self.mean, self.variance


def check_clusterable(positions: np.ndarray, k: int) -> np.ndarray:
    """
    Validate clustering input.

    Args:
        positions: [N, 2] particle positions
        k: Requested number of clusters

    Returns:
        positions as float64 [N, 2]

    Raises:
        PreconditionError: k < 1 or k > N, bad shape
        ClusteringError: non-finite or zero-spread positions
    """
    if positions.ndim != 2 or positions.shape[1] != 2:
        raise PreconditionError(f"positions must have shape [N, 2], got {positions.shape}")

    N = positions.shape[0]
    if int(k) != k or k < 1:
        raise PreconditionError(f"k must be a positive integer, got {k}")
    if k > N:
        raise PreconditionError(f"k={k} exceeds the number of particles ({N})")

    data = np.asarray(positions, dtype=np.float64)
    if not np.all(np.isfinite(data)):
        raise ClusteringError("positions contain non-finite values")

    scale = max(1.0, float(np.max(np.abs(data))))
    spread = np.ptp(data, axis=0)
    if np.all(spread <= 1e-12 * scale):
        raise ClusteringError("all particle positions coincide (zero spread)")

    return data


def gmm_labels(
    data: np.ndarray,
    k: int,
    seed: int,
    n_init: int = 5,
    tol: float = 1e-4,
    max_iter: int = 200,
) -> np.ndarray:
    """
    Cluster labels from a Gaussian mixture fit.

    Args:
        data: [N, 2] positions
        k: Number of mixture components
        seed: Random seed for initialization
        n_init: Number of restarts (best likelihood wins)
        tol: EM convergence tolerance
        max_iter: EM iterations per restart

    Returns:
        labels: [N] in [0, k)
    """
    model = GaussianMixture(
        n_components=k,
        n_init=n_init,
        tol=tol,
        max_iter=max_iter,
        random_state=seed,
    )

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            model.fit(data)
            labels = model.predict(data)
    except (ValueError, np.linalg.LinAlgError) as e:
        raise ClusteringError(f"Gaussian mixture fit failed: {e}") from e

    if not model.converged_:
        raise ClusteringError(
            f"Gaussian mixture did not converge (k={k}, n_init={n_init}, tol={tol})"
        )

    return labels.astype(np.int64)


def kmeans_labels(
    data: np.ndarray,
    k: int,
    seed: int,
    n_init: int = 5,
    tol: float = 1e-4,
) -> np.ndarray:
    """
    Cluster labels from k-means with restarts.

    Empty clusters are dropped by SciPy, so fewer than k labels may be used.

    Args:
        data: [N, 2] positions
        k: Number of centroids
        seed: Random seed for centroid initialization
        n_init: Number of restarts (lowest distortion wins)
        tol: Distortion change threshold for convergence

    Returns:
        labels: [N] in [0, k)
    """
    try:
        codebook, _ = kmeans(
            data, k, iter=n_init, thresh=tol, seed=np.random.default_rng(seed)
        )
        if codebook.shape[0] == 0:
            raise ClusteringError("k-means produced no centroids")
        labels, _ = vq(data, codebook)
    except (ValueError, np.linalg.LinAlgError) as e:
        raise ClusteringError(f"k-means failed: {e}") from e

    return labels.astype(np.int64)


def cluster_positions(
    positions: np.ndarray,
    k: int,
    method: Literal["gmm", "kmeans"] = "gmm",
    seed: int = 0,
    n_init: int = 5,
    tol: float = 1e-4,
) -> np.ndarray:
    """
    Partition particle positions into at most k clusters.

    Args:
        positions: [N, 2] particle positions
        k: Number of clusters
        method: Clustering backend ("gmm" or "kmeans")
        seed: Random seed; same input and seed give the same labels
        n_init: Number of random restarts
        tol: Convergence tolerance

    Returns:
        labels: [N] cluster labels in [0, k)
    """
    data = check_clusterable(positions, k)

    if method == "gmm":
        labels = gmm_labels(data, k, seed, n_init=n_init, tol=tol)
    elif method == "kmeans":
        labels = kmeans_labels(data, k, seed, n_init=n_init, tol=tol)
    else:
        raise PreconditionError(
            f"Unknown cluster method: {method!r} (expected one of {CLUSTER_METHODS})"
        )

    if labels.shape != (data.shape[0],) or labels.min() < 0 or labels.max() >= k:
        raise ClusteringError(f"clustering returned labels outside [0, {k})")

    return labels


def weighted_mean_var(
    points: np.ndarray,
    weights: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Weighted mean and population variance along axis 0.

    var = sum(w * (x - mean)^2) / sum(w)

    Args:
        points: [M, d] points
        weights: [M] non-negative weights

    Returns:
        mean: [d], var: [d]
    """
    w = np.asarray(weights, dtype=np.float64)
    total = np.sum(w)
    if not np.isfinite(total) or total <= 0.0:
        raise ClusteringError(f"cluster has non-positive total weight ({total})")

    p = np.asarray(points, dtype=np.float64)
    mean = np.sum(w[:, np.newaxis] * p, axis=0) / total
    var = np.sum(w[:, np.newaxis] * (p - mean) ** 2, axis=0) / total
    return mean, var


def summarize_clusters(
    positions: np.ndarray,
    weights: np.ndarray,
    labels: np.ndarray,
) -> List[ClusterEstimate]:
    """
    Weighted mean/variance for every populated cluster, ordered by label.

    Args:
        positions: [N, 2] particle positions
        weights: [N] particle weights
        labels: [N] cluster labels

    Returns:
        estimates: one ClusterEstimate per populated label
    """
    if not (positions.shape[0] == weights.shape[0] == labels.shape[0]):
        raise PreconditionError(
            f"positions ({positions.shape[0]}), weights ({weights.shape[0]}) and "
            f"labels ({labels.shape[0]}) differ in length"
        )

    estimates = []
    for label in np.unique(labels):
        mask = labels == label
        mean, var = weighted_mean_var(positions[mask], weights[mask])

        # Cluster summary must be exactly 2-dimensional
        if mean.shape != (2,) or var.shape != (2,):
            raise ClusteringError(
                f"cluster summary must be exactly 2-dimensional, got "
                f"mean {mean.shape} and variance {var.shape}"
            )

        estimates.append(ClusterEstimate(
            mean=(float(mean[0]), float(mean[1])),
            variance=(float(var[0]), float(var[1])),
            label=int(label),
            weight=float(np.sum(weights[mask], dtype=np.float64)),
            size=int(np.count_nonzero(mask)),
        ))

    return estimates
