"""
Particle Filter implementations.

SIR particle filter over planar position/velocity particles, with
systematic resampling, roughening, random reinjection and multi-modal
state extraction by clustering.
"""

import logging
import numpy as np
from typing import List, Literal, Optional, Sequence, Tuple
from numpy.random import Generator, default_rng

from .base import FilterResult, FilterSnapshot
from ..exceptions import ClusteringError, PreconditionError
from ..models.motion import ConstantVelocityModel
from ..models.landmark import LandmarkObservationModel
from ..utils.clustering import (
    CLUSTER_METHODS,
    ClusterEstimate,
    cluster_positions,
    summarize_clusters,
)
from ..utils.resampling import (
    REINJECT_MODES,
    get_resampler,
    roughen,
    reinjection_count,
    reinject_uniform,
    effective_sample_size,
)

logger = logging.getLogger(__name__)

FLOAT_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))


def _readonly(a: np.ndarray) -> np.ndarray:
    view = a.view()
    view.flags.writeable = False
    return view


def _is_int(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def check_particle_config(
    n,
    search_space_bound,
    dtype=np.float64,
    resample_method="systematic",
    position_roughening_std=1.0,
    velocity_roughening_std=0.1,
    reinject_fraction=0.1,
    reinject_mode="fixed",
    cluster_method="gmm",
    cluster_n_init=5,
    cluster_tol=1e-4,
):
    """
    Validate ParticleSet options.

    Raises:
        PreconditionError: any option out of range or of the wrong type
    """
    if not _is_int(n) or n < 1:
        raise PreconditionError(f"n must be a positive integer, got {n!r}")
    if not isinstance(search_space_bound, (int, float, np.number)) or not (
        np.isfinite(search_space_bound) and search_space_bound > 0
    ):
        raise PreconditionError(
            f"search_space_bound must be positive and finite, got {search_space_bound!r}"
        )
    try:
        float_dtype = np.dtype(dtype)
    except TypeError as e:
        raise PreconditionError(f"dtype must be float32 or float64, got {dtype!r}") from e
    if float_dtype not in FLOAT_DTYPES:
        raise PreconditionError(f"dtype must be float32 or float64, got {dtype!r}")
    get_resampler(resample_method)
    if not (position_roughening_std >= 0 and velocity_roughening_std >= 0):
        raise PreconditionError("roughening std must be >= 0")
    if not 0.0 <= reinject_fraction <= 1.0:
        raise PreconditionError(
            f"reinject_fraction must be in [0, 1], got {reinject_fraction}"
        )
    if reinject_mode not in REINJECT_MODES:
        raise PreconditionError(
            f"Unknown reinject mode: {reinject_mode!r} (expected one of {REINJECT_MODES})"
        )
    if cluster_method not in CLUSTER_METHODS:
        raise PreconditionError(
            f"Unknown cluster method: {cluster_method!r} (expected one of {CLUSTER_METHODS})"
        )
    if not _is_int(cluster_n_init) or cluster_n_init < 1:
        raise PreconditionError(
            f"cluster_n_init must be a positive integer, got {cluster_n_init!r}"
        )
    if not (np.isfinite(cluster_tol) and cluster_tol > 0):
        raise PreconditionError(f"cluster_tol must be positive, got {cluster_tol!r}")


class ParticleSet:
    """
    Weighted cloud of planar particles.

    Holds index-aligned arrays of positions [N, 2], velocities [N, 2],
    weights [N] and cluster labels [N]. Only the set's own methods mutate
    them; accessors return read-only views.
    """

    def __init__(
        self,
        n: int,
        search_space_bound: float,
        rng: Optional[Generator] = None,
        seed: Optional[int] = None,
        dtype=np.float64,
        resample_method: Literal["systematic", "stratified"] = "systematic",
        position_roughening_std: float = 1.0,
        velocity_roughening_std: float = 0.1,
        reinject_fraction: float = 0.1,
        reinject_mode: Literal["fixed", "random"] = "fixed",
        cluster_method: Literal["gmm", "kmeans"] = "gmm",
        cluster_n_init: int = 5,
        cluster_tol: float = 1e-4,
    ):
        """
        Args:
            n: Number of particles (>= 1)
            search_space_bound: Domain radius for initialization and reinjection
            rng: Random generator owned by this set (uses seed if None)
            seed: Random seed
            dtype: Floating point precision (float32 or float64)
            resample_method: Draw point scheme ("systematic", "stratified")
            position_roughening_std: Position jitter std after resampling
            velocity_roughening_std: Velocity jitter std after resampling
            reinject_fraction: Fraction of particles redrawn uniformly on resample
            reinject_mode: "fixed" count or "random" count up to the fraction
            cluster_method: Clustering backend ("gmm", "kmeans")
            cluster_n_init: Clustering restarts
            cluster_tol: Clustering convergence tolerance
        """
        check_particle_config(
            n,
            search_space_bound,
            dtype=dtype,
            resample_method=resample_method,
            position_roughening_std=position_roughening_std,
            velocity_roughening_std=velocity_roughening_std,
            reinject_fraction=reinject_fraction,
            reinject_mode=reinject_mode,
            cluster_method=cluster_method,
            cluster_n_init=cluster_n_init,
            cluster_tol=cluster_tol,
        )

        self.n = int(n)
        self.search_space_bound = float(search_space_bound)
        self.dtype = np.dtype(dtype)
        self.rng = rng if rng is not None else default_rng(seed)

        self.resample_method = resample_method
        self._resample_fn = get_resampler(resample_method)
        self.position_roughening_std = position_roughening_std
        self.velocity_roughening_std = velocity_roughening_std
        self.reinject_fraction = reinject_fraction
        self.reinject_mode = reinject_mode

        self.cluster_method = cluster_method
        self.cluster_n_init = cluster_n_init
        self.cluster_tol = cluster_tol
        # Fixed per set so repeated estimates on the same cloud agree
        self._cluster_seed = int(self.rng.integers(0, 2**31 - 1))

        bound = self.search_space_bound
        self._positions = self.rng.uniform(-bound, bound, size=(self.n, 2)).astype(self.dtype)
        self._velocities = self.rng.normal(0.0, 1.0, size=(self.n, 2)).astype(self.dtype)
        self._weights = np.full(self.n, 1.0 / self.n, dtype=self.dtype)
        self._labels = np.zeros(self.n, dtype=np.int64)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def positions(self) -> np.ndarray:
        """[N, 2] read-only view."""
        return _readonly(self._positions)

    @property
    def velocities(self) -> np.ndarray:
        """[N, 2] read-only view."""
        return _readonly(self._velocities)

    @property
    def weights(self) -> np.ndarray:
        """[N] read-only view."""
        return _readonly(self._weights)

    @property
    def cluster_labels(self) -> np.ndarray:
        """[N] read-only view of the latest clustering (zeros before any estimate)."""
        return _readonly(self._labels)

    def latest_cluster_labels(self) -> np.ndarray:
        return self.cluster_labels

    def upper_bounds(self) -> Tuple[float, float]:
        """Per-axis larger magnitude of the min/max position."""
        lo = self._positions.min(axis=0)
        hi = self._positions.max(axis=0)
        x, y = np.maximum(np.abs(lo), np.abs(hi))
        return float(x), float(y)

    def effective_sample_size(self) -> float:
        return effective_sample_size(self._weights)

    def set_state(
        self,
        positions: np.ndarray,
        velocities: Optional[np.ndarray] = None,
        weights: Optional[np.ndarray] = None,
    ):
        """
        Replace the particle state, e.g. for a known prior or for tests.

        Weights are renormalized; labels are reset to zero.

        Args:
            positions: [N, 2]
            velocities: [N, 2] (zeros if None)
            weights: [N] non-negative (uniform if None)
        """
        positions = np.array(positions, dtype=self.dtype)
        velocities = (
            np.zeros_like(positions) if velocities is None
            else np.array(velocities, dtype=self.dtype)
        )
        weights = (
            np.full(self.n, 1.0 / self.n, dtype=self.dtype) if weights is None
            else np.array(weights, dtype=self.dtype)
        )

        if positions.shape != (self.n, 2) or velocities.shape != (self.n, 2):
            raise PreconditionError(
                f"positions {positions.shape} and velocities {velocities.shape} "
                f"must both be ({self.n}, 2)"
            )
        if weights.shape != (self.n,):
            raise PreconditionError(f"weights must have shape ({self.n},), got {weights.shape}")
        if not np.all(np.isfinite(weights)) or np.any(weights < 0) or np.sum(weights) <= 0:
            raise PreconditionError("weights must be finite, non-negative and not all zero")

        self._positions = positions
        self._velocities = velocities
        self._weights = weights / np.sum(weights)
        self._labels = np.zeros(self.n, dtype=np.int64)

    # -------------------------------------------------------------------------
    # Filter steps
    # -------------------------------------------------------------------------

    def predict(self, process_noise_std: float, dt: float):
        """
        Propagate positions: p += (v + N(0, std^2)) * dt.

        Args:
            process_noise_std: Process noise std (0 gives deterministic motion)
            dt: Time step
        """
        model = ConstantVelocityModel(process_noise_std=process_noise_std, dt=dt)
        self._positions = model.propagate(self._positions, self._velocities, self.rng)

    def update(
        self,
        observation_std: float,
        observations,
        combination: Literal["product", "max"],
    ):
        """
        Reweight particles by their likelihood under the observations.

        Args:
            observation_std: Std of the distance likelihood
            observations: [M, 2] observed reference points
            combination: "product" or "max" across observations
        """
        model = LandmarkObservationModel(
            observation_std=observation_std, combination=combination
        )
        self._weights = model.update_weights(self._weights, self._positions, observations)

    def resample(self):
        """
        Resample ancestors, then roughen and reinject uniformly.

        All arrays are rebuilt in fresh buffers and swapped in together.
        Weights are reset to 1/N.
        """
        indices = self._resample_fn(self._weights, self.rng)

        # Fancy indexing copies, so later in-place edits never touch the old rows
        positions = self._positions[indices]
        velocities = self._velocities[indices]

        positions, velocities = roughen(
            positions,
            velocities,
            self.rng,
            position_std=self.position_roughening_std,
            velocity_std=self.velocity_roughening_std,
        )

        count = reinjection_count(self.n, self.reinject_fraction, self.reinject_mode, self.rng)
        reinject_uniform(positions, self.search_space_bound, count, self.rng)

        logger.debug(
            "Resampled %d particles (%d unique ancestors, %d reinjected)",
            self.n, np.unique(indices).size, count,
        )

        self._positions = positions
        self._velocities = velocities
        self._weights = np.full(self.n, 1.0 / self.n, dtype=self.dtype)

    def estimate(self, k: int) -> List[ClusterEstimate]:
        """
        Cluster the cloud into at most k groups and summarize each group.

        Labels are stored only if clustering succeeds.

        Args:
            k: Number of clusters (1 <= k <= N)

        Returns:
            estimates: weighted mean/variance per populated cluster, by label

        Raises:
            PreconditionError: k out of range
            ClusteringError: degenerate cloud or clustering failure (recoverable)
        """
        labels = cluster_positions(
            self._positions,
            k,
            method=self.cluster_method,
            seed=self._cluster_seed,
            n_init=self.cluster_n_init,
            tol=self.cluster_tol,
        )
        estimates = summarize_clusters(self._positions, self._weights, labels)
        self._labels = labels
        return estimates

    def snapshot(self, **kwargs) -> FilterSnapshot:
        """Copy of the current state for external readers."""
        return FilterSnapshot(
            positions=self._positions.copy(),
            velocities=self._velocities.copy(),
            weights=self._weights.copy(),
            cluster_labels=self._labels.copy(),
            upper_bounds=self.upper_bounds(),
            **kwargs,
        )

    def __len__(self) -> int:
        return self.n

    def __repr__(self) -> str:
        return (
            f"ParticleSet(n={self.n}, bound={self.search_space_bound}, "
            f"dtype={self.dtype.name})"
        )


class SIRParticleFilter:
    """
    Sequential Importance Resampling filter session.

    Owns a ParticleSet and runs the fixed tick order:
    predict -> update -> ESS check -> (resample) -> (estimate).
    """

    def __init__(
        self,
        n_particles: int = 5000,
        search_space_bound: float = 100.0,
        process_noise_std: float = 1.0,
        dt: float = 0.1,
        observation_std: float = 20.0,
        combination: Literal["product", "max"] = "max",
        resample_method: Literal["systematic", "stratified"] = "systematic",
        resample_criterion: Literal["always", "ess", "never"] = "ess",
        ess_threshold: float = 1.0 / 6.0,
        position_roughening_std: float = 1.0,
        velocity_roughening_std: float = 0.1,
        reinject_fraction: float = 0.1,
        reinject_mode: Literal["fixed", "random"] = "fixed",
        n_clusters: Optional[int] = None,
        cluster_method: Literal["gmm", "kmeans"] = "gmm",
        dtype=np.float64,
        seed: Optional[int] = None,
    ):
        """
        Args:
            n_particles: Number of particles
            search_space_bound: Domain radius for initialization and reinjection
            process_noise_std: Motion model noise std
            dt: Time step
            observation_std: Observation likelihood std
            combination: How multiple observations combine ("product", "max")
            resample_method: Resampling algorithm
            resample_criterion: When to resample ("always", "ess", "never")
            ess_threshold: ESS threshold as fraction of N (for "ess" criterion)
            position_roughening_std: Position jitter after resampling
            velocity_roughening_std: Velocity jitter after resampling
            reinject_fraction: Fraction of particles redrawn uniformly on resample
            reinject_mode: "fixed" or "random" reinjection count
            n_clusters: Clusters to estimate every step (None skips estimation)
            cluster_method: Clustering backend ("gmm", "kmeans")
            dtype: Floating point precision
            seed: Random seed
        """
        self.motion = ConstantVelocityModel(process_noise_std=process_noise_std, dt=dt)
        self.observation = LandmarkObservationModel(
            observation_std=observation_std, combination=combination
        )

        check_particle_config(
            n_particles,
            search_space_bound,
            dtype=dtype,
            resample_method=resample_method,
            position_roughening_std=position_roughening_std,
            velocity_roughening_std=velocity_roughening_std,
            reinject_fraction=reinject_fraction,
            reinject_mode=reinject_mode,
            cluster_method=cluster_method,
        )
        if resample_criterion not in ("always", "ess", "never"):
            raise PreconditionError(f"Unknown resample criterion: {resample_criterion}")
        if n_clusters is not None and (
            not _is_int(n_clusters) or not 1 <= n_clusters <= n_particles
        ):
            raise PreconditionError(
                f"n_clusters must be in [1, {n_particles}], got {n_clusters}"
            )

        self.n_particles = n_particles
        self.search_space_bound = search_space_bound
        self.resample_method = resample_method
        self.resample_criterion = resample_criterion
        self.ess_threshold = ess_threshold
        self.position_roughening_std = position_roughening_std
        self.velocity_roughening_std = velocity_roughening_std
        self.reinject_fraction = reinject_fraction
        self.reinject_mode = reinject_mode
        self.n_clusters = n_clusters
        self.cluster_method = cluster_method
        self.dtype = dtype
        self.seed = seed

        self.particles: Optional[ParticleSet] = None

    def initialize(self, rng: Optional[Generator] = None) -> ParticleSet:
        """
        Create a fresh particle set.

        Args:
            rng: Optional random generator (uses self.seed if None)
        """
        if rng is None:
            rng = default_rng(self.seed)

        self.particles = ParticleSet(
            self.n_particles,
            self.search_space_bound,
            rng=rng,
            dtype=self.dtype,
            resample_method=self.resample_method,
            position_roughening_std=self.position_roughening_std,
            velocity_roughening_std=self.velocity_roughening_std,
            reinject_fraction=self.reinject_fraction,
            reinject_mode=self.reinject_mode,
            cluster_method=self.cluster_method,
        )
        return self.particles

    def step(self, observations) -> FilterSnapshot:
        """
        Run one tick against the given observations.

        Args:
            observations: [M, 2] observed reference points

        Returns:
            FilterSnapshot of the particle set after the tick
        """
        ess = self._predict_update(observations)
        return self._resample_estimate(ess)

    def _predict_update(self, observations) -> float:
        """Predict and update; returns the post-update ESS."""
        if self.particles is None:
            self.initialize()
        particles = self.particles

        particles.predict(self.motion.process_noise_std, self.motion.dt)
        particles.update(
            self.observation.observation_std,
            observations,
            self.observation.combination,
        )
        return particles.effective_sample_size()

    def _resample_estimate(self, ess: float) -> FilterSnapshot:
        """Conditional resample and optional estimate; returns the snapshot."""
        particles = self.particles

        do_resample = self._should_resample(ess, particles.n)
        if do_resample:
            logger.debug("ESS %.1f below threshold, resampling", ess)
            particles.resample()

        estimates = []
        estimate_failed = False
        if self.n_clusters is not None:
            try:
                estimates = particles.estimate(self.n_clusters)
            except ClusteringError as e:
                logger.warning("Skipping estimate for this step: %s", e)
                estimate_failed = True

        return particles.snapshot(
            estimates=estimates,
            ess=ess,
            resampled=do_resample,
            estimate_failed=estimate_failed,
        )

    def filter(
        self,
        observations: Sequence[np.ndarray],
        return_particles: bool = False,
        rng: Optional[Generator] = None,
    ) -> FilterResult:
        """
        Run the filter over a sequence of observation sets.

        Args:
            observations: length-T sequence of [M_t, 2] observations
                (a [T, M, 2] array works too)
            return_particles: If True, store particle, weight and label history
            rng: Optional random generator (uses self.seed if None)

        Returns:
            FilterResult
        """
        particles = self.initialize(rng)

        T = len(observations)
        N = self.n_particles

        # Storage
        means = np.zeros((T, 2))
        covariances = np.zeros((T, 2, 2))
        ess_history = np.zeros(T)
        resampled_history = np.zeros(T, dtype=bool)
        estimates_history = []

        if return_particles:
            particles_history = np.zeros((T, N, 2))
            weights_history = np.zeros((T, N))
            labels_history = np.zeros((T, N), dtype=np.int64)

        for t in range(T):
            ess = self._predict_update(observations[t])

            # Compute filtered estimate from the updated weights
            weights = particles.weights.astype(np.float64)
            positions = particles.positions.astype(np.float64)
            means[t] = np.sum(weights[:, np.newaxis] * positions, axis=0)
            diff = positions - means[t]
            covariances[t] = np.einsum('n,ni,nj->ij', weights, diff, diff)
            covariances[t] = 0.5 * (covariances[t] + covariances[t].T)

            snap = self._resample_estimate(ess)
            ess_history[t] = ess
            resampled_history[t] = snap.resampled
            estimates_history.append(snap.estimates)

            if return_particles:
                particles_history[t] = snap.positions
                weights_history[t] = snap.weights
                labels_history[t] = snap.cluster_labels

        result = FilterResult(
            means=means,
            covariances=covariances,
            ess=ess_history,
            resampled=resampled_history,
            estimates=estimates_history,
        )

        if return_particles:
            result.particles = particles_history
            result.weights = weights_history
            result.labels = labels_history

        return result

    def _should_resample(self, ess: float, N: int) -> bool:
        """Determine if resampling should occur."""
        if self.resample_criterion == "always":
            return True
        elif self.resample_criterion == "never":
            return False
        elif self.resample_criterion == "ess":
            return ess < self.ess_threshold * N
        else:
            raise PreconditionError(f"Unknown resample criterion: {self.resample_criterion}")
