"""
Test suite for the particle set and the SIR filter session.

Run: pytest test_filters.py -v
"""

import logging

import pytest
import numpy as np
from numpy.random import default_rng

from clustered_particle_filter.exceptions import (
    ClusteringError,
    PreconditionError,
)
from clustered_particle_filter.filters.particle import ParticleSet, SIRParticleFilter
from clustered_particle_filter.filters.base import FilterResult, FilterSnapshot
from clustered_particle_filter.simulation import static_landmarks


# ============================================================================
# Assertion helpers
# ============================================================================

def assert_normalized(weights: np.ndarray, name: str, atol: float = 1e-6):
    """Check that weights are finite, non-negative and sum to 1."""
    w = np.asarray(weights, dtype=np.float64)
    if not np.all(np.isfinite(w)):
        pytest.fail(f"{name}: non-finite weights")
    if np.any(w < 0):
        pytest.fail(f"{name}: negative weights, min={w.min():.3e}")
    total = np.sum(w)
    if abs(total - 1.0) >= atol:
        pytest.fail(f"{name}: weights sum to {total:.10f}, |sum - 1| >= {atol:.0e}")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def corner_particles():
    """Four particles on the corners of a 10x10 square, uniform weights."""
    ps = ParticleSet(4, 100.0, seed=0)
    ps.set_state(np.array([
        [0.0, 0.0],
        [10.0, 0.0],
        [0.0, 10.0],
        [10.0, 10.0],
    ]))
    return ps


@pytest.fixture
def two_blob_particles():
    """Particles split between two well separated blobs."""
    rng = default_rng(7)
    n = 400
    a = rng.normal([-40.0, 0.0], 2.0, size=(n // 2, 2))
    b = rng.normal([40.0, 20.0], 2.0, size=(n // 2, 2))

    ps = ParticleSet(n, 100.0, seed=1)
    ps.set_state(np.vstack([a, b]))
    return ps


# ============================================================================
# ParticleSet construction and accessors
# ============================================================================

class TestParticleSet:

    def test_initial_state(self):
        n, bound = 500, 50.0
        ps = ParticleSet(n, bound, seed=0)

        assert ps.positions.shape == (n, 2)
        assert ps.velocities.shape == (n, 2)
        assert ps.weights.shape == (n,)
        assert ps.cluster_labels.shape == (n,)
        assert len(ps) == n

        assert np.all(np.abs(ps.positions) <= bound)
        np.testing.assert_array_equal(ps.weights, np.full(n, 1.0 / n))
        np.testing.assert_array_equal(ps.latest_cluster_labels(), np.zeros(n))

        # Velocities ~ N(0, 1)
        assert abs(np.mean(ps.velocities)) < 0.15
        assert abs(np.std(ps.velocities) - 1.0) < 0.1

    @pytest.mark.parametrize("n", [0, -3])
    def test_rejects_empty_set(self, n):
        with pytest.raises(PreconditionError):
            ParticleSet(n, 10.0)

    def test_rejects_bad_config(self):
        with pytest.raises(PreconditionError):
            ParticleSet(10, -1.0)
        with pytest.raises(PreconditionError):
            ParticleSet(10, 10.0, dtype=np.int32)
        with pytest.raises(PreconditionError):
            ParticleSet(10, 10.0, reinject_mode="sometimes")
        with pytest.raises(PreconditionError):
            ParticleSet(10, 10.0, cluster_method="dbscan")
        with pytest.raises(PreconditionError):
            ParticleSet(10, 10.0, resample_method="multinomial")
        with pytest.raises(PreconditionError):
            ParticleSet(50, 10.0, seed=0, cluster_n_init=0)
        with pytest.raises(PreconditionError):
            ParticleSet(50, 10.0, seed=0, cluster_n_init=2.5)
        with pytest.raises(PreconditionError):
            ParticleSet(50, 10.0, seed=0, cluster_tol=0.0)
        with pytest.raises(PreconditionError):
            ParticleSet(50, 10.0, seed=0, cluster_tol=float("nan"))

    @pytest.mark.parametrize("n", [float("nan"), "100", 2.5, True])
    def test_rejects_non_integer_count(self, n):
        with pytest.raises(PreconditionError):
            ParticleSet(n, 10.0)

    def test_accepts_numpy_integer_count(self):
        ps = ParticleSet(np.int64(20), 10.0, seed=0)
        assert len(ps) == 20

    def test_accessors_are_read_only(self):
        ps = ParticleSet(10, 10.0, seed=0)
        with pytest.raises(ValueError):
            ps.positions[0, 0] = 1.0
        with pytest.raises(ValueError):
            ps.weights[0] = 1.0
        with pytest.raises(ValueError):
            ps.cluster_labels[0] = 1

    def test_upper_bounds(self):
        ps = ParticleSet(3, 100.0, seed=0)
        ps.set_state(np.array([[-7.0, 2.0], [3.0, -1.0], [5.0, 4.0]]))
        assert ps.upper_bounds() == (7.0, 4.0)

    def test_set_state_validates_lengths(self):
        ps = ParticleSet(3, 10.0, seed=0)
        with pytest.raises(PreconditionError):
            ps.set_state(np.zeros((4, 2)))
        with pytest.raises(PreconditionError):
            ps.set_state(np.zeros((3, 2)), weights=np.ones(2))
        with pytest.raises(PreconditionError):
            ps.set_state(np.zeros((3, 2)), weights=np.array([1.0, -1.0, 1.0]))

    def test_float32_precision(self):
        ps = ParticleSet(200, 10.0, seed=0, dtype=np.float32)
        ps.predict(1.0, 0.1)
        ps.update(2.0, [[0.0, 0.0]], combination="product")
        assert ps.positions.dtype == np.float32
        assert ps.weights.dtype == np.float32
        assert_normalized(ps.weights, "float32 update", atol=1e-5)

        ps.resample()
        assert ps.positions.dtype == np.float32
        np.testing.assert_array_equal(ps.weights, np.full(200, 1.0 / 200, dtype=np.float32))


# ============================================================================
# Effective sample size
# ============================================================================

class TestEffectiveSampleSize:

    def test_uniform_weights(self):
        ps = ParticleSet(250, 10.0, seed=0)
        assert ps.effective_sample_size() == pytest.approx(250.0)

    def test_one_hot_weights(self):
        ps = ParticleSet(5, 10.0, seed=0)
        ps.set_state(ps.positions, weights=np.array([0.0, 0.0, 1.0, 0.0, 0.0]))
        assert ps.effective_sample_size() == pytest.approx(1.0)


# ============================================================================
# Predict
# ============================================================================

class TestPredict:

    def test_zero_noise_is_deterministic(self):
        ps = ParticleSet(100, 50.0, seed=3)
        old = ps.positions.copy()
        vel = ps.velocities.copy()
        dt = 0.25

        ps.predict(0.0, dt)

        np.testing.assert_array_equal(ps.positions, old + vel * dt)
        np.testing.assert_array_equal(ps.velocities, vel)

    def test_noise_perturbs_positions_only(self):
        ps = ParticleSet(2000, 50.0, seed=3)
        old = ps.positions.copy()
        vel = ps.velocities.copy()
        weights = ps.weights.copy()
        dt, std = 1.0, 2.0

        ps.predict(std, dt)

        residual = ps.positions - (old + vel * dt)
        assert abs(np.mean(residual)) < 0.1
        assert abs(np.std(residual) - std * dt) < 0.1
        np.testing.assert_array_equal(ps.velocities, vel)
        np.testing.assert_array_equal(ps.weights, weights)

    def test_negative_noise_rejected(self):
        ps = ParticleSet(10, 10.0, seed=0)
        with pytest.raises(PreconditionError):
            ps.predict(-1.0, 0.1)


# ============================================================================
# Update
# ============================================================================

class TestUpdate:

    def test_corner_scenario_product(self, corner_particles):
        ps = corner_particles
        ps.update(1.0, [[0.0, 0.0]], combination="product")

        w = ps.weights
        assert_normalized(w, "corner update")
        assert w[0] > w[1] and w[0] > w[2] and w[0] > w[3]

    def test_weights_normalized_after_update(self):
        ps = ParticleSet(1000, 100.0, seed=5)
        obs = [[30.0, -30.0], [30.0, 30.0], [-30.0, -30.0]]
        for combination in ("product", "max"):
            ps.update(20.0, obs, combination=combination)
            assert_normalized(ps.weights, f"update ({combination})")

    def test_max_policy_favors_every_landmark(self):
        ps = ParticleSet(3, 100.0, seed=0)
        landmarks = np.array([[-20.0, 0.0], [20.0, 0.0]])
        ps.set_state(np.array([[-20.0, 0.0], [20.0, 0.0], [0.0, 0.0]]))

        ps.update(2.0, landmarks, combination="max")
        w = ps.weights
        assert w[0] == pytest.approx(w[1])
        assert w[0] > 1000 * w[2]

    def test_product_policy_favors_joint_fit(self):
        # A particle between two ranges fits both; a particle on one fits only one
        ps = ParticleSet(2, 100.0, seed=0)
        ps.set_state(np.array([[0.0, 0.0], [-4.0, 0.0]]))
        landmarks = np.array([[-4.0, 0.0], [4.0, 0.0]])

        ps.update(3.0, landmarks, combination="product")
        w_product = ps.weights.copy()

        ps.set_state(np.array([[0.0, 0.0], [-4.0, 0.0]]))
        ps.update(3.0, landmarks, combination="max")
        w_max = ps.weights.copy()

        assert w_product[0] > w_product[1]
        assert w_max[1] > w_max[0]

    def test_collapse_falls_back_to_uniform(self):
        ps = ParticleSet(50, 10.0, seed=0)
        with pytest.warns(RuntimeWarning):
            ps.update(1e-3, [[1e6, 1e6]], combination="product")

        assert_normalized(ps.weights, "collapsed update")
        np.testing.assert_allclose(ps.weights, np.full(50, 1.0 / 50))

    def test_rejects_bad_observations(self):
        ps = ParticleSet(10, 10.0, seed=0)
        with pytest.raises(PreconditionError):
            ps.update(1.0, np.zeros((0, 2)), combination="product")
        with pytest.raises(PreconditionError):
            ps.update(1.0, np.zeros((3, 3)), combination="product")
        with pytest.raises(PreconditionError):
            ps.update(0.0, [[0.0, 0.0]], combination="product")
        with pytest.raises(PreconditionError):
            ps.update(1.0, [[0.0, 0.0]], combination="sum")


# ============================================================================
# Resample
# ============================================================================

class TestResample:

    def test_weights_reset_to_uniform(self):
        n = 300
        ps = ParticleSet(n, 100.0, seed=11)
        ps.update(10.0, [[0.0, 0.0]], combination="product")
        ps.resample()

        np.testing.assert_array_equal(ps.weights, np.full(n, 1.0 / n))
        assert_normalized(ps.weights, "resample")

    def test_collapses_onto_dominant_particle(self):
        n = 50
        ps = ParticleSet(
            n, 100.0, seed=2,
            position_roughening_std=0.0,
            velocity_roughening_std=0.0,
            reinject_fraction=0.0,
        )
        positions = np.arange(2 * n, dtype=float).reshape(n, 2)
        weights = np.zeros(n)
        weights[17] = 1.0
        ps.set_state(positions, velocities=positions * 0.5, weights=weights)

        ps.resample()

        np.testing.assert_array_equal(ps.positions, np.tile(positions[17], (n, 1)))
        np.testing.assert_array_equal(ps.velocities, np.tile(positions[17] * 0.5, (n, 1)))

    def test_does_not_alias_previous_arrays(self):
        ps = ParticleSet(100, 100.0, seed=4)
        before = ps.positions
        before_copy = before.copy()

        ps.update(5.0, [[0.0, 0.0]], combination="product")
        ps.resample()

        np.testing.assert_array_equal(before, before_copy)
        assert not np.shares_memory(before, ps.positions)

    def test_reinjection_stays_in_bounds(self):
        n, bound = 1000, 30.0
        ps = ParticleSet(
            n, bound, seed=9,
            position_roughening_std=0.0,
            reinject_fraction=0.25,
        )
        ps.set_state(np.full((n, 2), 500.0))

        ps.resample()

        reinjected = np.all(np.abs(ps.positions) <= bound, axis=1)
        assert np.sum(reinjected) == n // 4
        assert np.all(ps.positions[~reinjected] == 500.0)

    def test_roughening_spreads_duplicates(self):
        n = 2000
        ps = ParticleSet(n, 100.0, seed=6, reinject_fraction=0.0)
        weights = np.zeros(n)
        weights[0] = 1.0
        ps.set_state(np.zeros((n, 2)), weights=weights)

        ps.resample()

        assert abs(np.std(ps.positions) - 1.0) < 0.05
        assert abs(np.std(ps.velocities) - 0.1) < 0.01


# ============================================================================
# Estimate
# ============================================================================

class TestEstimate:

    @pytest.mark.parametrize("method", ["gmm", "kmeans"])
    def test_recovers_two_blobs(self, two_blob_particles, method):
        ps = two_blob_particles
        ps.cluster_method = method

        estimates = ps.estimate(2)

        assert len(estimates) == 2
        means = sorted(e.mean for e in estimates)
        np.testing.assert_allclose(means[0], (-40.0, 0.0), atol=1.0)
        np.testing.assert_allclose(means[1], (40.0, 20.0), atol=1.0)
        for e in estimates:
            assert 2.0 < e.variance[0] < 6.0
            assert 2.0 < e.variance[1] < 6.0

        labels = ps.cluster_labels
        assert len(np.unique(labels[:200])) == 1
        assert len(np.unique(labels[200:])) == 1
        assert labels[0] != labels[-1]

    @pytest.mark.parametrize("method", ["gmm", "kmeans"])
    @pytest.mark.parametrize("k", [1, 3, 5])
    def test_group_count_and_labels_bounded(self, method, k):
        ps = ParticleSet(300, 100.0, seed=k, cluster_method=method)
        estimates = ps.estimate(k)

        assert 1 <= len(estimates) <= k
        labels = ps.cluster_labels
        assert labels.min() >= 0 and labels.max() < k

    @pytest.mark.parametrize("method", ["gmm", "kmeans"])
    def test_estimate_is_idempotent(self, method):
        ps = ParticleSet(500, 100.0, seed=21, cluster_method=method)
        ps.update(30.0, [[40.0, 40.0], [-40.0, -40.0]], combination="max")

        first = ps.estimate(2)
        labels_first = ps.cluster_labels.copy()
        second = ps.estimate(2)

        assert [e.as_tuple() for e in first] == [e.as_tuple() for e in second]
        np.testing.assert_array_equal(labels_first, ps.cluster_labels)

    def test_single_cluster_matches_weighted_moments(self):
        ps = ParticleSet(4, 100.0, seed=0)
        positions = np.array([[0.0, 0.0], [4.0, 0.0], [0.0, 2.0], [4.0, 2.0]])
        weights = np.array([0.4, 0.1, 0.4, 0.1])
        ps.set_state(positions, weights=weights)

        (est,) = ps.estimate(1)

        # mean_x = 0.2 * 4, var_x = 0.8 * 0.8^2 + 0.2 * 3.2^2 (population)
        assert est.mean == pytest.approx((0.8, 1.0))
        assert est.variance == pytest.approx((2.56, 1.0))
        assert est.weight == pytest.approx(1.0)
        assert est.size == 4

    def test_k_larger_than_n_is_precondition_error(self):
        ps = ParticleSet(3, 10.0, seed=0)
        with pytest.raises(PreconditionError):
            ps.estimate(4)
        with pytest.raises(PreconditionError):
            ps.estimate(0)

    def test_degenerate_cloud_is_recoverable(self):
        ps = ParticleSet(20, 10.0, seed=0)
        ps.set_state(np.full((20, 2), 3.0))
        weights = ps.weights.copy()

        with pytest.raises(ClusteringError):
            ps.estimate(2)

        # Population untouched
        np.testing.assert_array_equal(ps.positions, np.full((20, 2), 3.0))
        np.testing.assert_array_equal(ps.weights, weights)
        np.testing.assert_array_equal(ps.cluster_labels, np.zeros(20))


# ============================================================================
# SIR filter session
# ============================================================================

class TestSIRParticleFilter:

    def test_converges_to_single_landmark(self):
        """n=1000, bound=100, 50 ticks of predict/update/resample, std 5."""
        landmark = np.array([[20.0, -10.0]])
        observation_std = 5.0

        ps = ParticleSet(1000, 100.0, seed=42)
        for _ in range(50):
            ps.predict(1.0, 0.1)
            ps.update(observation_std, landmark, combination="product")
            assert_normalized(ps.weights, "tick update")
            ps.resample()

        (est,) = ps.estimate(1)
        error = np.linalg.norm(np.array(est.mean) - landmark[0])
        assert error < observation_std, f"estimate {est.mean} is {error:.2f} from landmark"

    def test_filter_result_shapes(self):
        trajectory = static_landmarks(T=15, seed=0)
        N = 400
        pf = SIRParticleFilter(n_particles=N, n_clusters=3, cluster_method="kmeans", seed=1)
        result = pf.filter(trajectory.observations, return_particles=True)

        assert isinstance(result, FilterResult)
        assert result.T == 15
        assert result.means.shape == (15, 2)
        assert result.covariances.shape == (15, 2, 2)
        assert result.ess.shape == (15,)
        assert result.resampled.shape == (15,)
        assert len(result.estimates) == 15
        assert result.particles.shape == (15, N, 2)
        assert result.weights.shape == (15, N)
        assert result.labels.shape == (15, N)
        assert all(len(step) <= 3 for step in result.estimates)
        assert np.all(result.ess >= 1.0 - 1e-9)
        assert np.all(result.ess <= N + 1e-9)

    def test_reproducibility(self):
        trajectory = static_landmarks(T=10, seed=0)

        res1 = SIRParticleFilter(n_particles=300, seed=42).filter(trajectory.observations)
        res2 = SIRParticleFilter(n_particles=300, seed=42).filter(trajectory.observations)
        np.testing.assert_array_equal(res1.means, res2.means)
        np.testing.assert_array_equal(res1.ess, res2.ess)

        res3 = SIRParticleFilter(n_particles=300, seed=99).filter(trajectory.observations)
        assert not np.allclose(res1.means, res3.means)

    def test_no_resample_mode(self):
        trajectory = static_landmarks(T=10, seed=0)
        pf = SIRParticleFilter(n_particles=300, resample_criterion="never", seed=42)
        result = pf.filter(trajectory.observations)

        assert not np.any(result.resampled)
        assert result.resample_rate() == 0.0

    def test_always_resample_mode(self):
        trajectory = static_landmarks(T=5, seed=0)
        pf = SIRParticleFilter(n_particles=300, resample_criterion="always", seed=42)
        result = pf.filter(trajectory.observations)

        assert np.all(result.resampled)

    def test_step_snapshot_is_a_copy(self):
        pf = SIRParticleFilter(n_particles=200, n_clusters=2, cluster_method="kmeans", seed=0)
        snap = pf.step([[30.0, 30.0], [-30.0, -30.0]])

        assert isinstance(snap, FilterSnapshot)
        assert snap.n_particles == 200
        assert not np.shares_memory(snap.positions, pf.particles.positions)
        assert 1 <= len(snap.estimates) <= 2
        assert not snap.estimate_failed
        assert_normalized(snap.weights, "snapshot weights")

    def test_clustering_failure_is_skipped(self, caplog):
        pf = SIRParticleFilter(
            n_particles=30,
            process_noise_std=0.0,
            resample_criterion="never",
            n_clusters=2,
            seed=0,
        )
        particles = pf.initialize()
        particles.set_state(np.full((30, 2), 5.0))

        with caplog.at_level(logging.WARNING, logger="clustered_particle_filter"):
            snap = pf.step([[5.0, 5.0]])

        assert snap.estimate_failed
        assert snap.estimates == []
        assert_normalized(snap.weights, "weights after failed estimate")
        assert any("Skipping estimate" in r.getMessage() for r in caplog.records)

    def test_rejects_bad_config(self):
        with pytest.raises(PreconditionError):
            SIRParticleFilter(resample_criterion="sometimes")
        with pytest.raises(PreconditionError):
            SIRParticleFilter(n_particles=10, n_clusters=11)
        with pytest.raises(PreconditionError):
            SIRParticleFilter(combination="sum")
        with pytest.raises(PreconditionError):
            SIRParticleFilter(observation_std=0.0)

    @pytest.mark.parametrize("options", [
        dict(n_particles=0),
        dict(n_particles=float("nan")),
        dict(search_space_bound=-5.0),
        dict(resample_method="residual"),
        dict(reinject_fraction=1.5),
        dict(reinject_mode="sometimes"),
        dict(dtype=np.int16),
        dict(cluster_method="dbscan"),
        dict(n_clusters=2.5),
    ])
    def test_rejects_bad_particle_options_at_construction(self, options):
        with pytest.raises(PreconditionError):
            SIRParticleFilter(**options)

    def test_experiment_configs_cover_both_policies(self):
        from clustered_particle_filter.landmark_experiment import make_configs

        configs = make_configs(n_particles=300, n_clusters=3)
        policies = {c["combination"] for c in configs.values()}
        assert policies == {"max", "product"}

        for name, config in configs.items():
            pf = SIRParticleFilter(seed=0, **config)
            assert pf.observation.combination == config["combination"], name
