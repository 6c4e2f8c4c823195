"""
Landmark Tracking Experiment - three stationary targets, ambiguous association.

Settings of the original demo:
1. 5000 particles initialized uniformly over [-100, 100]^2
2. predict(process_noise_std=1.0, dt=0.1), update(observation_std=20, "max")
3. Resample when ESS < N/6, then estimate with k = number of landmarks
4. Landmarks at (30, -30), (30, 30), (-30, -30)

Compares the two clustering backends under the max policy, and the product
policy (which pulls the cloud toward the landmark centroid), by OSPA distance
between cluster means and the landmarks.
"""

import csv
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Tuple

import numpy as np

from clustered_particle_filter.filters import SIRParticleFilter
from clustered_particle_filter.simulation import (
    DEMO_LANDMARKS,
    spawn_generators,
    static_landmarks,
)
from clustered_particle_filter.utils import compute_ospa_series

logger = logging.getLogger(__name__)


# =============================================================================
# Demo Parameters
# =============================================================================

N_PARTICLES = 5000
SEARCH_SPACE_BOUND = 100.0
PROCESS_NOISE_STD = 1.0
DT = 0.1
OBSERVATION_STD = 20.0
ESS_FRACTION = 1.0 / 6.0
OSPA_CUTOFF = 20.0


@dataclass
class TrialResult:
    """Result of a single trial."""
    config_name: str
    ospa_per_step: np.ndarray
    ospa_mean: float
    ess_per_step: np.ndarray
    ess_mean: float
    resample_rate: float
    failed_estimates: int
    runtime: float


def make_configs(n_particles: int, n_clusters: int) -> Dict[str, dict]:
    """Filter configurations to compare."""
    base = dict(
        n_particles=n_particles,
        search_space_bound=SEARCH_SPACE_BOUND,
        process_noise_std=PROCESS_NOISE_STD,
        dt=DT,
        observation_std=OBSERVATION_STD,
        resample_criterion="ess",
        ess_threshold=ESS_FRACTION,
        n_clusters=n_clusters,
    )
    return {
        "max/gmm": dict(base, combination="max", cluster_method="gmm"),
        "max/kmeans": dict(base, combination="max", cluster_method="kmeans"),
        "product/gmm": dict(base, combination="product", cluster_method="gmm"),
        "max/kmeans/random-reinject": dict(
            base, combination="max", cluster_method="kmeans",
            reinject_mode="random", reinject_fraction=0.25,
        ),
    }


def run_single_trial(
    config_name: str,
    config: dict,
    observations: np.ndarray,
    true_positions: np.ndarray,
    rng: np.random.Generator,
) -> TrialResult:
    """Run a single filter trial."""
    start = time.time()

    pf = SIRParticleFilter(**config)
    result = pf.filter(observations, rng=rng)

    runtime = time.time() - start

    ospa_per_step, ospa_mean = compute_ospa_series(
        true_positions, result.estimate_means(), cutoff=OSPA_CUTOFF
    )
    failed = sum(1 for step in result.estimates if not step)

    return TrialResult(
        config_name=config_name,
        ospa_per_step=ospa_per_step,
        ospa_mean=ospa_mean,
        ess_per_step=result.ess,
        ess_mean=result.average_ess(),
        resample_rate=result.resample_rate(),
        failed_estimates=failed,
        runtime=runtime,
    )


def run_experiment(
    T: int = 100,
    n_runs: int = 5,
    n_particles: int = N_PARTICLES,
    observation_noise: float = 0.0,
    seed: int = 0,
    verbose: bool = True,
) -> Dict[str, List[TrialResult]]:
    """
    Run every configuration on the landmark scenario.

    Args:
        T: Number of time steps
        n_runs: Number of independent runs per configuration
        n_particles: Particles per filter
        observation_noise: Noise added to the observed landmark positions
        seed: Root seed
        verbose: Print progress

    Returns:
        Dict mapping configuration name to list of TrialResult
    """
    trajectory = static_landmarks(
        DEMO_LANDMARKS, T=T, observation_std=observation_noise, seed=seed
    )
    configs = make_configs(n_particles, n_clusters=trajectory.num_targets)
    logger.info(
        "Scenario: %d landmarks, T=%d, %d configs x %d runs",
        trajectory.num_targets, T, len(configs), n_runs,
    )

    results = {name: [] for name in configs}
    rngs = spawn_generators(seed + 1, n_runs * len(configs))

    for run in range(n_runs):
        for c, (name, config) in enumerate(configs.items()):
            trial = run_single_trial(
                name,
                config,
                trajectory.observations,
                trajectory.positions,
                rngs[run * len(configs) + c],
            )
            results[name].append(trial)

            if verbose:
                print(
                    f"  run {run + 1}/{n_runs} {name:<28} "
                    f"OSPA={trial.ospa_mean:.3f} ESS={trial.ess_mean:.1f} "
                    f"resample={trial.resample_rate:.2f} time={trial.runtime:.2f}s"
                )

    return results


def print_summary(results: Dict[str, List[TrialResult]]):
    """Print summary statistics."""
    print()
    print("=" * 78)
    print("Summary (mean ± std over all trials)")
    print("=" * 78)
    print(f"{'Config':<28} | {'OSPA':>14} | {'Avg ESS':>14} | {'Failed':>6} | {'Time (s)':>8}")
    print("-" * 78)

    for name, trials in results.items():
        ospas = [t.ospa_mean for t in trials]
        esss = [t.ess_mean for t in trials]
        failed = sum(t.failed_estimates for t in trials)
        times = [t.runtime for t in trials]

        ospa_str = f"{np.mean(ospas):.3f} ± {np.std(ospas):.3f}"
        ess_str = f"{np.mean(esss):.1f} ± {np.std(esss):.1f}"
        print(f"{name:<28} | {ospa_str:>14} | {ess_str:>14} | {failed:>6} | {np.mean(times):>8.2f}")


def save_results(
    results: Dict[str, List[TrialResult]],
    output_dir: str = ".",
    prefix: str = "landmark_experiment",
) -> Tuple[str, str]:
    """
    Save experiment results.

    Creates:
    1. {prefix}_trials_{timestamp}.csv - One row per trial
    2. {prefix}_{timestamp}.npz - Per-step OSPA and ESS arrays

    Returns:
        Tuple of (csv_path, npz_path)
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    os.makedirs(output_dir, exist_ok=True)

    csv_path = os.path.join(output_dir, f"{prefix}_trials_{timestamp}.csv")
    with open(csv_path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow([
            'config_name', 'trial_idx', 'ospa_mean', 'ess_mean',
            'resample_rate', 'failed_estimates', 'runtime',
        ])
        for name, trials in results.items():
            for idx, trial in enumerate(trials):
                writer.writerow([
                    name, idx, trial.ospa_mean, trial.ess_mean,
                    trial.resample_rate, trial.failed_estimates, trial.runtime,
                ])

    npz_path = os.path.join(output_dir, f"{prefix}_{timestamp}.npz")
    data = {}
    for name, trials in results.items():
        safe_name = name.replace('/', '_').replace('-', '_')
        data[f'{safe_name}_ospa_per_step'] = np.array([t.ospa_per_step for t in trials])
        data[f'{safe_name}_ess_per_step'] = np.array([t.ess_per_step for t in trials])
    np.savez(npz_path, **data)

    return csv_path, npz_path


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    # Quick run with reduced settings
    results = run_experiment(T=60, n_runs=3, n_particles=2000, verbose=True)

    print_summary(results)

    csv_path, npz_path = save_results(results, output_dir="pfresults")

    print()
    print("Results saved to:")
    print(f"  Trials CSV: {csv_path}")
    print(f"  Full NPZ:   {npz_path}")
