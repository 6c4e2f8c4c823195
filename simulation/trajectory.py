"""
Trajectory simulation and storage.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from numpy.random import Generator, SeedSequence, default_rng

from ..exceptions import PreconditionError
from ..models.base import as_points, check_std


# Stationary landmarks of the three-target demo scenario
DEMO_LANDMARKS = np.array([
    [30.0, -30.0],
    [30.0, 30.0],
    [-30.0, -30.0],
])


@dataclass
class Trajectory:
    """
    Container for simulated or recorded multi-target data.

    Attributes:
        states: [T+1, C, 4] Target states (px, py, vx, vy) for x_0, ..., x_T
        observations: [T, C, 2] Noisy target positions (y_1, ..., y_T)
        metadata: Optional dictionary for additional info
    """
    states: np.ndarray
    observations: np.ndarray
    metadata: Optional[Dict[str, Any]] = None

    @property
    def T(self) -> int:
        """Number of time steps."""
        return self.observations.shape[0]

    @property
    def num_targets(self) -> int:
        return self.states.shape[1]

    @property
    def positions(self) -> np.ndarray:
        """[T, C, 2] true positions aligned with observations (x_1, ..., x_T)."""
        return self.states[1:, :, :2]

    def subset(self, start: int, end: int) -> "Trajectory":
        """
        Extract a subset of the trajectory.

        Args:
            start: Start time index (inclusive)
            end: End time index (exclusive)

        Returns:
            New Trajectory with subset of data
        """
        return Trajectory(
            states=self.states[start:end+1].copy(),
            observations=self.observations[start:end].copy(),
            metadata=self.metadata,
        )

    def save(self, path: str):
        """Save trajectory to .npz file."""
        np.savez(
            path,
            states=self.states,
            observations=self.observations,
            metadata=self.metadata,
        )

    @classmethod
    def load(cls, path: str) -> "Trajectory":
        """Load trajectory from .npz file."""
        data = np.load(path, allow_pickle=True)
        metadata = data['metadata'].item() if 'metadata' in data else None
        return cls(
            states=data['states'],
            observations=data['observations'],
            metadata=metadata,
        )


def spawn_generators(seed: Optional[int], n: int) -> List[Generator]:
    """
    Independent, reproducible random streams.

    Each stream can drive its own filter or worker without sharing state.

    Args:
        seed: Root seed
        n: Number of streams

    Returns:
        List of n Generators
    """
    return [default_rng(s) for s in SeedSequence(seed).spawn(n)]


def simulate_targets(
    initial_states: np.ndarray,
    T: int,
    dt: float = 0.1,
    process_noise_std: float = 0.0,
    observation_std: float = 1.0,
    seed: Optional[int] = None,
    rng: Optional[Generator] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Trajectory:
    """
    Simulate constant-velocity targets with noisy position observations.

    p_t = p_{t-1} + (v_{t-1} + e_t) * dt,  e_t ~ N(0, process_noise_std^2 I)
    y_t = p_t + w_t,                       w_t ~ N(0, observation_std^2 I)

    Args:
        initial_states: [C, 4] (px, py, vx, vy) per target
        T: Number of time steps
        dt: Time step
        process_noise_std: Velocity perturbation std (0 gives straight lines)
        observation_std: Observation noise std (0 gives exact positions)
        seed: Random seed (ignored if rng is provided)
        rng: NumPy random generator (optional)
        metadata: Optional metadata to attach

    Returns:
        Trajectory object
    """
    if rng is None:
        rng = default_rng(seed)

    x0 = np.asarray(initial_states, dtype=np.float64)
    if x0.ndim != 2 or x0.shape[1] != 4:
        raise PreconditionError(f"initial_states must have shape [C, 4], got {x0.shape}")
    if T < 0:
        raise PreconditionError(f"T must be >= 0, got {T}")
    process_noise_std = check_std(process_noise_std, "process_noise_std", allow_zero=True)
    observation_std = check_std(observation_std, "observation_std", allow_zero=True)

    C = x0.shape[0]
    states = np.zeros((T + 1, C, 4))
    observations = np.zeros((T, C, 2))
    states[0] = x0

    for t in range(T):
        pos = states[t, :, :2]
        vel = states[t, :, 2:]
        offsets = rng.normal(0.0, process_noise_std, size=(C, 2))
        states[t + 1, :, :2] = pos + (vel + offsets) * dt
        states[t + 1, :, 2:] = vel

        noise = rng.normal(0.0, observation_std, size=(C, 2))
        observations[t] = states[t + 1, :, :2] + noise

    return Trajectory(
        states=states,
        observations=observations,
        metadata=metadata,
    )


def static_landmarks(
    landmarks: Optional[np.ndarray] = None,
    T: int = 100,
    observation_std: float = 0.0,
    seed: Optional[int] = None,
    rng: Optional[Generator] = None,
) -> Trajectory:
    """
    Stationary targets observed every step.

    Args:
        landmarks: [C, 2] positions (defaults to DEMO_LANDMARKS)
        T: Number of time steps
        observation_std: Observation noise std
        seed: Random seed (ignored if rng is provided)
        rng: NumPy random generator (optional)

    Returns:
        Trajectory object
    """
    points = as_points(DEMO_LANDMARKS if landmarks is None else landmarks, "landmarks")
    initial_states = np.hstack([points, np.zeros_like(points)])
    return simulate_targets(
        initial_states,
        T,
        process_noise_std=0.0,
        observation_std=observation_std,
        seed=seed,
        rng=rng,
        metadata={'scenario': 'static_landmarks'},
    )


def simulate_batch(
    initial_states: np.ndarray,
    T: int,
    n_trajectories: int,
    seed: Optional[int] = None,
    **kwargs,
) -> list:
    """
    Simulate multiple independent trajectories.

    Args:
        initial_states: [C, 4] initial target states
        T: Number of time steps
        n_trajectories: Number of trajectories to simulate
        seed: Random seed
        **kwargs: Passed to simulate_targets

    Returns:
        List of Trajectory objects
    """
    trajectories = []
    for i, rng in enumerate(spawn_generators(seed, n_trajectories)):
        traj = simulate_targets(
            initial_states, T, rng=rng, metadata={'trajectory_idx': i}, **kwargs
        )
        trajectories.append(traj)

    return trajectories
