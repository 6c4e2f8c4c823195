"""
Constant-velocity motion model for planar particles.

State per particle: position [px, py] and velocity [vx, vy].
Dynamics: p_t = p_{t-1} + (v_{t-1} + e_t) * dt,  e_t ~ N(0, sigma^2 I)
"""

import numpy as np
from dataclasses import dataclass
from numpy.random import Generator

from .base import check_std
from ..exceptions import PreconditionError


@dataclass
class ConstantVelocityModel:
    """
    Linear constant-velocity model with additive Gaussian process noise.

    The noise perturbs the velocity used for the step, not the stored
    velocity itself, so only positions change.

    Attributes:
        process_noise_std: Std of the per-axis velocity perturbation (may be 0)
        dt: Time step
    """
    process_noise_std: float = 1.0
    dt: float = 0.1

    def __post_init__(self):
        self.process_noise_std = check_std(
            self.process_noise_std, "process_noise_std", allow_zero=True
        )
        self.dt = float(self.dt)
        if not np.isfinite(self.dt):
            raise PreconditionError(f"dt must be finite, got {self.dt}")

    def propagate(
        self,
        positions: np.ndarray,
        velocities: np.ndarray,
        rng: Generator,
    ) -> np.ndarray:
        """
        Sample next positions.

        Args:
            positions: [N, 2] current positions
            velocities: [N, 2] current velocities
            rng: NumPy random generator

        Returns:
            positions_next: [N, 2] new array, same dtype as positions
        """
        if positions.shape != velocities.shape:
            raise PreconditionError(
                f"positions {positions.shape} and velocities {velocities.shape} differ"
            )

        if self.process_noise_std == 0.0:
            step = velocities * positions.dtype.type(self.dt)
        else:
            offsets = rng.normal(0.0, self.process_noise_std, size=positions.shape)
            step = (velocities + offsets.astype(positions.dtype)) * positions.dtype.type(self.dt)

        return positions + step

    def __repr__(self) -> str:
        return f"ConstantVelocityModel(q={self.process_noise_std}, dt={self.dt})"
