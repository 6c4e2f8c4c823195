"""
Landmark observation model.

Each observation is a known 2D reference point. A particle's likelihood for
one observation is a zero-mean Gaussian density evaluated at the Euclidean
distance between the particle and the point. Per-observation likelihoods are
combined into one score per particle by an explicit policy:

- "product": all observations inform the same single target
- "max":     ambiguous association among several indistinguishable targets;
             each particle explains whichever observation fits it best
"""

import warnings
import numpy as np
from dataclasses import dataclass
from typing import Literal

from .base import gaussian_pdf, as_points, check_std
from ..exceptions import PreconditionError
from ..utils.resampling import normalize_weights


COMBINATION_POLICIES = ("product", "max")

# Added to every weight before normalization so the sum never collapses to 0
WEIGHT_FLOOR = 1e-300


def weight_floor(dtype) -> float:
    """Smallest floor representable in dtype (1e-300 underflows in float32)."""
    return max(WEIGHT_FLOOR, float(np.finfo(dtype).tiny))


@dataclass
class LandmarkObservationModel:
    """
    Distance-to-landmark Gaussian likelihood.

    Attributes:
        observation_std: Std of the distance likelihood (> 0)
        combination: "product" or "max"
    """
    observation_std: float = 20.0
    combination: Literal["product", "max"] = "max"

    def __post_init__(self):
        self.observation_std = check_std(self.observation_std, "observation_std")
        if self.combination not in COMBINATION_POLICIES:
            raise PreconditionError(
                f"Unknown combination policy: {self.combination!r} "
                f"(expected one of {COMBINATION_POLICIES})"
            )

    def distances(self, positions: np.ndarray, observations: np.ndarray) -> np.ndarray:
        """
        Euclidean distances between particles and observations.

        Args:
            positions: [N, 2] particle positions
            observations: [M, 2] observed points

        Returns:
            d: [N, M]
        """
        diff = positions[:, np.newaxis, :] - observations[np.newaxis, :, :]
        return np.sqrt(np.sum(diff ** 2, axis=-1))

    def likelihood(self, positions: np.ndarray, observations) -> np.ndarray:
        """
        Combined likelihood of all observations for every particle.

        Args:
            positions: [N, 2] particle positions
            observations: [M, 2] observed points (M >= 1)

        Returns:
            lik: [N] combined likelihood, dtype of positions
        """
        obs = as_points(observations, "observations", dtype=positions.dtype)
        if obs.shape[0] == 0:
            raise PreconditionError("observations must contain at least one point")

        per_obs = gaussian_pdf(
            self.distances(positions, obs), 0.0, self.observation_std
        ).astype(positions.dtype, copy=False)

        if self.combination == "product":
            return np.prod(per_obs, axis=1)

        return np.max(per_obs, axis=1, initial=0.0)

    def update_weights(
        self,
        weights: np.ndarray,
        positions: np.ndarray,
        observations,
    ) -> np.ndarray:
        """
        Bayesian weight update: w <- normalize(w * lik + floor).

        Args:
            weights: [N] prior weights
            positions: [N, 2] particle positions
            observations: [M, 2] observed points

        Returns:
            weights_new: [N] normalized posterior weights (new array)
        """
        if weights.shape[0] != positions.shape[0]:
            raise PreconditionError(
                f"weights ({weights.shape[0]}) and positions ({positions.shape[0]}) differ in length"
            )

        lik = self.likelihood(positions, observations)
        updated = weights * lik

        if not np.any(updated > 0.0):
            warnings.warn(
                "All particle likelihoods underflowed; weights fall back to the floor "
                f"(observation_std={self.observation_std})",
                RuntimeWarning,
                stacklevel=3,
            )

        return normalize_weights(updated, floor=weight_floor(updated.dtype))

    def __repr__(self) -> str:
        return (
            f"LandmarkObservationModel(std={self.observation_std}, "
            f"combination={self.combination!r})"
        )
