"""
Exception hierarchy for the particle filter.
"""


class ParticleFilterError(Exception):
    """Base class for all particle filter errors."""


class PreconditionError(ParticleFilterError, ValueError):
    """
    Invalid arguments or array shapes (e.g. n < 1, k > n, mismatched lengths).

    Raised before any state is mutated.
    """


class ClusteringError(ParticleFilterError):
    """
    Cluster estimation failed for the current particle cloud.

    Recoverable: the particle population is left untouched, so callers may
    retry with a smaller k or skip the estimate for this tick.
    """


class ResamplingInvariantError(ParticleFilterError, RuntimeError):
    """Resampling produced an ancestor index outside [0, n). Indicates a bug."""
