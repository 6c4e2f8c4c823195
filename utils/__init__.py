"""
Utility functions.
"""

from .resampling import (
    systematic_resample,
    stratified_resample,
    systematic_positions,
    stratified_positions,
    ancestor_indices,
    get_resampler,
    roughen,
    reinjection_count,
    reinject_uniform,
    effective_sample_size,
    normalize_weights,
)

from .clustering import (
    ClusterEstimate,
    cluster_positions,
    summarize_clusters,
    weighted_mean_var,
)

from .metrics import (
    compute_ospa,
    compute_ospa_series,
    compute_position_rmse,
)

__all__ = [
    "systematic_resample",
    "stratified_resample",
    "systematic_positions",
    "stratified_positions",
    "ancestor_indices",
    "get_resampler",
    "roughen",
    "reinjection_count",
    "reinject_uniform",
    "effective_sample_size",
    "normalize_weights",
    "ClusterEstimate",
    "cluster_positions",
    "summarize_clusters",
    "weighted_mean_var",
    "compute_ospa",
    "compute_ospa_series",
    "compute_position_rmse",
]
