"""
Clustered Particle Filter Library.

A NumPy-based library for tracking planar targets with:
- SIR particle filter (constant-velocity motion, landmark distance likelihood)
- Systematic resampling with roughening and random reinjection
- Multi-modal state extraction by clustering (Gaussian mixture, k-means)
"""

from . import exceptions
from . import models
from . import filters
from . import simulation
from . import utils

from .exceptions import (
    ParticleFilterError,
    PreconditionError,
    ClusteringError,
    ResamplingInvariantError,
)
from .filters import ParticleSet, SIRParticleFilter
from .utils.clustering import ClusterEstimate

__version__ = "0.1.0"
