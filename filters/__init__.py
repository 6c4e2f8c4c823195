"""
Filtering algorithms.
"""

from .base import FilterResult, FilterSnapshot
from .particle import ParticleSet, SIRParticleFilter

__all__ = [
    "FilterResult",
    "FilterSnapshot",
    "ParticleSet",
    "SIRParticleFilter",
]
