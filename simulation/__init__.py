"""
Trajectory simulation.
"""

from .trajectory import (
    DEMO_LANDMARKS,
    Trajectory,
    spawn_generators,
    simulate_targets,
    static_landmarks,
    simulate_batch,
)

__all__ = [
    "DEMO_LANDMARKS",
    "Trajectory",
    "spawn_generators",
    "simulate_targets",
    "static_landmarks",
    "simulate_batch",
]
