"""
Motion and observation model definitions.
"""

from .base import gaussian_pdf, as_points
from .motion import ConstantVelocityModel
from .landmark import LandmarkObservationModel, COMBINATION_POLICIES, weight_floor

__all__ = [
    "gaussian_pdf",
    "as_points",
    "ConstantVelocityModel",
    "LandmarkObservationModel",
    "COMBINATION_POLICIES",
    "weight_floor",
]
