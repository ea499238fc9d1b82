from .real_space import RealSpaceKernel
from .reciprocal_space import (
    GAUSSIAN_DAMPING_FACTOR,
    ReciprocalSpaceKernel,
    reciprocal_weights,
)

__all__ = [
    "GAUSSIAN_DAMPING_FACTOR",
    "RealSpaceKernel",
    "ReciprocalSpaceKernel",
    "reciprocal_weights",
]
