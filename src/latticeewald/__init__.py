from . import calculators, kernels, lib  # noqa
from .calculators import (
    CompressedInteractionMatrix,
    DirectSummation,
    EnergyContractor,
    EwaldEnergyEvaluator,
    InteractionMatrix,
    InteractionMatrixBuilder,
    InteractionMatrixCache,
    build_interaction_matrix,
    contract_energy,
    direct_sum_monopole,
    energy_dipole,
    energy_monopole,
)
from .errors import (
    ConfigurationMismatchError,
    ConvergenceWarning,
    DegenerateGeometryError,
    InvalidParameterError,
    LatticeEwaldError,
)
from .kernels import RealSpaceKernel, ReciprocalSpaceKernel
from .lattice import LatticeGeometry
from .parameters import EwaldParameters
from .systems import (
    ChargeSystem,
    SpinSystem,
    approximate_dipoles_as_charges,
    dipole_self_energy,
)
from .tuning import EwaldErrorBounds, estimate_errors, tune_extents

__all__ = [
    "ChargeSystem",
    "CompressedInteractionMatrix",
    "ConfigurationMismatchError",
    "ConvergenceWarning",
    "DegenerateGeometryError",
    "DirectSummation",
    "EnergyContractor",
    "EwaldEnergyEvaluator",
    "EwaldErrorBounds",
    "EwaldParameters",
    "InteractionMatrix",
    "InteractionMatrixBuilder",
    "InteractionMatrixCache",
    "InvalidParameterError",
    "LatticeEwaldError",
    "LatticeGeometry",
    "RealSpaceKernel",
    "ReciprocalSpaceKernel",
    "SpinSystem",
    "approximate_dipoles_as_charges",
    "build_interaction_matrix",
    "contract_energy",
    "dipole_self_energy",
    "direct_sum_monopole",
    "energy_dipole",
    "energy_monopole",
    "estimate_errors",
    "tune_extents",
]
__version__ = "0.1.0"
