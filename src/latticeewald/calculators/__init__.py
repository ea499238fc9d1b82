from .base import CalculatorBase
from .contract import EnergyContractor, contract_energy
from .direct import DirectSummation, direct_sum_monopole
from .ewald import EwaldEnergyEvaluator, energy_dipole, energy_monopole
from .matrix import (
    CompressedInteractionMatrix,
    InteractionMatrix,
    InteractionMatrixBuilder,
    InteractionMatrixCache,
    build_interaction_matrix,
)

__all__ = [
    "CalculatorBase",
    "CompressedInteractionMatrix",
    "DirectSummation",
    "EnergyContractor",
    "EwaldEnergyEvaluator",
    "InteractionMatrix",
    "InteractionMatrixBuilder",
    "InteractionMatrixCache",
    "build_interaction_matrix",
    "contract_energy",
    "direct_sum_monopole",
    "energy_dipole",
    "energy_monopole",
]
