"""
Compute Madelung Constants
==========================
In this tutorial we show how to calculate the Madelung constant and the total
electrostatic energy of ionic crystals using the
:py:class:`latticeewald.EwaldEnergyEvaluator`, and how the result compares to a
plain damped sum over periodic images.
"""

# %%
import math

import torch

import latticeewald

# %%
# Define a simple example structure having the CsCl structure. The lattice vectors
# are given as rows, the basis sites in Cartesian coordinates.
lattice_vectors = torch.eye(3, dtype=torch.float64)
basis = torch.tensor([[0, 0, 0], [0.5, 0.5, 0.5]], dtype=torch.float64)
charges = torch.tensor([-1.0, 1.0], dtype=torch.float64)

geometry = latticeewald.LatticeGeometry(lattice_vectors, basis, size=(1, 1, 1))
system = latticeewald.ChargeSystem(geometry, charges)

# %%
# Define the expected values of the energy. The Madelung constant of CsCl refers to
# the nearest neighbor distance, which is half the cube diagonal.
madelung = 1.7626747731
energy_ref = -madelung / (math.sqrt(3) / 2)

# %%
# Computation using the Ewald summation
# -------------------------------------
# The splitting parameter ``eta`` moves weight between the real-space and the
# reciprocal-space sums. :py:func:`latticeewald.tune_extents` picks the smallest
# extents meeting a target accuracy for a given ``eta``.

parameters = latticeewald.tune_extents(geometry, eta=3.0, accuracy=1e-10)
print(parameters)

energy = latticeewald.energy_monopole(system, parameters)

# %%
# Compare against the reference energy:
print(f"Ewald energy      : {energy.item():.10f}")
print(f"Reference energy  : {energy_ref:.10f}")
print(f"Madelung constant : {-energy.item() * math.sqrt(3) / 2:.10f}")

# %%
# The result does not depend on the splitting parameter once both sums are
# converged:
for eta in (1.5, 2.0, 4.0):
    parameters = latticeewald.tune_extents(geometry, eta=eta, accuracy=1e-10)
    energy = latticeewald.energy_monopole(system, parameters)
    print(f"eta={eta}: {energy.item():.10f}")

# %%
# Damped direct summation
# -----------------------
# Summing :math:`1/r` over periodic images converges only conditionally. Damping
# distant images with :math:`e^{-s |\mathbf{n}|^2}` fixes the order of summation;
# the damped sum approaches the Ewald energy as :math:`s \to 0`, with an error
# linear in :math:`s`.

for damping in (0.04, 0.02, 0.01):
    direct = latticeewald.direct_sum_monopole(system, damping=damping, extent=40)
    print(f"s={damping}: {direct.item():.10f}")
