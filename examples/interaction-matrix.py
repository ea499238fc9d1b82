"""
Reusing the Interaction Matrix
==============================
When the energy of many configurations on the same lattice is needed, for example
in a Monte Carlo simulation of an Ising-like model, the Ewald sums only have to be
evaluated once. The :py:class:`latticeewald.InteractionMatrixBuilder` precomputes the
interaction of all pairs of sites, after which every energy is a cheap contraction.
"""

# %%
import time

import torch

import latticeewald

# %%
# A simple cubic lattice of 4 x 4 x 4 cells with a single basis site.

geometry = latticeewald.LatticeGeometry(
    torch.eye(3), [[0.0, 0.0, 0.0]], size=(4, 4, 4), dtype=torch.float64
)
parameters = latticeewald.tune_extents(geometry, eta=1.0, accuracy=1e-8)

# %%
# The dense layout stores all ``N x N`` pairs. Since the interaction only depends
# on the basis sites and on the displacement between cells, the compressed layout
# stores a single entry per basis pair and cell displacement.

builder = latticeewald.InteractionMatrixBuilder(parameters)
dense = builder.build(geometry, kind="monopole", layout="dense")
compressed = builder.build(geometry, kind="monopole", layout="compressed")
print(dense)
print(compressed)

# %%
# Random configurations of +1 / -1 charges: the contraction agrees with a full
# Ewald summation.

generator = torch.Generator().manual_seed(42)
evaluator = latticeewald.EwaldEnergyEvaluator(parameters)
contractor = latticeewald.EnergyContractor()

for _ in range(3):
    charges = 2.0 * torch.randint(0, 2, (geometry.n_sites,), generator=generator) - 1
    system = latticeewald.ChargeSystem(geometry, charges.to(torch.float64))

    start = time.perf_counter()
    ewald = evaluator(system)
    ewald_time = time.perf_counter() - start

    start = time.perf_counter()
    contracted = contractor(system, compressed)
    contract_time = time.perf_counter() - start

    print(
        f"Ewald {ewald.item():.8f} ({ewald_time * 1e3:.1f} ms), "
        f"matrix {contracted.item():.8f} ({contract_time * 1e3:.1f} ms)"
    )
