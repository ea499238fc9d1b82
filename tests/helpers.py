"""Test utilities wrap common functions in the tests"""

import math

import torch

from latticeewald import ChargeSystem, LatticeGeometry
from latticeewald._utils import _get_device, _get_dtype

SQRT3 = math.sqrt(3)

# Madelung constant of rock salt, per ion pair at unit nearest neighbor distance
MADELUNG_NACL = 1.7475645946


def define_crystal(crystal_name="CsCl", dtype=None, device=None):
    device = _get_device(device)
    dtype = _get_dtype(dtype)

    # Define all relevant parameters (basis, charges, lattice vectors, supercell
    # size) of the reference crystal structures for which the Madelung energies
    # obtained from the Ewald sums are compared with reference values.
    # see https://www.sciencedirect.com/science/article/pii/B9780128143698000078#s0015
    # More detailed values can be found in https://pubs.acs.org/doi/10.1021/ic2023852

    # Caesium-Chloride (CsCl) structure:
    # - Cubic unit cell
    # - 1 ion pair in the unit cell
    if crystal_name == "CsCl":
        basis = torch.tensor([[0, 0, 0], [0.5, 0.5, 0.5]])
        charges = torch.tensor([-1.0, 1.0])
        lattice_vectors = torch.eye(3)
        size = (1, 1, 1)
        energy_ref = -2.0353615094514

    # Sodium-Chloride (NaCl) structure using a cubic unit cell
    # - 4 ion pairs in the unit cell
    # - nearest neighbor distance of 1
    elif crystal_name == "NaCl_cubic":
        basis = torch.tensor(
            [
                [0.0, 0, 0],
                [1, 0, 0],
                [0, 1, 0],
                [0, 0, 1],
                [1, 1, 0],
                [1, 0, 1],
                [0, 1, 1],
                [1, 1, 1],
            ],
        )
        charges = torch.tensor([+1.0, -1, -1, -1, +1, +1, +1, -1])
        lattice_vectors = 2 * torch.eye(3)
        size = (1, 1, 1)
        energy_ref = -4 * MADELUNG_NACL

    # Sodium-Chloride (NaCl) structure using a primitive unit cell
    # - non-cubic unit cell (fcc)
    # - 1 ion pair in the unit cell
    elif crystal_name == "NaCl_primitive":
        basis = torch.tensor([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        charges = torch.tensor([1.0, -1.0])
        lattice_vectors = torch.tensor([[0, 1.0, 1], [1, 0, 1], [1, 1, 0]])
        size = (1, 1, 1)
        energy_ref = -MADELUNG_NACL

    # Rock salt written as a 2x2x2 block of a simple cubic lattice with a single
    # basis site, the sign of the charge alternates from cell to cell
    elif crystal_name == "NaCl_supercell":
        basis = torch.tensor([[0.0, 0.0, 0.0]])
        size = (2, 2, 2)
        lattice_vectors = torch.eye(3)
        cells = torch.cartesian_prod(*[torch.arange(s) for s in size])
        charges = (-1.0) ** cells.sum(dim=1).to(torch.get_default_dtype())
        energy_ref = -4 * MADELUNG_NACL

    # ZnS (zincblende) structure
    # - non-cubic unit cell (fcc)
    # - 1 ion pair in the unit cell
    # Remarks: we use a primitive unit cell which makes the lattice parameter of the
    # cubic cell equal to 2.
    elif crystal_name == "zincblende":
        basis = torch.tensor([[0, 0, 0], [0.5, 0.5, 0.5]])
        charges = torch.tensor([1.0, -1])
        lattice_vectors = torch.tensor([[0, 1.0, 1], [1, 0, 1], [1, 1, 0]])
        size = (1, 1, 1)
        energy_ref = -2 * 1.6380550533 / SQRT3

    # Wigner crystal in simple cubic structure.
    # The ions form a perfect lattice while the compensating charge is uniformly
    # distributed over the cell, so that the cell has a net charge. Reference from
    # "Zero-Point Energy of an Electron Lattice" by Rosemary A. Coldwell-Horsfall
    # and Alexei A. Maradudin (1960), eq. (A21), expressed in terms of the
    # Wigner-Seitz radius and rescaled to a unit lattice parameter.
    elif crystal_name == "wigner_sc":
        basis = torch.tensor([[0.0, 0, 0]])
        charges = torch.tensor([1.0])
        lattice_vectors = torch.eye(3)
        size = (1, 1, 1)
        madelung_wigner_seitz = 1.7601188
        wigner_seitz_radius = (3 / (4 * math.pi)) ** (1 / 3)
        energy_ref = -madelung_wigner_seitz / wigner_seitz_radius / 2

    else:
        raise ValueError(f"crystal_name = {crystal_name} is not supported!")

    return (
        lattice_vectors.to(device=device, dtype=dtype),
        basis.to(device=device, dtype=dtype),
        size,
        charges.to(device=device, dtype=dtype),
        energy_ref,
    )


def crystal_system(crystal_name="CsCl", scaling_factor=1.0, dtype=torch.float64):
    """The crystal as a :py:class:`ChargeSystem` with its reference energy.

    Lengths are multiplied by ``scaling_factor``, the energy is divided by it.
    """
    lattice_vectors, basis, size, charges, energy_ref = define_crystal(
        crystal_name, dtype=dtype
    )
    geometry = LatticeGeometry(
        scaling_factor * lattice_vectors, scaling_factor * basis, size, dtype=dtype
    )
    return ChargeSystem(geometry, charges), energy_ref / scaling_factor


def random_geometry(n_basis=2, size=(2, 2, 1), dim=3, seed=0, dtype=torch.float64):
    """Slightly skewed lattice with randomly placed basis sites."""
    generator = torch.Generator().manual_seed(seed)
    lattice_vectors = 1.5 * torch.eye(dim, dtype=dtype)
    lattice_vectors += 0.1 * torch.rand((dim, dim), generator=generator, dtype=dtype)
    fractional = torch.rand((n_basis, dim), generator=generator, dtype=dtype)
    return LatticeGeometry(
        lattice_vectors, fractional @ lattice_vectors, size, dtype=dtype
    )
