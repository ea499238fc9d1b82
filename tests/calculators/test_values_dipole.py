import pytest
import torch
from torch.testing import assert_close

from latticeewald import (
    EwaldEnergyEvaluator,
    EwaldParameters,
    InvalidParameterError,
    LatticeGeometry,
    SpinSystem,
    approximate_dipoles_as_charges,
    dipole_self_energy,
    energy_dipole,
    energy_monopole,
)

DTYPE = torch.float64


def two_dipoles(lattice_constant=3.0):
    basis = torch.tensor([[0.3, 0.4, 0.5], [1.6, 1.2, 1.9]], dtype=DTYPE)
    moments = torch.tensor([[0.5, -0.3, 0.8], [-0.4, 0.9, 0.2]], dtype=DTYPE)
    geometry = LatticeGeometry(
        lattice_constant * torch.eye(3), basis, size=(1, 1, 1), dtype=DTYPE
    )
    return SpinSystem(geometry, moments)


def test_antiparallel_pair_near_field():
    """
    Two antiparallel dipoles perpendicular to their separation in a large box. With
    a tiny eta and no images, only the bare interaction of the pair remains.
    """
    geometry = LatticeGeometry(
        10 * torch.eye(3),
        [[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]],
        size=(1, 1, 1),
        dtype=DTYPE,
    )
    moments = torch.tensor([[0.0, 0.0, 1.0], [0.0, 0.0, -1.0]], dtype=DTYPE)
    parameters = EwaldParameters(eta=1e-3, real_extent=0, reciprocal_extent=0)

    energy = energy_dipole(SpinSystem(geometry, moments), parameters)
    assert_close(energy, torch.tensor(-0.125, dtype=DTYPE), atol=0.0, rtol=1e-6)


def test_dipoles_as_charges():
    """
    Replacing each dipole by two close opposite charges reproduces the dipolar Ewald
    energy, once the bare energy inside each charge pair is removed.
    """
    epsilon = 0.01
    system = two_dipoles()
    parameters = EwaldParameters(eta=1.2, real_extent=2, reciprocal_extent=8)

    charges = approximate_dipoles_as_charges(system, epsilon=epsilon)
    self_energy = dipole_self_energy(torch.linalg.norm(system.moments, dim=1), epsilon)

    energy_charges = energy_monopole(charges, parameters) - self_energy.sum()
    energy = energy_dipole(system, parameters)

    assert_close(energy_charges, energy, atol=1e-4, rtol=1e-3)


def test_independent_of_eta():
    system = two_dipoles()
    energies = [
        energy_dipole(
            system, EwaldParameters(eta=eta, real_extent=3, reciprocal_extent=10)
        )
        for eta in (1.0, 1.5)
    ]
    assert_close(energies[0], energies[1], atol=1e-9, rtol=1e-9)


def test_supercell_matches_primitive_cell():
    """A ferromagnetic supercell has the energy of its cells added up."""
    basis = torch.tensor([[0.0, 0.0, 0.0]], dtype=DTYPE)
    parameters = EwaldParameters(eta=1.0, real_extent=4, reciprocal_extent=8)

    primitive = LatticeGeometry(2 * torch.eye(3), basis, (1, 1, 1), dtype=DTYPE)
    moments = torch.tensor([[0.2, 0.1, 1.0]], dtype=DTYPE)
    energy = energy_dipole(SpinSystem(primitive, moments), parameters)

    supercell = LatticeGeometry(2 * torch.eye(3), basis, (2, 1, 2), dtype=DTYPE)
    energy_supercell = energy_dipole(
        SpinSystem(supercell, moments.repeat(4, 1)), parameters
    )
    assert_close(energy_supercell, 4 * energy, atol=1e-9, rtol=1e-9)


@pytest.mark.parametrize("cell_shift", [(1, -1, 0), (0, 0, 1), (-1, 1, 1)])
def test_site_moved_by_lattice_vectors(cell_shift):
    """Moving one dipole by lattice vectors describes the same crystal."""
    system = two_dipoles()
    geometry = system.geometry
    parameters = EwaldParameters(eta=1.2, real_extent=4, reciprocal_extent=6)

    basis = geometry.basis.clone()
    basis[1] += torch.tensor(cell_shift, dtype=DTYPE) @ geometry.lattice_vectors
    moved = LatticeGeometry(
        geometry.lattice_vectors, basis, geometry.size, dtype=DTYPE
    )

    assert_close(
        energy_dipole(SpinSystem(moved, system.moments), parameters),
        energy_dipole(system, parameters),
        atol=1e-10,
        rtol=1e-10,
    )


def test_dipole_translation_invariance():
    system = two_dipoles()
    parameters = EwaldParameters(eta=1.2, real_extent=4, reciprocal_extent=6)

    shift = torch.tensor([0.7, -1.1, 0.25], dtype=DTYPE)
    shifted = SpinSystem(system.geometry.translated(shift), system.moments)

    assert_close(
        energy_dipole(shifted, parameters),
        energy_dipole(system, parameters),
        atol=1e-10,
        rtol=1e-10,
    )


def test_dispatch():
    system = two_dipoles()
    evaluator = EwaldEnergyEvaluator(EwaldParameters(eta=1.2))
    assert_close(evaluator(system), evaluator.dipole(system))


def test_dipoles_require_three_dimensions():
    geometry = LatticeGeometry(torch.eye(2), [[0.0, 0.0]], size=(1, 1), dtype=DTYPE)
    with pytest.raises(InvalidParameterError, match="dipoles require a three"):
        SpinSystem(geometry, torch.ones((1, 3), dtype=DTYPE))
