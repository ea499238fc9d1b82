import math
import warnings

import numpy as np
import pytest
import torch
from torch.testing import assert_close

from latticeewald import (
    ConvergenceWarning,
    InvalidParameterError,
    LatticeGeometry,
    RealSpaceKernel,
    ReciprocalSpaceKernel,
)
from latticeewald.kernels import GAUSSIAN_DAMPING_FACTOR, reciprocal_weights

DTYPE = torch.float64


@pytest.fixture
def geometry():
    lattice_vectors = torch.tensor(
        [[1.2, 0.1, 0.0], [0.0, 1.0, 0.2], [0.1, 0.0, 0.9]], dtype=DTYPE
    )
    basis = torch.tensor([[0.0, 0.0, 0.0], [0.4, 0.3, 0.5]])
    return LatticeGeometry(lattice_vectors, basis, size=(2, 1, 1), dtype=DTYPE)


def displacement_batch():
    return torch.tensor(
        [[0.0, 0.0, 0.0], [0.4, 0.3, 0.5], [-1.3, 0.2, 0.7], [2.0, 0.2, 0.1]],
        dtype=DTYPE,
    )


def reference_images(geometry, extent):
    supercell = geometry.supercell_vectors.numpy()
    images = []
    for m in np.ndindex(*(3 * [2 * extent + 1])):
        images.append((np.array(m) - extent) @ supercell)
    return images


def test_real_space_monopole(geometry):
    eta, extent = 1.3, 2
    kernel = RealSpaceKernel(geometry, eta=eta, extent=extent)
    displacements = displacement_batch()

    ref = []
    for r in displacements.numpy():
        total = 0.0
        for n in reference_images(geometry, extent):
            dist = np.linalg.norm(r + n)
            if dist == 0.0:
                continue
            total += math.erfc(eta * dist) / dist
        ref.append(total)

    assert_close(kernel.monopole(displacements), torch.tensor(ref, dtype=DTYPE))


def test_real_space_dipole_far_field():
    """For a tiny eta and no images the kernel is the bare dipolar tensor."""
    geometry = LatticeGeometry(
        10 * torch.eye(3), [[0.0, 0.0, 0.0]], size=(1, 1, 1), dtype=DTYPE
    )
    kernel = RealSpaceKernel(geometry, eta=1e-4, extent=0)
    displacements = torch.tensor([[1.0, 2.0, -0.5], [0.0, 0.0, 2.0]], dtype=DTYPE)

    tensors = kernel.dipole(displacements)
    for r, tensor in zip(displacements, tensors):
        d = torch.linalg.norm(r)
        ref = torch.eye(3, dtype=DTYPE) / d**3 - 3 * torch.outer(r, r) / d**5
        assert_close(tensor, ref, atol=1e-10, rtol=1e-7)


def test_real_space_dipole_symmetric(geometry):
    kernel = RealSpaceKernel(geometry, eta=1.3, extent=1)
    tensors = kernel.dipole(displacement_batch())
    assert_close(tensors, tensors.transpose(1, 2))


def test_real_space_self_term_excluded(geometry):
    kernel = RealSpaceKernel(geometry, eta=1.3, extent=0)
    zero = torch.zeros((1, 3), dtype=DTYPE)
    assert float(kernel.monopole(zero)) == 0.0
    assert torch.all(kernel.dipole(zero) == 0.0)


@pytest.mark.parametrize("kind", ["monopole", "dipole"])
def test_outer_shell_contribution(geometry, kind):
    displacements = displacement_batch()

    # with a single shell, the outermost shell is everything
    kernel = RealSpaceKernel(geometry, eta=1.3, extent=0)
    total, outer = getattr(kernel, kind)(displacements, return_outer=True)
    assert_close(outer, total)

    # the outermost shell is what the previous extent is missing
    inner = getattr(RealSpaceKernel(geometry, eta=0.5, extent=1), kind)(displacements)
    kernel = RealSpaceKernel(geometry, eta=0.5, extent=2)
    total, outer = getattr(kernel, kind)(displacements, return_outer=True)
    assert_close(total - outer, inner)


def test_check_convergence_warns(geometry):
    kernel = RealSpaceKernel(geometry, eta=0.1, extent=1)
    _, outer = kernel.monopole(displacement_batch(), return_outer=True)
    total = kernel.monopole(displacement_batch())

    match = "the outermost real-space shell"
    with pytest.warns(ConvergenceWarning, match=match):
        kernel.check_convergence(total.abs().sum(), outer.abs().sum())


def test_check_convergence_skipped_without_shells(geometry):
    kernel = RealSpaceKernel(geometry, eta=0.1, extent=0)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        kernel.check_convergence(1.0, 1.0)


def test_reciprocal_weights():
    assert GAUSSIAN_DAMPING_FACTOR == 4.0
    k_sq = torch.tensor([1.0, 4.0], dtype=DTYPE)
    eta = torch.tensor(0.5, dtype=DTYPE)
    assert_close(reciprocal_weights(k_sq, eta), torch.exp(-k_sq) / k_sq)


def test_reciprocal_monopole(geometry):
    eta, extent = 1.3, 2
    kernel = ReciprocalSpaceKernel(geometry, eta=eta, extent=extent)
    displacements = displacement_batch()
    reciprocal = geometry.supercell_reciprocal_vectors.numpy()

    ref = []
    for r in displacements.numpy():
        total = 0.0
        for m in np.ndindex(*3 * [2 * extent + 1]):
            m = np.array(m) - extent
            if not m.any():
                continue
            k = m @ reciprocal
            k_sq = k @ k
            total += math.exp(-k_sq / (4 * eta**2)) * math.cos(k @ r) / k_sq
        ref.append(total)

    assert_close(kernel.monopole(displacements), torch.tensor(ref, dtype=DTYPE))


def test_reciprocal_dipole_consistency(geometry):
    kernel = ReciprocalSpaceKernel(geometry, eta=1.3, extent=2)
    displacements = displacement_batch()
    tensors = kernel.dipole(displacements)

    assert_close(tensors, tensors.transpose(1, 2))

    # the trace removes the 1 / k^2 of the weights
    phases = torch.cos(displacements @ kernel.kvectors.T)
    damping = torch.exp(-torch.sum(kernel.kvectors**2, dim=1) / (4 * 1.3**2))
    assert_close(tensors.diagonal(dim1=1, dim2=2).sum(dim=1), phases @ damping)

    # the pair form is the tensor contracted with both moments
    generator = torch.Generator().manual_seed(0)
    moments_i = torch.randn((4, 3), generator=generator, dtype=DTYPE)
    moments_j = torch.randn((4, 3), generator=generator, dtype=DTYPE)
    pair = kernel.dipole_pair(displacements, moments_i, moments_j)
    ref = torch.einsum("pi,pij,pj->p", moments_i, tensors, moments_j)
    assert_close(pair, ref)


def test_reciprocal_zero_extent(geometry):
    kernel = ReciprocalSpaceKernel(geometry, eta=1.0, extent=0)
    displacements = displacement_batch()
    assert torch.all(kernel.monopole(displacements) == 0.0)
    assert kernel.dipole(displacements).shape == (4, 3, 3)


@pytest.mark.parametrize("kernel_class", [RealSpaceKernel, ReciprocalSpaceKernel])
def test_invalid_parameters(geometry, kernel_class):
    with pytest.raises(InvalidParameterError, match="`eta` 0.0 has to be positive"):
        kernel_class(geometry, eta=0.0, extent=1)
    with pytest.raises(InvalidParameterError, match="`extent` -1 has to be"):
        kernel_class(geometry, eta=1.0, extent=-1)
