import math
from typing import Optional, Sequence, Tuple, Union

import torch

from ._utils import _get_device, _get_dtype
from .errors import DegenerateGeometryError, InvalidParameterError
from .lib import integer_box, reciprocal_cell

# relative to the product of the lattice vector lengths
_VOLUME_TOLERANCE = 1e-12


class LatticeGeometry:
    r"""Periodic arrangement of basis sites on a (super)lattice.

    A geometry is made of ``D`` primitive lattice vectors :math:`\mathbf{a}_d`, a
    basis of ``nbasis`` sites inside the primitive cell and the number of primitive
    cells ``size[d]`` along each lattice direction. The whole ``size[0] x ... x
    size[D-1]`` block of cells (the *supercell*) is repeated periodically, so that
    image offsets are integer combinations of the supercell vectors
    :math:`\mathrm{size}_d \, \mathbf{a}_d`.

    Sites are indexed by a single integer ``i = cell * nbasis + b`` where ``b`` is
    the basis index and ``cell`` the row-major linear index of the integer cell
    offset. The geometry is read-only after construction.

    :param lattice_vectors: array-like of shape ``(D, D)``, where
        ``lattice_vectors[d]`` is the primitive vector :math:`\mathbf{a}_d`
    :param basis: array-like of shape ``(nbasis, D)`` with the Cartesian positions of
        the basis sites
    :param size: number of primitive cells along each lattice direction
    :param dtype: floating point type of all tensors of the geometry. If
        :py:obj:`None`, ``torch.get_default_dtype()`` is used.
    :param device: device of all tensors of the geometry

    Example
    -------
    A rock-salt arrangement written as a ``2 x 2 x 2`` block of a simple cubic
    lattice with a single basis site:

    >>> import torch
    >>> geometry = LatticeGeometry(
    ...     torch.eye(3), [[0.0, 0.0, 0.0]], size=(2, 2, 2), dtype=torch.float64
    ... )
    >>> geometry.n_sites
    8
    >>> print(geometry.supercell_volume)
    tensor(8., dtype=torch.float64)
    """

    def __init__(
        self,
        lattice_vectors,
        basis,
        size: Sequence[int],
        dtype: Optional[torch.dtype] = None,
        device: Union[None, str, torch.device] = None,
    ):
        self.dtype = _get_dtype(dtype)
        self.device = _get_device(device)

        lattice_vectors = torch.as_tensor(
            lattice_vectors, dtype=self.dtype, device=self.device
        )
        basis = torch.as_tensor(basis, dtype=self.dtype, device=self.device)
        size = tuple(int(s) for s in size)

        if lattice_vectors.dim() != 2 or (
            lattice_vectors.shape[0] != lattice_vectors.shape[1]
        ):
            raise InvalidParameterError(
                "`lattice_vectors` must be a square matrix, got tensor with shape "
                f"{list(lattice_vectors.shape)}"
            )
        dim = lattice_vectors.shape[0]

        if basis.dim() != 2 or basis.shape[1] != dim or basis.shape[0] == 0:
            raise InvalidParameterError(
                f"`basis` must be a tensor with shape [nbasis, {dim}] and at least "
                f"one site, got tensor with shape {list(basis.shape)}"
            )

        if len(size) != dim:
            raise InvalidParameterError(
                f"`size` must have {dim} entries, one per lattice vector, got {size}"
            )
        if any(s <= 0 for s in size):
            raise InvalidParameterError(
                f"all entries of `size` {size} must be positive"
            )

        volume = torch.abs(torch.linalg.det(lattice_vectors))
        scale = float(torch.prod(torch.linalg.norm(lattice_vectors, dim=1)))
        if not float(volume) > _VOLUME_TOLERANCE * scale:
            raise DegenerateGeometryError(
                "provided `lattice_vectors` span a cell of volume "
                f"{float(volume):.3e} and are therefore not linearly independent"
            )

        self._lattice_vectors = lattice_vectors
        self._basis = basis
        self._size = size
        self._volume = volume

        size_tensor = torch.tensor(size, dtype=self.dtype, device=self.device)
        self._supercell_vectors = size_tensor.unsqueeze(-1) * lattice_vectors
        self._supercell_volume = volume * math.prod(size)

        self._cell_offsets = integer_box(
            [0] * dim, [s - 1 for s in size], device=self.device
        )
        self._delta_offsets = integer_box(
            [-(s - 1) for s in size], [s - 1 for s in size], device=self.device
        )

        # row-major strides of the cell and displacement storage
        cell_strides = [1] * dim
        delta_strides = [1] * dim
        for d in range(dim - 2, -1, -1):
            cell_strides[d] = cell_strides[d + 1] * size[d + 1]
            delta_strides[d] = delta_strides[d + 1] * (2 * size[d + 1] - 1)
        self._cell_strides = torch.tensor(cell_strides, device=self.device)
        self._delta_strides = torch.tensor(delta_strides, device=self.device)
        self._size_tensor = torch.tensor(size, device=self.device)

    def __repr__(self) -> str:
        return (
            f"LatticeGeometry(dim={self.dim}, n_basis={self.n_basis}, "
            f"size={self.size}, dtype={self.dtype})"
        )

    @property
    def dim(self) -> int:
        return self._lattice_vectors.shape[0]

    @property
    def n_basis(self) -> int:
        return self._basis.shape[0]

    @property
    def size(self) -> Tuple[int, ...]:
        return self._size

    @property
    def n_cells(self) -> int:
        return math.prod(self._size)

    @property
    def n_sites(self) -> int:
        return self.n_basis * self.n_cells

    @property
    def lattice_vectors(self) -> torch.Tensor:
        return self._lattice_vectors

    @property
    def basis(self) -> torch.Tensor:
        return self._basis

    @property
    def volume(self) -> torch.Tensor:
        """Volume of the primitive cell."""
        return self._volume

    @property
    def reciprocal_vectors(self) -> torch.Tensor:
        """Reciprocal vectors of the primitive lattice."""
        return reciprocal_cell(self._lattice_vectors)

    @property
    def supercell_vectors(self) -> torch.Tensor:
        """Periodicity vectors of the whole system, ``size[d] * a_d``."""
        return self._supercell_vectors

    @property
    def supercell_volume(self) -> torch.Tensor:
        """Volume of the periodically repeated system."""
        return self._supercell_volume

    @property
    def supercell_reciprocal_vectors(self) -> torch.Tensor:
        return reciprocal_cell(self._supercell_vectors)

    @property
    def displacement_shape(self) -> Tuple[int, ...]:
        """Number of realisable cell displacements along each direction."""
        return tuple(2 * s - 1 for s in self._size)

    def cell_offsets(self) -> torch.Tensor:
        """Integer offsets of all cells, shape ``(n_cells, D)``, row-major order."""
        return self._cell_offsets

    def displacement_offsets(self) -> torch.Tensor:
        """All realisable cell displacements ``cell(j) - cell(i)``.

        The displacements range over ``-(size[d] - 1), ..., size[d] - 1`` and are
        listed in the same order as the storage of a compressed interaction matrix.
        """
        return self._delta_offsets

    def displacement_index(self, delta: torch.Tensor) -> torch.Tensor:
        """Linear zero-based storage index of signed cell displacements.

        :param delta: integer tensor of shape ``(..., D)``
        :return: integer tensor of shape ``(...)``
        """
        shifted = delta + (self._size_tensor - 1)
        return (shifted * self._delta_strides).sum(dim=-1)

    def site_basis(self) -> torch.Tensor:
        """Basis index of every site."""
        return torch.arange(self.n_sites, device=self.device) % self.n_basis

    def site_cells(self) -> torch.Tensor:
        """Integer cell offset of every site, shape ``(n_sites, D)``."""
        cells = torch.arange(self.n_sites, device=self.device) // self.n_basis
        return self._cell_offsets[cells]

    def site_index(self, basis_index: int, cell: Sequence[int]) -> int:
        """Linear index of basis site ``basis_index`` in the (wrapped) ``cell``."""
        if not 0 <= basis_index < self.n_basis:
            raise IndexError(
                f"basis index {basis_index} out of range for {self.n_basis} sites"
            )
        cell = torch.as_tensor(cell, device=self.device) % self._size_tensor
        return int((cell * self._cell_strides).sum()) * self.n_basis + basis_index

    def positions(self) -> torch.Tensor:
        """Cartesian positions of all sites, shape ``(n_sites, D)``."""
        cells = self.site_cells().to(dtype=self.dtype)
        return self._basis[self.site_basis()] + cells @ self._lattice_vectors

    def displacement(
        self, basis_i: torch.Tensor, basis_j: torch.Tensor, delta: torch.Tensor
    ) -> torch.Tensor:
        r"""Vector from site ``(basis_i, 0)`` to site ``(basis_j, delta)``.

        This is the only place where pair displacements are formed, so that all
        calculators evaluate the kernels at bit-identical vectors

        .. math::

            \mathbf{r}_{ij} = (\mathbf{b}_j - \mathbf{b}_i) + \Delta \cdot A

        :param basis_i: integer tensor of basis indices
        :param basis_j: integer tensor of basis indices, broadcastable with
            ``basis_i``
        :param delta: integer tensor of shape ``(..., D)`` of cell displacements
        :return: tensor of shape ``(..., D)``
        """
        offsets = delta.to(dtype=self.dtype) @ self._lattice_vectors
        return (self._basis[basis_j] - self._basis[basis_i]) + offsets

    def pair_displacements(self, i: torch.Tensor, j: torch.Tensor) -> torch.Tensor:
        """Displacements ``r_j - r_i`` for the site index tensors ``i`` and ``j``."""
        cells = self._cell_offsets
        delta = cells[j // self.n_basis] - cells[i // self.n_basis]
        return self.displacement(i % self.n_basis, j % self.n_basis, delta)

    def translated(self, shift) -> "LatticeGeometry":
        """Copy of the geometry with every basis site moved by ``shift``."""
        shift = torch.as_tensor(shift, dtype=self.dtype, device=self.device)
        return LatticeGeometry(
            self._lattice_vectors,
            self._basis + shift,
            self._size,
            dtype=self.dtype,
            device=self.device,
        )
