import math
import threading
from typing import Optional, Tuple

import torch
from torch import profiler

from ..errors import InvalidParameterError
from ..lattice import LatticeGeometry
from ..parameters import EwaldParameters
from .base import CalculatorBase

KINDS = ("monopole", "dipole")
LAYOUTS = ("dense", "compressed")


def _check_kind_and_layout(kind: str, layout: str) -> None:
    if kind not in KINDS:
        raise InvalidParameterError(f"`kind` must be one of {KINDS}, got '{kind}'")
    if layout not in LAYOUTS:
        raise InvalidParameterError(
            f"`layout` must be one of {LAYOUTS}, got '{layout}'"
        )


class InteractionMatrix:
    """Dense interaction matrix of all ordered site pairs.

    The energy of a configuration is ``sum_ij q_i A_ij q_j`` for charges or
    ``sum_ij p_i^T A_ij p_j`` for dipoles, with the self energy and the neutrality
    correction already included in the entries.

    :param values: torch.tensor of shape ``(N, N)`` for monopoles or
        ``(N, N, 3, 3)`` for dipoles
    :param kind: ``"monopole"`` or ``"dipole"``
    :param geometry: the geometry the matrix was built for
    :param parameters: the parameters the matrix was built with
    """

    layout = "dense"

    def __init__(
        self,
        values: torch.Tensor,
        kind: str,
        geometry: LatticeGeometry,
        parameters: EwaldParameters,
    ):
        _check_kind_and_layout(kind, self.layout)
        self.values = values
        self.kind = kind
        self.geometry = geometry
        self.parameters = parameters

    @property
    def n_sites(self) -> int:
        return self.values.shape[0]

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(kind='{self.kind}', "
            f"shape={list(self.values.shape)})"
        )


class CompressedInteractionMatrix(InteractionMatrix):
    """Interaction matrix stored once per basis pair and cell displacement.

    Since the interaction only depends on the basis sites and the signed cell
    displacement ``delta = cell(j) - cell(i)``, the entries are stored in a tensor
    of shape ``(nbasis, nbasis, 2 * size[0] - 1, ..., 2 * size[D-1] - 1)``
    (followed by ``(3, 3)`` for dipoles), where ``delta[d]`` is stored at the index
    ``delta[d] + size[d] - 1``.
    """

    layout = "compressed"

    @property
    def n_sites(self) -> int:
        return self.geometry.n_sites

    def _flat_values(self) -> torch.Tensor:
        n_basis = self.values.shape[0]
        tail = self.values.shape[2 + self.geometry.dim :]
        return self.values.reshape(n_basis, n_basis, -1, *tail)

    def entry(self, basis_i: int, basis_j: int, delta) -> torch.Tensor:
        """Entry for the basis sites ``basis_i`` and ``basis_j`` whose cells differ by
        ``delta``.

        :param basis_i: basis index of the first site
        :param basis_j: basis index of the second site
        :param delta: signed cell displacement, each component within
            ``-(size[d] - 1), ..., size[d] - 1``
        """
        geometry = self.geometry
        delta = torch.as_tensor(delta, device=geometry.device)
        if delta.shape != (geometry.dim,) or torch.any(
            delta.abs() >= torch.tensor(geometry.size, device=geometry.device)
        ):
            raise IndexError(
                f"cell displacement {delta.tolist()} is not realisable for a "
                f"supercell of size {geometry.size}"
            )
        index = int(geometry.displacement_index(delta))
        return self._flat_values()[basis_i, basis_j, index]

    def to_dense(self) -> InteractionMatrix:
        """Expand to the equivalent :py:class:`InteractionMatrix`."""
        geometry = self.geometry
        basis = geometry.site_basis()
        cells = geometry.site_cells()
        delta = cells.unsqueeze(0) - cells.unsqueeze(1)
        index = geometry.displacement_index(delta)

        values = self._flat_values()[basis.unsqueeze(1), basis.unsqueeze(0), index]
        return InteractionMatrix(values, self.kind, geometry, self.parameters)


class InteractionMatrixBuilder(CalculatorBase):
    r"""Precompute the Ewald interaction between all pairs of sites of a geometry.

    With the matrix at hand, the energy of many configurations on the same geometry
    is a cheap contraction, see :py:class:`EnergyContractor`. The entries are

    .. math::

        A_{ij} = \frac{1}{2} \phi_\mathrm{real}(\mathbf{r}_{ij})
            + \frac{2\pi}{V} \phi_\mathrm{recip}(\mathbf{r}_{ij})
            - \frac{\pi}{2 V \eta^2}
            - \delta_{ij} \frac{\eta}{\sqrt{\pi}}

    for monopoles and

    .. math::

        A_{ij} = \frac{1}{2} T_\mathrm{real}(\mathbf{r}_{ij})
            + \frac{2\pi}{V} T_\mathrm{recip}(\mathbf{r}_{ij})
            - \delta_{ij} \frac{2\eta^3}{3\sqrt{\pi}} I

    for dipoles. The dense layout stores every ordered pair. The compressed layout
    stores one entry per basis pair and cell displacement, which is exact because
    the entries only depend on these.

    :param parameters: splitting parameter, extents and chunking
    """

    def build(
        self, geometry: LatticeGeometry, kind: str = "monopole", layout: str = "dense"
    ) -> InteractionMatrix:
        """Build the matrix of the given ``kind`` and ``layout`` for ``geometry``."""
        _check_kind_and_layout(kind, layout)
        return getattr(self, f"{layout}_{kind}")(geometry)

    def forward(
        self, geometry: LatticeGeometry, kind: str = "monopole", layout: str = "dense"
    ) -> InteractionMatrix:
        return self.build(geometry, kind=kind, layout=layout)

    def dense_monopole(self, geometry: LatticeGeometry) -> InteractionMatrix:
        n_sites = geometry.n_sites
        values = self._seed_monopole(geometry, (n_sites, n_sites))
        values.diagonal().add_(self._monopole_self_term())

        blocks = self._pair_blocks(geometry, "monopole", *self._all_pairs(geometry))
        values = values + blocks.reshape(n_sites, n_sites)
        return InteractionMatrix(values, "monopole", geometry, self.parameters)

    def dense_dipole(self, geometry: LatticeGeometry) -> InteractionMatrix:
        self._check_dipole_geometry(geometry)
        n_sites = geometry.n_sites
        values = self._seed_dipole(geometry, (n_sites, n_sites))
        self_tensor = self._dipole_self_tensor(geometry)
        values.diagonal(dim1=0, dim2=1).add_(self_tensor[..., None])

        blocks = self._pair_blocks(geometry, "dipole", *self._all_pairs(geometry))
        values = values + blocks.reshape(n_sites, n_sites, 3, 3)
        return InteractionMatrix(values, "dipole", geometry, self.parameters)

    def compressed_monopole(
        self, geometry: LatticeGeometry
    ) -> CompressedInteractionMatrix:
        shape = (geometry.n_basis, geometry.n_basis, *geometry.displacement_shape)
        values = self._seed_monopole(geometry, shape)
        self._diagonal_blocks(geometry, values).add_(self._monopole_self_term())

        blocks = self._pair_blocks(
            geometry, "monopole", *self._representative_pairs(geometry)
        )
        values = values + blocks.reshape(shape)
        return CompressedInteractionMatrix(
            values, "monopole", geometry, self.parameters
        )

    def compressed_dipole(
        self, geometry: LatticeGeometry
    ) -> CompressedInteractionMatrix:
        self._check_dipole_geometry(geometry)
        shape = (geometry.n_basis, geometry.n_basis, *geometry.displacement_shape)
        values = self._seed_dipole(geometry, shape)
        self_tensor = self._dipole_self_tensor(geometry)
        self._diagonal_blocks(geometry, values).add_(self_tensor[..., None])

        blocks = self._pair_blocks(
            geometry, "dipole", *self._representative_pairs(geometry)
        )
        values = values + blocks.reshape(*shape, 3, 3)
        return CompressedInteractionMatrix(values, "dipole", geometry, self.parameters)

    @staticmethod
    def _check_dipole_geometry(geometry: LatticeGeometry) -> None:
        if geometry.dim != 3:
            raise InvalidParameterError(
                f"dipoles require a three dimensional lattice, got dim={geometry.dim}"
            )

    def _seed_monopole(
        self, geometry: LatticeGeometry, shape: Tuple[int, ...]
    ) -> torch.Tensor:
        return torch.full(
            shape,
            float(self._neutrality_term(geometry)),
            dtype=geometry.dtype,
            device=geometry.device,
        )

    def _seed_dipole(
        self, geometry: LatticeGeometry, shape: Tuple[int, ...]
    ) -> torch.Tensor:
        return torch.zeros(
            (*shape, 3, 3), dtype=geometry.dtype, device=geometry.device
        )

    def _dipole_self_tensor(self, geometry: LatticeGeometry) -> torch.Tensor:
        return self._dipole_self_term() * torch.eye(
            3, dtype=geometry.dtype, device=geometry.device
        )

    @staticmethod
    def _diagonal_blocks(
        geometry: LatticeGeometry, values: torch.Tensor
    ) -> torch.Tensor:
        """View on the ``b_i == b_j`` entries at zero cell displacement."""
        zero = tuple(s - 1 for s in geometry.size)
        return values[(slice(None), slice(None)) + zero].diagonal(dim1=0, dim2=1)

    @staticmethod
    def _all_pairs(
        geometry: LatticeGeometry,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        n_sites = geometry.n_sites
        index = torch.arange(n_sites**2, device=geometry.device)
        i, j = index // n_sites, index % n_sites
        basis = geometry.site_basis()
        cells = geometry.site_cells()
        return basis[i], basis[j], cells[j] - cells[i]

    @staticmethod
    def _representative_pairs(
        geometry: LatticeGeometry,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        n_basis = geometry.n_basis
        offsets = geometry.displacement_offsets()
        n_offsets = len(offsets)

        index = torch.arange(n_basis**2 * n_offsets, device=geometry.device)
        basis_i = index // (n_basis * n_offsets)
        basis_j = (index // n_offsets) % n_basis
        return basis_i, basis_j, offsets[index % n_offsets]

    def _pair_blocks(
        self,
        geometry: LatticeGeometry,
        kind: str,
        basis_i: torch.Tensor,
        basis_j: torch.Tensor,
        delta: torch.Tensor,
    ) -> torch.Tensor:
        """``0.5 * real + 2 pi / V * reciprocal`` for every listed pair.

        The pairs are evaluated in chunks, the results are concatenated in the
        order of the input.
        """
        real, reciprocal = self._kernels(geometry)
        prefactor = 2 * math.pi / geometry.supercell_volume

        blocks = []
        total_magnitude = 0.0
        outer_magnitude = 0.0
        with profiler.record_function(f"interaction matrix {kind}"):
            for index in self._chunks(len(basis_i), geometry.device):
                displacements = geometry.displacement(
                    basis_i[index], basis_j[index], delta[index]
                )
                if kind == "monopole":
                    real_terms, outer_terms = real.monopole(
                        displacements, return_outer=True
                    )
                    reciprocal_terms = reciprocal.monopole(displacements)
                else:
                    real_terms, outer_terms = real.dipole(
                        displacements, return_outer=True
                    )
                    reciprocal_terms = reciprocal.dipole(displacements)

                blocks.append(0.5 * real_terms + prefactor * reciprocal_terms)
                total_magnitude += float(real_terms.abs().sum())
                outer_magnitude += float(outer_terms.abs().sum())

        real.check_convergence(total_magnitude, outer_magnitude)
        return torch.cat(blocks)


class InteractionMatrixCache:
    """Build-once store of the most recently requested interaction matrix.

    The matrix is looked up by geometry identity, parameters, kind and layout. A
    rebuild happens under a lock and the new matrix replaces the published one in
    a single assignment, so concurrent readers get either the old or the new
    matrix, never a partially built one.

    >>> cache = InteractionMatrixCache()
    >>> matrix = cache.get(geometry, EwaldParameters())  # doctest: +SKIP
    >>> cache.get(geometry, EwaldParameters()) is matrix  # doctest: +SKIP
    True
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._published: Optional[Tuple[tuple, InteractionMatrix]] = None
        self.n_builds = 0

    @staticmethod
    def _matches(published, geometry, key) -> bool:
        if published is None:
            return False
        published_key, matrix = published
        return matrix.geometry is geometry and published_key == key

    def get(
        self,
        geometry: LatticeGeometry,
        parameters: EwaldParameters,
        kind: str = "monopole",
        layout: str = "dense",
    ) -> InteractionMatrix:
        """Published matrix for the request, built first if it does not match."""
        key = (id(geometry), parameters, kind, layout)

        published = self._published
        if self._matches(published, geometry, key):
            return published[1]

        with self._lock:
            published = self._published
            if self._matches(published, geometry, key):
                return published[1]

            matrix = InteractionMatrixBuilder(parameters).build(
                geometry, kind=kind, layout=layout
            )
            self._published = (key, matrix)
            self.n_builds += 1
            return matrix

    def clear(self) -> None:
        with self._lock:
            self._published = None


def build_interaction_matrix(
    geometry: LatticeGeometry,
    parameters: Optional[EwaldParameters] = None,
    layout: str = "dense",
    kind: str = "monopole",
) -> InteractionMatrix:
    """Interaction matrix of ``geometry``, see :py:class:`InteractionMatrixBuilder`."""
    return InteractionMatrixBuilder(parameters).build(
        geometry, kind=kind, layout=layout
    )
