import math
import warnings
from typing import Dict

import torch

from .errors import ConvergenceWarning, InvalidParameterError
from .kernels.reciprocal_space import GAUSSIAN_DAMPING_FACTOR
from .lattice import LatticeGeometry
from .lib import integer_grid, shell_index
from .parameters import EwaldParameters


def _shortest_in_shell(extent: int, cell: torch.Tensor) -> torch.Tensor:
    """Shortest vector ``m @ cell`` among the integer vectors of shell ``extent``."""
    grid = integer_grid(extent, cell.shape[0], device=cell.device)
    grid = grid[shell_index(grid) == extent]
    return torch.linalg.norm(grid.to(dtype=cell.dtype) @ cell, dim=1).min()


class EwaldErrorBounds(torch.nn.Module):
    r"""Leading truncation terms of the two Ewald sums of a geometry.

    The real-space sum is cut after the shell ``real_extent``. The closest excluded
    image of any pair of sites is at least :math:`r_c = |\mathbf{n}|_\mathrm{min} -
    r_\mathrm{max}` away, where :math:`|\mathbf{n}|_\mathrm{min}` is the shortest
    image offset of the first excluded shell and :math:`r_\mathrm{max}` the largest
    distance between two sites of the supercell. The leading missing term is

    .. math::

        \epsilon_\mathrm{real} = \frac{\mathrm{erfc}(\eta r_c)}{r_c}

    Likewise, with :math:`k_c` the shortest reciprocal vector of the first excluded
    reciprocal shell,

    .. math::

        \epsilon_\mathrm{recip} = \frac{e^{-k_c^2 / 4\eta^2}}{k_c^2}

    :param geometry: the periodic system

    Example
    -------
    >>> import torch
    >>> from latticeewald import LatticeGeometry
    >>> geometry = LatticeGeometry(
    ...     torch.eye(3), [[0.0, 0.0, 0.0]], size=(1, 1, 1), dtype=torch.float64
    ... )
    >>> bounds = EwaldErrorBounds(geometry)
    >>> bool(bounds.err_rspace(eta=2.0, extent=3) < 1e-10)
    True
    """

    def __init__(self, geometry: LatticeGeometry):
        super().__init__()
        self.geometry = geometry

        basis_i, basis_j = torch.meshgrid(
            torch.arange(geometry.n_basis, device=geometry.device),
            torch.arange(geometry.n_basis, device=geometry.device),
            indexing="ij",
        )
        offsets = geometry.displacement_offsets()
        displacements = geometry.displacement(
            basis_i.reshape(-1, 1), basis_j.reshape(-1, 1), offsets.unsqueeze(0)
        )
        self.max_distance = float(torch.linalg.norm(displacements, dim=-1).max())

    def err_rspace(self, eta: float, extent: int) -> float:
        """The real space truncation error, infinite if sites can reach the first
        excluded shell.

        :param eta: splitting parameter
        :param extent: shell radius of the real-space images
        """
        shortest = _shortest_in_shell(extent + 1, self.geometry.supercell_vectors)
        cutoff = float(shortest) - self.max_distance
        if cutoff <= 0:
            return math.inf
        return math.erfc(eta * cutoff) / cutoff

    def err_kspace(self, eta: float, extent: int) -> float:
        """The reciprocal space truncation error.

        :param eta: splitting parameter
        :param extent: shell radius of the reciprocal vectors
        """
        reciprocal = self.geometry.supercell_reciprocal_vectors
        k_sq = float(_shortest_in_shell(extent + 1, reciprocal)) ** 2
        return math.exp(-k_sq / (GAUSSIAN_DAMPING_FACTOR * eta**2)) / k_sq

    def forward(
        self, eta: float, real_extent: int, reciprocal_extent: int
    ) -> Dict[str, float]:
        return {
            "real": self.err_rspace(eta, real_extent),
            "reciprocal": self.err_kspace(eta, reciprocal_extent),
        }


def estimate_errors(
    geometry: LatticeGeometry, eta: float, real_extent: int, reciprocal_extent: int
) -> Dict[str, float]:
    """Leading truncation errors of both sums, see :py:class:`EwaldErrorBounds`.

    :return: dictionary with the ``"real"`` and ``"reciprocal"`` estimates
    """
    if not eta > 0:
        raise InvalidParameterError(f"`eta` {eta} has to be positive")
    return EwaldErrorBounds(geometry)(eta, real_extent, reciprocal_extent)


def tune_extents(
    geometry: LatticeGeometry,
    eta: float,
    accuracy: float = 1e-8,
    max_extent: int = 20,
    **kwargs,
) -> EwaldParameters:
    r"""Smallest extents whose estimated truncation errors are below ``accuracy``.

    Both extents are increased independently from 0 up to ``max_extent``. If the
    accuracy can not be reached, a :py:class:`ConvergenceWarning` is issued and
    ``max_extent`` is used.

    :param geometry: the periodic system
    :param eta: splitting parameter, kept fixed
    :param accuracy: target for both truncation errors
    :param max_extent: largest extent that is tried
    :param kwargs: remaining fields of the returned :py:class:`EwaldParameters`
    :return: the tuned parameters

    Example
    -------
    >>> import torch
    >>> from latticeewald import LatticeGeometry
    >>> geometry = LatticeGeometry(
    ...     torch.eye(3), [[0.0, 0.0, 0.0]], size=(1, 1, 1), dtype=torch.float64
    ... )
    >>> parameters = tune_extents(geometry, eta=2.0, accuracy=1e-6)
    >>> parameters.real_extent, parameters.reciprocal_extent
    (1, 1)
    """
    if not eta > 0:
        raise InvalidParameterError(f"`eta` {eta} has to be positive")
    if not accuracy > 0:
        raise InvalidParameterError(f"`accuracy` {accuracy} has to be positive")
    if max_extent < 0:
        raise InvalidParameterError(
            f"`max_extent` {max_extent} has to be non-negative"
        )

    bounds = EwaldErrorBounds(geometry)

    extents = {}
    for name, error in (
        ("real_extent", bounds.err_rspace),
        ("reciprocal_extent", bounds.err_kspace),
    ):
        for extent in range(max_extent + 1):
            if error(eta, extent) <= accuracy:
                extents[name] = extent
                break
        else:
            warnings.warn(
                f"the requested accuracy {accuracy:.1e} could not be reached for "
                f"`{name}` <= {max_extent} with eta={eta}, using {max_extent}",
                ConvergenceWarning,
                stacklevel=2,
            )
            extents[name] = max_extent

    return EwaldParameters(eta=eta, **extents, **kwargs)
