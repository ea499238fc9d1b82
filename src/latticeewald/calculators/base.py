import math
from typing import Iterator, Optional, Tuple

import torch

from ..errors import InvalidParameterError
from ..kernels import RealSpaceKernel, ReciprocalSpaceKernel
from ..lattice import LatticeGeometry
from ..parameters import EwaldParameters


class CalculatorBase(torch.nn.Module):
    """Base class for the calculators sharing a set of Ewald parameters.

    :param parameters: the Ewald parameters. If :py:obj:`None`, the defaults of
        :py:class:`EwaldParameters` are used.
    """

    def __init__(self, parameters: Optional[EwaldParameters] = None):
        super().__init__()
        if parameters is None:
            parameters = EwaldParameters()
        if not isinstance(parameters, EwaldParameters):
            raise TypeError(
                "`parameters` must be an instance of EwaldParameters, got "
                f"{type(parameters)}"
            )
        self.parameters = parameters

    def _kernels(
        self, geometry: LatticeGeometry
    ) -> Tuple[RealSpaceKernel, ReciprocalSpaceKernel]:
        self._validate_geometry(geometry)
        parameters = self.parameters
        real = RealSpaceKernel(
            geometry,
            eta=parameters.eta,
            extent=parameters.real_extent,
            convergence_threshold=parameters.convergence_threshold,
        )
        reciprocal = ReciprocalSpaceKernel(
            geometry, eta=parameters.eta, extent=parameters.reciprocal_extent
        )
        return real, reciprocal

    @staticmethod
    def _validate_geometry(geometry: LatticeGeometry) -> None:
        if not isinstance(geometry, LatticeGeometry):
            raise TypeError(
                f"`geometry` must be an instance of LatticeGeometry, got "
                f"{type(geometry)}"
            )
        if not float(geometry.supercell_volume) > 0:
            raise InvalidParameterError(
                f"supercell volume {float(geometry.supercell_volume)} has to be "
                "positive"
            )

    def _neutrality_term(self, geometry: LatticeGeometry) -> torch.Tensor:
        """Coefficient ``-pi / (2 V eta^2)`` of the squared total charge."""
        eta = self.parameters.eta
        return -math.pi / (2 * geometry.supercell_volume * eta**2)

    def _monopole_self_term(self) -> float:
        return -self.parameters.eta / math.sqrt(math.pi)

    def _dipole_self_term(self) -> float:
        return -2 * self.parameters.eta**3 / (3 * math.sqrt(math.pi))

    def _chunks(self, n_items: int, device) -> Iterator[torch.Tensor]:
        """Consecutive index ranges of at most ``pair_chunk_size`` items."""
        chunk_size = self.parameters.pair_chunk_size
        for start in range(0, n_items, chunk_size):
            stop = min(start + chunk_size, n_items)
            yield torch.arange(start, stop, device=device)

    def _pair_chunks(
        self, geometry: LatticeGeometry
    ) -> Iterator[Tuple[torch.Tensor, torch.Tensor]]:
        """Chunks of the ordered site pairs ``(i, j)`` in row-major order."""
        n_sites = geometry.n_sites
        for index in self._chunks(n_sites**2, geometry.device):
            yield index // n_sites, index % n_sites
