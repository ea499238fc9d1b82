from typing import Union

import torch
from torch import profiler

from ..errors import ConfigurationMismatchError
from ..systems import ChargeSystem, SpinSystem
from .matrix import CompressedInteractionMatrix, InteractionMatrix


class EnergyContractor(torch.nn.Module):
    """Energy of a configuration from a precomputed interaction matrix.

    For a dense matrix this is ``sum_ij q_i A_ij q_j`` (charges) or
    ``sum_ij p_i^T A_ij p_j`` (dipoles). A compressed matrix is expanded on the fly
    by looking up the entry of every pair through its basis indices and cell
    displacement, a chunk of cells at a time.

    The configuration has to match the matrix: same kind, number of sites, number
    of basis sites and supercell size. It is never reshaped or truncated to fit.

    :param cell_chunk_size: number of cells ``i`` whose interactions are expanded
        together for compressed matrices
    """

    def __init__(self, cell_chunk_size: int = 64):
        super().__init__()
        self.cell_chunk_size = cell_chunk_size

    def forward(
        self, system: Union[ChargeSystem, SpinSystem], matrix: InteractionMatrix
    ) -> torch.Tensor:
        return self.contract(system, matrix)

    def contract(
        self, system: Union[ChargeSystem, SpinSystem], matrix: InteractionMatrix
    ) -> torch.Tensor:
        """Energy of ``system`` with the interactions in ``matrix``.

        :param system: charges or dipoles on a geometry matching the matrix
        :param matrix: dense or compressed interaction matrix
        :return: 0-d tensor with the energy
        """
        values = self._validate(system, matrix)

        with profiler.record_function("contract energy"):
            if isinstance(matrix, CompressedInteractionMatrix):
                return self._contract_compressed(system, matrix, values)

            if matrix.kind == "monopole":
                return values @ matrix.values @ values
            return torch.einsum("ia,ijab,jb->", values, matrix.values, values)

    def _contract_compressed(
        self,
        system: Union[ChargeSystem, SpinSystem],
        matrix: CompressedInteractionMatrix,
        values: torch.Tensor,
    ) -> torch.Tensor:
        geometry = system.geometry
        n_basis = geometry.n_basis
        cells = geometry.cell_offsets()
        n_cells = len(cells)

        flat = matrix._flat_values()
        # [cell, basis, ...]
        values = values.reshape(n_cells, n_basis, *values.shape[1:])

        partials = []
        for start in range(0, n_cells, self.cell_chunk_size):
            stop = min(start + self.cell_chunk_size, n_cells)
            delta = cells.unsqueeze(0) - cells[start:stop].unsqueeze(1)  # [x, y, D]
            gathered = flat[:, :, geometry.displacement_index(delta)]

            if matrix.kind == "monopole":
                partial = torch.einsum(
                    "xa,abxy,yb->", values[start:stop], gathered, values
                )
            else:
                partial = torch.einsum(
                    "xau,abxyuv,ybv->", values[start:stop], gathered, values
                )
            partials.append(partial)

        return torch.stack(partials).sum()

    @staticmethod
    def _validate(
        system: Union[ChargeSystem, SpinSystem], matrix: InteractionMatrix
    ) -> torch.Tensor:
        if isinstance(system, ChargeSystem):
            kind, values = "monopole", system.charges
        elif isinstance(system, SpinSystem):
            kind, values = "dipole", system.moments
        else:
            raise TypeError(
                f"`system` must be a ChargeSystem or a SpinSystem, got {type(system)}"
            )

        if matrix.kind != kind:
            raise ConfigurationMismatchError(
                f"a {type(system).__name__} can not be contracted with a "
                f"{matrix.kind} interaction matrix"
            )

        geometry = system.geometry
        if matrix.n_sites != geometry.n_sites:
            raise ConfigurationMismatchError(
                f"the configuration has {geometry.n_sites} sites but the interaction "
                f"matrix was built for {matrix.n_sites} sites"
            )

        if matrix.geometry.n_basis != geometry.n_basis:
            raise ConfigurationMismatchError(
                f"the configuration has {geometry.n_basis} basis sites but the "
                f"interaction matrix was built for {matrix.geometry.n_basis}"
            )
        if matrix.geometry.size != geometry.size:
            raise ConfigurationMismatchError(
                f"the configuration has supercell size {geometry.size} but the "
                f"interaction matrix was built for {matrix.geometry.size}"
            )

        if values.dtype != matrix.values.dtype:
            raise ConfigurationMismatchError(
                f"type of the configuration ({values.dtype}) must be same as the "
                f"interaction matrix type ({matrix.values.dtype})"
            )
        if values.device != matrix.values.device:
            raise ConfigurationMismatchError(
                f"device of the configuration ({values.device}) must be same as the "
                f"interaction matrix device ({matrix.values.device})"
            )

        return values


def contract_energy(
    system: Union[ChargeSystem, SpinSystem], matrix: InteractionMatrix
) -> torch.Tensor:
    """Energy of ``system`` from ``matrix``, see :py:class:`EnergyContractor`."""
    return EnergyContractor().contract(system, matrix)
