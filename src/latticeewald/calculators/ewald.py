import math
from typing import Optional, Union

import torch
from torch import profiler

from ..parameters import EwaldParameters
from ..systems import ChargeSystem, SpinSystem
from .base import CalculatorBase


class EwaldEnergyEvaluator(CalculatorBase):
    r"""Total electrostatic energy of a periodic system by Ewald summation.

    For point charges :math:`q_i` the energy is

    .. math::

        E = \frac{1}{2} \sum_{ij} q_i q_j \phi_\mathrm{real}(\mathbf{r}_{ij})
          + \frac{2\pi}{V} \sum_{ij} q_i q_j \phi_\mathrm{recip}(\mathbf{r}_{ij})
          - \frac{\pi}{2 V \eta^2} \Big(\sum_i q_i\Big)^2
          - \frac{\eta}{\sqrt{\pi}} \sum_i q_i^2

    and for point dipoles :math:`\mathbf{p}_i` (three dimensional systems only)

    .. math::

        E = \frac{1}{2} \sum_{ij} \mathbf{p}_i^T T_\mathrm{real}(\mathbf{r}_{ij})
              \mathbf{p}_j
          + \frac{2\pi}{V} \sum_{ij} \sum_{\mathbf{k}}
              \frac{e^{-k^2/4\eta^2}}{k^2} \cos(\mathbf{k}\cdot\mathbf{r}_{ij})
              (\mathbf{p}_i\cdot\mathbf{k})(\mathbf{p}_j\cdot\mathbf{k})
          - \frac{2\eta^3}{3\sqrt{\pi}} \sum_i |\mathbf{p}_i|^2

    where :math:`V` is the volume of the supercell, see
    :py:class:`latticeewald.kernels.RealSpaceKernel` and
    :py:class:`latticeewald.kernels.ReciprocalSpaceKernel` for the kernels. The
    result does not depend on :math:`\eta` once both sums are converged. No surface
    (dipolar boundary) term is added, i.e. the system is embedded in a conductor.

    The ordered site pairs are evaluated in chunks of
    ``parameters.pair_chunk_size``; each chunk contributes a partial sum and the
    partial sums are added at the end.

    :param parameters: splitting parameter, extents and chunking

    Example
    -------
    Madelung energy per ion pair of CsCl

    >>> import torch
    >>> from latticeewald import ChargeSystem, EwaldParameters, LatticeGeometry
    >>> geometry = LatticeGeometry(
    ...     torch.eye(3), [[0, 0, 0], [0.5, 0.5, 0.5]], size=(1, 1, 1),
    ...     dtype=torch.float64,
    ... )
    >>> system = ChargeSystem(geometry, torch.tensor([1.0, -1.0], dtype=torch.float64))
    >>> evaluator = EwaldEnergyEvaluator(EwaldParameters(eta=3.0))
    >>> print(f"{evaluator(system).item():.6f}")
    -2.035362
    """

    def forward(self, system: Union[ChargeSystem, SpinSystem]) -> torch.Tensor:
        """Energy of ``system``, dispatched on its kind."""
        if isinstance(system, ChargeSystem):
            return self.monopole(system)
        if isinstance(system, SpinSystem):
            return self.dipole(system)
        raise TypeError(
            f"`system` must be a ChargeSystem or a SpinSystem, got {type(system)}"
        )

    def monopole(self, system: ChargeSystem) -> torch.Tensor:
        """Ewald energy of a system of point charges.

        :param system: the charges and their geometry
        :return: 0-d tensor with the energy
        """
        geometry = system.geometry
        real, reciprocal = self._kernels(geometry)
        charges = system.charges

        partials = []
        total_magnitude = 0.0
        outer_magnitude = 0.0
        with profiler.record_function("ewald monopole pairs"):
            for i, j in self._pair_chunks(geometry):
                displacements = geometry.pair_displacements(i, j)
                weights = charges[i] * charges[j]

                real_terms, outer_terms = real.monopole(
                    displacements, return_outer=True
                )
                reciprocal_terms = reciprocal.monopole(displacements)

                partials.append(
                    torch.stack(
                        [
                            torch.sum(weights * real_terms),
                            torch.sum(weights * reciprocal_terms),
                        ]
                    )
                )
                total_magnitude += float(real_terms.abs().sum())
                outer_magnitude += float(outer_terms.abs().sum())

        real.check_convergence(total_magnitude, outer_magnitude)
        real_sum, reciprocal_sum = torch.stack(partials).sum(dim=0)

        volume = geometry.supercell_volume
        neutrality = self._neutrality_term(geometry) * system.total_charge() ** 2
        self_energy = self._monopole_self_term() * torch.sum(charges**2)

        return (
            0.5 * real_sum
            + 2 * math.pi / volume * reciprocal_sum
            + neutrality
            + self_energy
        )

    def dipole(self, system: SpinSystem) -> torch.Tensor:
        """Ewald energy of a system of point dipoles.

        :param system: the dipole moments and their geometry
        :return: 0-d tensor with the energy
        """
        geometry = system.geometry
        real, reciprocal = self._kernels(geometry)
        moments = system.moments

        partials = []
        total_magnitude = 0.0
        outer_magnitude = 0.0
        with profiler.record_function("ewald dipole pairs"):
            for i, j in self._pair_chunks(geometry):
                displacements = geometry.pair_displacements(i, j)
                moments_i = moments[i]
                moments_j = moments[j]

                real_tensor, outer_tensor = real.dipole(
                    displacements, return_outer=True
                )
                real_terms = torch.einsum(
                    "pi,pij,pj->p", moments_i, real_tensor, moments_j
                )
                reciprocal_terms = reciprocal.dipole_pair(
                    displacements, moments_i, moments_j
                )

                partials.append(
                    torch.stack([real_terms.sum(), reciprocal_terms.sum()])
                )
                total_magnitude += float(real_tensor.abs().sum())
                outer_magnitude += float(outer_tensor.abs().sum())

        real.check_convergence(total_magnitude, outer_magnitude)
        real_sum, reciprocal_sum = torch.stack(partials).sum(dim=0)

        volume = geometry.supercell_volume
        self_energy = self._dipole_self_term() * torch.sum(moments**2)

        return 0.5 * real_sum + 2 * math.pi / volume * reciprocal_sum + self_energy


def energy_monopole(
    system: ChargeSystem, parameters: Optional[EwaldParameters] = None
) -> torch.Tensor:
    """Ewald energy of point charges, see :py:class:`EwaldEnergyEvaluator`."""
    return EwaldEnergyEvaluator(parameters).monopole(system)


def energy_dipole(
    system: SpinSystem, parameters: Optional[EwaldParameters] = None
) -> torch.Tensor:
    """Ewald energy of point dipoles, see :py:class:`EwaldEnergyEvaluator`."""
    return EwaldEnergyEvaluator(parameters).dipole(system)
