import torch
from torch import profiler

from ..errors import InvalidParameterError
from ..lib import image_slabs
from ..systems import ChargeSystem


class DirectSummation(torch.nn.Module):
    r"""Reference energy of point charges by a damped sum over periodic images.

    .. math::

        E(s) = \frac{1}{2} \sum_{ij} q_i q_j \sum_{|\mathbf{n}| \le R}^{\prime}
            \frac{e^{-s |\mathbf{n}|^2}}{|\mathbf{r}_{ij} + \mathbf{n}|}

    The images :math:`\mathbf{n}` are integer combinations of the supercell vectors
    with coefficients in :math:`[-R, R]`, restricted to a sphere of radius
    :math:`R` (in length units). The prime excludes the self term
    :math:`\mathbf{r}_{ij} = 0, \mathbf{n} = 0`. For a neutral system without
    dipole moment, :math:`E(s)` approaches the Ewald energy as :math:`s \to 0` and
    :math:`R \to \infty`; the damping makes the conditionally convergent sum
    converge in a well defined order.

    The images are processed one slab (fixed first integer coordinate) at a time.

    :param damping: the damping :math:`s \geq 0` of distant images
    :param extent: radius :math:`R \geq 0` of the image sphere
    :param pair_chunk_size: number of site pairs evaluated together
    """

    def __init__(self, damping: float, extent: int, pair_chunk_size: int = 256):
        super().__init__()
        if damping < 0:
            raise InvalidParameterError(f"`damping` {damping} has to be non-negative")
        if int(extent) != extent or extent < 0:
            raise InvalidParameterError(
                f"`extent` {extent} has to be a non-negative integer"
            )
        if pair_chunk_size <= 0:
            raise InvalidParameterError(
                f"`pair_chunk_size` {pair_chunk_size} has to be positive"
            )

        self.damping = damping
        self.extent = int(extent)
        self.pair_chunk_size = pair_chunk_size

    def forward(self, system: ChargeSystem) -> torch.Tensor:
        return self.monopole(system)

    def monopole(self, system: ChargeSystem) -> torch.Tensor:
        """Damped direct energy of a system of point charges.

        :param system: the charges and their geometry
        :return: 0-d tensor with the energy
        """
        geometry = system.geometry
        charges = system.charges
        n_sites = geometry.n_sites

        # pair displacements do not depend on the images
        pairs = []
        for start in range(0, n_sites**2, self.pair_chunk_size):
            index = torch.arange(
                start,
                min(start + self.pair_chunk_size, n_sites**2),
                device=geometry.device,
            )
            i, j = index // n_sites, index % n_sites
            displacements = geometry.pair_displacements(i, j)
            pairs.append(
                (
                    displacements,
                    charges[i] * charges[j],
                    torch.all(displacements == 0, dim=1),
                )
            )

        partials = []
        with profiler.record_function("direct summation"):
            for slab in image_slabs(self.extent, geometry.supercell_vectors):
                norms_sq = torch.sum(slab**2, dim=1)
                inside = norms_sq <= self.extent**2
                if not torch.any(inside):
                    continue

                slab = slab[inside]
                damping = torch.exp(-self.damping * norms_sq[inside])
                is_origin = torch.all(slab == 0, dim=1)

                for displacements, weights, is_self in pairs:
                    vectors = displacements.unsqueeze(1) + slab.unsqueeze(0)
                    excluded = is_self.unsqueeze(1) & is_origin.unsqueeze(0)
                    dist = torch.linalg.norm(vectors, dim=-1)
                    dist = torch.where(excluded, 1.0, dist)
                    terms = torch.where(excluded, 0.0, damping / dist)
                    partials.append(torch.sum(weights * terms.sum(dim=1)))

        return 0.5 * torch.stack(partials).sum()


def direct_sum_monopole(system: ChargeSystem, damping: float, extent: int):
    """Damped direct energy of point charges, see :py:class:`DirectSummation`."""
    return DirectSummation(damping=damping, extent=extent).monopole(system)
