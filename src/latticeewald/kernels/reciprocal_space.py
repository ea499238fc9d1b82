import torch
from torch import profiler

from ..errors import InvalidParameterError
from ..lattice import LatticeGeometry
from ..lib import generate_kvectors

#: Denominator factor of the Gaussian damping ``exp(-k^2 / (4 * eta^2))`` shared by
#: every reciprocal-space term, for charges and dipoles alike.
GAUSSIAN_DAMPING_FACTOR = 4.0


def reciprocal_weights(k_sq: torch.Tensor, eta: torch.Tensor) -> torch.Tensor:
    r"""Damped Coulomb weights :math:`\exp(-k^2 / 4\eta^2) / k^2`.

    :param k_sq: squared norms of non-zero reciprocal vectors
    :param eta: splitting parameter
    """
    return torch.exp(-k_sq / (GAUSSIAN_DAMPING_FACTOR * eta**2)) / k_sq


class ReciprocalSpaceKernel(torch.nn.Module):
    r"""Gaussian damped reciprocal-space pair terms.

    The sum runs over the reciprocal vectors :math:`\mathbf{k} = \sum_d m_d
    \mathbf{b}_d` of the supercell with integer :math:`m_d \in [-\mathrm{extent},
    \mathrm{extent}]`, excluding exactly :math:`\mathbf{k} = 0`. Since the set of
    vectors is symmetric under :math:`\mathbf{k} \to -\mathbf{k}`, the imaginary
    parts of :math:`e^{i \mathbf{k} \cdot \mathbf{r}}` cancel and only the cosine is
    kept.

    The kernels do not contain the :math:`2\pi / V` prefactor.

    :param geometry: the periodic system
    :param eta: splitting parameter
    :param extent: shell radius of the reciprocal vectors
    """

    def __init__(self, geometry: LatticeGeometry, eta: float, extent: int):
        super().__init__()
        if not eta > 0:
            raise InvalidParameterError(f"`eta` {eta} has to be positive")
        if extent < 0:
            raise InvalidParameterError(f"`extent` {extent} has to be non-negative")

        kvectors = generate_kvectors(extent, geometry.supercell_vectors)
        eta_tensor = torch.tensor(eta, dtype=geometry.dtype, device=geometry.device)
        weights = reciprocal_weights(torch.sum(kvectors**2, dim=1), eta_tensor)

        self.register_buffer("eta", eta_tensor)
        self.register_buffer("kvectors", kvectors)
        self.register_buffer("weights", weights)
        self.extent = extent

    def _phases(self, displacements: torch.Tensor) -> torch.Tensor:
        return torch.cos(displacements @ self.kvectors.T)  # [p, k]

    def monopole(self, displacements: torch.Tensor) -> torch.Tensor:
        r"""Scalar kernel :math:`\sum_k \exp(-k^2/4\eta^2) \cos(\mathbf{k}\cdot
        \mathbf{r}) / k^2`.

        :param displacements: torch.tensor of shape ``(P, D)``
        :return: torch.tensor of shape ``(P,)``
        """
        with profiler.record_function("reciprocal space monopole"):
            return self._phases(displacements) @ self.weights

    def dipole(self, displacements: torch.Tensor) -> torch.Tensor:
        r"""Tensor kernel :math:`\sum_k \exp(-k^2/4\eta^2) \cos(\mathbf{k}\cdot
        \mathbf{r}) / k^2 \; \mathbf{k} \otimes \mathbf{k}`.

        :param displacements: torch.tensor of shape ``(P, 3)``
        :return: torch.tensor of shape ``(P, 3, 3)``
        """
        with profiler.record_function("reciprocal space dipole"):
            k_outer = torch.einsum("ki,kj->kij", self.kvectors, self.kvectors)
            weighted = self._phases(displacements) * self.weights
            tensor = weighted @ k_outer.reshape(len(self.kvectors), 9)
        return tensor.reshape(-1, 3, 3)

    def dipole_pair(
        self,
        displacements: torch.Tensor,
        moments_i: torch.Tensor,
        moments_j: torch.Tensor,
    ) -> torch.Tensor:
        r"""Scalar dipole term :math:`\sum_k \exp(-k^2/4\eta^2) \cos(\mathbf{k}\cdot
        \mathbf{r}) (\mathbf{p}_i\cdot\mathbf{k})(\mathbf{p}_j\cdot\mathbf{k}) / k^2`.

        :param displacements: torch.tensor of shape ``(P, 3)``
        :param moments_i: torch.tensor of shape ``(P, 3)``
        :param moments_j: torch.tensor of shape ``(P, 3)``
        :return: torch.tensor of shape ``(P,)``
        """
        with profiler.record_function("reciprocal space dipole pair"):
            projections_i = moments_i @ self.kvectors.T
            projections_j = moments_j @ self.kvectors.T
            terms = self._phases(displacements) * projections_i * projections_j
            return terms @ self.weights
