import math
import warnings
from typing import Tuple, Union

import torch
from torch import profiler

from ..errors import ConvergenceWarning, InvalidParameterError
from ..lattice import LatticeGeometry
from ..lib import generate_image_vectors


class RealSpaceKernel(torch.nn.Module):
    r"""Damped real-space pair terms summed over the periodic images of the system.

    The images are all offsets :math:`\mathbf{n} = \sum_d m_d L_d \mathbf{a}_d` with
    integer :math:`m_d \in [-\mathrm{extent}, \mathrm{extent}]`, where
    :math:`L_d` are the supercell extents. For a displacement :math:`\mathbf{r}`
    between two sites the monopole kernel is

    .. math::

        \phi(\mathbf{r}) = \sum_{\mathbf{n}}^{\prime}
            \frac{\mathrm{erfc}(\eta |\mathbf{r} + \mathbf{n}|)}
                 {|\mathbf{r} + \mathbf{n}|}

    where the prime excludes the term with :math:`\mathbf{r} + \mathbf{n} = 0`. The
    dipole kernel is the :math:`3 \times 3` tensor

    .. math::

        T(\mathbf{r}) = \sum_{\mathbf{n}}^{\prime} B(d)\, I - C(d)\,
            \boldsymbol{\Delta} \otimes \boldsymbol{\Delta}, \qquad
            \boldsymbol{\Delta} = \mathbf{r} + \mathbf{n}, \; d = |\boldsymbol{\Delta}|

    with :math:`B(d) = (e_d + \mathrm{erfc}(\eta d)) / d^3`,
    :math:`C(d) = 3 ((2\eta^2 d^2 / 3 + 1) e_d + \mathrm{erfc}(\eta d)) / d^5` and
    :math:`e_d = 2 \eta d \exp(-\eta^2 d^2) / \sqrt{\pi}`.

    The accuracy is set jointly by ``eta`` and ``extent``: ``eta`` times the distance
    of the closest excluded image has to be large enough for ``erfc`` to be
    negligible. :py:meth:`check_convergence` turns this into a warning.

    :param geometry: the periodic system
    :param eta: splitting parameter
    :param extent: shell radius of the images, in units of the supercell vectors
    :param convergence_threshold: largest tolerated fraction of the outermost shell
    """

    def __init__(
        self,
        geometry: LatticeGeometry,
        eta: float,
        extent: int,
        convergence_threshold: float = 1e-6,
    ):
        super().__init__()
        if not eta > 0:
            raise InvalidParameterError(f"`eta` {eta} has to be positive")
        if extent < 0:
            raise InvalidParameterError(f"`extent` {extent} has to be non-negative")

        images, shells = generate_image_vectors(extent, geometry.supercell_vectors)
        self.register_buffer(
            "eta", torch.tensor(eta, dtype=geometry.dtype, device=geometry.device)
        )
        self.register_buffer("images", images)
        self.register_buffer("outer_shell", shells == extent)
        self.extent = extent
        self.convergence_threshold = convergence_threshold

    def _image_vectors(
        self, displacements: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        vectors = displacements.unsqueeze(1) + self.images.unsqueeze(0)  # [p, m, d]
        excluded = torch.all(vectors == 0, dim=-1)
        dist = torch.linalg.norm(vectors, dim=-1)
        # avoid NaNs from the excluded term, it is zeroed afterwards
        dist = torch.where(excluded, 1.0, dist)
        return vectors, dist, excluded

    def monopole(
        self, displacements: torch.Tensor, return_outer: bool = False
    ) -> Union[torch.Tensor, Tuple[torch.Tensor, torch.Tensor]]:
        """Scalar kernel for a batch of displacements.

        :param displacements: torch.tensor of shape ``(P, D)``
        :param return_outer: also return the part of the sum coming from the
            outermost shell of images
        :return: torch.tensor of shape ``(P,)``, or a tuple with the total and the
            outermost shell contribution if ``return_outer`` is set
        """
        with profiler.record_function("real space monopole"):
            _, dist, excluded = self._image_vectors(displacements)
            terms = torch.where(excluded, 0.0, torch.erfc(self.eta * dist) / dist)
            total = terms.sum(dim=1)

        if not return_outer:
            return total
        return total, terms[:, self.outer_shell].sum(dim=1)

    def dipole(
        self, displacements: torch.Tensor, return_outer: bool = False
    ) -> Union[torch.Tensor, Tuple[torch.Tensor, torch.Tensor]]:
        """Tensor kernel for a batch of displacements.

        :param displacements: torch.tensor of shape ``(P, 3)``
        :param return_outer: also return the part of the sum coming from the
            outermost shell of images
        :return: torch.tensor of shape ``(P, 3, 3)``, or a tuple with the total and
            the outermost shell contribution if ``return_outer`` is set
        """
        with profiler.record_function("real space dipole"):
            vectors, dist, excluded = self._image_vectors(displacements)
            eta = self.eta

            exp_term = (
                2 * eta / math.sqrt(math.pi) * dist * torch.exp(-((eta * dist) ** 2))
            )
            erfc_term = torch.erfc(eta * dist)

            isotropic = (exp_term + erfc_term) / dist**3
            anisotropic = (
                -3 * ((2 * eta**2 * dist**2 / 3 + 1) * exp_term + erfc_term) / dist**5
            )
            isotropic = torch.where(excluded, 0.0, isotropic)
            anisotropic = torch.where(excluded, 0.0, anisotropic)

            total = self._assemble(isotropic, anisotropic, vectors)

        if not return_outer:
            return total
        outer = self.outer_shell
        return total, self._assemble(
            isotropic[:, outer], anisotropic[:, outer], vectors[:, outer]
        )

    @staticmethod
    def _assemble(
        isotropic: torch.Tensor, anisotropic: torch.Tensor, vectors: torch.Tensor
    ) -> torch.Tensor:
        identity = torch.eye(3, dtype=vectors.dtype, device=vectors.device)
        tensor = torch.einsum("pm,pmi,pmj->pij", anisotropic, vectors, vectors)
        return tensor + isotropic.sum(dim=1)[:, None, None] * identity

    def check_convergence(self, total: torch.Tensor, outer: torch.Tensor) -> None:
        """Warn if the outermost shell carries too much of the real-space sum.

        :param total: accumulated magnitude of the real-space terms
        :param outer: accumulated magnitude of the terms of the outermost shell
        """
        # a single shell can not be compared against anything
        if self.extent == 0 or float(total) == 0.0:
            return

        fraction = float(outer) / float(total)
        if fraction > self.convergence_threshold:
            warnings.warn(
                f"the outermost real-space shell (extent={self.extent}) carries a "
                f"fraction {fraction:.3e} of the real-space sum, above the threshold "
                f"{self.convergence_threshold:.1e}. Consider increasing `real_extent` "
                "or `eta`.",
                ConvergenceWarning,
                stacklevel=3,
            )
