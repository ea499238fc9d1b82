from dataclasses import dataclass, replace

from .errors import InvalidParameterError


@dataclass(frozen=True)
class EwaldParameters:
    r"""Container for the parameters of an Ewald summation.

    Larger values of ``eta`` move weight from the real-space to the
    reciprocal-space sum, so that ``reciprocal_extent`` has to grow while
    ``real_extent`` may shrink to keep both sums converged.

    :param eta: splitting parameter :math:`\eta` (inverse length), has to be
        positive
    :param real_extent: shell radius of the periodic images included in the
        real-space sum, in units of the supercell vectors
    :param reciprocal_extent: shell radius of the reciprocal lattice vectors
        included in the reciprocal-space sum
    :param convergence_threshold: fraction of the real-space sum that the outermost
        shell may carry before a :py:class:`ConvergenceWarning` is issued
    :param pair_chunk_size: number of site pairs evaluated together; bounds the
        memory of the vectorised kernels
    """

    eta: float = 1.0
    real_extent: int = 5
    reciprocal_extent: int = 5
    convergence_threshold: float = 1e-6
    pair_chunk_size: int = 256

    def __post_init__(self):
        if not self.eta > 0:
            raise InvalidParameterError(f"`eta` {self.eta} has to be positive")

        for name in ("real_extent", "reciprocal_extent"):
            value = getattr(self, name)
            if int(value) != value or value < 0:
                raise InvalidParameterError(
                    f"`{name}` {value} has to be a non-negative integer"
                )
            object.__setattr__(self, name, int(value))

        if not 0 < self.convergence_threshold <= 1:
            raise InvalidParameterError(
                f"`convergence_threshold` {self.convergence_threshold} has to be in "
                "(0, 1]"
            )

        if int(self.pair_chunk_size) != self.pair_chunk_size or (
            self.pair_chunk_size <= 0
        ):
            raise InvalidParameterError(
                f"`pair_chunk_size` {self.pair_chunk_size} has to be a positive "
                "integer"
            )

    def replace(self, **changes) -> "EwaldParameters":
        """Copy of the parameters with some fields changed."""
        return replace(self, **changes)
