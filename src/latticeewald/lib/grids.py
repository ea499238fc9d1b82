from typing import Iterator, Sequence, Tuple

import torch

from ..errors import InvalidParameterError


def _check_cell(cell: torch.Tensor) -> None:
    if cell.dim() != 2 or cell.shape[0] != cell.shape[1]:
        raise InvalidParameterError(
            f"cell of shape {list(cell.shape)} should be a square matrix"
        )


def integer_box(
    lows: Sequence[int], highs: Sequence[int], device=None
) -> torch.Tensor:
    """All integer vectors ``m`` with ``lows[d] <= m[d] <= highs[d]``.

    The vectors are listed in row-major order, i.e. the last component varies
    fastest.

    :param lows: inclusive lower bound for each dimension
    :param highs: inclusive upper bound for each dimension
    :param device: device of the returned tensor
    :return: torch.tensor of shape ``(M, D)`` and dtype ``torch.int64``
    """
    if len(lows) != len(highs):
        raise InvalidParameterError(
            f"got {len(lows)} lower bounds but {len(highs)} upper bounds"
        )

    if not lows:
        return torch.zeros((1, 0), dtype=torch.int64, device=device)

    axes = [
        torch.arange(lo, hi + 1, dtype=torch.int64, device=device)
        for lo, hi in zip(lows, highs)
    ]
    # cartesian_prod collapses a single axis to a 1D tensor
    return torch.cartesian_prod(*axes).reshape(-1, len(axes))


def integer_grid(extent: int, dim: int, device=None) -> torch.Tensor:
    """All integer vectors in the symmetric box ``[-extent, extent]^dim``."""
    if extent < 0:
        raise InvalidParameterError(f"`extent` {extent} has to be non-negative")
    return integer_box([-extent] * dim, [extent] * dim, device=device)


def shell_index(grid: torch.Tensor) -> torch.Tensor:
    """Chebyshev shell of each grid vector, i.e. ``max_d |m_d|``."""
    return grid.abs().amax(dim=1)


def reciprocal_cell(cell: torch.Tensor) -> torch.Tensor:
    """Reciprocal vectors ``b`` of a row-wise cell, ``a_i · b_j = 2 pi delta_ij``."""
    _check_cell(cell)

    if cell.is_cuda:
        # use function that does not synchronize with the CPU
        inverse_cell = torch.linalg.inv_ex(cell)[0]
    else:
        inverse_cell = torch.linalg.inv(cell)

    return 2 * torch.pi * inverse_cell.T


def generate_image_vectors(
    extent: int, cell: torch.Tensor
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Periodic image offsets ``n = m·cell`` for ``m`` in ``[-extent, extent]^D``.

    :param extent: shell radius of the image box
    :param cell: torch.tensor of shape ``(D, D)``, ``cell[d]`` is the ``d``-th
        periodicity vector
    :return: tuple of the image vectors of shape ``(M, D)`` and the shell index of
        each image of shape ``(M,)``
    """
    _check_cell(cell)
    grid = integer_grid(extent, cell.shape[0], device=cell.device)
    return grid.to(dtype=cell.dtype) @ cell, shell_index(grid)


def generate_kvectors(extent: int, cell: torch.Tensor) -> torch.Tensor:
    """Reciprocal space vectors within ``extent`` for the periodic ``cell``.

    The grid of integer multiples of the reciprocal vectors is the same as for
    :py:func:`generate_image_vectors`, except that exactly the zero vector is
    removed.

    :param extent: shell radius of the reciprocal box
    :param cell: torch.tensor of shape ``(D, D)`` of real space periodicity vectors
    :return: torch.tensor of shape ``((2 * extent + 1)^D - 1, D)``
    """
    grid = integer_grid(extent, cell.shape[0], device=cell.device)
    grid = grid[torch.any(grid != 0, dim=1)]
    return grid.to(dtype=cell.dtype) @ reciprocal_cell(cell)


def image_slabs(extent: int, cell: torch.Tensor) -> Iterator[torch.Tensor]:
    """Image vectors of :py:func:`generate_image_vectors`, split along the first axis.

    Each slab holds the images with a fixed first integer coordinate, which bounds
    the memory needed when the extent is large.
    """
    _check_cell(cell)
    if extent < 0:
        raise InvalidParameterError(f"`extent` {extent} has to be non-negative")

    dim = cell.shape[0]
    rest = integer_grid(extent, dim - 1, device=cell.device)
    for m0 in range(-extent, extent + 1):
        first = torch.full((len(rest), 1), m0, dtype=torch.int64, device=cell.device)
        grid = torch.cat([first, rest], dim=1)
        yield grid.to(dtype=cell.dtype) @ cell
