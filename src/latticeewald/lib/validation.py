import torch

from ..errors import InvalidParameterError


def _validate_site_values(
    values: torch.Tensor,
    n_sites: int,
    n_components: int,
    name: str,
    dtype: torch.dtype,
    device: torch.device,
) -> None:
    """Check shape, dtype and device of per-site charges or moments.

    :param values: tensor to check
    :param n_sites: expected number of sites
    :param n_components: ``0`` for scalar values (charges), otherwise the length of
        the per-site vector (moments)
    :param name: name of the parameter used in error messages
    :param dtype: expected dtype, the one of the geometry
    :param device: expected device, the one of the geometry
    """
    expected = [n_sites] if n_components == 0 else [n_sites, n_components]
    if list(values.shape) != expected:
        raise InvalidParameterError(
            f"`{name}` must be a tensor with shape {expected}, got tensor with "
            f"shape {list(values.shape)}"
        )

    if values.dtype != dtype:
        raise InvalidParameterError(
            f"type of `{name}` ({values.dtype}) must be same as the geometry type "
            f"({dtype})"
        )

    if values.device != device:
        raise InvalidParameterError(
            f"device of `{name}` ({values.device}) must be same as the geometry "
            f"device ({device})"
        )
