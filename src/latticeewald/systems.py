import torch

from .errors import InvalidParameterError
from .lattice import LatticeGeometry
from .lib.validation import _validate_site_values


class _SiteSystem:
    _n_components = 0
    _name = "values"

    def __init__(self, geometry: LatticeGeometry, values: torch.Tensor):
        if not isinstance(geometry, LatticeGeometry):
            raise TypeError(
                f"`geometry` must be an instance of LatticeGeometry, got "
                f"{type(geometry)}"
            )
        if geometry.n_sites < 1:
            raise InvalidParameterError("a system needs at least one site")

        _validate_site_values(
            values,
            n_sites=geometry.n_sites,
            n_components=self._n_components,
            name=self._name,
            dtype=geometry.dtype,
            device=geometry.device,
        )
        self.geometry = geometry
        self._values = values

    def __len__(self) -> int:
        return self.geometry.n_sites

    def __getitem__(self, key):
        """Value at ``system[basis_index, cell]`` or at a linear site index."""
        if isinstance(key, tuple) and len(key) == 2:
            basis_index, cell = key
            return self._values[self.geometry.site_index(basis_index, cell)]
        return self._values[key]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.geometry!r})"


class ChargeSystem(_SiteSystem):
    """Scalar point charges, one per site of a :py:class:`LatticeGeometry`.

    :param geometry: the lattice the charges live on
    :param charges: torch.tensor of shape ``(n_sites,)`` ordered like the sites of
        ``geometry``, with the same dtype and device
    """

    _name = "charges"

    @property
    def charges(self) -> torch.Tensor:
        return self._values

    def total_charge(self) -> torch.Tensor:
        return self._values.sum()


class SpinSystem(_SiteSystem):
    """Point dipole moments, one 3-vector per site of a three dimensional geometry.

    :param geometry: the lattice the dipoles live on, must have ``dim == 3``
    :param moments: torch.tensor of shape ``(n_sites, 3)`` ordered like the sites of
        ``geometry``, with the same dtype and device
    """

    _n_components = 3
    _name = "moments"

    def __init__(self, geometry: LatticeGeometry, moments: torch.Tensor):
        if geometry.dim != 3:
            raise InvalidParameterError(
                f"dipoles require a three dimensional lattice, got dim={geometry.dim}"
            )
        super().__init__(geometry, moments)

    @property
    def moments(self) -> torch.Tensor:
        return self._values

    def magnetization(self) -> torch.Tensor:
        return self._values.sum(dim=0)


def approximate_dipoles_as_charges(
    system: SpinSystem, epsilon: float = 0.1
) -> ChargeSystem:
    r"""Replace every point dipole by a pair of opposite point charges.

    A dipole :math:`\mathbf{p}` at :math:`\mathbf{r}` becomes the charges
    :math:`\pm 1/(2\epsilon)` at :math:`\mathbf{r} \pm \epsilon \mathbf{p}`, which
    reproduces the dipole moment exactly and the dipolar interaction energy up to
    :math:`\mathcal{O}(\epsilon^2)`. The returned system lives on a geometry made of
    a single cell spanning the whole supercell of ``system`` with two basis sites per
    dipole.

    The Ewald energy of the returned system additionally contains the bare energy
    of each charge pair, see :py:func:`dipole_self_energy`.

    :param system: the dipolar system to approximate
    :param epsilon: half the separation of the charges in units of the moment
    :return: the charge system
    """
    if epsilon <= 0:
        raise InvalidParameterError(f"`epsilon` {epsilon} has to be positive")

    geometry = system.geometry
    positions = geometry.positions()
    moments = system.moments

    # interleave (+, -) charges for each dipole
    basis = torch.stack(
        [positions + epsilon * moments, positions - epsilon * moments], dim=1
    ).reshape(-1, geometry.dim)
    charges = torch.tensor(
        [1 / (2 * epsilon), -1 / (2 * epsilon)],
        dtype=geometry.dtype,
        device=geometry.device,
    ).repeat(geometry.n_sites)

    new_geometry = LatticeGeometry(
        geometry.supercell_vectors,
        basis,
        size=[1] * geometry.dim,
        dtype=geometry.dtype,
        device=geometry.device,
    )
    return ChargeSystem(new_geometry, charges)


def dipole_self_energy(moments, epsilon: float = 0.1) -> torch.Tensor:
    """Bare energy ``-q^2 / d`` of the charge pairs built by
    :py:func:`approximate_dipoles_as_charges` for moments of the given magnitude.

    :param moments: magnitude(s) of the dipole moments
    :param epsilon: the same value passed to :py:func:`approximate_dipoles_as_charges`
    """
    moments = torch.as_tensor(moments)
    distance = 2 * epsilon * moments
    charge = 1 / (2 * epsilon)
    return -(charge**2) / distance

