class LatticeEwaldError(Exception):
    """Base class for all errors raised by :py:mod:`latticeewald`."""


class DegenerateGeometryError(LatticeEwaldError, ValueError):
    """The lattice vectors do not span a cell of positive volume."""


class InvalidParameterError(LatticeEwaldError, ValueError):
    """A summation parameter or an input tensor is out of its allowed range."""


class ConfigurationMismatchError(LatticeEwaldError, ValueError):
    """A precomputed matrix does not match the system it is contracted with."""


class ConvergenceWarning(UserWarning):
    """The outermost real-space shell still carries a noticeable contribution.

    This usually means that the real-space extent is too small for the chosen
    splitting parameter ``eta``. The computation is not aborted.
    """
