"""Exception hierarchy shared by mesh3d and roomfield.

``roomfield.errors`` re-exports these and adds the numerical, lattice and
worker errors.
"""


class FieldEngineError(Exception):
    """Base class for every error raised by the reconstruction engine."""


class GeometryError(FieldEngineError):
    """Malformed mesh buffers (bad lengths, out-of-range indices).

    An *empty* mesh is not an error: queries against it report no hits.
    """


class ConfigurationError(FieldEngineError, ValueError):
    """Invalid engine parameter (tolerance, method, kernel, message type...)."""
