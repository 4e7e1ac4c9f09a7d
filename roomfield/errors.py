"""Error taxonomy of the reconstruction engine.

The engine recovers locally wherever it can (empty mesh → every point
exterior, no anchors → empty result).  These exceptions cover the cases
where it cannot.
"""

from mesh3d.errors import ConfigurationError, FieldEngineError, GeometryError

__all__ = [
    "FieldEngineError",
    "GeometryError",
    "ConfigurationError",
    "NumericalError",
    "SingularSystemError",
    "LatticeError",
    "WorkerError",
]


class NumericalError(FieldEngineError):
    """A numeric computation produced no usable result."""


class SingularSystemError(NumericalError):
    """The RBF interpolation matrix is singular or too ill-conditioned.

    Typical causes are duplicate or near-coincident anchors.  Pass
    ``smoothing > 0`` to regularise the system instead.
    """

    def __init__(self, message: str, condition: float | None = None) -> None:
        super().__init__(message)
        self.condition = condition


class LatticeError(FieldEngineError, ValueError):
    """Malformed lattice bounds or resolution (fatal precondition violation)."""


class WorkerError(FieldEngineError):
    """A worker job failed (pool broken, worker crashed or job raised)."""

    def __init__(self, message: str, job_ts: int | None = None) -> None:
        super().__init__(message)
        self.job_ts = job_ts
