"""
roomfield — environmental field reconstruction inside a room shell
===================================================================

Turns a handful of sensor readings into a continuous 3-D field over the
air volume of a room, and reduces it to averages and air/water masses.

Implemented features
--------------------
- Sampling lattices: :func:`generate_lattice`, :func:`generate_lattice_by_count`
- Sensor anchors and time sampling: :class:`SensorAnchor`, :class:`Reading`,
  :func:`find_closest_reading`, :func:`average_reading_in_window`
- Interpolation: :class:`IDWInterpolator`, :class:`RBFInterpolator`
- Aggregation: :func:`aggregate_field`, :func:`summarize_air`
- Psychrometrics: :mod:`roomfield.psychro`
- Worker jobs and orchestration: :class:`WorkerPool`,
  :class:`WorkerRegistry`, :class:`JobOrchestrator`
- Session state: :class:`SessionState`

Quick start
-----------

::

    from roomfield import EngineConfig, SessionState, WorkerPool, JobOrchestrator

    state = SessionState(EngineConfig(lattice_resolution=0.2))
    state.set_meshes([room_mesh])
    state.set_sensors(sensors)

    with WorkerPool("engine") as pool, JobOrchestrator(pool) as orch:
        state.apply_filter_result(orch.dispatch(state.filter_message()).result())
        field = orch.dispatch(state.interpolation_message()).result()

Geometry (meshes, ray queries, classification, volume) lives in the
sibling package :mod:`mesh3d`.
"""

from .errors import (
    ConfigurationError,
    FieldEngineError,
    GeometryError,
    LatticeError,
    NumericalError,
    SingularSystemError,
    WorkerError,
)
from .logging_config import setup_logging
from .config import DEFAULTS, EngineConfig, load_config, save_config
from .lattice import Lattice, bounds_from_points, generate_lattice, generate_lattice_by_count, lattice_steps
from .sensors import (
    AnchorTransform,
    Metric,
    Reading,
    SensorAnchor,
    anchor_field,
    average_reading_in_window,
    data_range,
    find_closest_reading,
    indoor_average,
)
from .interpolation import (
    KERNELS,
    METHODS,
    IDWInterpolator,
    RBFInterpolator,
    interpolate_idw,
    make_interpolator,
    rbf_kernel,
)
from .aggregate import AirSummary, ScalarField, aggregate_field, clamp_to_range, summarize_air, volumetric_average
from . import psychro
from .jobs import handle_message, run_filter_job, run_interpolation_job
from .orchestrator import JobHandle, JobOrchestrator, SupersessionGate, WorkerPool, WorkerRegistry
from .state import SessionState, assess_classification

__version__ = "0.1.0"

__all__ = [
    # Errors
    "FieldEngineError",
    "GeometryError",
    "ConfigurationError",
    "NumericalError",
    "SingularSystemError",
    "LatticeError",
    "WorkerError",

    # Logging / config
    "setup_logging",
    "DEFAULTS",
    "EngineConfig",
    "load_config",
    "save_config",

    # Lattice
    "Lattice",
    "lattice_steps",
    "generate_lattice",
    "generate_lattice_by_count",
    "bounds_from_points",

    # Sensors
    "Metric",
    "Reading",
    "SensorAnchor",
    "AnchorTransform",
    "find_closest_reading",
    "average_reading_in_window",
    "anchor_field",
    "indoor_average",
    "data_range",

    # Interpolation
    "METHODS",
    "KERNELS",
    "interpolate_idw",
    "rbf_kernel",
    "IDWInterpolator",
    "RBFInterpolator",
    "make_interpolator",

    # Aggregation
    "clamp_to_range",
    "volumetric_average",
    "ScalarField",
    "aggregate_field",
    "AirSummary",
    "summarize_air",
    "psychro",

    # Jobs / orchestration
    "handle_message",
    "run_filter_job",
    "run_interpolation_job",
    "SupersessionGate",
    "JobHandle",
    "JobOrchestrator",
    "WorkerPool",
    "WorkerRegistry",

    # Session
    "SessionState",
    "assess_classification",
]
