"""Explicit session state of one reconstruction session.

Holds the inputs the engine needs between jobs (meshes, sensors, the time
cursor and settings) plus the derived data that is expensive to recompute:
the geometry index, the exact volume and the accepted lattice.  Every
setter invalidates exactly what depends on it.

The engine functions never read this object; it only builds their job
messages and stores what they return.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from _field_common import _Bounds3D, as_points
from mesh3d.bvh import GeometryIndex
from mesh3d.classify import ClassificationResult
from mesh3d.mesh import BoundaryMesh, combine_meshes
from mesh3d.volume import scene_volume
from .config import EngineConfig
from .lattice import Lattice, bounds_from_points, generate_lattice
from .sensors import AnchorTransform, Metric, Reading, SensorAnchor, sensors_to_wire

logger = logging.getLogger(__name__)

FILTERED_WARNING_PERCENT = 95.0

_Vec3 = Tuple[float, float, float]


def assess_classification(result: Union[ClassificationResult, dict]) -> List[str]:
    """User-facing warnings for a classification outcome.

    Accepts a :class:`ClassificationResult` or a ``"filter"`` job result.
    """
    if isinstance(result, ClassificationResult):
        inside, pct = result.total_inside, result.filter_percentage
    else:
        inside, pct = int(result["totalInside"]), float(result["filterPercentage"])
    warnings = []
    if inside == 0:
        warnings.append("No interior points found: check that the mesh is closed and the mode is right")
    elif pct > FILTERED_WARNING_PERCENT:
        warnings.append(f"Over {FILTERED_WARNING_PERCENT:.0f}% of points filtered ({pct:.1f}%): the shell may be leaky")
    return warnings


class SessionState:
    """Mutable state of one session; see the module docstring."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig()
        self.meshes: List[BoundaryMesh] = []
        self.sensors: List[SensorAnchor] = []
        self.transform = AnchorTransform()
        self.current_timestamp: float = 0.0
        self.selected_metric: Metric = Metric.TEMPERATURE
        self.interpolation_range: Optional[Tuple[float, float]] = None
        self.last_field: Optional[dict] = None

        self._combined: Optional[BoundaryMesh] = None
        self._index: Optional[GeometryIndex] = None
        self._volume: Optional[float] = None
        self._lattice: Optional[Lattice] = None
        self.interior_points: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def _invalidate_geometry(self) -> None:
        self._combined = None
        self._index = None
        self._volume = None
        self._invalidate_lattice()

    def _invalidate_lattice(self) -> None:
        self._lattice = None
        self.interior_points = None
        self._invalidate_field()

    def _invalidate_field(self) -> None:
        self.interpolation_range = None
        self.last_field = None

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------

    def set_meshes(self, meshes: Sequence[BoundaryMesh]) -> None:
        self.meshes = list(meshes)
        self._invalidate_geometry()

    def set_sensors(self, sensors: Sequence[SensorAnchor]) -> None:
        self.sensors = list(sensors)
        self._invalidate_field()

    def update_sensor_data(self, sensor_id: int, readings: Sequence[Reading]) -> None:
        """Append *readings* to a sensor's series, keeping it time-ordered."""
        for sensor in self.sensors:
            if sensor.id == sensor_id:
                sensor.readings = sorted([*sensor.readings, *readings], key=lambda r: r.timestamp)
                self._invalidate_field()
                return
        raise KeyError(f"no sensor with id {sensor_id}")

    def set_transform(self, transform: AnchorTransform) -> None:
        self.transform = transform
        self._invalidate_field()

    def set_timestamp(self, timestamp: float) -> None:
        self.current_timestamp = float(timestamp)
        self._invalidate_field()

    def set_metric(self, metric) -> None:
        self.selected_metric = Metric.parse(metric)
        self._invalidate_field()

    def set_config(self, **changes) -> None:
        """Apply validated config *changes*; lattice-affecting ones drop the accepted points."""
        old = self.config
        self.config = old.replace(**changes)
        lattice_keys = ("lattice_resolution", "tolerance", "invert_logic", "classifier_strategy")
        if any(getattr(old, k) != getattr(self.config, k) for k in lattice_keys):
            self._invalidate_lattice()
        else:
            self._invalidate_field()

    # ------------------------------------------------------------------
    # Derived data
    # ------------------------------------------------------------------

    @property
    def combined_mesh(self) -> BoundaryMesh:
        if self._combined is None:
            self._combined = combine_meshes(self.meshes)
        return self._combined

    @property
    def geometry_index(self) -> GeometryIndex:
        if self._index is None:
            self._index = GeometryIndex.build(self.combined_mesh)
        return self._index

    @property
    def exact_volume(self) -> float:
        if self._volume is None:
            self._volume = scene_volume(self.meshes)
        return self._volume

    def time_range(self) -> Optional[Tuple[float, float]]:
        """Earliest and latest reading timestamps over all sensors."""
        times = [r.timestamp for s in self.sensors for r in s.readings]
        if not times:
            return None
        return min(times), max(times)

    def bounds(self) -> _Bounds3D:
        """Mesh bounds, or the sensor extent padded by 10 % when there is no mesh."""
        if not self.combined_mesh.is_empty:
            (x0, x1), (y0, y1), (z0, z1) = self.combined_mesh.bounds()
            return (float(x0), float(x1)), (float(y0), float(y1)), (float(z0), float(z1))
        if self.sensors:
            return bounds_from_points(self.transform.apply([s.position for s in self.sensors]))
        return (0.0, 0.0), (0.0, 0.0), (0.0, 0.0)

    @property
    def lattice(self) -> Lattice:
        if self._lattice is None:
            self._lattice = generate_lattice(self.bounds(), self.config.lattice_resolution)
        return self._lattice

    # ------------------------------------------------------------------
    # Job messages
    # ------------------------------------------------------------------

    def filter_message(self) -> dict:
        cfg = self.config
        return {
            "type": "filter",
            "points": self.lattice.flat,
            "geometryData": self.combined_mesh.geometry_data(),
            "tolerance": cfg.tolerance,
            "invertLogic": cfg.invert_logic,
            "strategy": cfg.classifier_strategy,
            "batchSize": cfg.batch_size,
            "progressInterval": cfg.progress_interval_s,
        }

    def interpolation_message(self) -> dict:
        """Message for an ``"interpolate"`` job over the accepted points.

        Without accepted points the job falls back to a ``mesh_resolution``
        cubed grid over :meth:`bounds`.
        """
        cfg = self.config
        sensors, sensor_data = sensors_to_wire(self.sensors)
        (x0, x1), (y0, y1), (z0, z1) = self.bounds()
        message = {
            "type": "interpolate",
            "sensors": sensors,
            "sensorData": sensor_data,
            "currentTimestamp": self.current_timestamp,
            "selectedMetric": self.selected_metric.value,
            **self.transform.to_wire(),
            "smoothingWindowMs": cfg.smoothing_window_s * 1000.0,
            "bounds": {"min": {"x": x0, "y": y0, "z": z0}, "max": {"x": x1, "y": y1, "z": z1}},
            "meshResolution": cfg.mesh_resolution,
            "interpolationMethod": cfg.interpolation_method,
            "rbfKernel": cfg.rbf_kernel,
            "rbfEpsilon": cfg.rbf_epsilon,
            "rbfSmoothing": cfg.rbf_smoothing,
            "idwPower": cfg.idw_power,
            "exactVolume": self.exact_volume if self.meshes else None,
        }
        if self.interior_points is not None:
            message["interiorPoints"] = self.interior_points.astype(np.float32).reshape(-1)
        return message

    # ------------------------------------------------------------------
    # Job results
    # ------------------------------------------------------------------

    def apply_filter_result(self, result: dict) -> List[str]:
        """Store the accepted points of a ``"filter"`` result; returns warnings."""
        self.interior_points = as_points(result["interiorPoints"]).copy()
        self._invalidate_field()
        warnings = assess_classification(result)
        for w in warnings:
            logger.warning(w)
        return warnings

    def apply_interpolation_result(self, result: dict) -> None:
        self.last_field = result
        if result.get("minValue") is None:
            self.interpolation_range = None
        else:
            self.interpolation_range = (float(result["minValue"]), float(result["maxValue"]))
