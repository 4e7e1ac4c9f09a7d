"""Sensor anchors and time sampling of their reading series.

Readings are time-ascending.  The engine only needs, per anchor, its
position (after the model transform) and one value of the selected metric
at the current timestamp, either the nearest reading or the mean over a
smoothing window.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class Metric(str, Enum):
    """Scalar quantities carried by a :class:`Reading` (values are wire names)."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    ABSOLUTE_HUMIDITY = "absoluteHumidity"
    DEW_POINT = "dewPoint"
    VPD = "vpdKpa"

    @classmethod
    def parse(cls, value) -> Metric:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"unknown metric {value!r}") from None


METRIC_UNITS: Dict[Metric, str] = {
    Metric.TEMPERATURE: "°C",
    Metric.HUMIDITY: "%",
    Metric.ABSOLUTE_HUMIDITY: "g/m³",
    Metric.DEW_POINT: "°C",
    Metric.VPD: "kPa",
}


@dataclass(frozen=True)
class Reading:
    timestamp: float
    temperature: float
    humidity: float
    absolute_humidity: float
    dew_point: float
    vpd_kpa: Optional[float] = None

    def value(self, metric) -> float:
        """Value of *metric*; a missing VPD reads as 0."""
        metric = Metric.parse(metric)
        if metric is Metric.TEMPERATURE:
            return self.temperature
        if metric is Metric.HUMIDITY:
            return self.humidity
        if metric is Metric.ABSOLUTE_HUMIDITY:
            return self.absolute_humidity
        if metric is Metric.DEW_POINT:
            return self.dew_point
        return self.vpd_kpa if self.vpd_kpa is not None else 0.0

    @classmethod
    def from_wire(cls, data: Mapping) -> Reading:
        return cls(
            timestamp=float(data["timestamp"]),
            temperature=float(data["temperature"]),
            humidity=float(data["humidity"]),
            absolute_humidity=float(data["absoluteHumidity"]),
            dew_point=float(data["dewPoint"]),
            vpd_kpa=None if data.get("vpdKpa") is None else float(data["vpdKpa"]),
        )

    def to_wire(self) -> dict:
        out = {
            "timestamp": self.timestamp,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "absoluteHumidity": self.absolute_humidity,
            "dewPoint": self.dew_point,
        }
        if self.vpd_kpa is not None:
            out["vpdKpa"] = self.vpd_kpa
        return out


@dataclass
class SensorAnchor:
    id: int
    position: Tuple[float, float, float]
    name: str = ""
    readings: List[Reading] = field(default_factory=list)

    def to_wire(self) -> dict:
        return {"id": self.id, "position": list(self.position), "name": self.name}


@dataclass(frozen=True)
class AnchorTransform:
    """Maps raw sensor coordinates into the scene frame of the mesh.

    ``p' = (p - original_center) * model_scale + model_position + sensor_offset``
    """

    model_scale: float = 1.0
    original_center: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    model_position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    sensor_offset: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    def apply(self, positions) -> np.ndarray:
        P = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        return (
            (P - np.asarray(self.original_center)) * self.model_scale
            + np.asarray(self.model_position)
            + np.asarray(self.sensor_offset)
        )

    @classmethod
    def from_wire(cls, message: Mapping) -> AnchorTransform:
        def _vec(v) -> Tuple[float, float, float]:
            if v is None:
                return (0.0, 0.0, 0.0)
            if isinstance(v, Mapping):
                return (float(v.get("x", 0.0)), float(v.get("y", 0.0)), float(v.get("z", 0.0)))
            x, y, z = v
            return (float(x), float(y), float(z))

        return cls(
            model_scale=float(message.get("modelScale", 1.0)),
            original_center=_vec(message.get("originalCenter")),
            model_position=_vec(message.get("modelPosition")),
            sensor_offset=_vec(message.get("sensorOffset")),
        )

    def to_wire(self) -> dict:
        def _obj(v):
            return {"x": v[0], "y": v[1], "z": v[2]}

        return {
            "modelScale": self.model_scale,
            "originalCenter": _obj(self.original_center),
            "modelPosition": _obj(self.model_position),
            "sensorOffset": _obj(self.sensor_offset),
        }


# ---------------------------------------------------------------------------
# Time sampling
# ---------------------------------------------------------------------------

def find_closest_reading(readings: Sequence[Reading], timestamp: float) -> Reading:
    """Reading whose timestamp is nearest *timestamp* (earlier one on ties)."""
    if not readings:
        raise ValueError("No data points available")
    times = [r.timestamp for r in readings]
    pos = bisect.bisect_left(times, timestamp)
    if pos == 0:
        return readings[0]
    if pos == len(readings):
        return readings[-1]
    before, after = readings[pos - 1], readings[pos]
    if after.timestamp - timestamp < timestamp - before.timestamp:
        return after
    return before


def average_reading_in_window(readings: Sequence[Reading], timestamp: float, window: float) -> Reading:
    """Mean of the readings within ``window / 2`` of *timestamp*.

    Falls back to :func:`find_closest_reading` when *window* is not positive
    or no reading lies inside it.  VPD is averaged over the readings that
    carry it.
    """
    if window <= 0:
        return find_closest_reading(readings, timestamp)
    times = [r.timestamp for r in readings]
    half = window / 2.0
    lo = bisect.bisect_left(times, timestamp - half)
    hi = bisect.bisect_right(times, timestamp + half)
    inside = readings[lo:hi]
    if not inside:
        return find_closest_reading(readings, timestamp)
    vpds = [r.vpd_kpa for r in inside if r.vpd_kpa is not None]
    return Reading(
        timestamp=timestamp,
        temperature=float(np.mean([r.temperature for r in inside])),
        humidity=float(np.mean([r.humidity for r in inside])),
        absolute_humidity=float(np.mean([r.absolute_humidity for r in inside])),
        dew_point=float(np.mean([r.dew_point for r in inside])),
        vpd_kpa=float(np.mean(vpds)) if vpds else None,
    )


def sample_anchors(
    sensors: Iterable[SensorAnchor],
    timestamp: float,
    window: float = 0.0,
) -> List[Tuple[SensorAnchor, Reading]]:
    """Pair each sensor that has readings with its sampled reading."""
    out = []
    for sensor in sensors:
        if not sensor.readings:
            logger.debug("Sensor %s has no readings; skipped", sensor.id)
            continue
        out.append((sensor, average_reading_in_window(sensor.readings, timestamp, window)))
    return out


def anchor_field(
    sensors: Iterable[SensorAnchor],
    timestamp: float,
    metric,
    transform: Optional[AnchorTransform] = None,
    window: float = 0.0,
) -> Tuple[np.ndarray, np.ndarray]:
    """Anchor positions ``(K, 3)`` in scene frame and their ``(K,)`` metric values."""
    metric = Metric.parse(metric)
    sampled = sample_anchors(sensors, timestamp, window)
    if not sampled:
        return np.zeros((0, 3), dtype=np.float64), np.zeros(0, dtype=np.float64)
    raw = np.array([s.position for s, _ in sampled], dtype=np.float64)
    positions = (transform or AnchorTransform()).apply(raw)
    values = np.array([r.value(metric) for _, r in sampled], dtype=np.float64)
    return positions, values


def indoor_average(sensors: Iterable[SensorAnchor], timestamp: float) -> Optional[Reading]:
    """Plain mean of the nearest readings over all sensors (no spatial weighting)."""
    nearest = [find_closest_reading(s.readings, timestamp) for s in sensors if s.readings]
    if not nearest:
        return None
    return Reading(
        timestamp=timestamp,
        temperature=float(np.mean([r.temperature for r in nearest])),
        humidity=float(np.mean([r.humidity for r in nearest])),
        absolute_humidity=float(np.mean([r.absolute_humidity for r in nearest])),
        dew_point=float(np.mean([r.dew_point for r in nearest])),
    )


def data_range(sensors: Iterable[SensorAnchor], timestamp: float, metric) -> Tuple[float, float]:
    """``(min, max)`` of *metric* over the nearest readings; ``(0, 0)`` without data."""
    values = [
        find_closest_reading(s.readings, timestamp).value(metric)
        for s in sensors if s.readings
    ]
    if not values:
        return 0.0, 0.0
    return float(min(values)), float(max(values))


# ---------------------------------------------------------------------------
# Wire helpers
# ---------------------------------------------------------------------------

def sensors_from_wire(sensors: Sequence[Mapping], sensor_data: Mapping) -> List[SensorAnchor]:
    """Rebuild anchors from the ``sensors`` / ``sensorData`` job fields.

    ``sensorData`` keys may be ints or their string form (JSON round trips).
    """
    out = []
    for s in sensors:
        sid = s["id"]
        series = sensor_data.get(sid)
        if series is None:
            series = sensor_data.get(str(sid), [])
        out.append(SensorAnchor(
            id=sid,
            position=tuple(float(c) for c in s["position"]),  # type: ignore[arg-type]
            name=s.get("name", ""),
            readings=[Reading.from_wire(r) for r in series],
        ))
    return out


def sensors_to_wire(sensors: Sequence[SensorAnchor]) -> Tuple[list, dict]:
    return (
        [s.to_wire() for s in sensors],
        {s.id: [r.to_wire() for r in s.readings] for s in sensors},
    )
