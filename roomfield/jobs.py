"""Worker-side job handlers.

Each job is a plain ``dict`` message in, a plain ``dict`` result out (numpy
arrays and scalars only), so both cross process boundaries by pickling.
Keys follow the camelCase wire names of the messages.

Message types
-------------
``"filter"``
    Classify a lattice against a boundary mesh.  Emits zero or more
    ``{"type": "progress", ...}`` events, then one result.
``"interpolate"``
    Sample anchors at a timestamp, interpolate a metric over the accepted
    points and reduce it to averages and air/water masses.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import numpy as np

from _field_common import as_points
from mesh3d.bvh import GeometryIndex
from mesh3d.classify import DEFAULT_BATCH_SIZE, DEFAULT_PROGRESS_INTERVAL, classify_points, decide, direction_crossings, parity_votes
from mesh3d.mesh import BoundaryMesh
from .aggregate import aggregate_field, summarize_air
from .errors import ConfigurationError
from .interpolation import DEFAULT_EPSILON, DEFAULT_POWER, make_interpolator
from .lattice import generate_lattice_by_count
from .sensors import AnchorTransform, Metric, anchor_field, sensors_from_wire

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict], None]

_DEBUG_SAMPLES = 10


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def run_filter_job(message: dict, progress: Optional[EventCallback] = None) -> dict:
    """Run a ``"filter"`` job.

    Parameters
    ----------
    message:
        ``{type, points, geometryData: {position, index}, tolerance,
        invertLogic, strategy?, batchSize?, progressInterval?, jobTs?}``.
    progress:
        Receives ``{"type": "progress", processed, total, percentage, jobTs}``
        events.

    Returns
    -------
    dict
        ``{"type": "result", interiorPoints, totalProcessed, totalInside,
        filterPercentage, debugInfo, jobTs}``; ``interiorPoints`` is a flat
        float32 buffer.
    """
    job_ts = message.get("jobTs")
    points = as_points(message["points"])
    mesh = BoundaryMesh.from_geometry_data(message.get("geometryData"))
    tolerance = int(message.get("tolerance", 2))
    invert = bool(message.get("invertLogic", False))
    strategy = message.get("strategy", "six_axis")

    t0 = time.perf_counter()
    index = GeometryIndex.build(mesh)

    def _emit(processed: int, total: int, percentage: float) -> None:
        progress({  # type: ignore[misc]
            "type": "progress",
            "processed": processed,
            "total": total,
            "percentage": percentage,
            "jobTs": job_ts,
        })

    result = classify_points(
        points,
        index,
        tolerance=tolerance,
        invert=invert,
        strategy=strategy,
        batch_size=int(message.get("batchSize", DEFAULT_BATCH_SIZE)),
        progress=_emit if progress is not None else None,
        progress_interval=float(message.get("progressInterval", DEFAULT_PROGRESS_INTERVAL)),
    )

    # Per-direction crossings for the first few points, for diagnosing leaky shells
    sample = points[:_DEBUG_SAMPLES]
    hits, unresolved = direction_crossings(sample, index, strategy)
    decisions = decide(*parity_votes(hits, unresolved), 1 if strategy == "single_ray" else tolerance, invert)
    samples = [
        {"point": p.tolist(), "votes": h.tolist(), "unresolved": u.tolist(), "decision": bool(d)}
        for p, h, u, d in zip(sample, hits, unresolved, decisions)
    ]

    return {
        "type": "result",
        "interiorPoints": result.interior_points.astype(np.float32).reshape(-1),
        "totalProcessed": result.total_processed,
        "totalInside": result.total_inside,
        "filterPercentage": result.filter_percentage,
        "debugInfo": {
            "strategy": strategy,
            "tolerance": tolerance,
            "invertLogic": invert,
            "triangles": index.n_triangles,
            "durationMs": (time.perf_counter() - t0) * 1e3,
            "sampleResults": samples,
        },
        "jobTs": job_ts,
    }


# ---------------------------------------------------------------------------
# Interpolation
# ---------------------------------------------------------------------------

def _empty_interpolation_result(job_ts) -> dict:
    return {
        "type": "result",
        "positions": np.zeros(0, dtype=np.float32),
        "values": np.zeros(0, dtype=np.float32),
        "minValue": None,
        "maxValue": None,
        "volumetricAverage": None,
        "interpolationPointCount": 0,
        "airMass": None,
        "waterMass": None,
        "avgTemp": None,
        "avgHumidity": None,
        "avgAbsHumidity": None,
        "jobTs": job_ts,
    }


def _query_points(message: dict) -> np.ndarray:
    interior = message.get("interiorPoints")
    if interior is not None:
        return as_points(interior)
    bounds = message.get("bounds")
    if bounds is None:
        raise ConfigurationError("interpolation job needs either interiorPoints or bounds")
    return generate_lattice_by_count(bounds, int(message.get("meshResolution", 20))).points


def run_interpolation_job(message: dict, progress: Optional[EventCallback] = None) -> dict:
    """Run an ``"interpolate"`` job.

    Anchors without readings are skipped; with no usable anchor at all the
    result is empty (``interpolationPointCount == 0`` and ``None`` scalars).
    A singular RBF system propagates as
    :class:`~roomfield.errors.SingularSystemError`.
    """
    job_ts = message.get("jobTs")
    t0 = time.perf_counter()
    sensors = sensors_from_wire(message.get("sensors", []), message.get("sensorData", {}))
    transform = AnchorTransform.from_wire(message)
    timestamp = float(message["currentTimestamp"])
    window = float(message.get("smoothingWindowMs", 0.0) or 0.0)
    metric = Metric.parse(message.get("selectedMetric", "temperature"))

    options = dict(
        power=float(message.get("idwPower", DEFAULT_POWER)),
        kernel=message.get("rbfKernel", "multiquadric"),
        epsilon=float(message.get("rbfEpsilon", DEFAULT_EPSILON)),
        smoothing=float(message.get("rbfSmoothing", 0.0)),
    )
    method = message.get("interpolationMethod", "idw")

    def _field(which: Metric, query: np.ndarray):
        positions, values = anchor_field(sensors, timestamp, which, transform, window)
        interp = make_interpolator(method, positions, values, **options)
        return aggregate_field(which.value, interp(query), values)

    anchor_positions, _ = anchor_field(sensors, timestamp, metric, transform, window)
    if len(anchor_positions) == 0:
        logger.info("No sensor readings at t=%s; returning empty field", timestamp)
        return _empty_interpolation_result(job_ts)

    query = _query_points(message)
    fields = {metric: _field(metric, query)}
    for which in (Metric.TEMPERATURE, Metric.HUMIDITY, Metric.ABSOLUTE_HUMIDITY):
        if which not in fields:
            fields[which] = _field(which, query)

    selected = fields[metric]
    exact_volume = message.get("exactVolume")
    air = summarize_air(
        None if exact_volume is None else float(exact_volume),
        fields[Metric.TEMPERATURE].values,
        fields[Metric.HUMIDITY].values,
        fields[Metric.ABSOLUTE_HUMIDITY].values,
    )
    logger.info(
        "Interpolated %s (%s) at %d points from %d anchors in %.0f ms",
        metric.value, method, len(query), len(anchor_positions),
        (time.perf_counter() - t0) * 1e3,
    )
    return {
        "type": "result",
        "positions": query.astype(np.float32).reshape(-1),
        "values": selected.values.astype(np.float32),
        "minValue": selected.min_value,
        "maxValue": selected.max_value,
        "volumetricAverage": selected.average,
        "interpolationPointCount": selected.n_points,
        **air.to_wire(),
        "jobTs": job_ts,
    }


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

_HANDLERS = {
    "filter": run_filter_job,
    "interpolate": run_interpolation_job,
}


def handle_message(message: dict, progress: Optional[EventCallback] = None) -> dict:
    """Dispatch *message* on its ``type`` field."""
    kind = message.get("type")
    try:
        handler = _HANDLERS[kind]
    except KeyError:
        raise ConfigurationError(f"unknown job type {kind!r}; expected one of {sorted(_HANDLERS)}") from None
    return handler(message, progress)


def run_job(message: dict, progress_queue=None) -> dict:
    """Pool entry point: forward progress events to *progress_queue*."""
    return handle_message(message, progress_queue.put if progress_queue is not None else None)
