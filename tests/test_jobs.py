"""Tests for roomfield.jobs (worker-side message handlers)."""
from __future__ import annotations

import pickle

import numpy as np
import numpy.testing as npt
import pytest

from mesh3d import BoundaryMesh
from roomfield import ConfigurationError, SingularSystemError
from roomfield.jobs import handle_message, run_filter_job, run_interpolation_job, run_job


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_box_triangles(lo=(0.0, 0.0, 0.0), hi=(1.0, 1.0, 1.0)) -> np.ndarray:
    """12-triangle watertight box, outward winding."""
    (x0, y0, z0), (x1, y1, z1) = lo, hi
    verts = np.array([
        [x0, y0, z0], [x1, y0, z0], [x1, y1, z0], [x0, y1, z0],
        [x0, y0, z1], [x1, y0, z1], [x1, y1, z1], [x0, y1, z1],
    ], dtype=np.float64)
    face_indices = [
        (0, 2, 1), (0, 3, 2), (4, 5, 6), (4, 6, 7), (0, 4, 7), (0, 7, 3),
        (1, 2, 6), (1, 6, 5), (0, 1, 5), (0, 5, 4), (3, 7, 6), (3, 6, 2),
    ]
    return np.array([[verts[i], verts[j], verts[k]] for i, j, k in face_indices],
                    dtype=np.float64)


def _lattice_buffer(lo: float, hi: float, n: int) -> np.ndarray:
    lin = np.linspace(lo, hi, n)
    X, Y, Z = np.meshgrid(lin, lin, lin, indexing="ij")
    return np.stack([X, Y, Z], axis=-1).reshape(-1).astype(np.float32)


def _filter_message(**extra) -> dict:
    msg = {
        "type": "filter",
        "points": _lattice_buffer(-0.25, 1.25, 10),
        "geometryData": BoundaryMesh.from_triangles(_make_box_triangles()).geometry_data(),
        "tolerance": 2,
        "invertLogic": False,
    }
    msg.update(extra)
    return msg


def _reading(ts, t, rh, ah):
    return {"timestamp": ts, "temperature": t, "humidity": rh, "absoluteHumidity": ah, "dewPoint": 9.0}


def _interpolate_message(**extra) -> dict:
    msg = {
        "type": "interpolate",
        "sensors": [
            {"id": 1, "position": [0.0, 0.0, 0.0], "name": "a"},
            {"id": 2, "position": [1.0, 0.0, 0.0], "name": "b"},
            {"id": 3, "position": [2.0, 0.0, 0.0], "name": "c"},
        ],
        "sensorData": {
            1: [_reading(0, 10.0, 40.0, 4.0)],
            2: [_reading(0, 20.0, 50.0, 8.0)],
            3: [_reading(0, 30.0, 60.0, 16.0)],
        },
        "currentTimestamp": 0,
        "selectedMetric": "temperature",
        "modelScale": 1.0,
        "originalCenter": None,
        "modelPosition": {"x": 0.0, "y": 0.0, "z": 0.0},
        "sensorOffset": {"x": 0.0, "y": 0.0, "z": 0.0},
        "smoothingWindowMs": 0,
        "bounds": {"min": {"x": 0.0, "y": -1.0, "z": -1.0}, "max": {"x": 2.0, "y": 1.0, "z": 1.0}},
        "meshResolution": 5,
        "interpolationMethod": "idw",
        "rbfKernel": "multiquadric",
        "idwPower": 2,
        "exactVolume": 8.0,
        "jobTs": 7,
    }
    msg.update(extra)
    return msg


# ---------------------------------------------------------------------------
# filter
# ---------------------------------------------------------------------------

class TestFilterJob:
    def test_result_fields(self):
        result = run_filter_job(_filter_message(jobTs=3))
        assert result["type"] == "result"
        assert result["totalProcessed"] == 1000
        assert result["totalInside"] == 216
        assert result["filterPercentage"] == pytest.approx(78.4)
        assert result["interiorPoints"].dtype == np.float32
        assert result["interiorPoints"].shape == (3 * 216,)
        assert result["jobTs"] == 3

    def test_interior_points_inside_box(self):
        P = run_filter_job(_filter_message())["interiorPoints"].reshape(-1, 3)
        assert np.all((P > 0.0) & (P < 1.0))

    def test_debug_samples(self):
        info = run_filter_job(_filter_message())["debugInfo"]
        assert len(info["sampleResults"]) == 10
        assert len(info["sampleResults"][0]["votes"]) == 6
        assert len(info["sampleResults"][0]["unresolved"]) == 6
        assert info["triangles"] == 12

    def test_progress_events(self):
        events = []
        run_filter_job(_filter_message(batchSize=250, progressInterval=0.0, jobTs=5), events.append)
        assert [e["processed"] for e in events] == [250, 500, 750, 1000]
        assert all(e["type"] == "progress" and e["jobTs"] == 5 for e in events)
        assert events[-1]["percentage"] == pytest.approx(100.0)

    def test_final_progress_always_sent(self):
        events = []
        run_filter_job(_filter_message(batchSize=100, progressInterval=3600.0), events.append)
        assert [e["processed"] for e in events] == [1000]

    def test_missing_geometry_rejects_all(self):
        result = run_filter_job(_filter_message(geometryData=None))
        assert result["totalInside"] == 0
        assert result["filterPercentage"] == pytest.approx(100.0)

    def test_single_ray_strategy(self):
        result = run_filter_job(_filter_message(strategy="single_ray"))
        assert result["totalInside"] == 216

    def test_result_pickles(self):
        result = run_filter_job(_filter_message())
        again = pickle.loads(pickle.dumps(result))
        npt.assert_array_equal(again["interiorPoints"], result["interiorPoints"])


# ---------------------------------------------------------------------------
# interpolate
# ---------------------------------------------------------------------------

class TestInterpolationJob:
    def test_grid_fallback(self):
        result = run_interpolation_job(_interpolate_message())
        assert result["interpolationPointCount"] == 125
        assert result["positions"].shape == (375,)
        assert result["values"].dtype == np.float32
        assert (result["minValue"], result["maxValue"]) == (10.0, 30.0)
        assert result["jobTs"] == 7

    def test_values_clamped(self):
        result = run_interpolation_job(_interpolate_message(interpolationMethod="rbf", rbfKernel="gaussian"))
        v = result["values"]
        assert v.min() >= 10.0 and v.max() <= 30.0

    def test_interior_points_used(self):
        pts = np.array([[1.0, 0.0, 0.0], [0.5, 0.0, 0.0]], dtype=np.float32).reshape(-1)
        result = run_interpolation_job(_interpolate_message(interiorPoints=pts))
        assert result["interpolationPointCount"] == 2
        assert result["values"][0] == pytest.approx(20.0)
        assert 10.0 < result["values"][1] < 20.0

    def test_air_properties(self):
        result = run_interpolation_job(_interpolate_message())
        assert 10.0 <= result["avgTemp"] <= 30.0
        assert 40.0 <= result["avgHumidity"] <= 60.0
        assert 4.0 <= result["avgAbsHumidity"] <= 16.0
        assert result["airMass"] > 0.0
        assert result["waterMass"] > 0.0

    def test_no_volume(self):
        result = run_interpolation_job(_interpolate_message(exactVolume=None))
        assert result["airMass"] is None
        assert result["avgTemp"] is not None

    def test_selected_metric(self):
        result = run_interpolation_job(_interpolate_message(selectedMetric="absoluteHumidity"))
        assert (result["minValue"], result["maxValue"]) == (4.0, 16.0)

    def test_no_anchors_gives_empty_result(self):
        result = run_interpolation_job(_interpolate_message(sensorData={}))
        assert result["interpolationPointCount"] == 0
        assert result["positions"].size == 0
        assert result["minValue"] is None
        assert result["volumetricAverage"] is None
        assert result["airMass"] is None
        assert result["jobTs"] == 7

    def test_singular_rbf_propagates(self):
        msg = _interpolate_message(interpolationMethod="rbf", rbfKernel="gaussian")
        msg["sensors"].append({"id": 4, "position": [2.0, 0.0, 0.0], "name": "dup"})
        msg["sensorData"][4] = [_reading(0, 31.0, 60.0, 16.0)]
        with pytest.raises(SingularSystemError):
            run_interpolation_job(msg)

    def test_rbf_smoothing_recovers(self):
        msg = _interpolate_message(interpolationMethod="rbf", rbfKernel="gaussian", rbfSmoothing=1e-3)
        msg["sensors"].append({"id": 4, "position": [2.0, 0.0, 0.0], "name": "dup"})
        msg["sensorData"][4] = [_reading(0, 31.0, 60.0, 16.0)]
        assert run_interpolation_job(msg)["interpolationPointCount"] == 125

    def test_needs_points_or_bounds(self):
        msg = _interpolate_message()
        del msg["bounds"]
        with pytest.raises(ConfigurationError):
            run_interpolation_job(msg)


# ---------------------------------------------------------------------------
# routing
# ---------------------------------------------------------------------------

class TestRouting:
    def test_routes_by_type(self):
        assert handle_message(_filter_message())["totalProcessed"] == 1000
        assert handle_message(_interpolate_message())["interpolationPointCount"] == 125

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError):
            handle_message({"type": "render"})

    def test_run_job_uses_queue(self):
        import queue
        q = queue.Queue()
        run_job(_filter_message(progressInterval=0.0, batchSize=500), q)
        events = []
        while not q.empty():
            events.append(q.get_nowait())
        assert [e["processed"] for e in events] == [500, 1000]
