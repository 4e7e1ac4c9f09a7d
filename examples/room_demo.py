"""room_demo.py — temperature field inside an L-shaped room.

Builds a watertight L-shaped room shell, places four sensors with an hour of
synthetic readings, classifies a lattice against the shell on a worker pool
and interpolates the selected metric over the accepted points.

Usage
-----
python examples/room_demo.py                       # IDW, 0.25 m lattice
python examples/room_demo.py --method rbf          # RBF (multiquadric)
python examples/room_demo.py --resolution 0.1      # denser lattice
python examples/room_demo.py --executor thread     # no worker processes

Outputs
-------
room_field.png   — mid-height slice of the field (matplotlib)
room_field.html  — interactive 3D scatter of the field (plotly)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from mesh3d import BoundaryMesh
from roomfield import (
    JobOrchestrator,
    Reading,
    SensorAnchor,
    SessionState,
    WorkerPool,
    load_config,
    psychro,
    setup_logging,
)

_EXAMPLES_DIR = Path(__file__).parent

# L-shaped floor plan (metres, counter-clockwise); vertex 3 is the reflex corner
_FLOOR_PLAN = np.array([(0.0, 0.0), (6.0, 0.0), (6.0, 3.0), (3.0, 3.0), (3.0, 5.0), (0.0, 5.0)])
_CEILING = 2.6
_HOUR_MS = 3_600_000


# ---------------------------------------------------------------------------
# Scene
# ---------------------------------------------------------------------------

def _extrude(plan: np.ndarray, height: float, fan_from: int) -> BoundaryMesh:
    """Watertight prism over a floor *plan* fanned from vertex *fan_from*."""
    n = len(plan)
    lo = np.column_stack([plan, np.zeros(n)])
    hi = np.column_stack([plan, np.full(n, height)])
    order = [(fan_from + k) % n for k in range(n)]
    tris = []
    for a, b in zip(order[1:-1], order[2:]):
        tris.append([hi[fan_from], hi[a], hi[b]])  # ceiling, facing +Z
        tris.append([lo[fan_from], lo[b], lo[a]])  # floor, facing -Z
    for i in range(n):
        j = (i + 1) % n
        tris.append([lo[i], lo[j], hi[j]])
        tris.append([lo[i], hi[j], hi[i]])
    return BoundaryMesh.from_triangles(np.array(tris))


def _sensor(sensor_id: int, position, name: str, base_t: float, swing: float, rh: float, seed: int) -> SensorAnchor:
    rng = np.random.default_rng(seed)
    times = np.arange(0, _HOUR_MS + 1, 60_000)
    temps = base_t + swing * np.sin(2.0 * np.pi * times / _HOUR_MS) + rng.normal(0.0, 0.05, len(times))
    hums = np.clip(rh - 1.5 * (temps - base_t) + rng.normal(0.0, 0.3, len(times)), 5.0, 100.0)
    readings = [
        Reading(
            timestamp=int(ts),
            temperature=float(t),
            humidity=float(h),
            absolute_humidity=float(psychro.absolute_humidity(t, h)),
            dew_point=float(psychro.dew_point(t, h)),
        )
        for ts, t, h in zip(times, temps, hums)
    ]
    return SensorAnchor(sensor_id, position, name, readings)


def _sensors() -> list:
    return [
        _sensor(1, (0.5, 0.5, 1.2), "window", 17.5, 1.0, 55.0, seed=1),
        _sensor(2, (5.5, 2.5, 1.5), "radiator", 23.0, 0.5, 40.0, seed=2),
        _sensor(3, (1.5, 4.5, 2.2), "shelf", 21.0, 0.3, 45.0, seed=3),
        _sensor(4, (2.5, 1.5, 0.3), "floor", 19.0, 0.2, 50.0, seed=4),
    ]


# ---------------------------------------------------------------------------
# Plots
# ---------------------------------------------------------------------------

def _save_png(points: np.ndarray, values: np.ndarray, metric: str, out: Path) -> None:
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        print("matplotlib not installed; skipping PNG  (pip install -e .[viz])", file=sys.stderr)
        return

    zs = np.unique(points[:, 2])
    z_mid = zs[np.argmin(np.abs(zs - _CEILING / 2.0))]
    sel = np.isclose(points[:, 2], z_mid)

    fig, ax = plt.subplots(figsize=(6, 5))
    sc = ax.scatter(points[sel, 0], points[sel, 1], c=values[sel], cmap="coolwarm", s=40, marker="s")
    fig.colorbar(sc, ax=ax, label=metric)
    ax.plot(*np.vstack([_FLOOR_PLAN, _FLOOR_PLAN[:1]]).T, color="k", linewidth=1.0)
    ax.set_aspect("equal")
    ax.set_xlabel("X (m)")
    ax.set_ylabel("Y (m)")
    ax.set_title(f"{metric} at z ≈ {z_mid:.2f} m")
    fig.tight_layout()
    fig.savefig(out, dpi=150)
    plt.close(fig)
    print(f"Saved slice to {out}")


def _save_html(points: np.ndarray, values: np.ndarray, metric: str, out: Path) -> None:
    try:
        import plotly.graph_objects as go
    except ImportError:
        print("plotly not installed; skipping plot  (pip install -e .[viz])", file=sys.stderr)
        return

    fig = go.Figure(
        go.Scatter3d(
            x=points[:, 0], y=points[:, 1], z=points[:, 2],
            mode="markers",
            marker=dict(size=3, color=values, colorscale="RdBu", reversescale=True,
                        colorbar=dict(title=dict(text=metric))),
        )
    )
    fig.update_scenes(xaxis_title="X (m)", yaxis_title="Y (m)", zaxis_title="Z (m)", aspectmode="data")
    fig.update_layout(title=dict(text=f"Room {metric} field"), width=900, height=700)
    fig.write_html(out, include_plotlyjs="cdn")
    print(f"Saved interactive plot to {out}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(description="L-shaped room field reconstruction demo")
    parser.add_argument("--config", type=Path, default=None, help="JSON engine config (defaults if omitted)")
    parser.add_argument("--resolution", type=float, default=None, help="Lattice spacing in metres")
    parser.add_argument("--method", choices=("idw", "rbf"), default=None, help="Interpolation method")
    parser.add_argument("--metric", default="temperature", help="Metric to reconstruct")
    parser.add_argument("--executor", choices=("process", "thread"), default=None, help="Worker pool kind")
    parser.add_argument("--minute", type=float, default=30.0, help="Time cursor, minutes into the hour")
    parser.add_argument("--out", type=Path, default=_EXAMPLES_DIR / "room_field.png", help="Output .png path")
    parser.add_argument("--log-file", default=None, help="Also log to this file")
    args = parser.parse_args()

    setup_logging(logging.INFO, args.log_file)

    config = load_config(args.config)
    overrides = {
        "lattice_resolution": args.resolution,
        "interpolation_method": args.method,
        "executor": args.executor,
    }
    config = config.replace(**{k: v for k, v in overrides.items() if v is not None})

    state = SessionState(config)
    state.set_meshes([_extrude(_FLOOR_PLAN, _CEILING, fan_from=3)])
    state.set_sensors(_sensors())
    state.set_metric(args.metric)
    state.set_timestamp(args.minute * 60_000)
    print(f"Room volume: {state.exact_volume:.2f} m³  lattice: {state.lattice.n_points:,} points", flush=True)

    def _progress(processed: int, total: int, percentage: float) -> None:
        print(f"  classified {processed:,}/{total:,} ({percentage:.0f}%)", flush=True)

    with WorkerPool.from_config(config, name="demo") as pool:
        with JobOrchestrator(pool, on_progress=_progress) as orch:
            filtered = orch.dispatch(state.filter_message()).result()
            for warning in state.apply_filter_result(filtered):
                print(f"WARNING: {warning}", file=sys.stderr)
            print(f"Interior points: {filtered['totalInside']:,} "
                  f"({filtered['filterPercentage']:.1f}% filtered)", flush=True)

            field = orch.dispatch(state.interpolation_message()).result()
            state.apply_interpolation_result(field)

    if field["interpolationPointCount"] == 0:
        print("No sensor readings at this time; nothing to show.")
        return

    print(f"{state.selected_metric.value}: min={field['minValue']:.2f}  max={field['maxValue']:.2f}  "
          f"volumetric mean={field['volumetricAverage']:.2f}")
    print(f"Air: {field['avgTemp']:.2f} °C  {field['avgHumidity']:.1f} %RH  "
          f"{field['avgAbsHumidity']:.2f} g/m³")
    print(f"Air mass: {field['airMass']:.2f} kg  water vapour: {field['waterMass'] * 1000.0:.1f} g")

    points = np.asarray(field["positions"], dtype=np.float64).reshape(-1, 3)
    values = np.asarray(field["values"], dtype=np.float64)
    _save_png(points, values, state.selected_metric.value, args.out)
    _save_html(points, values, state.selected_metric.value, args.out.with_suffix(".html"))


if __name__ == "__main__":
    main()
