"""Uniform sampling lattices over axis-aligned boxes."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
import numpy.typing as npt

from _field_common import _Bounds3D, as_points, bounds_of, bounds_size, normalize_bounds
from .errors import LatticeError

logger = logging.getLogger(__name__)

_Array = npt.NDArray[np.floating]
_Steps3D = Tuple[int, int, int]


@dataclass(frozen=True, eq=False)
class Lattice:
    """Regular grid of candidate points.

    ``points`` is ``(N, 3)`` in row-major ``(i, j, k)`` order with *k*
    (the z index) varying fastest.
    """

    bounds: _Bounds3D
    resolution: float
    steps: _Steps3D
    points: _Array

    @property
    def n_points(self) -> int:
        return len(self.points)

    @property
    def flat(self) -> np.ndarray:
        """Flat float32 ``(3N,)`` buffer as carried in worker messages."""
        return self.points.astype(np.float32).reshape(-1)


def lattice_steps(bounds: _Bounds3D, resolution: float) -> _Steps3D:
    """Points per axis: ``max(2, ceil(size / resolution))``."""
    if not math.isfinite(resolution) or resolution <= 0.0:
        raise LatticeError(f"lattice resolution must be a positive finite number, got {resolution}")
    size = bounds_size(bounds)
    if not np.all(np.isfinite(size)):
        raise LatticeError(f"non-finite bounds {bounds}")
    if np.any(size < 0.0):
        raise LatticeError(f"inverted bounds {bounds}")
    sx, sy, sz = (max(2, math.ceil(s / resolution)) for s in size)
    return sx, sy, sz


def _axis(lo: float, hi: float, n: int) -> np.ndarray:
    return lo + np.arange(n, dtype=np.float64) * ((hi - lo) / (n - 1))


def _fill(bounds: _Bounds3D, steps: _Steps3D) -> _Array:
    (x0, x1), (y0, y1), (z0, z1) = bounds
    nx, ny, nz = steps
    X, Y, Z = np.meshgrid(_axis(x0, x1, nx), _axis(y0, y1, ny), _axis(z0, z1, nz), indexing="ij")
    points = np.stack([X, Y, Z], axis=-1).reshape(-1, 3)
    if not np.all(np.isfinite(points)):
        raise LatticeError(f"lattice over {bounds} produced non-finite coordinates")
    return points


def generate_lattice(bounds, resolution: float) -> Lattice:
    """Sample *bounds* with spacing close to *resolution* (at least 2 points per axis).

    Parameters
    ----------
    bounds:
        ``((x0, x1), (y0, y1), (z0, z1))`` physical extents of the box.
    resolution:
        Target spacing between neighbouring points.

    Returns
    -------
    Lattice
        ``stepsX * stepsY * stepsZ`` points including both box faces on
        every axis.
    """
    bounds = normalize_bounds(bounds)
    steps = lattice_steps(bounds, resolution)
    points = _fill(bounds, steps)
    logger.debug("Generated lattice %dx%dx%d = %d points", *steps, len(points))
    return Lattice(bounds=bounds, resolution=float(resolution), steps=steps, points=points)


def generate_lattice_by_count(bounds, count: int) -> Lattice:
    """Sample *bounds* with exactly *count* points per axis (``count >= 2``)."""
    bounds = normalize_bounds(bounds)
    count = int(count)
    if count < 2:
        raise LatticeError(f"need at least 2 points per axis, got {count}")
    size = bounds_size(bounds)
    if not np.all(np.isfinite(size)):
        raise LatticeError(f"non-finite bounds {bounds}")
    steps = (count, count, count)
    points = _fill(bounds, steps)
    spacing = float(np.max(size)) / (count - 1)
    return Lattice(bounds=bounds, resolution=spacing, steps=steps, points=points)


def bounds_from_points(points: Sequence, margin: float = 0.1) -> _Bounds3D:
    """Bounds of *points* widened by *margin* times the extent on each axis."""
    P = as_points(points)
    if len(P) == 0:
        return (0.0, 0.0), (0.0, 0.0), (0.0, 0.0)
    out = []
    for lo, hi in bounds_of(P):
        pad = (hi - lo) * margin
        out.append((float(lo - pad), float(hi + pad)))
    return tuple(out)  # type: ignore[return-value]
