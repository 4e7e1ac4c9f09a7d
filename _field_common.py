"""Shared numpy helpers used by both mesh3d and roomfield.

This module provides:

* **Type aliases**: :data:`_F`, :data:`_Bounds3D`
* **Vector helpers**: :func:`as_points`, :func:`length`, :func:`clamp`
* **Box helpers**: :func:`normalize_bounds`, :func:`bounds_size`,
  :func:`bounds_volume`, :func:`bounds_of`

Not meant to be imported directly by end users — import from ``mesh3d`` or
``roomfield`` instead.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
import numpy.typing as npt

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------
_F = npt.NDArray[np.floating]
_Bounds3D = Tuple[Tuple[float, float], Tuple[float, float], Tuple[float, float]]

__all__ = [
    "_F", "_Bounds3D",
    "as_points", "length", "clamp",
    "normalize_bounds", "bounds_size", "bounds_volume", "bounds_of",
]


# ===========================================================================
# Vector helpers
# ===========================================================================

def as_points(points) -> _F:
    """Return *points* as a float64 ``(N, 3)`` array.

    Accepts a single ``(3,)`` point, an ``(N, 3)`` array or a flat
    ``(3N,)`` buffer as carried in worker messages.
    """
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim == 1:
        if arr.size % 3 != 0:
            raise ValueError(f"flat point buffer length {arr.size} is not a multiple of 3")
        return arr.reshape(-1, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"expected (N, 3) points, got shape {arr.shape}")
    return arr


# ===========================================================================
# Math helpers
# ===========================================================================

def length(v: _F) -> _F:
    """Euclidean length along the last axis."""
    return np.linalg.norm(v, axis=-1)


def clamp(x: _F, lo: float | _F, hi: float | _F) -> _F:
    """Clamp *x* element-wise to ``[lo, hi]``."""
    return np.minimum(np.maximum(x, lo), hi)


# ===========================================================================
# Axis-aligned box helpers
# ===========================================================================

def normalize_bounds(bounds) -> _Bounds3D:
    """Coerce *bounds* into ``((x0, x1), (y0, y1), (z0, z1))`` floats.

    Also accepts the wire form ``{"min": {x,y,z}, "max": {x,y,z}}``.
    """
    if isinstance(bounds, dict):
        lo, hi = bounds["min"], bounds["max"]
        if isinstance(lo, dict):
            lo = (lo["x"], lo["y"], lo["z"])
            hi = (hi["x"], hi["y"], hi["z"])
        return tuple((float(a), float(b)) for a, b in zip(lo, hi))  # type: ignore[return-value]
    (x0, x1), (y0, y1), (z0, z1) = bounds
    return (float(x0), float(x1)), (float(y0), float(y1)), (float(z0), float(z1))


def bounds_size(bounds: _Bounds3D) -> np.ndarray:
    """Edge lengths ``(sx, sy, sz)`` of *bounds*."""
    return np.array([hi - lo for lo, hi in normalize_bounds(bounds)], dtype=np.float64)


def bounds_volume(bounds: _Bounds3D) -> float:
    """Volume of the axis-aligned box *bounds*."""
    return float(np.prod(bounds_size(bounds)))


def bounds_of(points: Sequence) -> _Bounds3D:
    """Tight axis-aligned bounds of *points*."""
    P = as_points(points)
    lo = P.min(axis=0)
    hi = P.max(axis=0)
    return (lo[0], hi[0]), (lo[1], hi[1]), (lo[2], hi[2])
