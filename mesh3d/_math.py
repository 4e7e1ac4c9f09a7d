"""Internal ray and volume math for triangulated boundary meshes.

All symbols here are private (underscore-prefixed).  Users should import
from :mod:`mesh3d.bvh`, :mod:`mesh3d.classify` and :mod:`mesh3d.volume`.

Algorithms
----------
Ray/triangle — Möller–Trumbore, vectorised over ``(rays × triangles)``.
    Barycentric bounds are tested with a small inclusive tolerance so a ray
    passing exactly through a shared edge is reported by both neighbours;
    callers merge hits at equal distance.  A merged hit whose triangles face
    the ray from both sides is a tangent contact (the ray grazes a
    silhouette edge or vertex) rather than a crossing.

Ray/box — slab method with a precomputed inverse direction.  Axis-aligned
    rays give ``inf`` components; those axes are resolved by a direct
    containment test instead of the (possibly ``nan``) slab distances.

Volume — signed tetrahedra ``dot(v1, cross(v2, v3)) / 6`` summed over all
    faces.  Only meaningful for closed, consistently wound meshes.
"""

from __future__ import annotations

from math import sqrt
from typing import Optional

import numpy as np

# ---------------------------------------------------------------------------
# Tolerances
# ---------------------------------------------------------------------------
_DET_EPS = 1e-12
_BARY_EPS = 1e-12
_T_EPS = 1e-10
_MERGE_EPS = 1e-9

# ---------------------------------------------------------------------------
# Fixed ray direction: irrational components avoid axis-aligned degeneracies
# ---------------------------------------------------------------------------
_RAY_DIR: np.ndarray = np.array(
    [sqrt(2) - 1.0, sqrt(3) - 1.0, 1.0 / sqrt(3)], dtype=np.float64
)
_RAY_DIR = _RAY_DIR / np.linalg.norm(_RAY_DIR)

# ±X, ±Y, ±Z
_AXIS_DIRS: np.ndarray = np.array([
    [1.0, 0.0, 0.0], [-1.0, 0.0, 0.0],
    [0.0, 1.0, 0.0], [0.0, -1.0, 0.0],
    [0.0, 0.0, 1.0], [0.0, 0.0, -1.0],
], dtype=np.float64)


# ---------------------------------------------------------------------------
# Buffers → triangles
# ---------------------------------------------------------------------------

def _buffers_to_triangles(position: np.ndarray, index: Optional[np.ndarray]) -> np.ndarray:
    """Return the triangles of a position/index buffer pair as ``(F, 3, 3)``.

    Without an index, consecutive vertex triples form the triangles (the
    non-indexed layout of glTF/three.js geometry).
    """
    verts = np.asarray(position, dtype=np.float64).reshape(-1, 3)
    if index is None:
        n = (len(verts) // 3) * 3
        return verts[:n].reshape(-1, 3, 3)
    idx = np.asarray(index, dtype=np.int64).reshape(-1, 3)
    return verts[idx]


# ---------------------------------------------------------------------------
# Ray / triangle: Möller–Trumbore
# ---------------------------------------------------------------------------

def _ray_triangle_t(origins: np.ndarray, ray_dir: np.ndarray, tris: np.ndarray) -> np.ndarray:
    """Distances from each origin to each triangle along *ray_dir*.

    Parameters
    ----------
    origins:
        ``(N, 3)`` ray origins.
    ray_dir:
        ``(3,)`` direction shared by all rays.
    tris:
        ``(F, 3, 3)`` triangle vertices.

    Returns
    -------
    numpy.ndarray
        ``(N, F)`` float64 — hit distance ``t > 0`` or ``nan`` for a miss.
    """
    v0 = tris[:, 0, :]                    # (F, 3)
    e1 = tris[:, 1, :] - v0               # (F, 3)
    e2 = tris[:, 2, :] - v0               # (F, 3)

    h = np.cross(ray_dir, e2)             # (F, 3)
    det = np.einsum("fj,fj->f", e1, h)    # (F,)
    ok = np.abs(det) >= _DET_EPS
    inv_det = np.zeros_like(det)
    inv_det[ok] = 1.0 / det[ok]

    s = origins[:, None, :] - v0[None, :, :]          # (N, F, 3)
    u = inv_det * np.einsum("nfj,fj->nf", s, h)       # (N, F)
    q = np.cross(s, e1[None, :, :])                   # (N, F, 3)
    v = inv_det * (q @ ray_dir)                       # (N, F)
    t = inv_det * np.einsum("nfj,fj->nf", q, e2)      # (N, F)

    hit = (
        ok[None, :]
        & (u >= -_BARY_EPS) & (v >= -_BARY_EPS) & ((u + v) <= 1.0 + _BARY_EPS)
        & (t > _T_EPS)
    )
    return np.where(hit, t, np.nan)


def _facing(ray_dir: np.ndarray, tris: np.ndarray) -> np.ndarray:
    """``(F,)`` int8 sign of the Möller–Trumbore determinant for *ray_dir*.

    ``+1`` and ``-1`` tell which side of the winding the ray meets the
    triangle from; ``0`` marks triangles parallel to the ray.
    """
    e1 = tris[:, 1, :] - tris[:, 0, :]
    e2 = tris[:, 2, :] - tris[:, 0, :]
    det = np.einsum("fj,fj->f", e1, np.cross(ray_dir, e2))
    return np.where(np.abs(det) >= _DET_EPS, np.sign(det), 0.0).astype(np.int8)


# ---------------------------------------------------------------------------
# Ray / box: slab method
# ---------------------------------------------------------------------------

def _inverse_direction(ray_dir: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore"):
        return 1.0 / np.asarray(ray_dir, dtype=np.float64)


def _ray_box_hits(
    origins: np.ndarray,
    inv_dir: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
) -> np.ndarray:
    """``(N,)`` bool — True where the ray from each origin meets the box at ``t >= 0``."""
    with np.errstate(invalid="ignore"):
        t1 = (box_min - origins) * inv_dir     # (N, 3)
        t2 = (box_max - origins) * inv_dir
    lo = np.minimum(t1, t2)
    hi = np.maximum(t1, t2)
    parallel = np.isinf(inv_dir)
    if parallel.any():
        # Parallel axis: the slab is everything or nothing
        within = (origins >= box_min) & (origins <= box_max)
        lo = np.where(parallel, np.where(within, -np.inf, np.inf), lo)
        hi = np.where(parallel, np.where(within, np.inf, -np.inf), hi)
    t_enter = np.max(lo, axis=1)
    t_exit = np.min(hi, axis=1)
    return t_exit >= np.maximum(t_enter, 0.0)


# ---------------------------------------------------------------------------
# Volume: signed tetrahedra
# ---------------------------------------------------------------------------

def _signed_tet_volumes(tris: np.ndarray) -> np.ndarray:
    """``(F,)`` signed volumes of the tetrahedra (origin, v1, v2, v3)."""
    v1, v2, v3 = tris[:, 0, :], tris[:, 1, :], tris[:, 2, :]
    return np.einsum("fj,fj->f", v1, np.cross(v2, v3)) / 6.0
