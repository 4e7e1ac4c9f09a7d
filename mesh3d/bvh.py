"""Bounding-volume hierarchy over a boundary mesh for ray queries.

Design notes
------------
- **Flattened BVH**: nodes live in contiguous numpy arrays (``node_min``,
  ``node_max``, ``node_left``, ``node_right``, ``node_start``,
  ``node_count``) rather than Python objects.  ``node_count > 0`` marks a
  leaf holding triangles ``[node_start, node_start + node_count)`` of the
  reordered triangle array; internal nodes point at two children.
- **Build**: median split on the longest centroid axis.  One-time cost,
  O(F log² F); rebuild whenever the mesh changes.
- **Traversal**: a whole packet of rays sharing one direction walks the
  tree together.  At each node the slab test is vectorised over the rays
  still alive, and leaves run a vectorised Möller–Trumbore over
  ``(rays × leaf triangles)``.
- Hits at the same distance on one ray (shared edges or vertices) are merged.
  A merged hit made of triangles facing the ray from both sides is a tangent
  contact: it is not counted as a crossing and the ray is reported
  unresolved by :meth:`GeometryIndex.crossings`.
"""

from __future__ import annotations

import logging
import time
from typing import Tuple

import numpy as np

from _field_common import as_points
from .mesh import BoundaryMesh
from ._math import (
    _MERGE_EPS,
    _facing,
    _inverse_direction,
    _ray_box_hits,
    _ray_triangle_t,
)

logger = logging.getLogger(__name__)

_DEFAULT_MAX_LEAF = 8
_BOX_PAD = 1e-9


class GeometryIndex:
    """Ray-query index over the triangles of a :class:`BoundaryMesh`.

    Use :meth:`build` (or :meth:`empty`) rather than the constructor.
    """

    def __init__(
        self,
        triangles: np.ndarray,
        node_min: np.ndarray,
        node_max: np.ndarray,
        node_left: np.ndarray,
        node_right: np.ndarray,
        node_start: np.ndarray,
        node_count: np.ndarray,
    ) -> None:
        self.triangles = triangles
        self.node_min = node_min
        self.node_max = node_max
        self.node_left = node_left
        self.node_right = node_right
        self.node_start = node_start
        self.node_count = node_count

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def empty(cls) -> GeometryIndex:
        """Index with no triangles; every query reports zero intersections."""
        z3 = np.zeros((0, 3), dtype=np.float64)
        zi = np.zeros(0, dtype=np.int64)
        return cls(np.zeros((0, 3, 3)), z3, z3.copy(), zi, zi.copy(), zi.copy(), zi.copy())

    @classmethod
    def build(cls, mesh: BoundaryMesh | None, max_leaf_triangles: int = _DEFAULT_MAX_LEAF) -> GeometryIndex:
        """Build the BVH for *mesh*.  ``None`` or an empty mesh gives :meth:`empty`."""
        if mesh is None or mesh.is_empty:
            logger.debug("No triangles: building empty geometry index")
            return cls.empty()

        t0 = time.perf_counter()
        tris = np.asarray(mesh.triangles, dtype=np.float64)
        n_tris = len(tris)
        tri_min = tris.min(axis=1)
        tri_max = tris.max(axis=1)
        centroids = tris.mean(axis=1)

        order = np.arange(n_tris, dtype=np.int64)
        max_nodes = 2 * n_tris
        node_min = np.zeros((max_nodes, 3), dtype=np.float64)
        node_max = np.zeros((max_nodes, 3), dtype=np.float64)
        node_left = np.full(max_nodes, -1, dtype=np.int64)
        node_right = np.full(max_nodes, -1, dtype=np.int64)
        node_start = np.zeros(max_nodes, dtype=np.int64)
        node_count = np.zeros(max_nodes, dtype=np.int64)
        n_nodes = [0]

        def _build(start: int, end: int) -> int:
            node = n_nodes[0]
            n_nodes[0] += 1
            idx = order[start:end]
            lo = tri_min[idx].min(axis=0)
            hi = tri_max[idx].max(axis=0)
            pad = _BOX_PAD * max(1.0, float(np.max(hi - lo)))
            node_min[node] = lo - pad
            node_max[node] = hi + pad

            count = end - start
            c = centroids[idx]
            extent = c.max(axis=0) - c.min(axis=0)
            axis = int(np.argmax(extent))
            if count <= max_leaf_triangles or extent[axis] <= 0.0:
                node_start[node] = start
                node_count[node] = count
                return node

            order[start:end] = idx[np.argsort(c[:, axis], kind="stable")]
            mid = (start + end) // 2
            node_left[node] = _build(start, mid)
            node_right[node] = _build(mid, end)
            return node

        _build(0, n_tris)
        n = n_nodes[0]
        index = cls(
            tris[order],
            node_min[:n].copy(),
            node_max[:n].copy(),
            node_left[:n].copy(),
            node_right[:n].copy(),
            node_start[:n].copy(),
            node_count[:n].copy(),
        )
        logger.info(
            "BVH built: %d triangles, %d nodes (%d leaves) in %.1f ms",
            n_tris, n, int(np.count_nonzero(index.node_count)),
            (time.perf_counter() - t0) * 1e3,
        )
        return index

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def n_triangles(self) -> int:
        return len(self.triangles)

    @property
    def n_nodes(self) -> int:
        return len(self.node_min)

    @property
    def is_empty(self) -> bool:
        return self.n_triangles == 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _collect(self, origins: np.ndarray, direction: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """All ``(ray_id, t, tangent)`` hits, sorted by ray then distance, merged.

        ``tangent`` flags merged hits whose triangles face the ray from both
        sides: the ray touches the surface there without crossing it.
        """
        n_rays = len(origins)
        if self.is_empty or n_rays == 0:
            return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float64), np.zeros(0, dtype=bool)

        inv_dir = _inverse_direction(direction)
        facing = _facing(direction, self.triangles)
        hit_rays: list[np.ndarray] = []
        hit_ts: list[np.ndarray] = []
        hit_facing: list[np.ndarray] = []
        stack = [(0, np.arange(n_rays, dtype=np.int64))]
        while stack:
            node, rays = stack.pop()
            alive = _ray_box_hits(origins[rays], inv_dir, self.node_min[node], self.node_max[node])
            rays = rays[alive]
            if rays.size == 0:
                continue
            count = self.node_count[node]
            if count > 0:
                start = self.node_start[node]
                t = _ray_triangle_t(origins[rays], direction, self.triangles[start:start + count])
                r, f = np.nonzero(~np.isnan(t))
                if r.size:
                    hit_rays.append(rays[r])
                    hit_ts.append(t[r, f])
                    hit_facing.append(facing[start + f])
            else:
                stack.append((self.node_right[node], rays))
                stack.append((self.node_left[node], rays))

        if not hit_rays:
            return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float64), np.zeros(0, dtype=bool)

        ray_ids = np.concatenate(hit_rays)
        ts = np.concatenate(hit_ts)
        signs = np.concatenate(hit_facing)
        order = np.lexsort((ts, ray_ids))
        ray_ids = ray_ids[order]
        ts = ts[order]
        signs = signs[order]
        keep = np.ones(len(ts), dtype=bool)
        keep[1:] = (ray_ids[1:] != ray_ids[:-1]) | (np.diff(ts) > _MERGE_EPS)

        cluster = np.cumsum(keep) - 1
        n_clusters = int(cluster[-1]) + 1
        front = np.bincount(cluster, weights=(signs > 0).astype(np.float64), minlength=n_clusters) > 0
        back = np.bincount(cluster, weights=(signs < 0).astype(np.float64), minlength=n_clusters) > 0
        return ray_ids[keep], ts[keep], front & back

    def query(self, origin, direction) -> np.ndarray:
        """Sorted crossing distances along the ray ``origin + t * direction``.

        Parameters
        ----------
        origin:
            ``(3,)`` ray origin.
        direction:
            ``(3,)`` ray direction (normalised internally, so distances are
            Euclidean).

        Returns
        -------
        numpy.ndarray
            ``(H,)`` ascending distances ``t > 0``; empty when nothing is hit.
            Tangent contacts are not crossings and are left out.
        """
        d = _unit(direction)
        _, ts, tangent = self._collect(as_points(origin), d)
        return ts[~tangent]

    def crossings(self, origins, direction) -> Tuple[np.ndarray, np.ndarray]:
        """Surface crossings per origin along *direction*, and which rays are unresolved.

        Returns
        -------
        counts:
            ``(N,)`` int64 number of distinct crossings, tangent contacts excluded.
        unresolved:
            ``(N,)`` bool, True where the ray grazed the surface at least once;
            its crossing parity says nothing about containment.
        """
        O = as_points(origins)
        ray_ids, _, tangent = self._collect(O, _unit(direction))
        counts = np.bincount(ray_ids[~tangent], minlength=len(O)).astype(np.int64)
        unresolved = np.bincount(ray_ids[tangent], minlength=len(O)) > 0
        return counts, unresolved

    def count_hits(self, origins, direction) -> np.ndarray:
        """``(N,)`` number of distinct surface crossings for each origin along *direction*."""
        counts, _ = self.crossings(origins, direction)
        return counts


def _unit(direction) -> np.ndarray:
    d = np.asarray(direction, dtype=np.float64).reshape(3)
    norm = np.linalg.norm(d)
    if norm == 0.0:
        raise ValueError("ray direction must be non-zero")
    return d / norm
