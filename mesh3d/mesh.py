"""Boundary mesh container: flat position buffer plus optional index buffer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np

from _field_common import _Bounds3D
from .errors import GeometryError
from ._math import _buffers_to_triangles


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class BoundaryMesh:
    """Immutable triangulated shell.

    Parameters
    ----------
    position:
        Flat ``(3V,)`` vertex buffer (``(V, 3)`` is accepted and flattened).
    index:
        Optional flat ``(3F,)`` triangle index buffer.  Without it, consecutive
        vertex triples are the triangles.

    Both buffers are copied and made read-only; a changed mesh is a new
    ``BoundaryMesh`` and needs a new :class:`mesh3d.bvh.GeometryIndex`.
    """

    position: np.ndarray
    index: Optional[np.ndarray] = None
    triangles: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        position = np.asarray(self.position, dtype=np.float64).reshape(-1)
        if position.size % 3 != 0:
            raise GeometryError(
                f"position buffer length {position.size} is not a multiple of 3"
            )
        index = None
        if self.index is not None:
            index = np.asarray(self.index, dtype=np.int64).reshape(-1)
            if index.size % 3 != 0:
                raise GeometryError(
                    f"index buffer length {index.size} is not a multiple of 3"
                )
            n_verts = position.size // 3
            if index.size and (index.min() < 0 or index.max() >= n_verts):
                raise GeometryError(
                    f"index buffer references vertices outside [0, {n_verts})"
                )
        object.__setattr__(self, "position", _frozen(position))
        object.__setattr__(self, "index", None if index is None else _frozen(index))
        object.__setattr__(self, "triangles", _frozen(_buffers_to_triangles(position, index)))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def empty(cls) -> BoundaryMesh:
        """A mesh with no triangles; every query against it misses."""
        return cls(np.zeros(0, dtype=np.float64), None)

    @classmethod
    def from_triangles(cls, triangles: np.ndarray) -> BoundaryMesh:
        """Build an indexed mesh from a ``(F, 3, 3)`` triangle array.

        Vertices are shared by exact coordinate match so the volume
        calculation sees a proper indexed mesh.
        """
        tris = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
        if len(tris) == 0:
            return cls.empty()
        verts, inverse = np.unique(tris.reshape(-1, 3), axis=0, return_inverse=True)
        return cls(verts.reshape(-1), inverse.reshape(-1))

    @classmethod
    def from_geometry_data(cls, geometry_data: Optional[dict]) -> BoundaryMesh:
        """Build from the wire form ``{"position": ..., "index": ... | None}``."""
        if not geometry_data or geometry_data.get("position") is None:
            return cls.empty()
        return cls(geometry_data["position"], geometry_data.get("index"))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_indexed(self) -> bool:
        return self.index is not None

    @property
    def n_vertices(self) -> int:
        return self.position.size // 3

    @property
    def n_triangles(self) -> int:
        return len(self.triangles)

    @property
    def is_empty(self) -> bool:
        return self.n_triangles == 0

    def bounds(self) -> _Bounds3D:
        """Axis-aligned bounds of the vertices; all zeros for an empty mesh."""
        if self.n_vertices == 0:
            return (0.0, 0.0), (0.0, 0.0), (0.0, 0.0)
        verts = self.position.reshape(-1, 3)
        lo = verts.min(axis=0)
        hi = verts.max(axis=0)
        return (lo[0], hi[0]), (lo[1], hi[1]), (lo[2], hi[2])

    def geometry_data(self) -> dict:
        """Wire form used by the classification job message."""
        return {
            "position": self.position.astype(np.float32),
            "index": None if self.index is None else self.index.astype(np.uint32),
        }


def combine_meshes(meshes: Iterable[BoundaryMesh]) -> BoundaryMesh:
    """Concatenate several meshes into one (triangle soup of all faces)."""
    tris = [m.triangles for m in meshes if not m.is_empty]
    if not tris:
        return BoundaryMesh.empty()
    return BoundaryMesh.from_triangles(np.concatenate(tris, axis=0))
