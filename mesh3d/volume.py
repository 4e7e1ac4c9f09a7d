"""Exact enclosed volume of triangulated meshes (signed-tetrahedron method).

For every triangle ``(v1, v2, v3)`` the tetrahedron spanned with the origin
has signed volume ``dot(v1, cross(v2, v3)) / 6``.  On a closed, consistently
wound mesh the contributions outside the shell cancel and the absolute sum
is the enclosed volume, independent of any lattice sampling.

An un-indexed mesh yields ``0.0`` and an open mesh an arbitrary value;
neither raises.
"""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np

from _field_common import bounds_volume
from .mesh import BoundaryMesh, combine_meshes
from ._math import _signed_tet_volumes

logger = logging.getLogger(__name__)


def mesh_volume(mesh: BoundaryMesh | None) -> float:
    """Absolute enclosed volume of *mesh* in model units cubed."""
    if mesh is None or mesh.is_empty:
        return 0.0
    if not mesh.is_indexed:
        logger.warning("Mesh has no index buffer; volume reported as 0")
        return 0.0
    return float(abs(np.sum(_signed_tet_volumes(mesh.triangles))))


def scene_volume(meshes: Iterable[BoundaryMesh]) -> float:
    """Sum of :func:`mesh_volume` over *meshes*."""
    return float(sum(mesh_volume(m) for m in meshes))


def interior_air_volume(meshes: Iterable[BoundaryMesh]) -> float:
    """Air volume of a scene whose meshes model the walls rather than the air.

    Bounding-box volume of all meshes minus their solid volume, floored at 0.
    """
    meshes = list(meshes)
    combined = combine_meshes(meshes)
    if combined.is_empty:
        return 0.0
    return max(0.0, bounds_volume(combined.bounds()) - scene_volume(meshes))
