"""
mesh3d — boundary meshes, ray queries and interior classification
==================================================================

Accelerated point-in-mesh tests for room shells given as flat vertex and
index buffers (the layout produced by glTF loaders).

Implemented features
--------------------
- Immutable mesh container: :class:`BoundaryMesh`
- BVH ray-query index: :class:`GeometryIndex`
- Six-direction parity vote classifier: :func:`classify_points`
- Exact enclosed volume: :func:`mesh_volume`, :func:`scene_volume`,
  :func:`interior_air_volume`

Quick start
-----------

::

    from mesh3d import BoundaryMesh, GeometryIndex, classify_points, mesh_volume

    mesh  = BoundaryMesh(position, index)
    bvh   = GeometryIndex.build(mesh)
    res   = classify_points(points, bvh, tolerance=4)
    res.interior_points.shape, mesh_volume(mesh)

Watertight requirement
----------------------
Parity tests and the signed-tetrahedron volume are exact only for closed,
consistently wound meshes.  The six-direction vote degrades gracefully on
leaky shells; the volume does not.
"""

from .errors import ConfigurationError, FieldEngineError, GeometryError
from .mesh import BoundaryMesh, combine_meshes
from .bvh import GeometryIndex
from .classify import (
    STRATEGIES,
    ClassificationResult,
    ProgressThrottle,
    classify_points,
    direction_crossings,
    direction_hits,
    inside_votes,
    parity_votes,
)
from .volume import interior_air_volume, mesh_volume, scene_volume

__version__ = "0.1.0"

__all__ = [
    # Errors
    "FieldEngineError",
    "GeometryError",
    "ConfigurationError",

    # Mesh
    "BoundaryMesh",
    "combine_meshes",

    # Ray queries
    "GeometryIndex",

    # Classification
    "STRATEGIES",
    "ClassificationResult",
    "ProgressThrottle",
    "classify_points",
    "direction_crossings",
    "direction_hits",
    "inside_votes",
    "parity_votes",

    # Volume
    "mesh_volume",
    "scene_volume",
    "interior_air_volume",
]
