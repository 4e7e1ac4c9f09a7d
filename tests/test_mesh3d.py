"""Tests for mesh3d.

Internal math tested via mesh3d._math (private but tested directly).
Public API tested via BoundaryMesh, GeometryIndex, classify_points and the
volume functions.
"""
from __future__ import annotations

import numpy as np
import numpy.testing as npt
import pytest

from mesh3d import (
    BoundaryMesh,
    ConfigurationError,
    GeometryError,
    GeometryIndex,
    ProgressThrottle,
    classify_points,
    combine_meshes,
    direction_crossings,
    direction_hits,
    inside_votes,
    interior_air_volume,
    mesh_volume,
    parity_votes,
    scene_volume,
)
from mesh3d._math import (
    _buffers_to_triangles,
    _facing,
    _inverse_direction,
    _ray_box_hits,
    _ray_triangle_t,
    _signed_tet_volumes,
)


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
        (0, 2, 1), (0, 3, 2),   # -Z
        (4, 5, 6), (4, 6, 7),   # +Z
        (0, 4, 7), (0, 7, 3),   # -X
        (1, 2, 6), (1, 6, 5),   # +X
        (0, 1, 5), (0, 5, 4),   # -Y
        (3, 7, 6), (3, 6, 2),   # +Y
    ]
    return np.array([[verts[i], verts[j], verts[k]] for i, j, k in face_indices],
                    dtype=np.float64)


def _box_mesh(lo=(0.0, 0.0, 0.0), hi=(1.0, 1.0, 1.0)) -> BoundaryMesh:
    return BoundaryMesh.from_triangles(_make_box_triangles(lo, hi))


def _octahedron_mesh() -> BoundaryMesh:
    """8-triangle octahedron |x| + |y| + |z| = 1, outward winding."""
    tris = []
    for sx in (1.0, -1.0):
        for sy in (1.0, -1.0):
            for sz in (1.0, -1.0):
                a, b, c = [sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, sz]
                tris.append([a, b, c] if sx * sy * sz > 0 else [a, c, b])
    return BoundaryMesh.from_triangles(np.array(tris, dtype=np.float64))


def _lattice(lo: float, hi: float, n: int) -> np.ndarray:
    lin = np.linspace(lo, hi, n)
    X, Y, Z = np.meshgrid(lin, lin, lin, indexing="ij")
    return np.stack([X, Y, Z], axis=-1).reshape(-1, 3)


def _brute_force_counts(origins, direction, tris):
    d = np.asarray(direction, dtype=np.float64)
    d = d / np.linalg.norm(d)
    t = _ray_triangle_t(origins, d, tris)
    return np.sum(~np.isnan(t), axis=1)


# ---------------------------------------------------------------------------
# _math
# ---------------------------------------------------------------------------

class TestRayTriangle:
    def setup_method(self):
        self.tris = np.array([[[0, 0, 0], [2, 0, 0], [0, 2, 0]]], dtype=np.float64)
        self.up = np.array([0.0, 0.0, 1.0])

    def test_hit_interior(self):
        t = _ray_triangle_t(np.array([[0.5, 0.5, -1.0]]), self.up, self.tris)
        npt.assert_allclose(t, [[1.0]])

    def test_miss_exterior(self):
        assert np.isnan(_ray_triangle_t(np.array([[3.0, 3.0, -1.0]]), self.up, self.tris)[0, 0])

    def test_behind_origin(self):
        assert np.isnan(_ray_triangle_t(np.array([[0.5, 0.5, 1.0]]), self.up, self.tris)[0, 0])

    def test_parallel_ray(self):
        t = _ray_triangle_t(np.array([[0.5, 0.5, -1.0]]), np.array([1.0, 0.0, 0.0]), self.tris)
        assert np.isnan(t[0, 0])

    def test_edge_is_inclusive(self):
        # Through the hypotenuse x + y = 2
        t = _ray_triangle_t(np.array([[1.0, 1.0, -1.0]]), self.up, self.tris)
        npt.assert_allclose(t, [[1.0]])

    def test_shape(self):
        tris = _make_box_triangles()
        assert _ray_triangle_t(np.zeros((5, 3)), self.up, tris).shape == (5, 12)

    def test_facing_signs(self):
        f = _facing(np.array([1.0, 0.0, 0.0]), _make_box_triangles())
        # only the two X faces are crossed by an X ray, from opposite sides
        npt.assert_array_equal(f[[0, 1, 2, 3, 8, 9, 10, 11]], 0)
        assert f[4] == f[5] == -f[6] == -f[7] != 0


class TestRayBox:
    def test_axis_aligned_hit_and_miss(self):
        inv = _inverse_direction(np.array([1.0, 0.0, 0.0]))
        O = np.array([[-1.0, 0.5, 0.5], [-1.0, 2.0, 0.5], [2.0, 0.5, 0.5]])
        hits = _ray_box_hits(O, inv, np.zeros(3), np.ones(3))
        assert list(hits) == [True, False, False]

    def test_origin_inside(self):
        inv = _inverse_direction(np.array([0.0, 0.0, -1.0]))
        assert _ray_box_hits(np.array([[0.5, 0.5, 0.5]]), inv, np.zeros(3), np.ones(3))[0]

    def test_origin_on_slab_plane(self):
        inv = _inverse_direction(np.array([1.0, 0.0, 0.0]))
        assert _ray_box_hits(np.array([[-1.0, 0.0, 0.5]]), inv, np.zeros(3), np.ones(3))[0]


class TestBuffersToTriangles:
    def test_indexed(self):
        position = np.arange(12, dtype=np.float64)
        tris = _buffers_to_triangles(position, np.array([0, 1, 2, 1, 2, 3]))
        assert tris.shape == (2, 3, 3)
        npt.assert_allclose(tris[1, 2], [9.0, 10.0, 11.0])

    def test_non_indexed_triples(self):
        position = np.arange(18, dtype=np.float64)
        tris = _buffers_to_triangles(position, None)
        assert tris.shape == (2, 3, 3)
        npt.assert_allclose(tris[1, 0], [9.0, 10.0, 11.0])


def test_signed_volumes_flip_with_winding():
    tris = _make_box_triangles()
    assert _signed_tet_volumes(tris).sum() == pytest.approx(1.0)
    assert _signed_tet_volumes(tris[:, ::-1, :]).sum() == pytest.approx(-1.0)


# ---------------------------------------------------------------------------
# BoundaryMesh
# ---------------------------------------------------------------------------

class TestBoundaryMesh:
    def test_from_triangles_shares_vertices(self):
        mesh = _box_mesh()
        assert mesh.n_vertices == 8
        assert mesh.n_triangles == 12
        assert mesh.is_indexed
        npt.assert_allclose(np.sort(mesh.triangles.reshape(-1)), np.sort(_make_box_triangles().reshape(-1)))

    def test_buffers_are_read_only(self):
        mesh = _box_mesh()
        with pytest.raises(ValueError):
            mesh.position[0] = 5.0

    def test_source_buffers_are_copied(self):
        position = np.arange(9, dtype=np.float64)
        mesh = BoundaryMesh(position)
        position[0] = 100.0
        assert mesh.position[0] == 0.0

    def test_bad_position_length(self):
        with pytest.raises(GeometryError):
            BoundaryMesh(np.zeros(10))

    def test_bad_index_length(self):
        with pytest.raises(GeometryError):
            BoundaryMesh(np.zeros(9), np.array([0, 1]))

    def test_index_out_of_range(self):
        with pytest.raises(GeometryError):
            BoundaryMesh(np.zeros(9), np.array([0, 1, 3]))

    def test_empty(self):
        mesh = BoundaryMesh.empty()
        assert mesh.is_empty
        assert mesh.bounds() == ((0.0, 0.0), (0.0, 0.0), (0.0, 0.0))

    def test_bounds(self):
        (x0, x1), (y0, y1), (z0, z1) = _box_mesh((1, 2, 3), (4, 5, 6)).bounds()
        assert (x0, x1, y0, y1, z0, z1) == (1, 4, 2, 5, 3, 6)

    def test_geometry_data_roundtrip(self):
        mesh = _box_mesh()
        data = mesh.geometry_data()
        assert data["position"].dtype == np.float32
        assert data["index"].dtype == np.uint32
        again = BoundaryMesh.from_geometry_data(data)
        npt.assert_allclose(again.triangles, mesh.triangles)

    def test_from_missing_geometry_data(self):
        assert BoundaryMesh.from_geometry_data(None).is_empty
        assert BoundaryMesh.from_geometry_data({"position": None}).is_empty

    def test_combine(self):
        combined = combine_meshes([_box_mesh(), _box_mesh((2, 0, 0), (3, 1, 1)), BoundaryMesh.empty()])
        assert combined.n_triangles == 24
        assert combine_meshes([]).is_empty


# ---------------------------------------------------------------------------
# GeometryIndex
# ---------------------------------------------------------------------------

class TestGeometryIndex:
    def test_query_distances_sorted(self):
        index = GeometryIndex.build(_box_mesh())
        ts = index.query([-1.0, 0.3, 0.4], [1.0, 0.0, 0.0])
        npt.assert_allclose(ts, [1.0, 2.0])

    def test_query_direction_is_normalised(self):
        index = GeometryIndex.build(_box_mesh())
        npt.assert_allclose(index.query([-1.0, 0.3, 0.4], [5.0, 0.0, 0.0]), [1.0, 2.0])

    def test_shared_edge_counted_once(self):
        # y == z lies on the diagonal shared by the two +X triangles
        index = GeometryIndex.build(_box_mesh())
        assert index.count_hits([[0.5, 0.3, 0.3]], [1.0, 0.0, 0.0])[0] == 1

    def test_miss(self):
        index = GeometryIndex.build(_box_mesh())
        assert index.query([-1.0, 2.0, 0.5], [1.0, 0.0, 0.0]).size == 0

    def test_empty_index(self):
        index = GeometryIndex.build(None)
        assert index.is_empty
        assert list(index.count_hits(np.zeros((3, 3)), [1.0, 0.0, 0.0])) == [0, 0, 0]

    def test_zero_direction(self):
        with pytest.raises(ValueError):
            GeometryIndex.build(_box_mesh()).query([0, 0, 0], [0, 0, 0])

    def test_matches_brute_force(self):
        rng = np.random.default_rng(7)
        tris = rng.uniform(-1.0, 1.0, size=(300, 3, 3))
        origins = rng.uniform(-1.5, 1.5, size=(200, 3))
        index = GeometryIndex.build(BoundaryMesh(tris.reshape(-1)), max_leaf_triangles=4)
        assert index.n_nodes > 1
        for direction in ([1.0, 0.0, 0.0], [0.0, -1.0, 0.0], [0.3, 0.5, -0.8]):
            npt.assert_array_equal(
                index.count_hits(origins, direction),
                _brute_force_counts(origins, direction, tris),
            )

    def test_leaf_layout_covers_all_triangles(self):
        index = GeometryIndex.build(_box_mesh(), max_leaf_triangles=2)
        leaves = index.node_count > 0
        assert index.node_count[leaves].sum() == 12


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestVotes:
    def test_center_of_box(self):
        index = GeometryIndex.build(_box_mesh())
        votes, hits = inside_votes([[0.5, 0.4, 0.3]], index)
        assert votes[0] == 6
        assert hits[0] == 6

    def test_direction_hits_shape(self):
        index = GeometryIndex.build(_box_mesh())
        assert direction_hits(np.zeros((4, 3)), index).shape == (4, 6)
        assert direction_hits(np.zeros((4, 3)), index, "single_ray").shape == (4, 1)

    def test_outside_beside_box(self):
        index = GeometryIndex.build(_box_mesh())
        hits = direction_hits([[-0.5, 0.5, 0.5]], index)
        assert list(hits[0]) == [2, 0, 0, 0, 0, 0]

    def test_unresolved_directions_abstain(self):
        hits = np.array([[1, 3, 2, 1, 1, 1]])
        unresolved = np.array([[False, True, False, False, True, False]])
        votes, total = parity_votes(hits, unresolved)
        assert votes[0] == 3
        assert total[0] == 5


class TestTangentContacts:
    def setup_method(self):
        self.mesh = _octahedron_mesh()
        self.index = GeometryIndex.build(self.mesh)
        self.plus_x = [1.0, 0.0, 0.0]

    def test_octahedron_volume(self):
        assert mesh_volume(self.mesh) == pytest.approx(4.0 / 3.0)

    def test_vertex_graze_is_not_a_crossing(self):
        counts, unresolved = self.index.crossings([[-2.0, 1.0, 0.0]], self.plus_x)
        assert counts[0] == 0
        assert unresolved[0]
        assert self.index.count_hits([[-2.0, 1.0, 0.0]], self.plus_x)[0] == 0
        assert self.index.query([-2.0, 1.0, 0.0], self.plus_x).size == 0

    def test_edge_graze_is_not_a_crossing(self):
        counts, unresolved = self.index.crossings([[-2.0, 0.5, 0.5]], self.plus_x)
        assert counts[0] == 0
        assert unresolved[0]

    def test_entry_through_vertex_is_a_crossing(self):
        counts, unresolved = self.index.crossings([[-2.0, 0.0, 0.0]], self.plus_x)
        assert counts[0] == 2
        assert not unresolved[0]
        npt.assert_allclose(self.index.query([-2.0, 0.0, 0.0], self.plus_x), [1.0, 3.0])

    def test_entry_through_edge_is_a_crossing(self):
        counts, unresolved = self.index.crossings([[-2.0, 0.25, 0.0]], self.plus_x)
        assert counts[0] == 2
        assert not unresolved[0]

    def test_grazing_direction_abstains(self):
        hits, unresolved = direction_crossings([[-2.0, 1.0, 0.0]], self.index)
        assert list(unresolved[0]) == [True, False, False, False, False, False]
        votes, total = inside_votes([[-2.0, 1.0, 0.0]], self.index)
        assert votes[0] == 0
        assert total[0] == 0

    @pytest.mark.parametrize("tolerance", [1, 2, 3, 4, 5, 6])
    def test_silhouette_points_rejected(self, tolerance):
        P = np.array([
            [-2.0, 1.0, 0.0], [1.5, 1.0, 0.0], [0.0, -1.0, 3.0],
            [-2.0, 0.5, 0.5], [0.5, 0.5, -2.0], [0.25, -3.0, 0.75],
        ])
        res = classify_points(P, self.index, tolerance=tolerance)
        assert res.total_inside == 0

    @pytest.mark.parametrize("tolerance", [1, 2, 3, 4, 5, 6])
    def test_lattice_matches_interior(self, tolerance):
        # 0.25 spacing puts many rays exactly through edges and vertices
        P = _lattice(-1.5, 1.5, 13)
        s = np.abs(P).sum(axis=1)
        P = P[np.abs(s - 1.0) > 1e-9]
        res = classify_points(P, self.index, tolerance=tolerance)
        npt.assert_array_equal(res.accepted, np.abs(P).sum(axis=1) < 1.0)

    def test_single_ray_lattice_matches_interior(self):
        P = _lattice(-1.5, 1.5, 13)
        P = P[np.abs(np.abs(P).sum(axis=1) - 1.0) > 1e-9]
        res = classify_points(P, self.index, strategy="single_ray")
        npt.assert_array_equal(res.accepted, np.abs(P).sum(axis=1) < 1.0)


class TestClassifyPoints:
    def setup_method(self):
        self.mesh = _box_mesh()
        self.index = GeometryIndex.build(self.mesh)
        self.points = _lattice(-0.25, 1.25, 10)
        self.truly_inside = np.all((self.points > 0.0) & (self.points < 1.0), axis=1)

    def test_single_ray_unit_cube(self):
        res = classify_points(self.points, self.index, strategy="single_ray")
        npt.assert_array_equal(res.accepted, self.truly_inside)
        assert res.total_inside == 216
        assert res.total_processed == 1000

    @pytest.mark.parametrize("tolerance", [1, 2, 3, 4, 5, 6])
    def test_six_axis_unit_cube(self, tolerance):
        res = classify_points(self.points, self.index, tolerance=tolerance)
        npt.assert_array_equal(res.accepted, self.truly_inside)

    @pytest.mark.parametrize("tolerance", [1, 3, 6])
    def test_outside_bbox_never_accepted(self, tolerance):
        rng = np.random.default_rng(3)
        P = rng.uniform(-2.0, 3.0, size=(500, 3))
        outside = np.any((P < 0.0) | (P > 1.0), axis=1)
        res = classify_points(P[outside], self.index, tolerance=tolerance)
        assert res.total_inside == 0

    def test_outside_bbox_guarantee_is_air_mode_only(self):
        beside = [[-0.5, 0.5, 0.5]]
        assert classify_points(beside, self.index).total_inside == 0
        # two crossings along +X: a resolved exterior point, which solid mode accepts
        assert classify_points(beside, self.index, invert=True).total_inside == 1

    def test_invert_accepts_resolved_exterior_only(self):
        res = classify_points(self.points, self.index, invert=True)
        assert not np.any(res.accepted & self.truly_inside)
        # Beside a face: rays cross the box, so the point is resolved
        beside = np.all(np.isclose(self.points, [-0.25, 0.41666667, 0.41666667]), axis=1)
        assert res.accepted[beside].all()
        # Diagonal corner region: no ray hits anything
        corner = np.all(self.points < 0.0, axis=1)
        assert not res.accepted[corner].any()

    def test_empty_mesh_rejects_everything(self):
        for index in (None, BoundaryMesh.empty(), GeometryIndex.empty()):
            for invert in (False, True):
                res = classify_points(self.points, index, invert=invert)
                assert res.total_inside == 0

    def test_accepts_mesh_and_flat_buffer(self):
        res = classify_points(self.points.reshape(-1).astype(np.float32), self.mesh, strategy="single_ray")
        assert res.total_inside == 216

    def test_filter_percentage(self):
        res = classify_points(self.points, self.index)
        assert res.filter_percentage == pytest.approx(78.4)

    def test_return_votes(self):
        res = classify_points(self.points, self.index, return_votes=True)
        assert res.votes.shape == (1000,)
        assert np.all(res.votes[self.truly_inside] == 6)

    def test_empty_points(self):
        res = classify_points(np.zeros((0, 3)), self.index)
        assert res.total_processed == 0
        assert res.filter_percentage == 0.0

    @pytest.mark.parametrize("kwargs", [
        {"tolerance": 0},
        {"tolerance": 7},
        {"strategy": "sixteen_axis"},
        {"batch_size": 0},
    ])
    def test_invalid_options(self, kwargs):
        with pytest.raises(ConfigurationError):
            classify_points(self.points, self.index, **kwargs)

    def test_batches_report_progress(self):
        events = []
        classify_points(self.points, self.index, batch_size=100, progress_interval=0.0,
                        progress=lambda *e: events.append(e))
        assert [e[0] for e in events] == list(range(100, 1001, 100))
        assert events[-1] == (1000, 1000, 100.0)


class TestProgressThrottle:
    def test_throttles_but_keeps_final(self):
        now = [0.0]
        events = []
        throttle = ProgressThrottle(lambda *e: events.append(e), total=10, interval=0.1, clock=lambda: now[0])
        now[0] = 0.05
        assert not throttle.update(2)
        now[0] = 0.2
        assert throttle.update(4)
        now[0] = 0.21
        assert not throttle.update(6)
        assert throttle.update(10)
        assert [e[0] for e in events] == [4, 10]

    def test_processed_never_goes_backwards(self):
        events = []
        throttle = ProgressThrottle(lambda *e: events.append(e), total=10, interval=0.0)
        throttle.update(5)
        assert not throttle.update(3)
        assert [e[0] for e in events] == [5]

    def test_without_callback(self):
        assert not ProgressThrottle(None, total=10).update(10)


# ---------------------------------------------------------------------------
# Volume
# ---------------------------------------------------------------------------

class TestVolume:
    def test_unit_cube(self):
        assert mesh_volume(_box_mesh()) == pytest.approx(1.0)

    def test_translated_box(self):
        assert mesh_volume(_box_mesh((5, -3, 2), (7, -2, 5))) == pytest.approx(6.0)

    def test_reversed_winding(self):
        tris = _make_box_triangles()[:, ::-1, :]
        assert mesh_volume(BoundaryMesh.from_triangles(tris)) == pytest.approx(1.0)

    def test_non_indexed_is_zero(self):
        mesh = BoundaryMesh(_make_box_triangles().reshape(-1))
        assert not mesh.is_indexed
        assert mesh_volume(mesh) == 0.0

    def test_empty(self):
        assert mesh_volume(None) == 0.0
        assert mesh_volume(BoundaryMesh.empty()) == 0.0

    def test_open_mesh_does_not_raise(self):
        mesh = BoundaryMesh.from_triangles(_make_box_triangles()[:10])
        assert np.isfinite(mesh_volume(mesh))

    def test_scene_volume(self):
        assert scene_volume([_box_mesh(), _box_mesh((2, 0, 0), (3, 1, 1))]) == pytest.approx(2.0)

    def test_interior_air_volume(self):
        walls = [_box_mesh(), _box_mesh((2, 0, 0), (3, 1, 1))]
        assert interior_air_volume(walls) == pytest.approx(1.0)
        assert interior_air_volume([]) == 0.0
