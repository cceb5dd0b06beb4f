"""Tests for the scene model: ownership, regeneration and failure isolation."""

import logging

import numpy as np
import pytest

from gml_scene.core.mesh import triangle_areas
from gml_scene.models import (
    FeatureRecord,
    ObjectType,
    Polygon,
    Ring,
    RingRecord,
    SurfaceType,
)
from gml_scene.state import SceneModel


SQUARE = [[0, 0, 0], [4, 0, 0], [4, 4, 0], [0, 4, 0]]
HOLE = [[1, 1, 0], [3, 1, 0], [3, 3, 0], [1, 3, 0]]


def _polygon(exterior, *interiors) -> Polygon:
    return Polygon(
        exterior=Ring.from_array(exterior),
        interiors=[Ring.from_array(r) for r in interiors],
    )


class TestObjects:
    def test_add_object(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        assert scene.get_object("b1") is obj
        assert list(scene.objects) == ["b1"]

    def test_duplicate_id_rejected(self):
        scene = SceneModel()
        scene.add_object("b1", ObjectType.BUILDING)
        with pytest.raises(ValueError):
            scene.add_object("b1", ObjectType.ROAD)

    def test_missing_object(self):
        assert SceneModel().get_object("nope") is None

    def test_add_polygon_updates_bounds(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon([[1, 2, 3], [-1, 5, 0], [0, 0, 10]]))
        assert scene.bounds.min_coordinates == [-1.0, 0.0, 0.0]
        assert scene.bounds.max_coordinates == [1.0, 5.0, 10.0]

    def test_add_edge_ring_updates_bounds(self):
        scene = SceneModel()
        obj = scene.add_object("t1", ObjectType.RELIEF_FEATURE)
        scene.add_edge_ring(obj, Ring.from_array([[0, 0, -3], [1, 0, 0], [0, 1, 0]]))
        assert scene.bounds.min_coordinates[2] == -3.0

    def test_negative_sub_type_rejected(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        with pytest.raises(ValueError):
            scene.add_polygon(obj, _polygon(SQUARE), sub_type=-2)


class TestRegenerateTriangles:
    def test_square_with_hole(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon(SQUARE, HOLE))
        report = scene.regenerate_triangles_for(obj)
        assert triangle_areas(obj.triangles_by_type[0]).sum() == pytest.approx(12.0)
        assert report.polygons == 1
        assert report.triangles == obj.triangle_count()

    def test_buffers_keyed_by_sub_type(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon(SQUARE))
        roof = [[0, 0, 3], [4, 0, 3], [4, 4, 3], [0, 4, 3]]
        scene.add_polygon(obj, _polygon(roof), sub_type=SurfaceType.ROOF)
        scene.regenerate_triangles_for(obj)
        assert set(obj.triangles_by_type) == {0, 1}
        np.testing.assert_allclose(obj.triangle_array(SurfaceType.ROOF)[:, 2], 3.0)

    def test_buffer_lengths_are_multiples_of_nine(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon(SQUARE, HOLE))
        scene.add_polygon(obj, _polygon([[0, 0, 0], [2, 2, 0], [2, 0, 0], [0, 2, 0]]))
        scene.regenerate_triangles_for(obj)
        for buffer in obj.triangles_by_type.values():
            assert len(buffer) % 9 == 0

    def test_idempotent(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon(SQUARE, HOLE))
        scene.add_polygon(obj, _polygon([[0, 0, 0], [0, 0, 3], [4, 0, 3], [4, 0, 0]]), 1)
        scene.regenerate_triangles_for(obj)
        first = {k: np.array(v).tobytes() for k, v in obj.triangles_by_type.items()}
        scene.regenerate_triangles_for(obj)
        second = {k: np.array(v).tobytes() for k, v in obj.triangles_by_type.items()}
        assert first == second

    def test_rebuilds_rather_than_appends(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon(SQUARE))
        scene.regenerate_triangles_for(obj)
        scene.regenerate_triangles_for(obj)
        assert obj.triangle_count() == 2

    def test_invalid_ring_does_not_affect_siblings(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon([[0, 0, 0], [1, 0, 0]]))
        scene.add_polygon(obj, _polygon(SQUARE))
        report = scene.regenerate_triangles_for(obj)
        assert report.invalid_rings == 1
        assert report.polygons == 2
        assert triangle_areas(obj.triangles_by_type[0]).sum() == pytest.approx(16.0)

    def test_degenerate_only_sub_type_has_no_buffer(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon([[0, 0, 0], [1, 0, 0], [2, 0, 0]]), sub_type=1)
        scene.add_polygon(obj, _polygon(SQUARE))
        report = scene.regenerate_triangles_for(obj)
        assert report.degenerate_planes == 1
        assert 1 not in obj.triangles_by_type
        assert obj.triangle_count(0) == 2

    def test_overflowing_coordinates_counted_as_degenerate(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon([[1.5e308, 0, 0], [1.5e308, 1e308, 0], [0, 1e308, 0]]))
        scene.add_polygon(obj, _polygon(SQUARE))
        report = scene.regenerate_triangles_for(obj)
        assert report.degenerate_planes == 1
        assert report.failures == 1
        assert obj.triangle_count(0) == 2

    def test_planarity_tolerance_from_params(self):
        scene = SceneModel()
        scene.params.planarity_tolerance = 0.01
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon([[0, 0, 0], [1, 0, 0], [1, 1, 1], [0, 1, 0]]))
        report = scene.regenerate_triangles_for(obj)
        assert report.degenerate_planes == 1
        assert obj.triangles_by_type == {}


class TestRegenerateEdges:
    def test_edge_buffer_length(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        tri_hole = [[1, 1, 0], [2, 1, 0], [1.5, 2, 0]]
        scene.add_polygon(obj, _polygon(SQUARE, HOLE, tri_hole))
        report = scene.regenerate_edges_for(obj)
        assert len(obj.edges) == 6 * (4 + 4 + 3)
        assert report.edges == 11

    def test_edges_span_all_sub_types_and_edge_rings(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon(SQUARE))
        scene.add_polygon(obj, _polygon(SQUARE), sub_type=1)
        scene.add_edge_ring(obj, Ring.from_array([[0, 0, 9], [1, 0, 9], [1, 1, 9]]))
        scene.regenerate_edges_for(obj)
        assert obj.edge_count() == 4 + 4 + 3

    def test_degenerate_ring_contributes_no_edges(self):
        scene = SceneModel()
        obj = scene.add_object("b1", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon([[0, 0, 0], [1, 0, 0]]))
        scene.add_polygon(obj, _polygon(SQUARE))
        report = scene.regenerate_edges_for(obj)
        assert obj.edge_count() == 4
        assert report.skipped_edge_rings == 1


class TestRegenerateAll:
    def test_all_objects(self):
        scene = SceneModel()
        a = scene.add_object("a", ObjectType.BUILDING)
        b = scene.add_object("b", ObjectType.WATER_BODY)
        scene.add_polygon(a, _polygon(SQUARE, HOLE))
        scene.add_polygon(b, _polygon(SQUARE))
        report = scene.regenerate_all()
        assert report.objects == 2
        assert report.triangles == a.triangle_count() + b.triangle_count()
        assert report.edges == 12
        assert scene.last_report == report
        assert len(a.edges) % 6 == 0 and len(b.edges) % 6 == 0

    def test_failures_logged(self, caplog):
        scene = SceneModel()
        obj = scene.add_object("a", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon([[0, 0, 0], [1, 0, 0]]))
        with caplog.at_level(logging.WARNING, logger="gml_scene.state"):
            report = scene.regenerate_all()
        assert report.failures == 1
        assert "invalid rings" in caplog.text

    def test_empty_scene(self):
        report = SceneModel().regenerate_all()
        assert report.objects == 0
        assert report.failures == 0


class TestClear:
    def test_clear_drops_objects_and_bounds(self):
        scene = SceneModel()
        obj = scene.add_object("a", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon(SQUARE))
        scene.regenerate_all()
        scene.clear()
        assert scene.objects == {}
        assert scene.bounds.is_set is False
        assert scene.last_report.triangles == 0

    def test_bounds_do_not_shrink_without_clear(self):
        scene = SceneModel()
        obj = scene.add_object("a", ObjectType.BUILDING)
        scene.add_polygon(obj, _polygon([[0, 0, 0], [100, 0, 0], [100, 100, 0]]))
        del scene.objects["a"]
        assert scene.bounds.max_coordinates == [100.0, 100.0, 0.0]


class TestIngest:
    def _records(self):
        return [
            FeatureRecord(
                object_id="b1", object_type=ObjectType.BUILDING,
                exterior=Ring.from_array(SQUARE), interiors=[Ring.from_array(HOLE)],
            ),
            FeatureRecord(
                object_id="b1", object_type=ObjectType.BUILDING, sub_type=SurfaceType.ROOF,
                exterior=Ring.from_array([[0, 0, 3], [4, 0, 3], [4, 4, 3], [0, 4, 3]]),
            ),
            RingRecord(
                object_id="t1", object_type=ObjectType.RELIEF_FEATURE,
                ring=Ring.from_array([[0, 0, -1], [5, 0, -1], [5, 5, -1]]),
            ),
        ]

    def test_groups_by_object_id(self):
        scene = SceneModel()
        assert scene.ingest(self._records()) == 3
        assert list(scene.objects) == ["b1", "t1"]
        assert len(scene.objects["b1"].polygons_by_type[0]) == 1
        assert len(scene.objects["b1"].polygons_by_type[1]) == 1
        assert len(scene.objects["t1"].edge_rings) == 1

    def test_accepts_generator(self):
        scene = SceneModel()
        scene.ingest(r for r in self._records())
        assert scene.bounds.min_coordinates == [0.0, 0.0, -1.0]
        assert scene.bounds.max_coordinates == [5.0, 5.0, 3.0]

    def test_type_mismatch_keeps_first(self, caplog):
        scene = SceneModel()
        records = self._records()[:1] + [
            FeatureRecord(object_id="b1", object_type=ObjectType.BRIDGE, exterior=Ring.from_array(SQUARE))
        ]
        with caplog.at_level(logging.WARNING, logger="gml_scene.state"):
            scene.ingest(records)
        assert scene.objects["b1"].type is ObjectType.BUILDING
        assert "BRIDGE" in caplog.text


class TestSummary:
    def test_summary(self):
        scene = SceneModel()
        scene.ingest(TestIngest()._records())
        scene.regenerate_all()
        s = scene.summary()
        assert s["objects"]["count"] == 2
        assert s["objects"]["by_type"] == {"BUILDING": 1, "RELIEF_FEATURE": 1}
        assert s["geometry"]["polygons"] == 2
        assert s["geometry"]["edges"] == 4 + 4 + 4 + 3
        assert s["bounds"]["min"] == [0.0, 0.0, -1.0]

    def test_summary_empty(self):
        s = SceneModel().summary()
        assert s["bounds"] == {"bounds_set": False}
        assert s["objects"]["count"] == 0
