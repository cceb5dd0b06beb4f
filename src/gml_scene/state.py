"""Scene state: city objects, their derived buffers and the global bounds.

The scene owns every object. Triangle and edge buffers are derived data,
rebuilt from the objects' polygons on regeneration and never patched in
place.
"""

import logging
import math
from typing import Iterable, Optional, Union

import numpy as np
from pydantic import BaseModel, Field, ConfigDict

from gml_scene.core.errors import GeometryError
from gml_scene.core.edges import extract_edges
from gml_scene.core.mesh import append_triangles, tessellate_polygon
from gml_scene.core.models import RegenerationReport, TessellationParams
from gml_scene.models import FeatureRecord, ObjectType, Polygon, Ring, RingRecord

logger = logging.getLogger(__name__)


class Bounds(BaseModel):
    """Running component-wise min/max of every point ingested since the last reset."""
    model_config = ConfigDict(validate_assignment=True)

    min_coordinates: list[float] = Field(default_factory=lambda: [math.inf] * 3)
    max_coordinates: list[float] = Field(default_factory=lambda: [-math.inf] * 3)

    @property
    def is_set(self) -> bool:
        return all(lo <= hi for lo, hi in zip(self.min_coordinates, self.max_coordinates))

    @property
    def size(self) -> list[float]:
        if not self.is_set:
            return [0.0, 0.0, 0.0]
        return [hi - lo for lo, hi in zip(self.min_coordinates, self.max_coordinates)]

    @property
    def center(self) -> list[float]:
        if not self.is_set:
            return [0.0, 0.0, 0.0]
        return [(lo + hi) / 2 for lo, hi in zip(self.min_coordinates, self.max_coordinates)]

    def include(self, points) -> None:
        """Grow the box to contain points (a single xyz or an (n, 3) array).

        Non-finite points are ignored.
        """
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        pts = pts[np.all(np.isfinite(pts), axis=1)]
        if len(pts) == 0:
            return
        self.min_coordinates = np.minimum(self.min_coordinates, pts.min(axis=0)).tolist()
        self.max_coordinates = np.maximum(self.max_coordinates, pts.max(axis=0)).tolist()

    def reset(self) -> None:
        self.min_coordinates = [math.inf] * 3
        self.max_coordinates = [-math.inf] * 3


class CityObject(BaseModel):
    id: str
    type: ObjectType
    polygons_by_type: dict[int, list[Polygon]] = Field(default_factory=dict)
    edge_rings: list[Ring] = Field(default_factory=list)
    triangles_by_type: dict[int, list[float]] = Field(default_factory=dict)
    edges: list[float] = Field(default_factory=list)

    def polygons(self) -> list[Polygon]:
        return [p for polygons in self.polygons_by_type.values() for p in polygons]

    def rings(self) -> list[Ring]:
        """Every polygon ring (exterior first, then holes) followed by the edge-only rings."""
        rings = [ring for polygon in self.polygons() for ring in polygon.rings()]
        rings.extend(self.edge_rings)
        return rings

    def triangle_count(self, sub_type: Optional[int] = None) -> int:
        if sub_type is not None:
            return len(self.triangles_by_type.get(sub_type, [])) // 9
        return sum(len(buf) for buf in self.triangles_by_type.values()) // 9

    def edge_count(self) -> int:
        return len(self.edges) // 6

    def triangle_array(self, sub_type: int = 0) -> np.ndarray:
        """Vertices of one sub-type's triangles as an (n, 3) float32 array."""
        return np.asarray(self.triangles_by_type.get(sub_type, []), dtype=np.float32).reshape(-1, 3)

    def edge_array(self) -> np.ndarray:
        """Segment endpoints as an (n, 3) float32 array."""
        return np.asarray(self.edges, dtype=np.float32).reshape(-1, 3)


class SceneModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    objects: dict[str, CityObject] = Field(default_factory=dict)
    bounds: Bounds = Field(default_factory=Bounds)
    params: TessellationParams = Field(default_factory=TessellationParams)
    last_report: RegenerationReport = Field(default_factory=RegenerationReport)

    def add_object(self, object_id: str, object_type: ObjectType) -> CityObject:
        if object_id in self.objects:
            raise ValueError(f"Object '{object_id}' already exists")
        obj = CityObject(id=object_id, type=object_type)
        self.objects[object_id] = obj
        return obj

    def get_object(self, object_id: str) -> Optional[CityObject]:
        return self.objects.get(object_id)

    def add_polygon(self, obj: CityObject, polygon: Polygon, sub_type: int = 0) -> None:
        if sub_type < 0:
            raise ValueError(f"Sub-type must be non-negative, got {sub_type}")
        obj.polygons_by_type.setdefault(sub_type, []).append(polygon)
        for ring in polygon.rings():
            self.bounds.include(ring.as_array())

    def add_edge_ring(self, obj: CityObject, ring: Ring) -> None:
        obj.edge_rings.append(ring)
        self.bounds.include(ring.as_array())

    def ingest(self, records: Iterable[Union[FeatureRecord, RingRecord]]) -> int:
        """Consume front-end records, creating objects the first time their id appears.

        Returns the number of records ingested.
        """
        count = 0
        for record in records:
            obj = self.objects.get(record.object_id)
            if obj is None:
                obj = self.add_object(record.object_id, record.object_type)
            elif obj.type != record.object_type:
                logger.warning(
                    "Record for %s has type %s but the object is %s; keeping %s",
                    record.object_id, record.object_type.name, obj.type.name, obj.type.name,
                )
            if isinstance(record, RingRecord):
                self.add_edge_ring(obj, record.ring)
            else:
                self.add_polygon(obj, record.to_polygon(), record.sub_type)
            count += 1
        return count

    def regenerate_triangles_for(self, obj: CityObject) -> RegenerationReport:
        """Rebuild every triangle buffer of obj from its polygons."""
        report = RegenerationReport()
        buffers: dict[int, list[float]] = {}
        for sub_type, polygons in obj.polygons_by_type.items():
            for index, polygon in enumerate(polygons):
                report.polygons += 1
                try:
                    triangles = tessellate_polygon(polygon, self.params, report)
                except GeometryError as exc:
                    report.record(exc)
                    logger.debug(
                        "Skipping polygon %d (sub-type %d) of %s: %s", index, sub_type, obj.id, exc
                    )
                    continue
                report.triangles += append_triangles(buffers, sub_type, triangles)
        obj.triangles_by_type = buffers
        return report

    def regenerate_edges_for(self, obj: CityObject) -> RegenerationReport:
        """Rebuild the edge buffer of obj from all of its rings."""
        report = RegenerationReport()
        obj.edges = extract_edges(obj.rings(), report)
        return report

    def regenerate_all(self) -> RegenerationReport:
        report = RegenerationReport()
        for obj in self.objects.values():
            report.objects += 1
            report.merge(self.regenerate_triangles_for(obj))
            report.merge(self.regenerate_edges_for(obj))
        self.last_report = report

        if report.failures:
            logger.warning(
                "Regeneration skipped geometry: %d invalid rings, %d degenerate planes, "
                "%d triangulation failures",
                report.invalid_rings, report.degenerate_planes, report.triangulation_failures,
            )
        logger.info(
            "Regenerated %d objects: %d triangles, %d edges",
            report.objects, report.triangles, report.edges,
        )
        return report

    def clear(self) -> None:
        self.objects.clear()
        self.bounds.reset()
        self.last_report = RegenerationReport()

    def summary(self) -> dict:
        return {
            "objects": {
                "count": len(self.objects),
                "by_type": {
                    t.name: sum(1 for o in self.objects.values() if o.type == t)
                    for t in ObjectType
                    if any(o.type == t for o in self.objects.values())
                },
            },
            "geometry": {
                "polygons": sum(len(o.polygons()) for o in self.objects.values()),
                "triangles": sum(o.triangle_count() for o in self.objects.values()),
                "edges": sum(o.edge_count() for o in self.objects.values()),
            },
            "bounds": {
                "min": self.bounds.min_coordinates,
                "max": self.bounds.max_coordinates,
            } if self.bounds.is_set else {"bounds_set": False},
            "last_report": self.last_report.model_dump(),
        }
