"""Pydantic domain models for city features, rings and polygons."""

from enum import IntEnum

import numpy as np
from pydantic import BaseModel, Field, model_validator


class ObjectType(IntEnum):
    """Recognized top-level feature kinds."""

    BUILDING = 1
    ROAD = 2
    WATER_BODY = 3
    RELIEF_FEATURE = 4
    PLANT_COVER = 5
    GENERIC_CITY_OBJECT = 6
    BRIDGE = 7
    LAND_USE = 8


class SurfaceType(IntEnum):
    """Well-known sub-surface-type keys. Any non-negative int is accepted."""

    UNCLASSIFIED = 0
    ROOF = 1


class Point3(BaseModel):
    x: float
    y: float
    z: float

    @model_validator(mode="before")
    @classmethod
    def from_sequence(cls, data):
        if isinstance(data, (list, tuple, np.ndarray)):
            if len(data) != 3:
                raise ValueError(f"Point must have exactly 3 coordinates, got {len(data)}")
            return {"x": data[0], "y": data[1], "z": data[2]}
        return data

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)


class Ring(BaseModel):
    """Closed boundary. The last point implicitly connects back to the first."""

    points: list[Point3] = Field(default_factory=list)

    @classmethod
    def from_array(cls, points) -> "Ring":
        arr = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return cls(points=[Point3(x=p[0], y=p[1], z=p[2]) for p in arr.tolist()])

    def __len__(self) -> int:
        return len(self.points)

    def as_array(self) -> np.ndarray:
        """All points as an (n, 3) float64 array."""
        return np.array([p.as_tuple() for p in self.points], dtype=np.float64).reshape(-1, 3)


class Polygon(BaseModel):
    exterior: Ring
    interiors: list[Ring] = Field(default_factory=list)

    def rings(self) -> list[Ring]:
        return [self.exterior, *self.interiors]


class FeatureRecord(BaseModel):
    """One polygon of a feature, as emitted by the markup front end."""

    object_id: str
    object_type: ObjectType
    sub_type: int = Field(default=0, ge=0)
    exterior: Ring
    interiors: list[Ring] = Field(default_factory=list)

    def to_polygon(self) -> Polygon:
        return Polygon(exterior=self.exterior, interiors=self.interiors)


class RingRecord(BaseModel):
    """A free-standing ring that only contributes wireframe edges."""

    object_id: str
    object_type: ObjectType
    ring: Ring
