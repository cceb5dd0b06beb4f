"""Pydantic return models and settings for core computation functions."""

from typing import Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import GeometryError


class PlaneFrame(BaseModel):
    """Best-fit plane of a ring: centroid origin and right-handed basis (u, v, normal)."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    origin: np.ndarray
    u: np.ndarray
    v: np.ndarray
    normal: np.ndarray

    @field_validator("origin", "u", "v", "normal", mode="before")
    @classmethod
    def must_be_3d(cls, value) -> np.ndarray:
        arr = np.asarray(value, dtype=np.float64)
        if arr.shape != (3,):
            raise ValueError(f"Plane vectors must have shape (3,), got {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise ValueError("Plane vectors must be finite")
        return arr


class TriangulationResult(BaseModel):
    """Material faces of a constrained triangulation, in plane coordinates."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    vertices: np.ndarray
    faces: np.ndarray
    ambiguous: int = 0

    @field_validator("vertices")
    @classmethod
    def vertices_must_be_2d(cls, v: np.ndarray) -> np.ndarray:
        if v.ndim != 2 or v.shape[1] != 2:
            raise ValueError(f"Vertices must have shape (n, 2), got {v.shape}")
        return v

    @field_validator("faces")
    @classmethod
    def faces_must_be_triangles(cls, v: np.ndarray) -> np.ndarray:
        if v.ndim != 2 or v.shape[1] != 3:
            raise ValueError(f"Faces must have shape (k, 3), got {v.shape}")
        return v


class RegenerationReport(BaseModel):
    """Counts of what a regeneration pass produced and what it had to skip."""

    objects: int = 0
    polygons: int = 0
    triangles: int = 0
    edges: int = 0
    invalid_rings: int = 0
    degenerate_planes: int = 0
    triangulation_failures: int = 0
    ambiguous_classifications: int = 0
    skipped_edge_rings: int = 0

    @property
    def failures(self) -> int:
        return self.invalid_rings + self.degenerate_planes + self.triangulation_failures

    def record(self, error: GeometryError) -> None:
        counter = getattr(error, "counter", "triangulation_failures")
        if counter not in type(self).model_fields:
            counter = "triangulation_failures"
        setattr(self, counter, getattr(self, counter) + 1)

    def merge(self, other: "RegenerationReport") -> "RegenerationReport":
        for name in type(self).model_fields:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        return self


class TessellationParams(BaseModel):
    """Tolerances for the polygon tessellation pipeline."""
    model_config = ConfigDict(validate_assignment=True)

    merge_tolerance: float = Field(default=1e-9, gt=0)
    collinear_tolerance: float = Field(default=1e-9, gt=0)
    planarity_tolerance: Optional[float] = Field(default=None, ge=0)
