"""Mesh assembly: polygons in, flat per-sub-type triangle buffers out."""

import logging
from typing import Optional

import numpy as np

from ..models import Polygon
from .errors import InvalidRingError, DegeneratePlaneError
from .models import RegenerationReport, TessellationParams
from .plane import (
    clean_ring,
    fit_plane,
    project_points,
    signed_area_2d,
    unproject_points,
)
from .triangulation import triangulate_constrained

logger = logging.getLogger(__name__)


def _orient_counter_clockwise(vertices_2d: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """Swap the last two corners of any clockwise face."""
    a = vertices_2d[faces[:, 0]]
    b = vertices_2d[faces[:, 1]]
    c = vertices_2d[faces[:, 2]]
    cross = (b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0])
    faces = faces.copy()
    cw = cross < 0
    faces[cw] = faces[cw][:, [0, 2, 1]]
    return faces


def tessellate_polygon(
    polygon: Polygon,
    params: Optional[TessellationParams] = None,
    report: Optional[RegenerationReport] = None,
) -> np.ndarray:
    """Triangulate one (possibly holed) 3D polygon.

    Fits a plane to the exterior ring, projects all rings onto it, builds the
    constrained triangulation and back-projects the material faces. Output
    winding follows the exterior ring: triangle normals point the way the
    ring's right-hand normal does.

    Args:
        polygon: Polygon with exterior and interior rings.
        params: Tolerances; defaults apply when None.
        report: Optional report; skipped holes and ambiguous
            classifications are counted on it.

    Returns:
        (k, 9) float64 array, one row per triangle (three xyz corners).

    Raises:
        InvalidRingError, DegeneratePlaneError, TriangulationError: the
            exterior ring cannot be triangulated. The polygon yields nothing.
    """
    params = params or TessellationParams()

    exterior = clean_ring(polygon.exterior.as_array())
    frame = fit_plane(
        exterior,
        collinear_tolerance=params.collinear_tolerance,
        planarity_tolerance=params.planarity_tolerance,
    )
    exterior_2d = project_points(exterior, frame)
    area = signed_area_2d(exterior_2d)
    if area == 0.0:
        raise DegeneratePlaneError("Exterior ring encloses no area")
    flip = area < 0

    holes_2d = []
    for index, interior in enumerate(polygon.interiors):
        try:
            hole = clean_ring(interior.as_array())
        except InvalidRingError as exc:
            logger.debug("Skipping interior ring %d: %s", index, exc)
            if report is not None:
                report.record(exc)
            continue
        holes_2d.append(project_points(hole, frame))

    result = triangulate_constrained(exterior_2d, holes_2d, merge_tolerance=params.merge_tolerance)
    if result.ambiguous and report is not None:
        report.ambiguous_classifications += 1

    if len(result.faces) == 0:
        return np.empty((0, 9), dtype=np.float64)

    faces = _orient_counter_clockwise(result.vertices, result.faces)
    if flip:
        faces = faces[:, [0, 2, 1]]

    points_3d = unproject_points(result.vertices, frame)
    return points_3d[faces].reshape(-1, 9)


def append_triangles(buffers: dict[int, list[float]], sub_type: int, triangles: np.ndarray) -> int:
    """Append triangles to the buffer for sub_type, creating it on first use.

    Returns the number of triangles appended.
    """
    triangles = np.asarray(triangles, dtype=np.float64).reshape(-1, 9)
    if len(triangles) == 0:
        return 0
    buffers.setdefault(sub_type, []).extend(triangles.ravel().tolist())
    return len(triangles)


def triangle_areas(buffer) -> np.ndarray:
    """Area of every triangle in a flat 9-floats-per-triangle buffer."""
    tris = np.asarray(buffer, dtype=np.float64).reshape(-1, 3, 3)
    cross = np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
    return 0.5 * np.linalg.norm(cross, axis=1)


def triangle_normals(buffer) -> np.ndarray:
    """Unnormalized right-hand normals of a flat triangle buffer."""
    tris = np.asarray(buffer, dtype=np.float64).reshape(-1, 3, 3)
    return np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
