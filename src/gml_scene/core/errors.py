"""Geometry failure kinds raised by the tessellation pipeline.

All of them are local to one ring or polygon: the scene catches them per
polygon, counts them on a RegenerationReport and carries on.
"""


class GeometryError(ValueError):
    """Base class for per-ring and per-polygon geometry failures."""

    counter = "failures"


class InvalidRingError(GeometryError):
    """Fewer than 3 usable points, or non-finite coordinates."""

    counter = "invalid_rings"


class DegeneratePlaneError(GeometryError):
    """No well-defined best plane: collinear, too few distinct points, or too warped."""

    counter = "degenerate_planes"


class TriangulationError(GeometryError):
    """The constrained triangulation could not be built."""

    counter = "triangulation_failures"
