"""Best-fit planes for rings and the 3D <-> 2D mapping onto them."""

from typing import Optional

import numpy as np

from .errors import DegeneratePlaneError, InvalidRingError
from .models import PlaneFrame


def dedup_ring_points(points) -> np.ndarray:
    """Drop consecutive duplicates and the repeated closing point of a ring.

    Returns an (m, 3) float64 array; m may be below 3.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) == 0:
        return points
    keep = np.ones(len(points), dtype=bool)
    keep[1:] = np.any(points[1:] != points[:-1], axis=1)
    points = points[keep]
    # Closing point repeated (possibly more than once)
    while len(points) > 1 and np.array_equal(points[0], points[-1]):
        points = points[:-1]
    return points


def clean_ring(points) -> np.ndarray:
    """Deduplicated ring points, rejecting rings that cannot bound an area.

    Args:
        points: (n, 3) array-like of ring points.

    Returns:
        (m, 3) float64 array with m >= 3.

    Raises:
        InvalidRingError: non-finite coordinates, or fewer than 3 points remain.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if not np.all(np.isfinite(points)):
        raise InvalidRingError("Ring has non-finite coordinates")
    if len(points) == 0:
        raise InvalidRingError("Ring is empty")

    points = dedup_ring_points(points)
    if len(points) < 3:
        raise InvalidRingError(f"Ring has {len(points)} distinct points, need at least 3")
    return points


def fit_plane(
    points,
    collinear_tolerance: float = 1e-9,
    planarity_tolerance: Optional[float] = None,
) -> PlaneFrame:
    """Least-squares best plane through a ring.

    The normal is the direction of least variance of the centred points
    (last right-singular vector). v is built as normal x u so that
    u x v == normal.

    Raises:
        DegeneratePlaneError: fewer than 3 distinct points, collinear points,
            out-of-plane spread above planarity_tolerance (relative to the
            largest in-plane spread), or coordinates too large to centre in
            float64.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if not np.all(np.isfinite(points)):
        raise DegeneratePlaneError("Ring has non-finite coordinates")
    if len(np.unique(points, axis=0)) < 3:
        raise DegeneratePlaneError("Fewer than 3 distinct points")

    with np.errstate(over="ignore", invalid="ignore"):
        origin = points.mean(axis=0)
        centered = points - origin
    if not (np.all(np.isfinite(origin)) and np.all(np.isfinite(centered))):
        raise DegeneratePlaneError("Ring coordinates overflow the plane fit")

    # Singular value ratios and directions are scale invariant
    scale = float(np.max(np.abs(centered)))
    try:
        _, s, vh = np.linalg.svd(centered / scale, full_matrices=False)
    except np.linalg.LinAlgError as exc:
        raise DegeneratePlaneError(f"Plane fit did not converge: {exc}") from exc

    if s[0] <= 0.0 or s[1] <= collinear_tolerance * s[0]:
        raise DegeneratePlaneError("Points are collinear")
    if planarity_tolerance is not None and s[2] > planarity_tolerance * s[0]:
        raise DegeneratePlaneError(
            f"Ring is not planar: out-of-plane spread {s[2] / s[0]:.3g} "
            f"exceeds {planarity_tolerance:.3g}"
        )

    u = vh[0] / np.linalg.norm(vh[0])
    normal = vh[2] / np.linalg.norm(vh[2])
    v = np.cross(normal, u)
    return PlaneFrame(origin=origin, u=u, v=v, normal=normal)


def project_points(points, frame: PlaneFrame) -> np.ndarray:
    """Map 3D points to plane coordinates; the offset along the normal is discarded."""
    rel = np.asarray(points, dtype=np.float64).reshape(-1, 3) - frame.origin
    return np.column_stack([rel @ frame.u, rel @ frame.v])


def unproject_points(points_2d, frame: PlaneFrame) -> np.ndarray:
    """Map plane coordinates back to 3D points lying on the plane."""
    pts = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
    return frame.origin + pts[:, 0:1] * frame.u + pts[:, 1:2] * frame.v


def signed_area_2d(points_2d) -> float:
    """Shoelace signed area; positive for counter-clockwise rings."""
    pts = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
    if len(pts) < 3:
        return 0.0
    x = pts[:, 0]
    y = pts[:, 1]
    return float(0.5 * (np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y)))
