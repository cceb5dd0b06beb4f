"""Wireframe edges from ring boundaries."""

import logging
from typing import Iterable, Optional

import numpy as np

from ..models import Ring
from .models import RegenerationReport
from .plane import dedup_ring_points

logger = logging.getLogger(__name__)


def ring_segments(ring: Ring) -> np.ndarray:
    """Consecutive point pairs plus the closing pair, as (n, 6) rows.

    Repeated points are dropped first, the same way the triangle pass does,
    so no zero-length segment is emitted. Rings with fewer than 3 distinct
    points yield no segments.
    """
    points = dedup_ring_points(ring.as_array())
    if len(points) < 3:
        return np.empty((0, 6), dtype=np.float64)
    return np.hstack([points, np.roll(points, -1, axis=0)])


def extract_edges(rings: Iterable[Ring], report: Optional[RegenerationReport] = None) -> list[float]:
    """Flat edge buffer (6 floats per segment) over all given rings.

    Shared edges between neighbouring polygons are not deduplicated.
    """
    edges: list[float] = []
    for ring in rings:
        segments = ring_segments(ring)
        if len(segments) == 0:
            logger.debug("Ring with %d points contributes no edges", len(ring))
            if report is not None:
                report.skipped_edge_rings += 1
            continue
        edges.extend(segments.ravel().tolist())
    if report is not None:
        report.edges += len(edges) // 6
    return edges
