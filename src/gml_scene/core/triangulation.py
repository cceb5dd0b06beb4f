"""Constrained triangulation of holed polygons in plane coordinates.

The exterior and hole boundaries are inserted as constraint segments into a
triangulation of their convex hull. Faces are then classified by walking the
face adjacency from the unbounded outer face with an explicit queue: crossing
a constraint edge toggles the inside-exterior or inside-hole bit (ray parity),
and a face is material when it is inside the exterior and not inside a hole.
"""

import logging
from collections import defaultdict, deque

import numpy as np
import triangle
from scipy.spatial import cKDTree

from .errors import TriangulationError
from .models import TriangulationResult

logger = logging.getLogger(__name__)

# Segment markers; Triangle reserves 0 and 1 for unmarked and hull segments.
EXTERIOR_MARKER = 2
HOLE_MARKER = 3

# p: constrained (PSLG), c: triangulate the convex hull, n: neighbour list, Q: quiet
TRIANGLE_SWITCHES = "pcnQ"


def _merge_coincident(vertices: np.ndarray, tolerance: float) -> tuple[np.ndarray, np.ndarray]:
    """Merge points closer than tolerance.

    Returns:
        (unique_vertices, index_map) where index_map[i] is the new index of
        input vertex i.
    """
    n = len(vertices)
    remap = list(range(n))
    tree = cKDTree(vertices)
    for i, j in tree.query_pairs(r=tolerance):
        lo, hi = min(i, j), max(i, j)
        # Attach to the smallest representative of both chains
        root_lo, root_hi = remap[lo], remap[hi]
        while root_lo != remap[root_lo]:
            root_lo = remap[root_lo]
        while root_hi != remap[root_hi]:
            root_hi = remap[root_hi]
        if root_lo != root_hi:
            remap[max(root_lo, root_hi)] = min(root_lo, root_hi)
    for i in range(n):
        while remap[i] != remap[remap[i]]:
            remap[i] = remap[remap[i]]

    keep = [i for i in range(n) if remap[i] == i]
    old_to_new = {old: new for new, old in enumerate(keep)}
    index_map = np.array([old_to_new[remap[i]] for i in range(n)], dtype=np.int64)
    return vertices[keep], index_map


def _edge_key(a: int, b: int) -> tuple[int, int]:
    return (a, b) if a < b else (b, a)


def _split_at_vertices(vertices: np.ndarray, a: int, b: int, tolerance: float) -> list[int]:
    """Vertex chain from a to b through every vertex lying on segment ab.

    Triangle splits a constraint at any input vertex it passes through, so
    the parity counts have to be taken over the same pieces.
    """
    pa = vertices[a]
    d = vertices[b] - pa
    length_sq = float(d @ d)
    rel = vertices - pa
    t = rel @ d / length_sq
    dist = np.abs(d[0] * rel[:, 1] - d[1] * rel[:, 0]) / np.sqrt(length_sq)
    on_segment = (t > 0.0) & (t < 1.0) & (dist <= tolerance)
    on_segment[[a, b]] = False
    inner = np.flatnonzero(on_segment)
    inner = inner[np.argsort(t[inner], kind="stable")]
    return [a, *(int(i) for i in inner), b]


def _constraint_toggles(rings_2d: list[np.ndarray], merge_tolerance: float):
    """Assemble vertices, constraint segments and per-edge parity toggles.

    Ring edges are split at every vertex lying on them, so an exterior edge
    running along a hole edge shares its pieces' keys with the hole.

    Returns:
        (vertices, segments, markers, toggles) where toggles maps an edge key
        to (exterior_bit, hole_bit).
    """
    all_points = np.vstack(rings_2d)
    extent = float(np.max(np.ptp(all_points, axis=0)))
    if not np.isfinite(extent) or extent <= 0.0:
        raise TriangulationError("Boundary has zero extent")

    tolerance = merge_tolerance * extent
    vertices, index_map = _merge_coincident(all_points, tolerance)

    segments = []
    markers = []
    counts = defaultdict(lambda: [0, 0])
    offset = 0
    for ring_index, ring in enumerate(rings_2d):
        n = len(ring)
        marker = EXTERIOR_MARKER if ring_index == 0 else HOLE_MARKER
        for k in range(n):
            a = int(index_map[offset + k])
            b = int(index_map[offset + (k + 1) % n])
            if a == b:
                continue
            chain = _split_at_vertices(vertices, a, b, tolerance)
            for p, q in zip(chain[:-1], chain[1:]):
                segments.append([p, q])
                markers.append(marker)
                counts[_edge_key(p, q)][0 if ring_index == 0 else 1] += 1
        offset += n

    toggles = {key: (c[0] % 2, c[1] % 2) for key, c in counts.items()}
    return vertices, segments, markers, toggles


def _classify_faces(triangles: list, neighbors: list, toggles: dict) -> tuple[np.ndarray, int]:
    """Tag faces by walking adjacency from the outer face.

    Each face is enqueued at most once, so the work list is bounded by the
    face count. Returns (material_mask, ambiguous_adjacencies).
    """
    n = len(triangles)
    tags: list = [None] * n
    ambiguous = 0
    queue = deque()

    def crossing(face: int, j: int) -> tuple[int, int]:
        tri = triangles[face]
        return toggles.get(_edge_key(tri[(j + 1) % 3], tri[(j + 2) % 3]), (0, 0))

    # Hull faces border the unbounded outer face, tagged (0, 0)
    for f in range(n):
        for j in range(3):
            if neighbors[f][j] >= 0:
                continue
            tag = crossing(f, j)
            if tags[f] is None:
                tags[f] = tag
                queue.append(f)
            elif tags[f] != tag:
                ambiguous += 1

    while queue:
        f = queue.popleft()
        ext, hole = tags[f]
        for j in range(3):
            g = neighbors[f][j]
            if g < 0:
                continue
            d_ext, d_hole = crossing(f, j)
            expected = (ext ^ d_ext, hole ^ d_hole)
            if tags[g] is None:
                tags[g] = expected
                queue.append(g)
            elif tags[g] != expected and f < g:
                ambiguous += 1

    material = np.array([t is not None and t[0] == 1 and t[1] == 0 for t in tags], dtype=bool)
    return material, ambiguous


def triangulate_constrained(
    exterior_2d,
    holes_2d=(),
    merge_tolerance: float = 1e-9,
) -> TriangulationResult:
    """Triangulate an exterior boundary with holes and keep the material faces.

    Args:
        exterior_2d: (n, 2) exterior ring in plane coordinates, implicitly closed.
        holes_2d: Iterable of (m, 2) hole rings.
        merge_tolerance: Points closer than this fraction of the boundary
            extent are treated as one vertex.

    Returns:
        TriangulationResult with all triangulation vertices and the material
        faces as counter-clockwise index triplets.

    Raises:
        TriangulationError: fewer than 3 distinct vertices, collinear input,
            or the triangulator itself failed.
    """
    rings = [np.asarray(exterior_2d, dtype=np.float64).reshape(-1, 2)]
    rings.extend(np.asarray(h, dtype=np.float64).reshape(-1, 2) for h in holes_2d)
    rings = [r for r in rings if len(r) > 0]
    if not rings or len(rings[0]) < 3:
        raise TriangulationError("Exterior boundary needs at least 3 points")

    vertices, segments, markers, toggles = _constraint_toggles(rings, merge_tolerance)

    # Triangle exits the process on these inputs, so reject them first
    if len(vertices) < 3:
        raise TriangulationError(f"Only {len(vertices)} distinct vertices after merging")
    spread = np.linalg.svd(vertices - vertices.mean(axis=0), compute_uv=False)
    if spread[1] <= 1e-12 * spread[0]:
        raise TriangulationError("All vertices are collinear")
    if not segments:
        raise TriangulationError("No constraint segments remain after merging")

    try:
        out = triangle.triangulate(
            {
                "vertices": vertices,
                "segments": np.array(segments, dtype=np.int32),
                "segment_markers": np.array(markers, dtype=np.int32).reshape(-1, 1),
            },
            TRIANGLE_SWITCHES,
        )
    except Exception as exc:
        raise TriangulationError(f"Triangulator failed: {exc}") from exc

    faces = out.get("triangles")
    neighbors = out.get("neighbors")
    if faces is None or neighbors is None or len(faces) == 0:
        raise TriangulationError("Triangulator produced no faces")

    # Pieces of segments split where two constraints cross keep their marker
    out_segments = out.get("segments")
    out_markers = out.get("segment_markers")
    if out_segments is not None and out_markers is not None:
        for (a, b), marker in zip(out_segments.tolist(), np.ravel(out_markers).tolist()):
            key = _edge_key(a, b)
            if key in toggles:
                continue
            if marker == EXTERIOR_MARKER:
                toggles[key] = (1, 0)
            elif marker == HOLE_MARKER:
                toggles[key] = (0, 1)

    material, ambiguous = _classify_faces(faces.tolist(), neighbors.tolist(), toggles)
    if ambiguous:
        logger.debug("Face classification met %d inconsistent adjacencies", ambiguous)

    return TriangulationResult(
        vertices=np.asarray(out["vertices"], dtype=np.float64),
        faces=np.asarray(faces, dtype=np.int64)[material].reshape(-1, 3),
        ambiguous=ambiguous,
    )
