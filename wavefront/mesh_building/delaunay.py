"""
Delaunay Triangulation (Bowyer-Watson)

Incremental triangulation of the seeded points. Each insertion removes the
triangles whose circumcircle contains the new point and re-fans the cavity
from the point. The bad-triangle search is a brute-force vectorized scan,
which is fine at seed counts of a few thousand.
"""

import logging
from typing import Dict, List, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Super-triangle size relative to the point bounding box
SUPER_TRIANGLE_SCALE = 20.0

# Circumcircle used for degenerate (collinear) triangles
DEGENERATE_DENOM = 1e-12
DEGENERATE_RADIUS_SQ = 1e20


def compute_circumcircles(ax, ay, bx, by, cx, cy):
    """
    Circumcircle centres and squared radii of triangles (a, b, c).

    Works on scalars or arrays. A near-zero denominator (collinear corners)
    gives the centroid with a huge radius², so the triangle is never
    evicted by accident.

    Returns:
        Tuple of (center_x, center_y, radius_sq)
    """
    ax, ay, bx, by, cx, cy = (np.asarray(v, dtype=np.float64) for v in (ax, ay, bx, by, cx, cy))
    dax = ax - cx
    day = ay - cy
    dbx = bx - cx
    dby = by - cy

    denom = 2.0 * (dax * dby - day * dbx)
    degenerate = np.abs(denom) < DEGENERATE_DENOM
    safe = np.where(degenerate, 1.0, denom)

    da_sq = dax * dax + day * day
    db_sq = dbx * dbx + dby * dby

    ccx = cx + (da_sq * dby - db_sq * day) / safe
    ccy = cy + (db_sq * dax - da_sq * dbx) / safe
    dx = ax - ccx
    dy = ay - ccy
    r_sq = dx * dx + dy * dy

    ccx = np.where(degenerate, (ax + bx + cx) / 3.0, ccx)
    ccy = np.where(degenerate, (ay + by + cy) / 3.0, ccy)
    r_sq = np.where(degenerate, DEGENERATE_RADIUS_SQ, r_sq)
    return ccx, ccy, r_sq


class _TriangleStore:
    """Growable triangle arrays with circumcircles and an alive mask."""

    def __init__(self, capacity: int):
        self.tri = np.empty((capacity, 3), dtype=np.int64)
        self.ccx = np.empty(capacity)
        self.ccy = np.empty(capacity)
        self.rsq = np.empty(capacity)
        self.alive = np.zeros(capacity, dtype=bool)
        self.count = 0
        self.n_alive = 0

    def _grow(self, needed: int) -> None:
        capacity = len(self.tri)
        if self.count + needed <= capacity:
            return
        new_cap = max(capacity * 2, self.count + needed)
        self.tri = np.resize(self.tri, (new_cap, 3))
        self.ccx = np.resize(self.ccx, new_cap)
        self.ccy = np.resize(self.ccy, new_cap)
        self.rsq = np.resize(self.rsq, new_cap)
        alive = np.zeros(new_cap, dtype=bool)
        alive[:self.count] = self.alive[:self.count]
        self.alive = alive

    def append(self, tris: np.ndarray, ccx, ccy, rsq) -> None:
        m = len(tris)
        self._grow(m)
        s = slice(self.count, self.count + m)
        self.tri[s] = tris
        self.ccx[s] = ccx
        self.ccy[s] = ccy
        self.rsq[s] = rsq
        self.alive[s] = True
        self.count += m
        self.n_alive += m

    def kill(self, idx: np.ndarray) -> None:
        self.alive[idx] = False
        self.n_alive -= len(idx)

    def compact(self) -> None:
        """Drop dead triangles, keeping creation order."""
        keep = np.flatnonzero(self.alive[:self.count])
        m = len(keep)
        self.tri[:m] = self.tri[keep]
        self.ccx[:m] = self.ccx[keep]
        self.ccy[:m] = self.ccy[keep]
        self.rsq[:m] = self.rsq[keep]
        self.alive[:m] = True
        self.alive[m:] = False
        self.count = m
        self.n_alive = m


def super_triangle(points: np.ndarray) -> np.ndarray:
    """Three vertices enclosing the point bounding box at 20× its extent."""
    min_x, min_y = points.min(axis=0)
    max_x, max_y = points.max(axis=0)
    dmax = max(max_x - min_x, max_y - min_y)
    mid_x = (min_x + max_x) * 0.5
    mid_y = (min_y + max_y) * 0.5
    s = SUPER_TRIANGLE_SCALE
    return np.array([
        [mid_x - s * dmax, mid_y - dmax],
        [mid_x, mid_y + s * dmax],
        [mid_x + s * dmax, mid_y - dmax],
    ])


def delaunay_triangulate(points: np.ndarray) -> np.ndarray:
    """
    Bowyer-Watson Delaunay triangulation.

    Args:
        points: (n, 2) point coordinates

    Returns:
        (m, 3) int64 array of triangles referencing point indices
        (empty for fewer than 3 points)
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    n = len(points)
    if n < 3:
        return np.zeros((0, 3), dtype=np.int64)

    all_pts = np.vstack([points, super_triangle(points)])
    xs = all_pts[:, 0]
    ys = all_pts[:, 1]

    store = _TriangleStore(capacity=max(64, 4 * n))
    sx, sy = xs[n:], ys[n:]
    store.append(
        np.array([[n, n + 1, n + 2]]),
        *compute_circumcircles(sx[0], sy[0], sx[1], sy[1], sx[2], sy[2]),
    )

    for i in range(n):
        px = xs[i]
        py = ys[i]
        c = store.count

        ddx = px - store.ccx[:c]
        ddy = py - store.ccy[:c]
        bad = np.flatnonzero(store.alive[:c] & (ddx * ddx + ddy * ddy <= store.rsq[:c]))

        # Cavity boundary: edges of bad triangles not shared by another bad triangle
        edges: Dict[Tuple[int, int], List[int]] = {}
        for a, b, cc in store.tri[bad].tolist():
            for ea, eb in ((a, b), (b, cc), (cc, a)):
                key = (ea, eb) if ea < eb else (eb, ea)
                entry = edges.get(key)
                if entry is None:
                    edges[key] = [ea, eb, 1]
                else:
                    entry[2] += 1

        store.kill(bad)

        boundary = [(ea, eb) for ea, eb, count in edges.values() if count == 1]
        if boundary:
            new_tris = np.empty((len(boundary), 3), dtype=np.int64)
            new_tris[:, :2] = boundary
            new_tris[:, 2] = i
            store.append(new_tris, *compute_circumcircles(
                xs[new_tris[:, 0]], ys[new_tris[:, 0]],
                xs[new_tris[:, 1]], ys[new_tris[:, 1]],
                px, py,
            ))

        if store.count > 2 * store.n_alive + 64:
            store.compact()

    tris = store.tri[:store.count][store.alive[:store.count]]
    # Remove triangles that reference super-triangle vertices
    tris = tris[np.all(tris < n, axis=1)]

    logger.debug(f"Triangulated {n} points into {len(tris)} triangles")
    return tris
