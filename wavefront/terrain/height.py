"""
Terrain Height Queries

CPU evaluation of the contour-tree terrain height field. The same algorithm
runs in the terrain shader; this version is used by the mesh builders.

Algorithm:
1. Find the deepest contour containing the point using DFS skip traversal
2. If no contour contains the point, return default_depth
3. If the deepest contour has no children, return its height directly
4. Otherwise, IDW blend between parent and children using boundary distances
"""

from typing import Union

import numpy as np
from numba import njit, prange

from ..constants import IDW_MIN_DIST
from ..utils import serial_kernels_enabled
from .snapshot import TerrainSnapshot


# =============================================================================
# Polygon Kernels
# =============================================================================

@njit(cache=True)
def point_left_of_segment(ax, ay, bx, by, px, py):
    """Cross product of (b - a) and (p - a). Positive when p is left of a→b."""
    return (bx - ax) * (py - ay) - (px - ax) * (by - ay)


@njit(cache=True)
def point_to_segment_distance_sq(px, py, ax, ay, bx, by):
    """Squared distance from point p to segment [a, b]."""
    abx = bx - ax
    aby = by - ay
    length_sq = abx * abx + aby * aby

    if length_sq == 0.0:
        dx = px - ax
        dy = py - ay
        return dx * dx + dy * dy

    t = ((px - ax) * abx + (py - ay) * aby) / length_sq
    if t < 0.0:
        t = 0.0
    elif t > 1.0:
        t = 1.0
    dx = px - (ax + t * abx)
    dy = py - (ay + t * aby)
    return dx * dx + dy * dy


@njit(cache=True)
def is_inside_contour(x, y, ci, vertex_data, point_start, point_count, bbox):
    """
    Winding-number containment test with bounding-box early-out.

    Args:
        x, y: Query point
        ci: Contour index
        vertex_data: Interleaved contour vertices
        point_start, point_count: Per-contour vertex ranges
        bbox: (n_contours, 4) bounding boxes

    Returns:
        True if the point is inside contour ci
    """
    if x < bbox[ci, 0] or x > bbox[ci, 2] or y < bbox[ci, 1] or y > bbox[ci, 3]:
        return False

    n = point_count[ci]
    start = point_start[ci]
    winding = 0

    prev = (start + n - 1) * 2
    ay = np.float64(vertex_data[prev + 1])

    for i in range(n):
        cur = (start + i) * 2
        by = np.float64(vertex_data[cur + 1])

        if ay <= y:
            if by > y:
                ax = np.float64(vertex_data[prev])
                bx = np.float64(vertex_data[cur])
                if (bx - ax) * (y - ay) - (x - ax) * (by - ay) > 0.0:
                    winding += 1
        else:
            if by <= y:
                ax = np.float64(vertex_data[prev])
                bx = np.float64(vertex_data[cur])
                if (bx - ax) * (y - ay) - (x - ax) * (by - ay) < 0.0:
                    winding -= 1

        prev = cur
        ay = by

    return winding != 0


@njit(cache=True)
def distance_to_boundary(x, y, ci, vertex_data, point_start, point_count):
    """Minimum distance from (x, y) to the boundary of contour ci."""
    n = point_count[ci]
    start = point_start[ci]
    min_dist_sq = 1e20

    prev = (start + n - 1) * 2
    ax = np.float64(vertex_data[prev])
    ay = np.float64(vertex_data[prev + 1])

    for i in range(n):
        cur = (start + i) * 2
        bx = np.float64(vertex_data[cur])
        by = np.float64(vertex_data[cur + 1])

        d = point_to_segment_distance_sq(x, y, ax, ay, bx, by)
        if d < min_dist_sq:
            min_dist_sq = d

        ax = bx
        ay = by

    return np.sqrt(min_dist_sq)


# =============================================================================
# Terrain Height
# =============================================================================

@njit(cache=True)
def terrain_height_kernel(
    x, y,
    vertex_data, children_data,
    point_start, point_count, height, depth,
    child_start, child_count, skip_count, bbox,
    default_depth,
):
    """Terrain height at a single point (see module docstring)."""
    n_contours = len(point_start)
    deepest = -1
    deepest_depth = 0
    i = 0
    last_to_check = n_contours

    while i < last_to_check:
        if is_inside_contour(x, y, i, vertex_data, point_start, point_count, bbox):
            if depth[i] >= deepest_depth:
                deepest_depth = depth[i]
                deepest = i
            # Only this contour's subtree can contain anything deeper
            last_to_check = i + skip_count[i] + 1
            i += 1
        else:
            i += skip_count[i] + 1

    if deepest < 0:
        return default_depth

    if child_count[deepest] == 0:
        return height[deepest]

    d_parent = distance_to_boundary(x, y, deepest, vertex_data, point_start, point_count)
    w_parent = 1.0 / max(d_parent, IDW_MIN_DIST)
    total_weight = w_parent
    weighted_sum = height[deepest] * w_parent

    for c in range(child_count[deepest]):
        child = children_data[child_start[deepest] + c]
        d_child = distance_to_boundary(x, y, child, vertex_data, point_start, point_count)
        w_child = 1.0 / max(d_child, IDW_MIN_DIST)
        total_weight += w_child
        weighted_sum += height[child] * w_child

    return weighted_sum / total_weight


@njit(parallel=True, cache=True)
def terrain_height_batch(
    xs, ys,
    vertex_data, children_data,
    point_start, point_count, height, depth,
    child_start, child_count, skip_count, bbox,
    default_depth,
):
    """Terrain height at many points in parallel."""
    n = len(xs)
    out = np.empty(n, dtype=np.float64)
    for i in prange(n):
        out[i] = terrain_height_kernel(
            xs[i], ys[i],
            vertex_data, children_data,
            point_start, point_count, height, depth,
            child_start, child_count, skip_count, bbox,
            default_depth,
        )
    return out


@njit(cache=True)
def terrain_height_batch_serial(
    xs, ys,
    vertex_data, children_data,
    point_start, point_count, height, depth,
    child_start, child_count, skip_count, bbox,
    default_depth,
):
    """Terrain height at many points on the calling thread (build workers)."""
    n = len(xs)
    out = np.empty(n, dtype=np.float64)
    for i in range(n):
        out[i] = terrain_height_kernel(
            xs[i], ys[i],
            vertex_data, children_data,
            point_start, point_count, height, depth,
            child_start, child_count, skip_count, bbox,
            default_depth,
        )
    return out


# =============================================================================
# Python Interface
# =============================================================================

def compute_terrain_height(x: float, y: float, terrain: TerrainSnapshot) -> float:
    """
    Terrain height at a world point.

    Args:
        x, y: World position (ft)
        terrain: Terrain snapshot

    Returns:
        Terrain height (ft, negative = below sea level)
    """
    if terrain.contour_count == 0:
        return terrain.default_depth
    t = terrain.contour_table()
    return float(terrain_height_kernel(
        float(x), float(y),
        terrain.vertex_data, terrain.children_data.astype(np.int64),
        t.point_start, t.point_count, t.height, t.depth,
        t.child_start, t.child_count, t.skip_count, t.bbox,
        terrain.default_depth,
    ))


def compute_terrain_heights(
    xs: Union[np.ndarray, list],
    ys: Union[np.ndarray, list],
    terrain: TerrainSnapshot,
) -> np.ndarray:
    """
    Terrain heights at arrays of points.

    Args:
        xs, ys: World positions (ft), same length
        terrain: Terrain snapshot

    Returns:
        Array of terrain heights (float64)
    """
    xs = np.ascontiguousarray(xs, dtype=np.float64)
    ys = np.ascontiguousarray(ys, dtype=np.float64)
    if xs.shape != ys.shape:
        raise ValueError(f"xs and ys must have the same shape, got {xs.shape} and {ys.shape}")

    if terrain.contour_count == 0 or xs.size == 0:
        return np.full(xs.shape, terrain.default_depth, dtype=np.float64)

    t = terrain.contour_table()
    batch = terrain_height_batch_serial if serial_kernels_enabled() else terrain_height_batch
    flat = batch(
        xs.ravel(), ys.ravel(),
        terrain.vertex_data, terrain.children_data.astype(np.int64),
        t.point_start, t.point_count, t.height, t.depth,
        t.child_start, t.child_count, t.skip_count, t.bbox,
        terrain.default_depth,
    )
    return flat.reshape(xs.shape)


def compute_water_depth(x: float, y: float, terrain: TerrainSnapshot, tide_height: float) -> float:
    """Water depth at a point: tide height minus terrain height (negative on dry land)."""
    return tide_height - compute_terrain_height(x, y, terrain)
