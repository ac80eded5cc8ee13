"""
Eikonal Solver (Fast Marching Method)

Computes wavefront travel times T satisfying |∇T| = 1/c(x) over the
triangulated mesh, where c is the depth-dependent phase speed and land
vertices are impassable.

Open ocean needs no iterative solving: every water vertex with a clear
upwave path starts KNOWN at its exact plane-wave time. Vertices in the
geometric shadow of land start FAR. The narrow band is every KNOWN vertex
next to land or shadow, so the march only corrects travel times near
terrain.
"""

import heapq
import logging
import math
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from numba import njit, prange

from ..terrain.height import compute_terrain_heights
from ..terrain.snapshot import TerrainSnapshot
from ..utils import serial_kernels_enabled
from .adjacency import MeshAdjacency
from .types import WaveSource
from .wave_physics import compute_wave_speeds, deep_water_speed

logger = logging.getLogger(__name__)

# Vertex states
FAR = 0
TRIAL = 1
KNOWN = 2
BLOCKED = 3


@dataclass
class FastMarchingResult:
    """Solved travel-time field plus the per-vertex inputs used to solve it."""
    travel_time: np.ndarray         # (n,) seconds, inf for blocked/unreached
    status: np.ndarray              # (n,) uint8 vertex state
    depth: np.ndarray               # (n,) water depth (0 on land)
    speed: np.ndarray               # (n,) phase speed (0 on land)
    plane_wave_time: np.ndarray     # (n,) (pos·waveDir - min_dot) / c_deep
    min_dot: float                  # Plane-wave offset: most-upwave water vertex
    c_deep: float                   # Deep water phase speed
    extraction_order: np.ndarray    # Vertices in the order they were finalized
    n_shadowed: int                 # Water vertices initialized FAR
    n_band: int                     # Vertices in the initial narrow band

    @property
    def is_blocked(self) -> np.ndarray:
        return self.status == BLOCKED

    @property
    def n_corrected(self) -> int:
        """Water vertices whose time differs from the plane-wave time."""
        water = ~self.is_blocked & np.isfinite(self.travel_time)
        return int(np.sum(water & (np.abs(self.travel_time - self.plane_wave_time) > 1e-9)))


def dry_land_mask(heights: np.ndarray, tide_height: float) -> np.ndarray:
    """Land is terrain strictly above the tide; height == tide is water at depth 0."""
    return np.asarray(heights) > tide_height


# =============================================================================
# Upwave Shadow Test
# =============================================================================

@njit(cache=True)
def ray_crosses_segments(px, py, rx, ry, ax, ay, bx, by):
    """True if the ray p + s·r (s > 0) crosses any segment [a, b]."""
    for j in range(len(ax)):
        ex = bx[j] - ax[j]
        ey = by[j] - ay[j]
        denom = rx * ey - ry * ex
        if abs(denom) < 1e-12:
            continue
        qx = ax[j] - px
        qy = ay[j] - py
        s = (qx * ey - qy * ex) / denom
        if s <= 1e-9:
            continue
        u = (qx * ry - qy * rx) / denom
        if u >= 0.0 and u <= 1.0:
            return True
    return False


@njit(parallel=True, cache=True)
def upwave_shadow_mask(px, py, candidates, dir_x, dir_y, ax, ay, bx, by):
    """
    Flag points whose upwave ray (direction -waveDir) crosses a land edge.

    Args:
        px, py: Point coordinates
        candidates: Points to test (others are left False)
        dir_x, dir_y: Unit wave direction
        ax, ay, bx, by: Land edge segments

    Returns:
        Boolean array, True where the point is in the geometric shadow
    """
    n = len(px)
    out = np.zeros(n, dtype=np.bool_)
    for i in prange(n):
        if candidates[i]:
            out[i] = ray_crosses_segments(px[i], py[i], -dir_x, -dir_y, ax, ay, bx, by)
    return out


@njit(cache=True)
def upwave_shadow_mask_serial(px, py, candidates, dir_x, dir_y, ax, ay, bx, by):
    """upwave_shadow_mask on the calling thread (build workers)."""
    n = len(px)
    out = np.zeros(n, dtype=np.bool_)
    for i in range(n):
        if candidates[i]:
            out[i] = ray_crosses_segments(px[i], py[i], -dir_x, -dir_y, ax, ay, bx, by)
    return out


def land_edges(terrain: TerrainSnapshot, tide_height: float) -> Tuple[np.ndarray, ...]:
    """Edge segments (ax, ay, bx, by) of every contour above the tide."""
    table = terrain.contour_table()
    segments = []
    for ci in range(terrain.contour_count):
        if table.height[ci] <= tide_height:
            continue
        poly = terrain.contour_polygon(ci)
        segments.append(np.hstack([poly, np.roll(poly, -1, axis=0)]))
    if not segments:
        empty = np.zeros(0)
        return empty, empty, empty, empty
    seg = np.vstack(segments)
    return (
        np.ascontiguousarray(seg[:, 0]), np.ascontiguousarray(seg[:, 1]),
        np.ascontiguousarray(seg[:, 2]), np.ascontiguousarray(seg[:, 3]),
    )


# =============================================================================
# Local Updates
# =============================================================================

def eikonal_triangle_update(
    ax: float, ay: float, t_a: float,
    bx: float, by: float, t_b: float,
    cx: float, cy: float,
    speed: float,
) -> float:
    """
    Tentative travel time at C from known vertices A and B.

    Minimizes T_A + t·(T_B - T_A) + |P - C| / speed over points
    P = A + t·(B - A) with t in [0, 1]. Setting the derivative to zero and
    squaring gives a quadratic in t; real roots inside [0, 1] are candidates
    alongside the 1-D edge updates from A and from B.

    A degenerate edge (|AB| < 1e-10) falls back to the 1-D update from A.
    """
    slowness = 1.0 / speed

    abx = bx - ax
    aby = by - ay
    acx = cx - ax
    acy = cy - ay

    ab_len = math.sqrt(abx * abx + aby * aby)
    ac_len = math.sqrt(acx * acx + acy * acy)
    if ab_len < 1e-10:
        return t_a + ac_len * slowness

    u = t_b - t_a
    a2 = ab_len * ab_len
    b2 = -2.0 * (abx * acx + aby * acy)
    c2 = ac_len * ac_len

    s2 = slowness * slowness
    qa = 4.0 * a2 * a2 * s2 - 4.0 * a2 * u * u
    qb = 4.0 * a2 * b2 * s2 - 4.0 * b2 * u * u
    qc = b2 * b2 * s2 - 4.0 * c2 * u * u

    best = math.inf
    if abs(qa) > 1e-12:
        disc = qb * qb - 4.0 * qa * qc
        if disc >= 0:
            sqrt_disc = math.sqrt(disc)
            for t in ((-qb + sqrt_disc) / (2.0 * qa), (-qb - sqrt_disc) / (2.0 * qa)):
                if 0.0 <= t <= 1.0:
                    dist_sq = a2 * t * t + b2 * t + c2
                    if dist_sq > 0:
                        val = t_a + u * t + slowness * math.sqrt(dist_sq)
                        if val < best:
                            best = val

    from_a = t_a + ac_len * slowness
    from_b = t_b + math.hypot(cx - bx, cy - by) * slowness
    return min(best, from_a, from_b)


# =============================================================================
# Fast Marching
# =============================================================================

def fast_marching(
    points: np.ndarray,
    is_land: np.ndarray,
    triangles: np.ndarray,
    adjacency: MeshAdjacency,
    wave_source: WaveSource,
    terrain: TerrainSnapshot,
    tide_height: float,
) -> FastMarchingResult:
    """
    Run the Fast Marching Method from the incoming plane wave.

    Args:
        points: (n, 2) vertex positions
        is_land: (n,) seeded land flags
        triangles: (m, 3) triangle vertex indices
        adjacency: Vertex neighbour/triangle maps for the triangle list
        wave_source: Wave being solved
        terrain: Terrain snapshot (depth and land)
        tide_height: Current tide height (ft)

    Returns:
        FastMarchingResult
    """
    n = len(points)
    wavelength = wave_source.wavelength
    wdx, wdy = wave_source.direction_vec
    c_deep = float(deep_water_speed(wavelength))

    # Per-vertex depth and speed
    heights = compute_terrain_heights(points[:, 0], points[:, 1], terrain)
    blocked = np.asarray(is_land, dtype=bool) | dry_land_mask(heights, tide_height)
    depth = np.where(blocked, 0.0, tide_height - heights)
    speed = np.where(blocked, 0.0, compute_wave_speeds(wavelength, np.ascontiguousarray(depth)))

    status = np.full(n, FAR, dtype=np.uint8)
    status[blocked] = BLOCKED
    travel_time = np.full(n, np.inf)

    # Plane-wave times, offset so the most-upwave water vertex is at T = 0
    dots = points[:, 0] * wdx + points[:, 1] * wdy
    water = ~blocked
    min_dot = float(dots[water].min()) if water.any() else 0.0
    plane_wave_time = (dots - min_dot) / c_deep

    # Water vertices with a clear upwave path get the exact plane-wave time
    ax, ay, bx, by = land_edges(terrain, tide_height)
    if len(ax) > 0 and water.any():
        mask_fn = upwave_shadow_mask_serial if serial_kernels_enabled() else upwave_shadow_mask
        shadowed = mask_fn(
            np.ascontiguousarray(points[:, 0]), np.ascontiguousarray(points[:, 1]),
            water, wdx, wdy, ax, ay, bx, by,
        )
    else:
        shadowed = np.zeros(n, dtype=bool)
    lit = water & ~shadowed
    travel_time[lit] = plane_wave_time[lit]
    status[lit] = KNOWN

    # Narrow band: KNOWN vertices next to land or shadow
    heap: List[Tuple[float, int]] = []
    for i in np.flatnonzero(lit).tolist():
        for nb in adjacency.vertex_neighbors[i]:
            if status[nb] == BLOCKED or status[nb] == FAR:
                status[i] = TRIAL
                heap.append((travel_time[i], i))
                break
    n_band = len(heap)
    heapq.heapify(heap)

    # Python-side copies for the inner loop
    xs = points[:, 0].tolist()
    ys = points[:, 1].tolist()
    tri_list = triangles.tolist()
    spd = [s if s > 0 else c_deep for s in speed.tolist()]
    times = travel_time.tolist()
    state = status.tolist()
    order: List[int] = []

    while heap:
        t_cur, current = heapq.heappop(heap)
        if state[current] == KNOWN or t_cur != times[current]:
            continue  # Stale entry
        state[current] = KNOWN
        order.append(current)

        cx_, cy_ = xs[current], ys[current]
        for nb in sorted(adjacency.vertex_neighbors[current]):
            if state[nb] == KNOWN or state[nb] == BLOCKED:
                continue

            s_nb = spd[nb]
            best = times[nb]

            for ti in adjacency.vertex_triangles[current]:
                tri = tri_list[ti]
                if nb not in tri:
                    continue
                third = tri[0] + tri[1] + tri[2] - current - nb
                if state[third] == KNOWN:
                    t = eikonal_triangle_update(
                        cx_, cy_, t_cur,
                        xs[third], ys[third], times[third],
                        xs[nb], ys[nb],
                        s_nb,
                    )
                else:
                    t = t_cur + math.hypot(xs[nb] - cx_, ys[nb] - cy_) / s_nb
                if t < best:
                    best = t

            if best >= times[nb]:
                t = t_cur + math.hypot(xs[nb] - cx_, ys[nb] - cy_) / s_nb
                if t < best:
                    best = t

            # Causality: nothing finalizes earlier than the vertex that reached it
            if best < t_cur:
                best = t_cur

            if best < times[nb]:
                times[nb] = best
                state[nb] = TRIAL
                heapq.heappush(heap, (best, nb))

    travel_time = np.asarray(times, dtype=np.float64)
    status = np.asarray(state, dtype=np.uint8)

    result = FastMarchingResult(
        travel_time=travel_time,
        status=status,
        depth=depth,
        speed=speed,
        plane_wave_time=plane_wave_time,
        min_dot=min_dot,
        c_deep=c_deep,
        extraction_order=np.asarray(order, dtype=np.int64),
        n_shadowed=int(shadowed.sum()),
        n_band=n_band,
    )
    logger.debug(
        f"FMM: {n} vertices, {int(blocked.sum())} blocked, {result.n_shadowed} shadowed, "
        f"band {n_band}, {len(order)} extracted, {result.n_corrected} corrected"
    )
    return result
