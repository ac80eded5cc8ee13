"""
CPU Lagrangian Builder

Marches a polyline wavefront step by step from the upwave edge of the
domain and stitches consecutive wavefronts into a triangle strip.

Per step:
1. Advance every vertex along its direction at the local phase speed,
   bending it with depth-gradient refraction
2. Track state: vertices on land keep marching with amplitude 0 and come
   back out SHADOWED, so the wavefront stays one connected line
3. Amplitude = terrain factor × ray-tube convergence
4. Diffraction: cylindrical wavelets from each shadow-edge tip light the
   shadowed vertices next to it
5. Refine where neighbours differ a lot, coarsen where a vertex is
   reproduced by linear interpolation of its neighbours
6. Triangulate against the previous wavefront by parametric position t

Vertices keep the parametric position t of the initial vertex they descend
from (midpoints average it), so t is increasing along every wavefront.
"""

import logging
import math
from dataclasses import dataclass, fields
from typing import List, Optional, Tuple

import numpy as np

from ...config import MeshBuildConfig
from ...constants import TWO_PI
from ...terrain.height import compute_terrain_heights
from ...terrain.snapshot import TerrainSnapshot
from ...utils import wrap_angles
from ..eikonal import dry_land_mask
from ..properties import compute_blend_weights
from ..types import MeshBuildBounds, MeshBuilderType, WaveSource, WavefrontMeshData
from ..wave_physics import (
    compute_refraction_offset,
    compute_wave_speeds,
    deep_water_speed,
    relative_terrain_factors,
)
from .registry import BuilderRegistry

logger = logging.getLogger(__name__)

# Vertex states
ACTIVE = 0
ON_LAND = 1
SHADOWED = 2

GRADIENT_DELTA = 2.0        # Finite-difference step for the depth gradient (ft)
MAX_CONVERGENCE = 2.0       # Cap on ray-tube focusing and on amplitude
LIT_AMPLITUDE = 0.01        # Active vertices above this are lit
LOG_INTERVAL = 50

# Refine a segment when its endpoints differ by more than this
INSERT_AMPLITUDE = 0.15
INSERT_DIRECTION = 0.1
INSERT_PHASE = math.pi / 4

# Drop a vertex when linear interpolation of its neighbours is this close
REMOVE_AMPLITUDE = 0.02
REMOVE_DIRECTION = 0.02
REMOVE_PHASE = 0.05


@dataclass
class Wavefront:
    """
    One wavefront as parallel arrays, ordered along the front.

    All arrays have shape (n,).
    """
    x: np.ndarray
    y: np.ndarray
    direction: np.ndarray           # Marching direction (radians)
    amplitude: np.ndarray
    accumulated_phase: np.ndarray   # k × distance travelled, from the plane-wave phase at the start line
    direction_offset: np.ndarray
    phase_offset: np.ndarray
    state: np.ndarray               # int8: ACTIVE, ON_LAND, SHADOWED
    t: np.ndarray                   # Parametric position along the initial wavefront [0, 1]
    height: np.ndarray              # Terrain height at (x, y)

    def __len__(self) -> int:
        return len(self.x)

    def take(self, idx) -> 'Wavefront':
        return Wavefront(**{f.name: getattr(self, f.name)[idx] for f in fields(self)})

    def lit(self) -> np.ndarray:
        return (self.state == ACTIVE) & (self.amplitude > LIT_AMPLITUDE)


@dataclass(frozen=True)
class MarchParams:
    """Per-build constants shared by the marching steps."""
    wavelength: float
    k: float
    base_dir: float
    wdx: float
    wdy: float
    deep_speed: float
    base_step: float
    min_spacing: float
    max_spacing: float
    max_vertices: int
    diffraction_vertices: int
    wavefront_width: float
    reference_depth: float
    tide_height: float
    terrain: TerrainSnapshot

    def plane_phase(self, x, y):
        return self.k * (x * self.wdx + y * self.wdy)

    def heights(self, x, y) -> np.ndarray:
        return compute_terrain_heights(x, y, self.terrain)

    def terrain_factors(self, heights: np.ndarray) -> np.ndarray:
        depth = np.ascontiguousarray(self.tide_height - heights, dtype=np.float64)
        return relative_terrain_factors(depth, self.reference_depth, self.wavelength)


def march_bounds(
    wave_source: WaveSource,
    coastline_bounds: Optional[MeshBuildBounds],
    config: MeshBuildConfig,
) -> MeshBuildBounds:
    if coastline_bounds is not None:
        return coastline_bounds.expanded(config.domain_margin(wave_source.wavelength))
    return MeshBuildBounds.square(config.march_default_half_extent)


def initial_wavefront(
    bounds: MeshBuildBounds,
    wave_source: WaveSource,
    terrain: TerrainSnapshot,
    tide_height: float,
    config: MeshBuildConfig,
) -> Tuple[Wavefront, MarchParams, float]:
    """
    Straight wavefront along the upwave edge of the domain.

    Returns:
        (wavefront, params, march_distance)
    """
    wavelength = wave_source.wavelength
    wdx, wdy = wave_source.direction_vec
    px, py = -wdy, wdx

    corners = np.array([
        [bounds.min_x, bounds.min_y], [bounds.max_x, bounds.min_y],
        [bounds.max_x, bounds.max_y], [bounds.min_x, bounds.max_y],
    ])
    proj = corners[:, 0] * wdx + corners[:, 1] * wdy
    perp = corners[:, 0] * px + corners[:, 1] * py
    min_proj = float(proj.min())
    width = float(perp.max() - perp.min())

    spacing = wavelength * config.march_spacing_wavelengths
    n = max(3, int(math.ceil(width / spacing)) + 1)

    params = MarchParams(
        wavelength=wavelength,
        k=wave_source.k,
        base_dir=wave_source.direction,
        wdx=wdx,
        wdy=wdy,
        deep_speed=float(deep_water_speed(wavelength)),
        base_step=wavelength * config.march_step_wavelengths,
        min_spacing=wavelength * config.march_min_spacing_wavelengths,
        max_spacing=wavelength * config.march_max_spacing_wavelengths,
        max_vertices=config.march_max_vertices,
        diffraction_vertices=config.diffraction_max_vertices,
        wavefront_width=width,
        reference_depth=tide_height - terrain.default_depth,
        tide_height=tide_height,
        terrain=terrain,
    )

    t = np.linspace(0.0, 1.0, n)
    perp_pos = perp.min() + t * width
    x = min_proj * wdx + perp_pos * px
    y = min_proj * wdy + perp_pos * py
    height = params.heights(x, y)
    land = dry_land_mask(height, tide_height)

    front = Wavefront(
        x=x,
        y=y,
        direction=np.full(n, wave_source.direction),
        amplitude=np.where(land, 0.0, params.terrain_factors(height)),
        accumulated_phase=np.full(n, params.k * min_proj),
        direction_offset=np.zeros(n),
        phase_offset=np.zeros(n),
        state=np.where(land, ON_LAND, ACTIVE).astype(np.int8),
        t=t,
        height=height,
    )
    return front, params, float(proj.max()) - min_proj


def ray_tube_convergence(front: Wavefront, params: MarchParams) -> np.ndarray:
    """
    Amplitude change from ray-tube width, sqrt(nominal / actual).

    The nominal width between vertices i-1 and i+1 is their parametric span
    times the initial wavefront width, so refining or coarsening the
    wavefront leaves the factor unchanged. Endpoints get 1.
    """
    factor = np.ones(len(front))
    if len(front) < 3:
        return factor
    span = np.hypot(front.x[2:] - front.x[:-2], front.y[2:] - front.y[:-2])
    nominal = (front.t[2:] - front.t[:-2]) * params.wavefront_width
    valid = (span > 0) & (nominal > 0)
    ratio = np.where(valid, nominal, 1.0) / np.where(valid, span, 1.0)
    factor[1:-1] = np.minimum(np.sqrt(ratio), MAX_CONVERGENCE)
    return factor


def advance_wavefront(front: Wavefront, params: MarchParams) -> Wavefront:
    """March every vertex one step (refraction, speed, state, amplitude, phase)."""
    wavelength = params.wavelength
    depth = params.tide_height - front.height
    on_land = dry_land_mask(front.height, params.tide_height)

    # Refraction only acts between the shallow and deep limits
    direction = front.direction.copy()
    refracting = np.flatnonzero(~on_land & (depth < wavelength * 0.5) & (depth > wavelength * 0.05))
    if len(refracting):
        rx = front.x[refracting]
        ry = front.y[refracting]
        d = GRADIENT_DELTA
        h = params.heights(
            np.concatenate([rx + d, rx - d, rx, rx]),
            np.concatenate([ry, ry, ry + d, ry - d]),
        ).reshape(4, -1)
        # Depth gradient is the negated terrain gradient
        grad_x = -(h[0] - h[1]) / (2 * d)
        grad_y = -(h[2] - h[3]) / (2 * d)
        for j, i in enumerate(refracting):
            direction[i] += compute_refraction_offset(
                direction[i], wavelength, depth[i], grad_x[j], grad_y[j],
            )

    speed = np.where(
        on_land,
        params.deep_speed,
        compute_wave_speeds(wavelength, np.ascontiguousarray(depth, dtype=np.float64)),
    )
    step = params.base_step * speed / params.deep_speed
    x = front.x + np.cos(direction) * step
    y = front.y + np.sin(direction) * step

    height = params.heights(x, y)
    land = dry_land_mask(height, params.tide_height)
    state = np.where(land, ON_LAND, np.where(front.state != ACTIVE, SHADOWED, ACTIVE)).astype(np.int8)
    active = state == ACTIVE

    amplitude = np.where(active, params.terrain_factors(height) * ray_tube_convergence(front, params), 0.0)
    amplitude = np.minimum(amplitude, MAX_CONVERGENCE)

    accumulated_phase = front.accumulated_phase + params.k * step
    return Wavefront(
        x=x,
        y=y,
        direction=direction,
        amplitude=amplitude,
        accumulated_phase=accumulated_phase,
        direction_offset=direction - params.base_dir,
        phase_offset=accumulated_phase - params.plane_phase(x, y),
        state=state,
        t=front.t.copy(),
        height=height,
    )


def shadow_edges(front: Wavefront) -> List[Tuple[int, int]]:
    """(tip index, step into the shadow) for every lit/unlit transition."""
    lit = front.lit()
    edges = []
    for i in range(len(front) - 1):
        if lit[i] and not lit[i + 1]:
            edges.append((i, 1))
        elif lit[i + 1] and not lit[i]:
            edges.append((i + 1, -1))
    return edges


def apply_diffraction(front: Wavefront, params: MarchParams) -> int:
    """
    Light shadowed vertices with wavelets from the shadow-edge tips.

    Amplitude is tip × sqrt(λ / 2πr) × cos(θ/2), θ measured from the
    wavefront direction past the tip. A wavelet replaces the current value
    when stronger, adding incoherently. Land vertices stay at 0.
    Modifies front in place.

    Returns:
        Number of shadow edges
    """
    n = len(front)
    edges = shadow_edges(front)
    for tip, step in edges:
        tx, ty = front.x[tip], front.y[tip]
        back = tip - step
        if 0 <= back < n:
            base_angle = math.atan2(ty - front.y[back], tx - front.x[back])
        else:
            base_angle = 0.0
        tip_amplitude = front.amplitude[tip]
        tip_phase = front.accumulated_phase[tip]
        tip_dir = front.direction[tip]

        idx = tip + step
        count = 0
        while 0 <= idx < n and count < params.diffraction_vertices:
            if front.state[idx] == SHADOWED:
                dx = front.x[idx] - tx
                dy = front.y[idx] - ty
                r = math.hypot(dx, dy)
                if r > 0.1:
                    diff_angle = math.atan2(dy, dx)
                    theta = min(abs(math.remainder(diff_angle - base_angle, TWO_PI)), math.pi)
                    spreading = math.sqrt(params.wavelength / (TWO_PI * r))
                    diff_amplitude = tip_amplitude * spreading * max(0.0, math.cos(theta / 2))
                    if diff_amplitude > front.amplitude[idx]:
                        front.amplitude[idx] = min(math.hypot(front.amplitude[idx], diff_amplitude), MAX_CONVERGENCE)
                        front.direction_offset[idx] += diff_angle - tip_dir
                        front.phase_offset[idx] = (
                            tip_phase + params.k * r - params.plane_phase(front.x[idx], front.y[idx])
                        )
            idx += step
            count += 1
    return len(edges)


def refine_wavefront(front: Wavefront, params: MarchParams) -> Wavefront:
    """Insert midpoints on segments that are too long or vary too much."""
    n = len(front)
    budget = params.max_vertices - n
    if n < 2 or budget <= 0:
        return front

    dist = np.hypot(np.diff(front.x), np.diff(front.y))
    split = (dist >= params.min_spacing) & (
        (np.abs(np.diff(front.amplitude)) > INSERT_AMPLITUDE)
        | (np.abs(wrap_angles(np.diff(front.direction_offset))) > INSERT_DIRECTION)
        | (np.abs(np.diff(front.phase_offset)) > INSERT_PHASE)
        | (dist > params.max_spacing)
    )
    seg = np.flatnonzero(split)[:budget]
    if len(seg) == 0:
        return front

    a, b = seg, seg + 1
    x = 0.5 * (front.x[a] + front.x[b])
    y = 0.5 * (front.y[a] + front.y[b])
    height = params.heights(x, y)
    land = dry_land_mask(height, params.tide_height)
    shadowed = (front.state[a] == SHADOWED) | (front.state[b] == SHADOWED)
    both_land = (front.state[a] == ON_LAND) & (front.state[b] == ON_LAND)
    state = np.where(
        land | both_land, ON_LAND, np.where(shadowed, SHADOWED, ACTIVE),
    ).astype(np.int8)

    direction = 0.5 * (front.direction[a] + front.direction[b])
    accumulated_phase = 0.5 * (front.accumulated_phase[a] + front.accumulated_phase[b])
    midpoints = Wavefront(
        x=x,
        y=y,
        direction=direction,
        amplitude=np.where(state == ACTIVE, params.terrain_factors(height), 0.0),
        accumulated_phase=accumulated_phase,
        direction_offset=direction - params.base_dir,
        phase_offset=accumulated_phase - params.plane_phase(x, y),
        state=state,
        t=0.5 * (front.t[a] + front.t[b]),
        height=height,
    )
    return Wavefront(**{
        f.name: np.insert(getattr(front, f.name), b, getattr(midpoints, f.name))
        for f in fields(Wavefront)
    })


def coarsen_wavefront(front: Wavefront, params: MarchParams) -> Wavefront:
    """
    Drop vertices that linear interpolation of their neighbours reproduces.

    The endpoints and both sides of every shadow edge are always kept, and
    no gap may grow beyond max_spacing.
    """
    n = len(front)
    if n < 3:
        return front

    lit = front.lit()
    keep = [0]
    for i in range(1, n - 1):
        prev = keep[-1]
        nxt = i + 1
        if lit[prev] != lit[i] or lit[i] != lit[nxt]:
            keep.append(i)
            continue
        if math.hypot(front.x[nxt] - front.x[prev], front.y[nxt] - front.y[prev]) > params.max_spacing:
            keep.append(i)
            continue

        amp_err = abs(front.amplitude[i] - 0.5 * (front.amplitude[prev] + front.amplitude[nxt]))
        dir_err = abs(math.remainder(
            front.direction_offset[i] - 0.5 * (front.direction_offset[prev] + front.direction_offset[nxt]),
            TWO_PI,
        ))
        phase_err = abs(front.phase_offset[i] - 0.5 * (front.phase_offset[prev] + front.phase_offset[nxt]))
        if amp_err >= REMOVE_AMPLITUDE or dir_err >= REMOVE_DIRECTION or phase_err >= REMOVE_PHASE:
            keep.append(i)
    keep.append(n - 1)

    if len(keep) == n:
        return front
    return front.take(np.asarray(keep))


def strip_triangles(prev_t: np.ndarray, next_t: np.ndarray, prev_base: int, next_base: int) -> np.ndarray:
    """
    Sweep-line triangulation between two consecutive wavefronts.

    Advances along whichever wavefront has the smaller next t. Winding
    matches the regular grid's triangles.

    Returns:
        (m, 3) int64 vertex indices
    """
    m = len(prev_t)
    n = len(next_t)
    triangles = []
    i = j = 0
    while i < m - 1 or j < n - 1:
        if i >= m - 1 or (j < n - 1 and prev_t[i + 1] >= next_t[j + 1]):
            triangles.append((prev_base + i, next_base + j + 1, next_base + j))
            j += 1
        else:
            triangles.append((prev_base + i, prev_base + i + 1, next_base + j))
            i += 1
    return np.asarray(triangles, dtype=np.int64).reshape(-1, 3)


def march_wavefronts(
    front: Wavefront,
    params: MarchParams,
    march_distance: float,
    insert_passes: int,
) -> List[Wavefront]:
    """March until the deep-water distance covers the domain."""
    fronts = [front]
    max_steps = int(math.ceil(march_distance / params.base_step)) + 50
    marched = 0.0
    step = 0

    while marched < march_distance and step < max_steps:
        step += 1
        front = advance_wavefront(front, params)
        n_edges = apply_diffraction(front, params)
        for _ in range(insert_passes):
            refined = refine_wavefront(front, params)
            if len(refined) == len(front):
                break
            front = refined
        front = coarsen_wavefront(front, params)

        if len(front) > params.max_vertices:
            logger.warning(
                f"  Step {step}: wavefront hit cap ({len(front)} > {params.max_vertices}), truncating"
            )
            front = front.take(slice(0, params.max_vertices))

        fronts.append(front)
        marched += params.base_step

        if step % LOG_INTERVAL == 0 or step == 1:
            logger.debug(
                f"  Step {step}: {len(front)} vertices, {n_edges} shadow edges, "
                f"marched {marched:.0f}/{march_distance:.0f}ft"
            )

    return fronts


@BuilderRegistry.register(MeshBuilderType.CPU_LAGRANGIAN)
def build_cpu_lagrangian_mesh(
    wave_source: WaveSource,
    coastline_bounds: Optional[MeshBuildBounds],
    terrain: TerrainSnapshot,
    tide_height: float,
    config: Optional[MeshBuildConfig] = None,
) -> WavefrontMeshData:
    """
    Build a wavefront-marching mesh.

    Returns an empty mesh when no vertex ever reaches water.
    """
    config = config or MeshBuildConfig()
    bounds = march_bounds(wave_source, coastline_bounds, config)
    front, params, march_distance = initial_wavefront(bounds, wave_source, terrain, tide_height, config)

    logger.info(
        f"cpu-lagrangian λ={wave_source.wavelength:.0f}ft: {len(front)} initial vertices, "
        f"march {march_distance:.0f}ft in {params.base_step:.0f}ft steps"
    )

    fronts = march_wavefronts(front, params, march_distance, config.march_insert_passes)

    state = np.concatenate([f.state for f in fronts])
    if not np.any(state != ON_LAND):
        logger.info("  No water vertices, returning empty mesh")
        return WavefrontMeshData.empty()

    bases = np.cumsum([0] + [len(f) for f in fronts])
    triangles = np.concatenate([
        strip_triangles(prev.t, nxt.t, bases[i], bases[i + 1])
        for i, (prev, nxt) in enumerate(zip(fronts[:-1], fronts[1:]))
    ] or [np.zeros((0, 3), dtype=np.int64)])

    points = np.column_stack([
        np.concatenate([f.x for f in fronts]),
        np.concatenate([f.y for f in fronts]),
    ])
    blend = compute_blend_weights(points, bounds, params.wavelength * config.march_spacing_wavelengths)

    logger.info(
        f"  March: {len(fronts) - 1} steps, {len(points)} vertices, {len(triangles)} triangles, "
        f"final wavefront {len(fronts[-1])}"
    )

    return WavefrontMeshData.from_columns(
        points[:, 0], points[:, 1],
        np.concatenate([f.amplitude for f in fronts]),
        wrap_angles(np.concatenate([f.direction_offset for f in fronts])),
        wrap_angles(np.concatenate([f.phase_offset for f in fronts])),
        blend,
        triangles,
    )
