"""
Vertex Seeding

Builds the point set for the terrain-seeded mesh. Points are dense near
coastlines and sparse in open ocean:

1. Terrain contour vertices (land if the contour is above the tide)
2. Coastline-normal densification out to 2λ on the water side
3. Leeward fans behind silhouette points, where diffraction happens
4. Regular open-ocean grid over the domain

Every candidate passes through the same spatial-hash filter, so no two
seeds are closer than λ/8.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..config import MeshBuildConfig
from ..terrain.height import compute_terrain_heights
from ..terrain.snapshot import TerrainSnapshot
from .types import MeshBuildBounds, WaveSource

logger = logging.getLogger(__name__)


# =============================================================================
# Spatial Hash
# =============================================================================

class SpatialHash:
    """
    Uniform grid of point buckets for minimum-spacing rejection.

    Cell size equals the minimum spacing, so any point closer than the
    spacing lies in one of the 3×3 neighbouring cells.
    """

    def __init__(self, min_spacing: float):
        if min_spacing <= 0:
            raise ValueError(f"min_spacing must be positive, got {min_spacing}")
        self.cell_size = min_spacing
        self.min_spacing_sq = min_spacing * min_spacing
        self._cells: Dict[Tuple[int, int], List[Tuple[float, float]]] = {}

    def _cell(self, x: float, y: float) -> Tuple[int, int]:
        return math.floor(x / self.cell_size), math.floor(y / self.cell_size)

    def has_nearby(self, x: float, y: float) -> bool:
        cx, cy = self._cell(x, y)
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                bucket = self._cells.get((cx + dx, cy + dy))
                if not bucket:
                    continue
                for px, py in bucket:
                    ddx = px - x
                    ddy = py - y
                    if ddx * ddx + ddy * ddy < self.min_spacing_sq:
                        return True
        return False

    def insert(self, x: float, y: float) -> None:
        self._cells.setdefault(self._cell(x, y), []).append((x, y))


# =============================================================================
# Seed Result
# =============================================================================

@dataclass
class SeedResult:
    """Seeded point set plus the domain it covers."""
    points: np.ndarray          # (n, 2) float64
    is_land: np.ndarray         # (n,) bool
    bounds: MeshBuildBounds     # Outer domain (open-ocean grid extent)
    grid_spacing: float         # Open-ocean grid spacing (2λ)

    @property
    def n_points(self) -> int:
        return len(self.points)

    @property
    def n_water(self) -> int:
        return int((~self.is_land).sum())


class _SeedCollector:
    """Accumulates deduplicated seeds in insertion order."""

    def __init__(self, min_spacing: float):
        self.hash = SpatialHash(min_spacing)
        self.xs: List[float] = []
        self.ys: List[float] = []
        self.land: List[bool] = []

    def add(self, x: float, y: float, is_land: bool) -> bool:
        if not (math.isfinite(x) and math.isfinite(y)):
            return False
        if self.hash.has_nearby(x, y):
            return False
        self.hash.insert(x, y)
        self.xs.append(x)
        self.ys.append(y)
        self.land.append(is_land)
        return True

    def add_water(self, pts: np.ndarray, terrain: TerrainSnapshot, tide_height: float) -> int:
        """Add candidates that are not above the tide. Returns number accepted."""
        if len(pts) == 0:
            return 0
        heights = compute_terrain_heights(pts[:, 0], pts[:, 1], terrain)
        added = 0
        for (x, y), h in zip(pts.tolist(), heights.tolist()):
            if h > tide_height:
                continue
            if self.add(x, y, False):
                added += 1
        return added

    def __len__(self) -> int:
        return len(self.xs)


# =============================================================================
# Candidate Generators
# =============================================================================

def _edge_normals(poly: np.ndarray):
    """
    Outward unit normals for each edge a→b of a closed CCW polygon.

    Returns:
        Tuple of (a, b, normals, valid) where valid marks edges longer than 1e-6
    """
    a = poly
    b = np.roll(poly, -1, axis=0)
    edge = b - a
    length = np.hypot(edge[:, 0], edge[:, 1])
    valid = length >= 1e-6
    safe = np.where(valid, length, 1.0)
    # Rotate edge 90° clockwise
    normals = np.column_stack([edge[:, 1] / safe, -edge[:, 0] / safe])
    return a, b, normals, valid


def densify_coastline(
    poly: np.ndarray,
    wavelength: float,
    config: MeshBuildConfig,
) -> np.ndarray:
    """
    Candidates stepping outward along each edge normal from the edge midpoint.

    Steps are λ/8 apart, out to config.densify_max_wavelengths × λ.
    """
    a, b, normals, valid = _edge_normals(poly)
    step = config.min_spacing(wavelength)
    max_dist = wavelength * config.densify_max_wavelengths
    n_steps = int(math.floor(max_dist / step + 1e-9))
    if n_steps < 1 or not valid.any():
        return np.zeros((0, 2))

    mid = (a[valid] + b[valid]) * 0.5
    nrm = normals[valid]
    dists = step * np.arange(1, n_steps + 1)

    # (edges, steps, 2), edge-major order
    pts = mid[:, None, :] + nrm[:, None, :] * dists[None, :, None]
    return pts.reshape(-1, 2)


def silhouette_points(poly: np.ndarray, wave_dir: Tuple[float, float]) -> np.ndarray:
    """
    Joint vertices where the coastline turns from facing the waves to facing away.

    For consecutive edges (a→b, b→c) the joint b is a silhouette point when
    dot(n1, waveDir) >= 0 and dot(n2, waveDir) < 0.
    """
    _, b, normals, valid = _edge_normals(poly)
    wdx, wdy = wave_dir
    dot = normals[:, 0] * wdx + normals[:, 1] * wdy
    dot_next = np.roll(dot, -1)
    valid_next = np.roll(valid, -1)
    mask = valid & valid_next & (dot >= 0) & (dot_next < 0)
    return b[mask]


def leeward_fan(
    joint: np.ndarray,
    wavelength: float,
    wave_dir: Tuple[float, float],
    config: MeshBuildConfig,
) -> np.ndarray:
    """Fan of candidates behind a silhouette point, into the shadow zone."""
    shadow_dx = -wave_dir[0]
    shadow_dy = -wave_dir[1]
    angles = np.linspace(-config.fan_half_angle, config.fan_half_angle, config.fan_samples)
    cos_a = np.cos(angles)
    sin_a = np.sin(angles)
    dx = shadow_dx * cos_a - shadow_dy * sin_a
    dy = shadow_dx * sin_a + shadow_dy * cos_a

    pts = []
    for mult in config.fan_radii_wavelengths:
        dist = wavelength * mult
        pts.append(np.column_stack([joint[0] + dx * dist, joint[1] + dy * dist]))
    return np.concatenate(pts)


def domain_bounds(
    coastline_bounds: Optional[MeshBuildBounds],
    wavelength: float,
    config: MeshBuildConfig,
) -> MeshBuildBounds:
    """Coastline bounds expanded by max(2000, 3λ), or the default box."""
    if coastline_bounds is not None:
        return coastline_bounds.expanded(config.domain_margin(wavelength))
    return MeshBuildBounds.square(config.default_half_extent)


def grid_axis(lo: float, hi: float, spacing: float) -> np.ndarray:
    """Grid coordinates from lo stepping by spacing, up to and including hi."""
    n = int(math.floor((hi - lo) / spacing + 1e-9)) + 1
    return lo + spacing * np.arange(max(n, 0))


def ocean_grid(bounds: MeshBuildBounds, spacing: float) -> np.ndarray:
    """Regular grid over bounds, x-major order."""
    gx = grid_axis(bounds.min_x, bounds.max_x, spacing)
    gy = grid_axis(bounds.min_y, bounds.max_y, spacing)
    xx, yy = np.meshgrid(gx, gy, indexing='ij')
    return np.column_stack([xx.ravel(), yy.ravel()])


# =============================================================================
# Seeder
# =============================================================================

def seed_vertices(
    wave_source: WaveSource,
    coastline_bounds: Optional[MeshBuildBounds],
    terrain: TerrainSnapshot,
    tide_height: float,
    config: Optional[MeshBuildConfig] = None,
) -> SeedResult:
    """
    Seed vertices from terrain contours, coastline densification,
    leeward diffraction zones, and open ocean fill.

    Args:
        wave_source: Wave being meshed
        coastline_bounds: Union bbox of coastline contours (None = default box)
        terrain: Terrain snapshot
        tide_height: Current tide height (ft)
        config: Seeding tunables

    Returns:
        SeedResult with deduplicated points tagged water/land
    """
    config = config or MeshBuildConfig()
    wavelength = wave_source.wavelength
    wave_dir = wave_source.direction_vec

    seeds = _SeedCollector(config.min_spacing(wavelength))
    table = terrain.contour_table()

    # --- Contour vertices ---
    coastline_contours = []
    for ci in range(terrain.contour_count):
        if table.is_coastline[ci]:
            coastline_contours.append(ci)
        is_above_water = bool(table.height[ci] > tide_height)
        for x, y in terrain.contour_polygon(ci).tolist():
            seeds.add(x, y, is_above_water)
    n_contour = len(seeds)

    # --- Coastline-normal densification ---
    for ci in coastline_contours:
        seeds.add_water(densify_coastline(terrain.contour_polygon(ci), wavelength, config), terrain, tide_height)
    n_densify = len(seeds) - n_contour

    # --- Leeward silhouette fans ---
    n_silhouettes = 0
    for ci in coastline_contours:
        for joint in silhouette_points(terrain.contour_polygon(ci), wave_dir):
            n_silhouettes += 1
            seeds.add_water(leeward_fan(joint, wavelength, wave_dir, config), terrain, tide_height)
    n_fan = len(seeds) - n_contour - n_densify

    # --- Open ocean fill ---
    bounds = domain_bounds(coastline_bounds, wavelength, config)
    grid_spacing = config.ocean_grid_spacing(wavelength)
    n_ocean = seeds.add_water(ocean_grid(bounds, grid_spacing), terrain, tide_height)

    logger.debug(
        f"Seeded {len(seeds)} vertices: {n_contour} contour, {n_densify} coastline, "
        f"{n_fan} leeward ({n_silhouettes} silhouettes), {n_ocean} ocean"
    )

    if len(seeds) > 0:
        points = np.column_stack([np.asarray(seeds.xs), np.asarray(seeds.ys)])
    else:
        points = np.zeros((0, 2))

    return SeedResult(
        points=points,
        is_land=np.asarray(seeds.land, dtype=bool),
        bounds=bounds,
        grid_spacing=grid_spacing,
    )
