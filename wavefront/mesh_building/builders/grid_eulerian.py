"""
Grid Eulerian Builder

Same travel-time solve and property derivation as the terrain-seeded
builder, on a regular grid over the domain. Useful as a reference mesh:
no seeding heuristics.

After solving, cells whose corners bilinearly reproduce the interior
values are merged (see quadtree.py), so flat open ocean collapses to a
few large cells while shoreline detail keeps full resolution.
"""

import logging
import math
from typing import Optional

import numpy as np

from ...config import MeshBuildConfig
from ...terrain.height import compute_terrain_heights
from ...terrain.snapshot import TerrainSnapshot
from ..eikonal import dry_land_mask
from ..types import MeshBuildBounds, MeshBuilderType, WaveSource, WavefrontMeshData
from .grid import grid_points, grid_shape, grid_triangles
from .quadtree import simplify_grid
from .registry import BuilderRegistry
from .terrain_eulerian import solve_wavefront_mesh

logger = logging.getLogger(__name__)


def grid_spacing_for(bounds: MeshBuildBounds, config: MeshBuildConfig) -> float:
    """Configured spacing, widened until the grid fits within max_grid_vertices."""
    spacing = config.grid_spacing
    cols, rows = grid_shape(bounds, spacing)
    if cols * rows > config.max_grid_vertices:
        spacing *= math.sqrt(cols * rows / config.max_grid_vertices)
        cols, rows = grid_shape(bounds, spacing)
        while cols * rows > config.max_grid_vertices:
            spacing *= 1.05
            cols, rows = grid_shape(bounds, spacing)
    return spacing


@BuilderRegistry.register(MeshBuilderType.GRID_EULERIAN)
def build_grid_eulerian_mesh(
    wave_source: WaveSource,
    coastline_bounds: Optional[MeshBuildBounds],
    terrain: TerrainSnapshot,
    tide_height: float,
    config: Optional[MeshBuildConfig] = None,
) -> WavefrontMeshData:
    """Build a regular-grid Eulerian wavefront mesh."""
    config = config or MeshBuildConfig()
    wavelength = wave_source.wavelength

    if coastline_bounds is not None:
        bounds = coastline_bounds.expanded(config.domain_margin(wavelength))
    else:
        bounds = MeshBuildBounds.square(config.grid_default_half_extent)

    spacing = grid_spacing_for(bounds, config)
    cols, rows = grid_shape(bounds, spacing)
    points = grid_points(bounds, spacing, cols, rows)

    heights = compute_terrain_heights(points[:, 0], points[:, 1], terrain)
    is_land = dry_land_mask(heights, tide_height)

    logger.info(
        f"grid-eulerian λ={wavelength:.0f}ft: {cols}x{rows} grid at {spacing:.1f}ft, "
        f"{int((~is_land).sum())} water"
    )
    if not np.any(~is_land):
        logger.info("  No water cells, returning empty mesh")
        return WavefrontMeshData.empty()

    mesh = solve_wavefront_mesh(
        points, is_land, grid_triangles(cols, rows),
        bounds, config.ocean_grid_spacing(wavelength),
        wave_source, terrain, tide_height,
    )
    if not config.grid_simplify:
        return mesh

    v = mesh.vertex_view()
    kept, triangles = simplify_grid(
        cols, rows, v[:, 2], v[:, 3], v[:, 4],
        threshold=config.simplify_threshold, max_level=config.simplify_max_level,
    )
    logger.info(
        f"  Quadtree: {mesh.vertex_count} -> {len(kept)} vertices, "
        f"{mesh.triangle_count} -> {len(triangles)} triangles"
    )
    return WavefrontMeshData(v[kept], triangles)
