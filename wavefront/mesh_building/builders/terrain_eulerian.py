"""
Terrain-Seeded Eulerian Builder

Seeds vertex positions from terrain contour data (dense near coastlines,
sparse in open ocean), triangulates via Bowyer-Watson Delaunay, then
solves wave properties via the Fast Marching Method on the unstructured
mesh.

Phases:
1. Seed vertices
2. Delaunay triangulate the point set (land triangles are kept; land
   vertices carry amplitude 0 so the renderer interpolates to 0 at shore)
3. Build adjacency and solve travel times
4. Derive per-vertex wave properties and pack the output arrays
"""

import logging
from typing import Optional

import numpy as np

from ...config import MeshBuildConfig
from ...terrain.snapshot import TerrainSnapshot
from ..adjacency import build_adjacency
from ..delaunay import delaunay_triangulate
from ..eikonal import fast_marching
from ..properties import compute_blend_weights, derive_wave_properties
from ..seeding import seed_vertices
from ..types import MeshBuildBounds, MeshBuilderType, WaveSource, WavefrontMeshData
from .registry import BuilderRegistry

logger = logging.getLogger(__name__)


def solve_wavefront_mesh(
    points: np.ndarray,
    is_land: np.ndarray,
    triangles: np.ndarray,
    bounds: MeshBuildBounds,
    blend_margin: float,
    wave_source: WaveSource,
    terrain: TerrainSnapshot,
    tide_height: float,
) -> WavefrontMeshData:
    """
    Solve travel times on a triangulated point set and pack the mesh.

    Args:
        points: (n, 2) vertex positions
        is_land: (n,) land flags
        triangles: (m, 3) triangle indices
        bounds: Domain bounds (for blend weights)
        blend_margin: Width of the blend-to-open-ocean band at the domain edge
        wave_source: Wave being meshed
        terrain: Terrain snapshot
        tide_height: Current tide height (ft)

    Returns:
        Packed WavefrontMeshData
    """
    adjacency = build_adjacency(len(points), triangles)
    fmm = fast_marching(points, is_land, triangles, adjacency, wave_source, terrain, tide_height)

    reference_depth = tide_height - terrain.default_depth
    props = derive_wave_properties(points, triangles, fmm, wave_source, reference_depth)
    blend = compute_blend_weights(points, bounds, blend_margin)

    logger.info(
        f"  FMM: {len(fmm.extraction_order)} vertices marched, "
        f"{fmm.n_shadowed} shadowed, {fmm.n_corrected} corrected"
    )

    return WavefrontMeshData.from_columns(
        points[:, 0], points[:, 1],
        props.amplitude_factor, props.direction_offset, props.phase_offset,
        blend,
        triangles,
    )


@BuilderRegistry.register(MeshBuilderType.TERRAIN_EULERIAN)
def build_terrain_eulerian_mesh(
    wave_source: WaveSource,
    coastline_bounds: Optional[MeshBuildBounds],
    terrain: TerrainSnapshot,
    tide_height: float,
    config: Optional[MeshBuildConfig] = None,
) -> WavefrontMeshData:
    """
    Build a terrain-seeded Eulerian wavefront mesh.

    Returns an empty mesh (never raises) when fewer than 3 points are seeded,
    no seed is in water, or the triangulation is empty.
    """
    config = config or MeshBuildConfig()

    seeds = seed_vertices(wave_source, coastline_bounds, terrain, tide_height, config)
    logger.info(
        f"terrain-eulerian λ={wave_source.wavelength:.0f}ft: "
        f"{seeds.n_points} seeds ({seeds.n_water} water)"
    )
    if seeds.n_points < 3 or seeds.n_water == 0:
        logger.info("  Degenerate seed set, returning empty mesh")
        return WavefrontMeshData.empty()

    triangles = delaunay_triangulate(seeds.points)
    logger.info(f"  Delaunay: {len(triangles)} triangles")
    if len(triangles) == 0:
        logger.info("  No triangles, returning empty mesh")
        return WavefrontMeshData.empty()

    return solve_wavefront_mesh(
        seeds.points, seeds.is_land, triangles,
        seeds.bounds, seeds.grid_spacing,
        wave_source, terrain, tide_height,
    )
