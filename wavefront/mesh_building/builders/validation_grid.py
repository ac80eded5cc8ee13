"""
Test Grid Builder

Produces a coarse grid covering the coastline bounds with default values
(amplitude 1, offsets 0, blend weight 1). No terrain evaluation.

Used to verify the pipeline end to end: worker -> mesh data -> upload.
"""

from typing import Optional

import numpy as np

from ...config import MeshBuildConfig
from ...terrain.snapshot import TerrainSnapshot
from ..types import MeshBuildBounds, MeshBuilderType, WaveSource, WavefrontMeshData
from .grid import grid_points, grid_shape, grid_triangles
from .registry import BuilderRegistry


@BuilderRegistry.register(MeshBuilderType.TEST_GRID)
def build_test_mesh(
    wave_source: WaveSource,
    coastline_bounds: Optional[MeshBuildBounds],
    terrain: TerrainSnapshot,
    tide_height: float,
    config: Optional[MeshBuildConfig] = None,
) -> WavefrontMeshData:
    config = config or MeshBuildConfig()

    if coastline_bounds is not None:
        bounds = coastline_bounds.expanded(wave_source.wavelength * config.test_grid_margin_wavelengths)
    else:
        bounds = MeshBuildBounds.square(config.test_grid_half_extent)

    spacing = config.test_grid_spacing
    cols, rows = grid_shape(bounds, spacing)
    points = grid_points(bounds, spacing, cols, rows)
    n = len(points)

    return WavefrontMeshData.from_columns(
        points[:, 0], points[:, 1],
        np.ones(n), np.zeros(n), np.zeros(n), np.ones(n),
        grid_triangles(cols, rows),
    )
