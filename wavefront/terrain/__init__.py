"""Terrain snapshot and height queries used by the mesh builders."""

from .snapshot import CONTOUR_DTYPE, ContourSpec, ContourTable, TerrainSnapshot
from .height import (
    compute_terrain_height,
    compute_terrain_heights,
    compute_water_depth,
    distance_to_boundary,
    is_inside_contour,
)
from .synthetic import circle_polygon, circular_island, flat_seabed

__all__ = [
    'CONTOUR_DTYPE',
    'ContourSpec',
    'ContourTable',
    'TerrainSnapshot',
    'compute_terrain_height',
    'compute_terrain_heights',
    'compute_water_depth',
    'distance_to_boundary',
    'is_inside_contour',
    'circle_polygon',
    'circular_island',
    'flat_seabed',
]
