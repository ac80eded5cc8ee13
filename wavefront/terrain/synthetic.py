"""
Synthetic terrain for demos and tests.

Simple analytic geometry packed into the same TerrainSnapshot layout as real
terrain, so every builder path can run without survey data.
"""

from typing import Tuple

import numpy as np

from .snapshot import ContourSpec, TerrainSnapshot


def circle_polygon(
    radius: float,
    n_points: int = 64,
    center: Tuple[float, float] = (0.0, 0.0),
) -> np.ndarray:
    """CCW circle as an (n_points, 2) array."""
    if n_points < 3:
        raise ValueError(f"n_points must be at least 3, got {n_points}")
    theta = np.linspace(0.0, 2 * np.pi, n_points, endpoint=False)
    return np.column_stack([
        center[0] + radius * np.cos(theta),
        center[1] + radius * np.sin(theta),
    ])


def circular_island(
    radius: float = 300.0,
    height: float = 10.0,
    default_depth: float = -50.0,
    n_points: int = 64,
    center: Tuple[float, float] = (0.0, 0.0),
) -> TerrainSnapshot:
    """
    Single flat-topped island on a flat seabed.

    The island contour is flagged as coastline so coastline_bounds() covers it.
    """
    return TerrainSnapshot.from_contours(
        [ContourSpec(
            polygon=circle_polygon(radius, n_points, center),
            height=height,
            is_coastline=True,
        )],
        default_depth=default_depth,
    )


def flat_seabed(default_depth: float = -50.0) -> TerrainSnapshot:
    """Open ocean: no contours at all."""
    return TerrainSnapshot.empty(default_depth)
