"""
Shared fixtures for the wavefront mesh tests.

Scenarios:
- flat: open ocean, 50 ft uniform depth, no contours
- island: circular island (radius 300 ft, height 10 ft) at the origin
"""

import logging
import math

import pytest

from wavefront.config import CoordinatorSettings, MeshBuildConfig
from wavefront.mesh_building.types import MeshBuildBounds, WaveSource
from wavefront.terrain import ContourSpec, TerrainSnapshot, circle_polygon, circular_island, flat_seabed


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    logging.basicConfig(level=logging.DEBUG)
    yield


# =============================================================================
# Terrain
# =============================================================================

@pytest.fixture
def flat_terrain() -> TerrainSnapshot:
    return flat_seabed(-50.0)


@pytest.fixture
def island_terrain() -> TerrainSnapshot:
    return circular_island(radius=300.0, height=10.0, default_depth=-50.0, n_points=64)


@pytest.fixture
def nested_terrain() -> TerrainSnapshot:
    """
    Shallow shelf (height -10) with an island (height 5) and a lagoon (height -5)
    nested inside it, plus a separate reef root contour.

    DFS pre-order: 0 shelf, 1 island (child of 0), 2 lagoon (child of 1), 3 reef
    """
    return TerrainSnapshot.from_contours([
        ContourSpec(polygon=circle_polygon(1000.0, 48), height=-10.0, children=(1,)),
        ContourSpec(polygon=circle_polygon(400.0, 48), height=5.0, parent_index=0, children=(2,),
                    is_coastline=True),
        ContourSpec(polygon=circle_polygon(100.0, 24), height=-5.0, parent_index=1),
        ContourSpec(polygon=circle_polygon(200.0, 24, center=(3000.0, 0.0)), height=-20.0),
    ], default_depth=-100.0)


@pytest.fixture
def landlocked_terrain() -> TerrainSnapshot:
    """Raised plateau on dry ground: nothing anywhere is below the tide."""
    return TerrainSnapshot.from_contours([
        ContourSpec(
            polygon=[(-500.0, -500.0), (500.0, -500.0), (500.0, 500.0), (-500.0, 500.0)],
            height=20.0,
            is_coastline=True,
        ),
    ], default_depth=5.0)


# =============================================================================
# Waves and config
# =============================================================================

@pytest.fixture
def wave_east() -> WaveSource:
    """λ=150 ft swell travelling toward +X."""
    return WaveSource(wavelength=150.0, direction=0.0)


@pytest.fixture
def wave_sources():
    return [
        WaveSource(wavelength=150.0, direction=0.0),
        WaveSource(wavelength=200.0, direction=math.pi / 4),
        WaveSource(wavelength=300.0, direction=math.pi / 2),
    ]


@pytest.fixture
def small_bounds() -> MeshBuildBounds:
    return MeshBuildBounds(-300.0, -300.0, 300.0, 300.0)


@pytest.fixture
def fast_config() -> MeshBuildConfig:
    """Coarser, smaller domains so grid builds stay quick."""
    return MeshBuildConfig(
        domain_margin_min=300.0,
        domain_margin_wavelengths=2.0,
        default_half_extent=600.0,
        grid_spacing=60.0,
        grid_default_half_extent=600.0,
        max_grid_vertices=2500,
        test_grid_spacing=50.0,
        test_grid_half_extent=200.0,
    )


@pytest.fixture
def thread_settings() -> CoordinatorSettings:
    return CoordinatorSettings(
        max_workers=2,
        worker_mode="thread",
        init_timeout_s=5.0,
        request_timeout_s=30.0,
        cache_dir=None,
    )
