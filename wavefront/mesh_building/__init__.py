"""
Wavefront mesh building.

Pipeline per build: seeding -> Delaunay -> adjacency -> FMM -> properties.
The coordinator runs builds across a worker pool.
"""

from .types import (
    BuildState,
    MeshBuildBounds,
    MeshBuilderType,
    MeshBuildRequest,
    MeshBuildResult,
    WaveSource,
    WavefrontMeshData,
)
from .seeding import SeedResult, seed_vertices
from .delaunay import compute_circumcircles, delaunay_triangulate
from .adjacency import MeshAdjacency, build_adjacency
from .eikonal import FastMarchingResult, eikonal_triangle_update, fast_marching
from .properties import WaveProperties, derive_wave_properties
from .builders import (
    BuilderRegistry,
    build_grid_eulerian_mesh,
    build_terrain_eulerian_mesh,
    build_test_mesh,
)
from .worker_pool import WorkerPool, WorkerPoolError, recommended_worker_count
from .cache import MeshCache, mesh_cache_key
from .coordinator import BuildOutcome, MeshBuildCoordinator

__all__ = [
    # Types
    'BuildState',
    'MeshBuildBounds',
    'MeshBuilderType',
    'MeshBuildRequest',
    'MeshBuildResult',
    'WaveSource',
    'WavefrontMeshData',
    # Pipeline
    'SeedResult',
    'seed_vertices',
    'compute_circumcircles',
    'delaunay_triangulate',
    'MeshAdjacency',
    'build_adjacency',
    'FastMarchingResult',
    'eikonal_triangle_update',
    'fast_marching',
    'WaveProperties',
    'derive_wave_properties',
    # Builders
    'BuilderRegistry',
    'build_grid_eulerian_mesh',
    'build_terrain_eulerian_mesh',
    'build_test_mesh',
    # Orchestration
    'WorkerPool',
    'WorkerPoolError',
    'recommended_worker_count',
    'MeshCache',
    'mesh_cache_key',
    'BuildOutcome',
    'MeshBuildCoordinator',
]
