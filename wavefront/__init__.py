"""
Wavefront mesh build system.

Builds per-wave-source meshes of amplitude, direction and phase corrections
from coastline terrain. See mesh_building for the pipeline.
"""

from .config import CoordinatorSettings, MeshBuildConfig
from .terrain import ContourSpec, TerrainSnapshot, compute_terrain_height
from .mesh_building import (
    MeshBuildBounds,
    MeshBuildCoordinator,
    MeshBuilderType,
    WaveSource,
    WavefrontMeshData,
    WorkerPool,
    WorkerPoolError,
)
from .wavefront_mesh import HostDevice, MeshDevice, WavefrontMesh

__version__ = "0.1.0"

__all__ = [
    'CoordinatorSettings',
    'MeshBuildConfig',
    'ContourSpec',
    'TerrainSnapshot',
    'compute_terrain_height',
    'MeshBuildBounds',
    'MeshBuildCoordinator',
    'MeshBuilderType',
    'WaveSource',
    'WavefrontMeshData',
    'WorkerPool',
    'WorkerPoolError',
    'HostDevice',
    'MeshDevice',
    'WavefrontMesh',
]
