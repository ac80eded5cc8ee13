"""
Wavefront mesh builders.

Importing this package registers every built-in builder with BuilderRegistry.
"""

from .registry import BuilderFn, BuilderRegistry
from .terrain_eulerian import build_terrain_eulerian_mesh, solve_wavefront_mesh
from .grid_eulerian import build_grid_eulerian_mesh
from .cpu_lagrangian import build_cpu_lagrangian_mesh
from .validation_grid import build_test_mesh

__all__ = [
    'BuilderFn',
    'BuilderRegistry',
    'build_terrain_eulerian_mesh',
    'build_grid_eulerian_mesh',
    'build_cpu_lagrangian_mesh',
    'build_test_mesh',
    'solve_wavefront_mesh',
]
