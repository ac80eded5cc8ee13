"""
Mesh Builder Registry

Maps builder type tags to builder functions. Register new builders with
the @BuilderRegistry.register(...) decorator.

A builder is a plain module-level function:

    builder(wave_source, coastline_bounds, terrain, tide_height, config) -> WavefrontMeshData

Module-level functions pickle by reference, so registered builders can run
in worker processes.
"""

from typing import Callable, Dict, List, Optional, Union

from ...config import MeshBuildConfig
from ...terrain.snapshot import TerrainSnapshot
from ..types import MeshBuildBounds, MeshBuilderType, WaveSource, WavefrontMeshData

BuilderFn = Callable[
    [WaveSource, Optional[MeshBuildBounds], TerrainSnapshot, float, MeshBuildConfig],
    WavefrontMeshData,
]


class BuilderRegistry:
    """
    Central registry of available mesh builders.

    Example:
        @BuilderRegistry.register(MeshBuilderType.TEST_GRID)
        def build_test_mesh(wave_source, coastline_bounds, terrain, tide_height, config):
            ...

        # Later
        builder = BuilderRegistry.get("test-grid")
    """

    _builders: Dict[MeshBuilderType, BuilderFn] = {}

    @classmethod
    def register(cls, builder_type: Union[MeshBuilderType, str]) -> Callable[[BuilderFn], BuilderFn]:
        """
        Decorator to register a builder function under a type tag.

        Args:
            builder_type: Builder type (enum member or its string value)

        Returns:
            Decorator returning the same function
        """
        key = MeshBuilderType(builder_type)

        def decorator(fn: BuilderFn) -> BuilderFn:
            cls._builders[key] = fn
            return fn

        return decorator

    @classmethod
    def get(cls, builder_type: Union[MeshBuilderType, str]) -> BuilderFn:
        """
        Get a registered builder.

        Raises:
            KeyError: If no builder is registered under that type
        """
        try:
            key = MeshBuilderType(builder_type)
        except ValueError:
            key = None
        if key not in cls._builders:
            available = ", ".join(t.value for t in cls._builders)
            raise KeyError(f"Unknown builder type '{builder_type}'. Available: {available}")
        return cls._builders[key]

    @classmethod
    def all(cls) -> Dict[MeshBuilderType, BuilderFn]:
        """Copy of the registered builders."""
        return dict(cls._builders)

    @classmethod
    def names(cls) -> List[str]:
        """Type tags of all registered builders."""
        return [t.value for t in cls._builders]
