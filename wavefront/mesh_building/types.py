"""
Shared types for the mesh building system.

These types flow between the coordinator and the worker pool:
- The coordinator packs terrain + wave data into build requests
- Workers produce WavefrontMeshData (plain arrays, no device resources)
- The coordinator creates WavefrontMesh objects from the mesh data
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional

import numpy as np

from ..config import MeshBuildConfig
from ..constants import GRAVITY, TWO_PI, VERTEX_FLOATS

if TYPE_CHECKING:
    from ..terrain.snapshot import TerrainSnapshot


class MeshBuilderType(str, Enum):
    """Builder type identifier"""
    TERRAIN_EULERIAN = "terrain-eulerian"
    GRID_EULERIAN = "grid-eulerian"
    CPU_LAGRANGIAN = "cpu-lagrangian"
    TEST_GRID = "test-grid"

    def __str__(self) -> str:
        return self.value


class BuildState(str, Enum):
    """Lifecycle of a single build request"""
    PENDING = "pending"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class WaveSource:
    """
    A single swell component.

    Attributes:
        wavelength: Wavelength λ (ft), must be positive
        direction: Propagation direction (radians, 0 = +X, π/2 = +Y)
        amplitude: Wave amplitude (ft), not used by the builders
        index: Position of this source in the caller's wave list
    """
    wavelength: float
    direction: float
    amplitude: float = 1.0
    index: int = 0

    def __post_init__(self):
        if not (self.wavelength > 0 and math.isfinite(self.wavelength)):
            raise ValueError(f"wavelength must be a positive finite number, got {self.wavelength}")
        if not math.isfinite(self.direction):
            raise ValueError(f"direction must be finite, got {self.direction}")

    @property
    def direction_vec(self):
        return math.cos(self.direction), math.sin(self.direction)

    @property
    def k(self) -> float:
        """Wavenumber (rad/ft)"""
        return TWO_PI / self.wavelength

    @property
    def omega(self) -> float:
        """Deep-water angular frequency (rad/s)"""
        return math.sqrt(GRAVITY * self.k)

    def to_dict(self) -> Dict:
        return {
            'wavelength': self.wavelength,
            'direction': self.direction,
            'amplitude': self.amplitude,
            'index': self.index,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> 'WaveSource':
        return cls(
            wavelength=d['wavelength'],
            direction=d['direction'],
            amplitude=d.get('amplitude', 1.0),
            index=d.get('index', 0),
        )


@dataclass(frozen=True)
class MeshBuildBounds:
    """Axis-aligned bounding box"""
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def expanded(self, margin: float) -> 'MeshBuildBounds':
        return MeshBuildBounds(
            self.min_x - margin, self.min_y - margin,
            self.max_x + margin, self.max_y + margin,
        )

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    @classmethod
    def square(cls, half_extent: float) -> 'MeshBuildBounds':
        """Box centred on the origin"""
        return cls(-half_extent, -half_extent, half_extent, half_extent)


@dataclass(eq=False)
class WavefrontMeshData:
    """
    Plain mesh data produced by a builder and handed to the renderer.

    vertices holds 6 floats per vertex:
    [x, y, amplitudeFactor, directionOffset, phaseOffset, blendWeight]
    """

    vertices: np.ndarray    # float32, (6 * vertex_count,)
    indices: np.ndarray     # uint32, triangle list

    def __post_init__(self):
        self.vertices = np.ascontiguousarray(self.vertices, dtype=np.float32).ravel()
        self.indices = np.ascontiguousarray(self.indices, dtype=np.uint32).ravel()
        if len(self.vertices) % VERTEX_FLOATS != 0:
            raise ValueError(
                f"vertices length {len(self.vertices)} is not a multiple of {VERTEX_FLOATS}"
            )
        if len(self.indices) % 3 != 0:
            raise ValueError(f"indices length {len(self.indices)} is not a multiple of 3")

    @property
    def vertex_count(self) -> int:
        return len(self.vertices) // VERTEX_FLOATS

    @property
    def index_count(self) -> int:
        return len(self.indices)

    @property
    def triangle_count(self) -> int:
        return self.index_count // 3

    @property
    def is_empty(self) -> bool:
        return self.vertex_count == 0 or self.index_count == 0

    @classmethod
    def empty(cls) -> 'WavefrontMeshData':
        """Mesh with no coverage"""
        return cls(np.zeros(0, dtype=np.float32), np.zeros(0, dtype=np.uint32))

    @classmethod
    def from_columns(
        cls,
        x: np.ndarray,
        y: np.ndarray,
        amplitude: np.ndarray,
        direction_offset: np.ndarray,
        phase_offset: np.ndarray,
        blend_weight: np.ndarray,
        indices: np.ndarray,
    ) -> 'WavefrontMeshData':
        """Interleave per-vertex columns into the packed vertex layout."""
        vertices = np.column_stack([
            x, y, amplitude, direction_offset, phase_offset, blend_weight,
        ]).astype(np.float32)
        return cls(vertices.ravel(), indices)

    def vertex_view(self) -> np.ndarray:
        """Vertices as an (n, 6) view"""
        return self.vertices.reshape(-1, VERTEX_FLOATS)

    def triangle_view(self) -> np.ndarray:
        """Indices as an (n_triangles, 3) view"""
        return self.indices.reshape(-1, 3)

    def summary(self) -> str:
        """Generate a summary string"""
        if self.is_empty:
            return "WavefrontMeshData: empty"
        v = self.vertex_view()
        lines = [
            f"WavefrontMeshData: {self.vertex_count} vertices, {self.triangle_count} triangles",
            f"  X range: {v[:, 0].min():.1f} to {v[:, 0].max():.1f}",
            f"  Y range: {v[:, 1].min():.1f} to {v[:, 1].max():.1f}",
            f"  Amplitude: {v[:, 2].min():.3f} to {v[:, 2].max():.3f} (mean {v[:, 2].mean():.3f})",
            f"  Direction offset: {v[:, 3].min():.3f} to {v[:, 3].max():.3f} rad",
            f"  Blend weight 1: {int((v[:, 5] > 0.5).sum())} of {self.vertex_count}",
        ]
        return "\n".join(lines)

    def save(self, path: Path, metadata: Optional[Dict] = None) -> Path:
        """
        Save mesh to {path}.npz with a {path}.json metadata sidecar.

        Args:
            path: Output path (suffix is replaced)
            metadata: Extra JSON-serializable fields for the sidecar

        Returns:
            Path of the .npz file
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        npz_path = path.with_suffix('.npz')
        np.savez_compressed(npz_path, vertices=self.vertices, indices=self.indices)

        meta = {
            'vertex_count': self.vertex_count,
            'index_count': self.index_count,
        }
        if metadata:
            meta.update(metadata)
        with open(path.with_suffix('.json'), 'w') as f:
            json.dump(meta, f, indent=2)
        return npz_path

    @classmethod
    def load(cls, path: Path) -> 'WavefrontMeshData':
        """Load mesh data written by save()."""
        path = Path(path)
        with np.load(path.with_suffix('.npz')) as data:
            return cls(data['vertices'], data['indices'])


@dataclass
class MeshBuildRequest:
    """What a worker receives"""
    request_id: int
    order: int
    builder_type: MeshBuilderType
    wave_source: WaveSource
    terrain: 'TerrainSnapshot'
    coastline_bounds: Optional[MeshBuildBounds]
    tide_height: float
    config: MeshBuildConfig = field(default_factory=MeshBuildConfig)

    @property
    def label(self) -> str:
        return f"{self.builder_type} wave {self.wave_source.index}"


@dataclass
class MeshBuildResult:
    """What a worker returns on success"""
    request_id: int
    order: int
    builder_type: MeshBuilderType
    wave_source: WaveSource
    mesh_data: WavefrontMeshData
    build_time_ms: float
    from_cache: bool = False
