"""
Wavefront Mesh

Device-resident wavefront mesh for one wave source. Owns a vertex buffer
and an index buffer plus CPU mirrors of both. Buffers are written once at
creation and destroyed together; any change means destroy and rebuild.

Device packing for the renderer is handled elsewhere. The default
HostDevice keeps read-only numpy copies, which is enough for CPU-side
queries and tests.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Union

import numpy as np

from .constants import VERTEX_FLOATS
from .mesh_building.types import MeshBuilderType, WaveSource, WavefrontMeshData

logger = logging.getLogger(__name__)


class DeviceBuffer(Protocol):
    label: str

    def destroy(self) -> None:
        ...


class MeshDevice(Protocol):
    """Anything that can create write-once buffers."""

    def create_buffer(self, data: np.ndarray, usage: str, label: str) -> DeviceBuffer:
        ...


@dataclass
class HostBuffer:
    """Read-only host-memory buffer."""
    data: np.ndarray
    usage: str
    label: str
    destroyed: bool = False
    on_destroy: Optional[Callable[['HostBuffer'], None]] = field(default=None, repr=False, compare=False)

    @property
    def size_bytes(self) -> int:
        return 0 if self.destroyed else int(self.data.nbytes)

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        self.data = np.zeros(0, dtype=self.data.dtype)
        if self.on_destroy is not None:
            self.on_destroy(self)
            self.on_destroy = None


@dataclass
class HostDevice:
    """Default device: buffers are numpy copies in host memory."""
    buffers_created: int = 0
    # Live buffers by id; a destroyed buffer removes itself
    _live: Dict[int, HostBuffer] = field(default_factory=dict, repr=False)

    def create_buffer(self, data: np.ndarray, usage: str, label: str) -> HostBuffer:
        copy = np.array(data, copy=True)
        copy.setflags(write=False)
        buf = HostBuffer(data=copy, usage=usage, label=label, on_destroy=self._release)
        self.buffers_created += 1
        self._live[id(buf)] = buf
        return buf

    def _release(self, buf: HostBuffer) -> None:
        self._live.pop(id(buf), None)

    def count_live(self) -> int:
        return len(self._live)


class WavefrontMesh:
    """Device buffers + CPU mirror of one built wavefront mesh."""

    def __init__(
        self,
        vertex_buffer: DeviceBuffer,
        index_buffer: DeviceBuffer,
        vertices: np.ndarray,
        indices: np.ndarray,
        wave_source: WaveSource,
        builder_type: Union[MeshBuilderType, str],
        build_time_ms: float,
    ):
        self.vertex_buffer = vertex_buffer
        self.index_buffer = index_buffer
        self.vertices = vertices
        self.indices = indices
        self.wave_source = wave_source
        self.builder_type = builder_type
        self.build_time_ms = build_time_ms
        self._destroyed = False

    @classmethod
    def from_mesh_data(
        cls,
        data: WavefrontMeshData,
        wave_source: WaveSource,
        builder_type: Union[MeshBuilderType, str],
        build_time_ms: float = 0.0,
        device: Optional[MeshDevice] = None,
    ) -> 'WavefrontMesh':
        """Upload mesh data to the device."""
        device = device if device is not None else HostDevice()
        tag = str(builder_type)
        vertex_buffer = device.create_buffer(data.vertices, "vertex", f"wavefront-{tag}-vertices-{wave_source.index}")
        index_buffer = device.create_buffer(data.indices, "index", f"wavefront-{tag}-indices-{wave_source.index}")

        vertices = data.vertices.copy()
        indices = data.indices.copy()
        vertices.setflags(write=False)
        indices.setflags(write=False)

        return cls(
            vertex_buffer=vertex_buffer,
            index_buffer=index_buffer,
            vertices=vertices,
            indices=indices,
            wave_source=wave_source,
            builder_type=builder_type,
            build_time_ms=build_time_ms,
        )

    @property
    def vertex_count(self) -> int:
        return len(self.vertices) // VERTEX_FLOATS

    @property
    def index_count(self) -> int:
        return len(self.indices)

    @property
    def is_empty(self) -> bool:
        return self.vertex_count == 0 or self.index_count == 0

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def to_mesh_data(self) -> WavefrontMeshData:
        """CPU mirror as mesh data."""
        return WavefrontMeshData(self.vertices.copy(), self.indices.copy())

    def destroy(self) -> None:
        """Release both buffers. Destroying twice is a no-op."""
        if self._destroyed:
            return
        self.vertex_buffer.destroy()
        self.index_buffer.destroy()
        self._destroyed = True
        logger.debug(f"Destroyed {self.builder_type} mesh for wave {self.wave_source.index}")

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else f"{self.vertex_count} vertices"
        return f"WavefrontMesh({self.builder_type}, wave {self.wave_source.index}, {state})"
