"""
Mesh Build Cache

On-disk cache of built WavefrontMeshData. Builds are deterministic, so a
mesh can be reused whenever every input that affects the output is
unchanged. Entries are stored as {key}.npz + {key}.json.
"""

import hashlib
import json
import logging
import zipfile
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from ..config import MeshBuildConfig
from ..terrain.snapshot import TerrainSnapshot
from .types import MeshBuildBounds, MeshBuilderType, WaveSource, WavefrontMeshData

logger = logging.getLogger(__name__)

# Bump when builder output changes for the same inputs
CACHE_VERSION = 1


def mesh_cache_key(
    terrain: TerrainSnapshot,
    wave_source: WaveSource,
    tide_height: float,
    coastline_bounds: Optional[MeshBuildBounds],
    builder_type: Union[MeshBuilderType, str],
    config: Optional[MeshBuildConfig] = None,
) -> str:
    """SHA-256 over every input that affects a build's output."""
    h = hashlib.sha256()
    h.update(f"wavefront-mesh-v{CACHE_VERSION}".encode())
    for buf in terrain.buffers():
        h.update(len(buf).to_bytes(8, 'little'))
        h.update(buf)
    h.update(np.array([
        terrain.contour_count,
        terrain.default_depth,
        tide_height,
        wave_source.wavelength,
        wave_source.direction,
    ], dtype=np.float64).tobytes())
    if coastline_bounds is None:
        h.update(b"no-bounds")
    else:
        h.update(np.array([
            coastline_bounds.min_x, coastline_bounds.min_y,
            coastline_bounds.max_x, coastline_bounds.max_y,
        ], dtype=np.float64).tobytes())
    h.update(str(builder_type).encode())
    h.update(json.dumps((config or MeshBuildConfig()).to_dict(), sort_keys=True).encode())
    return h.hexdigest()


class MeshCache:
    """Directory of cached meshes keyed by mesh_cache_key()."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.hits = 0
        self.misses = 0

    def _path(self, key: str) -> Path:
        return self.cache_dir / key

    def get(self, key: str) -> Optional[WavefrontMeshData]:
        """Cached mesh, or None on a miss or unreadable entry."""
        path = self._path(key)
        if not path.with_suffix('.npz').exists():
            self.misses += 1
            return None
        try:
            data = WavefrontMeshData.load(path)
        except (OSError, KeyError, ValueError, zipfile.BadZipFile) as e:
            logger.warning(f"Unreadable cache entry {key[:12]}: {e}")
            self.misses += 1
            return None
        self.hits += 1
        return data

    def put(self, key: str, data: WavefrontMeshData, metadata: Optional[dict] = None) -> Path:
        """Store a mesh under key."""
        meta = {'cache_version': CACHE_VERSION}
        if metadata:
            meta.update(metadata)
        return data.save(self._path(key), metadata=meta)

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self.cache_dir.glob('*.npz'))

    def __contains__(self, key: str) -> bool:
        return self._path(key).with_suffix('.npz').exists()

    def __len__(self) -> int:
        return len(self.keys())

    def clear(self) -> int:
        """Remove every entry. Returns number of entries removed."""
        n = 0
        for p in self.cache_dir.glob('*.npz'):
            p.unlink()
            p.with_suffix('.json').unlink(missing_ok=True)
            n += 1
        logger.info(f"Cleared {n} cached meshes from {self.cache_dir}")
        return n
