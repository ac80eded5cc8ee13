"""
Terrain Snapshot

Read-only terrain data handed to the mesh builders. Mirrors the packed
terrain buffer layout used by the renderer:

- vertex_data: interleaved contour polygon vertices (x0, y0, x1, y1, ...)
- contour_data: one 13-word record per contour, stored in DFS pre-order
- children_data: flat child-index list addressed from the contour records
- default_depth: terrain height outside every contour (negative = underwater)

Build requests own a clone() of the snapshot; the worker that receives a
request takes the buffers with it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from ..constants import FLOATS_PER_CONTOUR

if TYPE_CHECKING:
    from ..mesh_building.types import MeshBuildBounds


# Packed contour record (13 little-endian 32-bit words, mixed types)
CONTOUR_DTYPE = np.dtype([
    ('point_start_index', '<u4'),
    ('point_count', '<u4'),
    ('height', '<f4'),
    ('parent_index', '<i4'),
    ('depth', '<u4'),
    ('child_start_index', '<u4'),
    ('child_count', '<u4'),
    ('is_coastline', '<u4'),
    ('bbox_min_x', '<f4'),
    ('bbox_min_y', '<f4'),
    ('bbox_max_x', '<f4'),
    ('bbox_max_y', '<f4'),
    ('skip_count', '<u4'),
])


class ContourTable(NamedTuple):
    """Contour records unpacked into contiguous per-field arrays (Numba-friendly)."""
    point_start: np.ndarray   # int64
    point_count: np.ndarray   # int64
    height: np.ndarray        # float64
    depth: np.ndarray         # int64
    child_start: np.ndarray   # int64
    child_count: np.ndarray   # int64
    skip_count: np.ndarray    # int64
    is_coastline: np.ndarray  # bool
    bbox: np.ndarray          # float64, (n_contours, 4): min_x, min_y, max_x, max_y


@dataclass
class ContourSpec:
    """
    Simple contour definition used to assemble a TerrainSnapshot.

    Attributes:
        polygon: Polygon vertices as (x, y) pairs, CCW winding for land
        height: Contour height (positive = above sea level)
        parent_index: Index of the parent contour (-1 for a root)
        children: Indices of child contours
        is_coastline: Coastline flag; defaults to height == 0
    """
    polygon: Sequence[Tuple[float, float]]
    height: float
    parent_index: int = -1
    children: Sequence[int] = field(default_factory=tuple)
    is_coastline: Optional[bool] = None


@dataclass
class TerrainSnapshot:
    """Packed terrain data consumed by the wavefront mesh builders."""

    vertex_data: np.ndarray     # float32, (2 * n_vertices,)
    contour_data: np.ndarray    # uint32, (13 * n_contours,)
    children_data: np.ndarray   # uint32
    contour_count: int
    default_depth: float

    def __post_init__(self):
        self.vertex_data = np.ascontiguousarray(self.vertex_data, dtype=np.float32)
        self.contour_data = np.ascontiguousarray(self.contour_data, dtype=np.uint32)
        self.children_data = np.ascontiguousarray(self.children_data, dtype=np.uint32)
        self.contour_count = int(self.contour_count)
        self.default_depth = float(self.default_depth)

        if self.vertex_data.ndim != 1 or len(self.vertex_data) % 2 != 0:
            raise ValueError(
                f"vertex_data must be a flat array of interleaved x,y pairs, "
                f"got shape {self.vertex_data.shape}"
            )
        expected = self.contour_count * FLOATS_PER_CONTOUR
        if len(self.contour_data) != expected:
            raise ValueError(
                f"contour_data has {len(self.contour_data)} words, expected {expected} "
                f"for {self.contour_count} contours"
            )
        self._table: Optional[ContourTable] = None

    @property
    def n_vertices(self) -> int:
        return len(self.vertex_data) // 2

    @property
    def records(self) -> np.ndarray:
        """Structured view of the contour records (no copy)."""
        return self.contour_data.view(CONTOUR_DTYPE)

    @property
    def points(self) -> np.ndarray:
        """Contour vertices as an (n_vertices, 2) float32 view."""
        return self.vertex_data.reshape(-1, 2)

    def contour_table(self) -> ContourTable:
        """Unpack contour records once into contiguous arrays."""
        if self._table is None:
            rec = self.records
            self._table = ContourTable(
                point_start=rec['point_start_index'].astype(np.int64),
                point_count=rec['point_count'].astype(np.int64),
                height=rec['height'].astype(np.float64),
                depth=rec['depth'].astype(np.int64),
                child_start=rec['child_start_index'].astype(np.int64),
                child_count=rec['child_count'].astype(np.int64),
                skip_count=rec['skip_count'].astype(np.int64),
                is_coastline=rec['is_coastline'] != 0,
                bbox=np.column_stack([
                    rec['bbox_min_x'], rec['bbox_min_y'],
                    rec['bbox_max_x'], rec['bbox_max_y'],
                ]).astype(np.float64).reshape(-1, 4),
            )
        return self._table

    def contour_polygon(self, contour_index: int) -> np.ndarray:
        """Polygon vertices of one contour as an (n, 2) float64 array."""
        table = self.contour_table()
        start = int(table.point_start[contour_index])
        count = int(table.point_count[contour_index])
        return self.points[start:start + count].astype(np.float64)

    def coastline_bounds(self) -> Optional['MeshBuildBounds']:
        """Union bounding box of all coastline contours, or None if there are none."""
        from ..mesh_building.types import MeshBuildBounds

        table = self.contour_table()
        if not np.any(table.is_coastline):
            return None
        boxes = table.bbox[table.is_coastline]
        return MeshBuildBounds(
            min_x=float(boxes[:, 0].min()),
            min_y=float(boxes[:, 1].min()),
            max_x=float(boxes[:, 2].max()),
            max_y=float(boxes[:, 3].max()),
        )

    def clone(self) -> 'TerrainSnapshot':
        """Deep copy of every buffer; the copy can be handed off to a worker."""
        return TerrainSnapshot(
            vertex_data=self.vertex_data.copy(),
            contour_data=self.contour_data.copy(),
            children_data=self.children_data.copy(),
            contour_count=self.contour_count,
            default_depth=self.default_depth,
        )

    def __getstate__(self):
        # The unpacked table is rebuilt on demand on the receiving side
        state = self.__dict__.copy()
        state['_table'] = None
        return state

    def buffers(self) -> List[bytes]:
        """Raw bytes of every buffer, in a fixed order (for hashing)."""
        return [
            self.vertex_data.tobytes(),
            self.contour_data.tobytes(),
            self.children_data.tobytes(),
        ]

    # =========================================================================
    # Construction helpers
    # =========================================================================

    @classmethod
    def empty(cls, default_depth: float) -> 'TerrainSnapshot':
        """Terrain with no contours: a flat seabed at default_depth."""
        return cls(
            vertex_data=np.zeros(0, dtype=np.float32),
            contour_data=np.zeros(0, dtype=np.uint32),
            children_data=np.zeros(0, dtype=np.uint32),
            contour_count=0,
            default_depth=default_depth,
        )

    @classmethod
    def from_contours(
        cls,
        contours: Sequence[ContourSpec],
        default_depth: float,
    ) -> 'TerrainSnapshot':
        """
        Pack simple contour definitions into the terrain buffer layout.

        Contours must be provided in DFS pre-order (parents before children).
        Tree depth, skip counts and bounding boxes are computed here.
        """
        n = len(contours)

        # Children flat array
        child_start_indices: List[int] = []
        children_flat: List[int] = []
        for c in contours:
            child_start_indices.append(len(children_flat))
            children_flat.extend(int(ci) for ci in c.children)

        # Distance from root in the containment tree
        depths = [0] * n
        for i, c in enumerate(contours):
            if c.parent_index >= 0:
                if c.parent_index >= i:
                    raise ValueError(
                        f"Contour {i} has parent {c.parent_index}; contours must be in DFS pre-order"
                    )
                depths[i] = depths[c.parent_index] + 1

        # Number of descendants
        skip_counts = [0] * n
        for i in range(n - 1, -1, -1):
            parent = contours[i].parent_index
            if parent >= 0:
                skip_counts[parent] += skip_counts[i] + 1

        records = np.zeros(n, dtype=CONTOUR_DTYPE)
        polygons = []
        vertex_index = 0
        for i, c in enumerate(contours):
            poly = np.asarray(c.polygon, dtype=np.float64).reshape(-1, 2)
            if len(poly) < 3:
                raise ValueError(f"Contour {i} has {len(poly)} vertices; at least 3 required")
            polygons.append(poly)

            is_coastline = c.is_coastline if c.is_coastline is not None else c.height == 0

            rec = records[i]
            rec['point_start_index'] = vertex_index
            rec['point_count'] = len(poly)
            rec['height'] = c.height
            rec['parent_index'] = c.parent_index
            rec['depth'] = depths[i]
            rec['child_start_index'] = child_start_indices[i]
            rec['child_count'] = len(c.children)
            rec['is_coastline'] = 1 if is_coastline else 0
            rec['bbox_min_x'] = poly[:, 0].min()
            rec['bbox_min_y'] = poly[:, 1].min()
            rec['bbox_max_x'] = poly[:, 0].max()
            rec['bbox_max_y'] = poly[:, 1].max()
            rec['skip_count'] = skip_counts[i]

            vertex_index += len(poly)

        if polygons:
            vertex_data = np.concatenate(polygons).astype(np.float32).ravel()
        else:
            vertex_data = np.zeros(0, dtype=np.float32)

        return cls(
            vertex_data=vertex_data,
            contour_data=records.view(np.uint32).copy(),
            children_data=np.asarray(children_flat, dtype=np.uint32),
            contour_count=n,
            default_depth=default_depth,
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    def save(self, path: Path) -> Path:
        """Save buffers to {path}.npz with a small JSON sidecar."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        npz_path = path.with_suffix('.npz')
        np.savez_compressed(
            npz_path,
            vertex_data=self.vertex_data,
            contour_data=self.contour_data,
            children_data=self.children_data,
        )
        with open(path.with_suffix('.json'), 'w') as f:
            json.dump({
                'contour_count': self.contour_count,
                'default_depth': self.default_depth,
                'n_vertices': self.n_vertices,
            }, f, indent=2)
        return npz_path

    @classmethod
    def load(cls, path: Path) -> 'TerrainSnapshot':
        """Load a snapshot written by save()."""
        path = Path(path)
        with open(path.with_suffix('.json')) as f:
            meta = json.load(f)
        with np.load(path.with_suffix('.npz')) as data:
            return cls(
                vertex_data=data['vertex_data'],
                contour_data=data['contour_data'],
                children_data=data['children_data'],
                contour_count=meta['contour_count'],
                default_depth=meta['default_depth'],
            )
