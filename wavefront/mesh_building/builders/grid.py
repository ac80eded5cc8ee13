"""Regular grid helpers shared by the grid-based builders."""

import math
from typing import Tuple

import numpy as np

from ..types import MeshBuildBounds


def grid_shape(bounds: MeshBuildBounds, spacing: float) -> Tuple[int, int]:
    """(cols, rows) covering bounds at spacing, at least 2×2."""
    cols = max(2, math.ceil(bounds.width / spacing) + 1)
    rows = max(2, math.ceil(bounds.height / spacing) + 1)
    return cols, rows


def grid_points(bounds: MeshBuildBounds, spacing: float, cols: int, rows: int) -> np.ndarray:
    """Row-major (rows × cols, 2) grid positions starting at the min corner."""
    xs = bounds.min_x + spacing * np.arange(cols)
    ys = bounds.min_y + spacing * np.arange(rows)
    xx, yy = np.meshgrid(xs, ys)
    return np.column_stack([xx.ravel(), yy.ravel()])


def grid_triangles(cols: int, rows: int) -> np.ndarray:
    """
    Two triangles per quad, (tl, bl, tr) and (tr, bl, br).

    Returns:
        ((rows-1) * (cols-1) * 2, 3) int64 vertex indices
    """
    row, col = np.meshgrid(np.arange(rows - 1), np.arange(cols - 1), indexing='ij')
    tl = (row * cols + col).ravel()
    tr = tl + 1
    bl = ((row + 1) * cols + col).ravel()
    br = bl + 1
    tris = np.empty((len(tl), 2, 3), dtype=np.int64)
    tris[:, 0] = np.column_stack([tl, bl, tr])
    tris[:, 1] = np.column_stack([tr, bl, br])
    return tris.reshape(-1, 3)
