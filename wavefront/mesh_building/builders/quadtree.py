"""
Quadtree Grid Simplification

Collapses a solved regular grid into larger square cells wherever the
corner values bilinearly reproduce every interior grid point, then
triangulates the cells without T-junctions.

Steps:
1. Merge bottom-up: four level-(L-1) cells become one level-L cell when the
   bilinear error of amplitude, direction and phase stays under threshold
2. Enforce 2:1 grading: a cell may be at most one level coarser than any
   cell across its edges
3. Triangulate: unsplit edges give two triangles per cell; a cell with
   finer neighbours is fanned from its centre through the hanging nodes

Cells are indexed by base cell (row, col), i.e. the grid cell whose top-left
grid point is (row, col). A level-L cell spans 2^L base cells per side and
is stored as a uniform block of L values in the (rows-1, cols-1) level map.
"""

import math
from typing import List, Tuple

import numpy as np

# Normalization of direction and phase errors against amplitude error
DIRECTION_ERROR_SCALE = 0.5
PHASE_ERROR_SCALE = math.pi


def cell_error(
    row: int,
    col: int,
    size: int,
    amplitude: np.ndarray,
    direction_offset: np.ndarray,
    phase_offset: np.ndarray,
) -> float:
    """
    Max normalized bilinear interpolation error over a cell's grid points.

    Args:
        row, col: Grid point of the cell's top-left corner
        size: Cell size in grid spacings
        amplitude, direction_offset, phase_offset: (rows, cols) fields

    Returns:
        max(|Δamp|, |Δdir| / 0.5, |Δphase| / π) over the cell
    """
    f = np.linspace(0.0, 1.0, size + 1)
    fy, fx = np.meshgrid(f, f, indexing='ij')
    w_tl = (1 - fx) * (1 - fy)
    w_tr = fx * (1 - fy)
    w_bl = (1 - fx) * fy
    w_br = fx * fy

    error = 0.0
    for field, scale in (
        (amplitude, 1.0),
        (direction_offset, DIRECTION_ERROR_SCALE),
        (phase_offset, PHASE_ERROR_SCALE),
    ):
        block = field[row:row + size + 1, col:col + size + 1]
        interp = (
            block[0, 0] * w_tl + block[0, -1] * w_tr
            + block[-1, 0] * w_bl + block[-1, -1] * w_br
        )
        error = max(error, float(np.max(np.abs(block - interp))) / scale)
    return error


def merge_cells(
    amplitude: np.ndarray,
    direction_offset: np.ndarray,
    phase_offset: np.ndarray,
    threshold: float,
    max_level: int,
) -> np.ndarray:
    """
    Bottom-up quadtree merge.

    Returns:
        (rows-1, cols-1) uint8 level of the cell each base cell belongs to
    """
    rows, cols = amplitude.shape
    cell_level = np.zeros((rows - 1, cols - 1), dtype=np.uint8)

    for level in range(1, max_level + 1):
        size = 1 << level
        for row in range(0, rows - size, size):
            for col in range(0, cols - size, size):
                block = cell_level[row:row + size, col:col + size]
                if np.any(block != level - 1):
                    continue
                if cell_error(row, col, size, amplitude, direction_offset, phase_offset) < threshold:
                    block[:] = level

    return cell_level


def _neighbor_levels(cell_level: np.ndarray, row: int, col: int, size: int) -> List[np.ndarray]:
    """Levels of the base cells just outside each edge of a cell."""
    n_rows, n_cols = cell_level.shape
    strips = []
    if row > 0:
        strips.append(cell_level[row - 1, col:col + size])
    if row + size < n_rows:
        strips.append(cell_level[row + size, col:col + size])
    if col > 0:
        strips.append(cell_level[row:row + size, col - 1])
    if col + size < n_cols:
        strips.append(cell_level[row:row + size, col + size])
    return strips


def enforce_grading(cell_level: np.ndarray) -> int:
    """
    Split cells until no cell is more than one level coarser than a neighbour.

    Modifies cell_level in place.

    Returns:
        Number of splits performed
    """
    splits = 0
    changed = True
    while changed:
        changed = False
        for row, col, size in iter_cells(cell_level):
            strips = _neighbor_levels(cell_level, row, col, size)
            if size == 1 or not strips:
                continue
            level = int(cell_level[row, col])
            finest = min(int(s.min()) for s in strips)
            if level - finest > 1:
                cell_level[row:row + size, col:col + size] = level - 1
                splits += 1
                changed = True
    return splits


def iter_cells(cell_level: np.ndarray):
    """Yield (row, col, size) for every quadtree cell, row-major by top-left corner."""
    n_rows, n_cols = cell_level.shape
    for row in range(n_rows):
        for col in range(n_cols):
            size = 1 << int(cell_level[row, col])
            if row % size == 0 and col % size == 0:
                yield row, col, size


def _edge_breaks(levels: np.ndarray, start: int, size: int) -> List[int]:
    """
    Corner positions of finer neighbour cells strictly inside an edge.

    Args:
        levels: Neighbour base-cell levels along the edge
        start: Grid coordinate where the edge starts
        size: Edge length in grid spacings
    """
    breaks = set()
    for i, level in enumerate(levels.tolist()):
        s = 1 << level
        if s >= size:
            continue
        lo = start + i - (start + i) % s
        for p in (lo, lo + s):
            if start < p < start + size:
                breaks.add(p)
    return sorted(breaks)


def hanging_nodes(cell_level: np.ndarray, row: int, col: int, size: int, cols: int) -> Tuple[List[int], ...]:
    """
    Grid indices of hanging nodes on each edge of a cell.

    Returns:
        (top, right, bottom, left), each ordered by increasing column or row
    """
    n_rows, n_cols = cell_level.shape
    top, right, bottom, left = [], [], [], []
    if row > 0:
        top = [row * cols + c for c in _edge_breaks(cell_level[row - 1, col:col + size], col, size)]
    if row + size < n_rows:
        bottom = [(row + size) * cols + c
                  for c in _edge_breaks(cell_level[row + size, col:col + size], col, size)]
    if col > 0:
        left = [r * cols + col for r in _edge_breaks(cell_level[row:row + size, col - 1], row, size)]
    if col + size < n_cols:
        right = [r * cols + col + size
                 for r in _edge_breaks(cell_level[row:row + size, col + size], row, size)]
    return top, right, bottom, left


def triangulate_cells(cell_level: np.ndarray, cols: int) -> np.ndarray:
    """
    Triangulate quadtree cells in grid-index space.

    Winding matches the regular grid's (tl, bl, tr) triangles.

    Returns:
        (m, 3) int64 grid indices
    """
    triangles = []
    for row, col, size in iter_cells(cell_level):
        tl = row * cols + col
        tr = tl + size
        bl = (row + size) * cols + col
        br = bl + size

        top, right, bottom, left = hanging_nodes(cell_level, row, col, size, cols)
        if not (top or right or bottom or left):
            triangles.append((tl, bl, tr))
            triangles.append((tr, bl, br))
            continue

        # Clockwise in grid coordinates: TL -> TR -> BR -> BL
        center = (row + size // 2) * cols + col + size // 2
        ring = [tl, *top, tr, *right, br, *reversed(bottom), bl, *reversed(left)]
        for i in range(len(ring)):
            triangles.append((center, ring[(i + 1) % len(ring)], ring[i]))

    return np.asarray(triangles, dtype=np.int64).reshape(-1, 3)


def simplify_grid(
    cols: int,
    rows: int,
    amplitude: np.ndarray,
    direction_offset: np.ndarray,
    phase_offset: np.ndarray,
    threshold: float = 0.02,
    max_level: int = 5,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Simplify a row-major grid mesh.

    Args:
        cols, rows: Grid dimensions in points
        amplitude, direction_offset, phase_offset: (rows * cols,) per-point values
        threshold: Max normalized bilinear error of a merged cell
        max_level: Coarsest cell is 2^max_level grid spacings per side

    Returns:
        (kept, triangles): sorted grid indices of the kept points, and
        (m, 3) triangles indexing into kept
    """
    fields = [np.asarray(f, dtype=np.float64).reshape(rows, cols)
              for f in (amplitude, direction_offset, phase_offset)]
    cell_level = merge_cells(*fields, threshold=threshold, max_level=max_level)
    enforce_grading(cell_level)

    grid_tris = triangulate_cells(cell_level, cols)
    kept, inverse = np.unique(grid_tris, return_inverse=True)
    return kept, inverse.reshape(-1, 3).astype(np.int64)
