"""
Mesh Adjacency

Index-based vertex→neighbour and vertex→triangle maps, built once per
build from the final triangle list and owned by that build.
"""

from dataclasses import dataclass
from typing import List, Set

import numpy as np


@dataclass
class MeshAdjacency:
    """Per-vertex neighbour sets and incident triangle lists."""
    vertex_neighbors: List[Set[int]]
    vertex_triangles: List[List[int]]

    @property
    def n_vertices(self) -> int:
        return len(self.vertex_neighbors)

    def sorted_neighbors(self, v: int) -> List[int]:
        return sorted(self.vertex_neighbors[v])


def build_adjacency(n_vertices: int, triangles: np.ndarray) -> MeshAdjacency:
    """
    Build vertex adjacency maps from a triangle list.

    Args:
        n_vertices: Number of mesh vertices
        triangles: (m, 3) vertex indices

    Returns:
        MeshAdjacency with neighbours and incident triangles per vertex
    """
    neighbors: List[Set[int]] = [set() for _ in range(n_vertices)]
    vertex_tris: List[List[int]] = [[] for _ in range(n_vertices)]

    for t, (a, b, c) in enumerate(np.asarray(triangles).reshape(-1, 3).tolist()):
        vertex_tris[a].append(t)
        vertex_tris[b].append(t)
        vertex_tris[c].append(t)

        neighbors[a].add(b)
        neighbors[a].add(c)
        neighbors[b].add(a)
        neighbors[b].add(c)
        neighbors[c].add(a)
        neighbors[c].add(b)

    return MeshAdjacency(vertex_neighbors=neighbors, vertex_triangles=vertex_tris)
