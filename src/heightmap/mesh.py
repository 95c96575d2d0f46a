from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import numpy as np


class HeightDecoder(Protocol):
    def decode_height(self, vertices: Any, index: int) -> float: ...


@dataclass(frozen=True)
class VertexHeightEncoding:
    """Vertices stored as rows of ``(longitude, latitude, height)``."""

    height_column: int = 2

    def decode_height(self, vertices: Any, index: int) -> float:
        return float(vertices[index, self.height_column])


@dataclass(frozen=True)
class BoundingSphere:
    center: tuple[float, float, float]
    radius: float


@dataclass(frozen=True)
class TerrainMesh:
    """Renderable geometry built once from a heightmap.

    Heights are only read back through ``encoding``; the vertex layout belongs
    to whoever built the mesh.
    """

    center: tuple[float, float, float]
    vertices: np.ndarray
    indices: np.ndarray
    minimum_height: float
    maximum_height: float
    bounding_sphere: BoundingSphere
    encoding: HeightDecoder
    exaggeration: float
    grid_width: int
    grid_height: int
    skirt_height: float
    west_indices_south_to_north: Sequence[int] = ()
    south_indices_east_to_west: Sequence[int] = ()
    east_indices_north_to_south: Sequence[int] = ()
    north_indices_west_to_east: Sequence[int] = ()

    def decode_height(self, index: int) -> float:
        return self.encoding.decode_height(self.vertices, index)
