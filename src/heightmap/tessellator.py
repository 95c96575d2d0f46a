from __future__ import annotations

import asyncio
import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass
from functools import partial
from typing import Any, Optional

import numpy as np

from .codec import decode_height
from .mesh import BoundingSphere, TerrainMesh, VertexHeightEncoding
from .structure import HeightmapStructure
from .tiling import WGS84_A, Rectangle

logger = logging.getLogger(__name__)

WGS84_F = 1.0 / 298.257223563
WGS84_E2 = WGS84_F * (2.0 - WGS84_F)


def wgs84_to_ecef(
    lon_deg: float, lat_deg: float, height_m: float
) -> tuple[float, float, float]:
    lon = math.radians(float(lon_deg))
    lat = math.radians(float(lat_deg))
    sin_lat = math.sin(lat)
    cos_lat = math.cos(lat)
    sin_lon = math.sin(lon)
    cos_lon = math.cos(lon)

    n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
    x = (n + height_m) * cos_lat * cos_lon
    y = (n + height_m) * cos_lat * sin_lon
    z = (n * (1.0 - WGS84_E2) + height_m) * sin_lat
    return x, y, z


def regular_grid_indices(width: int, height: int) -> np.ndarray:
    """Triangle indices for a north-to-south row-major grid.

    Every quad is split along its south-west to north-east diagonal.
    """

    if width < 2 or height < 2:
        raise ValueError(f"Grid must be at least 2x2, got {width}x{height}")

    indices: list[int] = []
    for row in range(height - 1):
        for col in range(width - 1):
            nw = row * width + col
            ne = nw + 1
            sw = nw + width
            se = sw + 1
            indices.extend([nw, sw, ne, ne, sw, se])
    return np.asarray(indices, dtype=np.uint32)


def _bounding_sphere(
    rect: Rectangle, min_h: float, max_h: float
) -> tuple[tuple[float, float, float], BoundingSphere]:
    center_lon, center_lat = rect.center()
    center_height = (min_h + max_h) / 2.0
    center = wgs84_to_ecef(
        math.degrees(center_lon), math.degrees(center_lat), center_height
    )

    corners = [
        (rect.west, rect.south),
        (rect.east, rect.south),
        (rect.west, rect.north),
        (rect.east, rect.north),
    ]
    max_radius = 0.0
    for lon, lat in corners:
        for h in (min_h, max_h):
            x, y, z = wgs84_to_ecef(math.degrees(lon), math.degrees(lat), h)
            dx = x - center[0]
            dy = y - center[1]
            dz = z - center[2]
            max_radius = max(max_radius, math.sqrt(dx * dx + dy * dy + dz * dz))
    return center, BoundingSphere(center=center, radius=max_radius)


def compute_vertices(
    heightmap: Any,
    structure: HeightmapStructure,
    width: int,
    height: int,
    rectangle: Rectangle,
    skirt_height: float = 0.0,
    exaggeration: float = 1.0,
) -> TerrainMesh:
    """Build a grid mesh from a heightmap buffer.

    With ``skirt_height > 0`` the grid gains a one-sample ring whose vertices
    repeat the nearest edge sample lowered by ``skirt_height``.
    """

    if width < 2 or height < 2:
        raise ValueError(f"Heightmap must be at least 2x2, got {width}x{height}")

    border = 1 if skirt_height > 0 else 0
    grid_width = width + 2 * border
    grid_height = height + 2 * border

    samples = np.empty(width * height, dtype=np.float64)
    for index in range(width * height):
        raw = decode_height(heightmap, structure, index)
        samples[index] = (
            raw * structure.height_scale + structure.height_offset
        ) * exaggeration
    samples = samples.reshape(height, width)

    vertices = np.empty((grid_width * grid_height, 3), dtype=np.float64)
    for grid_row in range(grid_height):
        row = min(max(grid_row - border, 0), height - 1)
        is_skirt_row = grid_row - border != row
        latitude = rectangle.north - row / (height - 1) * rectangle.height
        for grid_col in range(grid_width):
            col = min(max(grid_col - border, 0), width - 1)
            is_skirt = is_skirt_row or grid_col - border != col
            longitude = rectangle.west + col / (width - 1) * rectangle.width
            h = float(samples[row, col])
            if is_skirt:
                h -= skirt_height
            vertices[grid_row * grid_width + grid_col] = (longitude, latitude, h)

    min_h = float(np.min(samples))
    max_h = float(np.max(samples))
    center, sphere = _bounding_sphere(rectangle, min_h, max_h)

    def grid_index(row: int, col: int) -> int:
        return (row + border) * grid_width + (col + border)

    return TerrainMesh(
        center=center,
        vertices=vertices,
        indices=regular_grid_indices(grid_width, grid_height),
        minimum_height=min_h,
        maximum_height=max_h,
        bounding_sphere=sphere,
        encoding=VertexHeightEncoding(),
        exaggeration=float(exaggeration),
        grid_width=grid_width,
        grid_height=grid_height,
        skirt_height=float(skirt_height) if border else 0.0,
        west_indices_south_to_north=[
            grid_index(row, 0) for row in range(height - 1, -1, -1)
        ],
        south_indices_east_to_west=[
            grid_index(height - 1, col) for col in range(width - 1, -1, -1)
        ],
        east_indices_north_to_south=[
            grid_index(row, width - 1) for row in range(height)
        ],
        north_indices_west_to_east=[grid_index(0, col) for col in range(width)],
    )


@dataclass(frozen=True)
class TessellationRequest:
    heightmap: Any
    structure: HeightmapStructure
    width: int
    height: int
    rectangle: Rectangle
    skirt_height: float
    exaggeration: float


class HeightmapTessellator:
    """Runs ``compute_vertices`` off the event loop with a bounded queue."""

    def __init__(
        self,
        *,
        max_active_tasks: int = 4,
        executor: Optional[Executor] = None,
    ) -> None:
        if max_active_tasks <= 0:
            raise ValueError("max_active_tasks must be > 0")
        self._max_active_tasks = int(max_active_tasks)
        self._executor = executor
        self._active = 0

    @property
    def active_tasks(self) -> int:
        return self._active

    def schedule(
        self, request: TessellationRequest
    ) -> Optional["asyncio.Future[TerrainMesh]"]:
        """Start a tessellation job, or return ``None`` when saturated."""

        if self._active >= self._max_active_tasks:
            logger.debug(
                "tessellation_postponed",
                extra={"active_tasks": self._active},
            )
            return None

        loop = asyncio.get_running_loop()
        job = partial(
            compute_vertices,
            request.heightmap,
            request.structure,
            request.width,
            request.height,
            request.rectangle,
            request.skirt_height,
            request.exaggeration,
        )
        self._active += 1
        future = loop.run_in_executor(self._executor, job)
        future.add_done_callback(self._release)
        return future

    def _release(self, _future: "asyncio.Future[TerrainMesh]") -> None:
        self._active -= 1
