from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Union

import numpy as np

from .codec import encode_height
from .interpolation import interpolate_mesh_height, interpolate_raster_height
from .mesh import TerrainMesh
from .structure import DEFAULT_STRUCTURE, HeightmapStructure
from .tessellator import HeightmapTessellator, TessellationRequest, compute_vertices
from .tiling import QuadTreeTilingScheme, Rectangle, child_bit
from .tiling import estimated_level_zero_geometric_error

logger = logging.getLogger(__name__)

MAX_SKIRT_HEIGHT = 1000.0


@dataclass(frozen=True)
class RasterPayload:
    buffer: np.ndarray


@dataclass(frozen=True)
class MeshPayload:
    mesh: TerrainMesh


HeightmapPayload = Union[RasterPayload, MeshPayload]


def _lerp(start: float, end: float, t: float) -> float:
    return (1.0 - t) * start + t * end


class HeightmapTerrainData:
    """Terrain for one tile, backed by a heightmap until a mesh is built.

    Building the mesh consumes the raw buffer: afterwards interpolation and
    upsampling read heights back from the mesh.
    """

    def __init__(
        self,
        buffer: Any,
        width: int,
        height: int,
        *,
        child_tile_mask: int = 15,
        structure: Optional[HeightmapStructure] = None,
        water_mask: Optional[Any] = None,
        created_by_upsampling: bool = False,
    ) -> None:
        if width < 2 or height < 2:
            raise ValueError(f"Heightmap must be at least 2x2, got {width}x{height}")
        if not (0 <= child_tile_mask <= 15):
            raise ValueError(f"child_tile_mask must be a 4-bit mask: {child_tile_mask}")

        self._structure = structure or DEFAULT_STRUCTURE
        array = np.asarray(buffer).reshape(-1)
        expected = width * height * self._structure.stride
        if array.size != expected:
            raise ValueError(
                f"Expected a buffer of {expected} elements for a {width}x{height} "
                f"heightmap with stride {self._structure.stride}, got {array.size}"
            )

        self._payload: HeightmapPayload = RasterPayload(buffer=array)
        self._dtype = array.dtype
        self._width = int(width)
        self._height = int(height)
        self._child_tile_mask = int(child_tile_mask)
        self._water_mask = water_mask
        self._created_by_upsampling = bool(created_by_upsampling)
        self._skirt_height = 0.0

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def structure(self) -> HeightmapStructure:
        return self._structure

    @property
    def child_tile_mask(self) -> int:
        return self._child_tile_mask

    @property
    def water_mask(self) -> Optional[Any]:
        return self._water_mask

    @property
    def skirt_height(self) -> float:
        return self._skirt_height

    @property
    def has_mesh(self) -> bool:
        return isinstance(self._payload, MeshPayload)

    @property
    def mesh(self) -> Optional[TerrainMesh]:
        if isinstance(self._payload, MeshPayload):
            return self._payload.mesh
        return None

    @property
    def buffer(self) -> Optional[np.ndarray]:
        if isinstance(self._payload, RasterPayload):
            return self._payload.buffer
        return None

    def _raster_buffer(self) -> np.ndarray:
        if not isinstance(self._payload, RasterPayload):
            raise ValueError("The mesh for this tile has already been created")
        return self._payload.buffer

    def _tessellation_request(
        self,
        tiling_scheme: QuadTreeTilingScheme,
        x: int,
        y: int,
        level: int,
        exaggeration: float,
    ) -> TessellationRequest:
        level_zero_error = estimated_level_zero_geometric_error(
            self._width, tiling_scheme.number_of_level_zero_tiles_x
        )
        level_error = level_zero_error / (1 << level)
        self._skirt_height = min(level_error * 4.0, MAX_SKIRT_HEIGHT)

        return TessellationRequest(
            heightmap=self._raster_buffer(),
            structure=self._structure,
            width=self._width,
            height=self._height,
            rectangle=tiling_scheme.tile_xy_to_rectangle(x, y, level),
            skirt_height=self._skirt_height,
            exaggeration=float(exaggeration),
        )

    def create_mesh(
        self,
        tiling_scheme: QuadTreeTilingScheme,
        x: int,
        y: int,
        level: int,
        exaggeration: float = 1.0,
        *,
        tessellator: HeightmapTessellator,
    ) -> Optional[Awaitable[TerrainMesh]]:
        """Schedule mesh creation.

        Returns ``None`` when the tessellator is saturated; try again later.
        Must be called from a running event loop.
        """

        request = self._tessellation_request(tiling_scheme, x, y, level, exaggeration)
        pending = tessellator.schedule(request)
        if pending is None:
            return None
        return asyncio.ensure_future(self._adopt_mesh(pending))

    async def _adopt_mesh(self, pending: Awaitable[TerrainMesh]) -> TerrainMesh:
        mesh = await pending
        self._payload = MeshPayload(mesh=mesh)
        return mesh

    def create_mesh_sync(
        self,
        tiling_scheme: QuadTreeTilingScheme,
        x: int,
        y: int,
        level: int,
        exaggeration: float = 1.0,
    ) -> TerrainMesh:
        request = self._tessellation_request(tiling_scheme, x, y, level, exaggeration)
        mesh = compute_vertices(
            request.heightmap,
            request.structure,
            request.width,
            request.height,
            request.rectangle,
            request.skirt_height,
            request.exaggeration,
        )
        self._payload = MeshPayload(mesh=mesh)
        return mesh

    def _interpolate_raw(
        self, rectangle: Rectangle, longitude: float, latitude: float
    ) -> float:
        payload = self._payload
        if isinstance(payload, MeshPayload):
            mesh = payload.mesh
            return interpolate_mesh_height(
                mesh.vertices,
                mesh.encoding,
                self._structure,
                mesh.skirt_height,
                rectangle,
                self._width,
                self._height,
                longitude,
                latitude,
                mesh.exaggeration,
            )
        return interpolate_raster_height(
            payload.buffer,
            self._structure,
            rectangle,
            self._width,
            self._height,
            longitude,
            latitude,
        )

    def interpolate_height(
        self, rectangle: Rectangle, longitude: float, latitude: float
    ) -> float:
        """Height at ``(longitude, latitude)`` in radians, inside ``rectangle``."""

        raw = self._interpolate_raw(rectangle, longitude, latitude)
        return raw * self._structure.height_scale + self._structure.height_offset

    def upsample(
        self,
        tiling_scheme: QuadTreeTilingScheme,
        this_x: int,
        this_y: int,
        this_level: int,
        descendant_x: int,
        descendant_y: int,
        descendant_level: int,
    ) -> Optional["HeightmapTerrainData"]:
        """Resample this tile's mesh onto a direct child's grid.

        Returns ``None`` while the mesh has not been created yet.
        """

        if descendant_level - this_level != 1:
            raise ValueError(
                "Upsampling is only supported from a tile to a direct child, got "
                f"level {this_level} -> {descendant_level}"
            )

        mesh = self.mesh
        if mesh is None:
            return None

        width = self._width
        height = self._height
        structure = self._structure
        heights = np.zeros(width * height * structure.stride, dtype=self._dtype)

        source = tiling_scheme.tile_xy_to_rectangle(this_x, this_y, this_level)
        destination = tiling_scheme.tile_xy_to_rectangle(
            descendant_x, descendant_y, descendant_level
        )

        for j in range(height):
            latitude = _lerp(destination.north, destination.south, j / (height - 1))
            for i in range(width):
                longitude = _lerp(destination.west, destination.east, i / (width - 1))
                sample = interpolate_mesh_height(
                    mesh.vertices,
                    mesh.encoding,
                    structure,
                    mesh.skirt_height,
                    source,
                    width,
                    height,
                    longitude,
                    latitude,
                    mesh.exaggeration,
                )
                encode_height(
                    heights, structure, j * width + i, structure.clamp_encoded(sample)
                )

        logger.debug(
            "heightmap_upsampled",
            extra={
                "parent": (this_x, this_y, this_level),
                "child": (descendant_x, descendant_y, descendant_level),
            },
        )
        return HeightmapTerrainData(
            heights,
            width,
            height,
            child_tile_mask=0,
            structure=structure,
            created_by_upsampling=True,
        )

    def is_child_available(
        self, this_x: int, this_y: int, child_x: int, child_y: int
    ) -> bool:
        bit = child_bit(this_x, this_y, child_x, child_y)
        return (self._child_tile_mask & (1 << bit)) != 0

    def was_created_by_upsampling(self) -> bool:
        return self._created_by_upsampling
