"""Heightmap terrain tiles: sample codec, interpolation, meshing, upsampling."""

from .codec import decode_height
from .codec import encode_height
from .interpolation import interpolate_mesh_height
from .interpolation import interpolate_raster_height
from .interpolation import triangle_interpolate_height
from .mesh import TerrainMesh
from .structure import DEFAULT_STRUCTURE
from .structure import HeightmapStructure
from .terrain_data import HeightmapTerrainData
from .tessellator import HeightmapTessellator
from .tessellator import compute_vertices
from .tiling import QuadTreeTilingScheme
from .tiling import Rectangle
from .tiling import quad_path_to_tile_xy
from .tiling import tile_xy_to_quad_path

__all__ = [
    "DEFAULT_STRUCTURE",
    "HeightmapStructure",
    "HeightmapTerrainData",
    "HeightmapTessellator",
    "QuadTreeTilingScheme",
    "Rectangle",
    "TerrainMesh",
    "compute_vertices",
    "decode_height",
    "encode_height",
    "interpolate_mesh_height",
    "interpolate_raster_height",
    "quad_path_to_tile_xy",
    "tile_xy_to_quad_path",
    "triangle_interpolate_height",
]
