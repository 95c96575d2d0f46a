"""Height interpolation over a heightmap grid.

Samples are stored north to south, west to east. Each grid cell is split from
its south-west to its north-east corner, matching the triangles produced by
``regular_grid_indices``; interpolating on a different diagonal would open
seams between a tile and the children upsampled from it.
"""

from __future__ import annotations

from typing import Any

from .codec import decode_height
from .mesh import HeightDecoder
from .structure import HeightmapStructure
from .tiling import Rectangle


def triangle_interpolate_height(
    dx: float,
    dy: float,
    southwest: float,
    southeast: float,
    northwest: float,
    northeast: float,
) -> float:
    if dy < dx:
        # Lower right triangle.
        return southwest + dx * (southeast - southwest) + dy * (northeast - southeast)
    # Upper left triangle.
    return southwest + dx * (northeast - northwest) + dy * (northwest - southwest)


def _locate_cell(
    from_west: float,
    from_south: float,
    width: int,
    height: int,
    width_edge: int,
    height_edge: int,
) -> tuple[int, int, int, int, float, float]:
    west_index = int(from_west)
    east_index = west_index + 1
    if east_index >= width_edge:
        east_index = width - 1
        west_index = width - 2

    south_index = int(from_south)
    north_index = south_index + 1
    if north_index >= height_edge:
        north_index = height - 1
        south_index = height - 2

    dx = from_west - west_index
    dy = from_south - south_index

    # Rows are stored north to south.
    south_row = height - 1 - south_index
    north_row = height - 1 - north_index
    return west_index, east_index, south_row, north_row, dx, dy


def interpolate_raster_height(
    buffer: Any,
    structure: HeightmapStructure,
    rectangle: Rectangle,
    width: int,
    height: int,
    longitude: float,
    latitude: float,
) -> float:
    """Interpolate a raw (unscaled) height from a heightmap buffer."""

    from_west = (longitude - rectangle.west) * (width - 1) / rectangle.width
    from_south = (latitude - rectangle.south) * (height - 1) / rectangle.height

    west, east, south_row, north_row, dx, dy = _locate_cell(
        from_west, from_south, width, height, width, height
    )

    southwest = decode_height(buffer, structure, south_row * width + west)
    southeast = decode_height(buffer, structure, south_row * width + east)
    northwest = decode_height(buffer, structure, north_row * width + west)
    northeast = decode_height(buffer, structure, north_row * width + east)
    return triangle_interpolate_height(
        dx, dy, southwest, southeast, northwest, northeast
    )


def interpolate_mesh_height(
    vertices: Any,
    encoding: HeightDecoder,
    structure: HeightmapStructure,
    skirt_height: float,
    rectangle: Rectangle,
    width: int,
    height: int,
    longitude: float,
    latitude: float,
    exaggeration: float,
) -> float:
    """Interpolate a raw (unscaled) height from a tessellated mesh.

    ``width``/``height`` are the dimensions of the heightmap the mesh was built
    from; when the mesh carries a skirt ring the vertex grid is two samples
    wider and taller.
    """

    from_west = (longitude - rectangle.west) * (width - 1) / rectangle.width
    from_south = (latitude - rectangle.south) * (height - 1) / rectangle.height

    has_skirt = skirt_height > 0
    if has_skirt:
        from_west += 1.0
        from_south += 1.0
        width += 2
        height += 2

    width_edge = width - 1 if has_skirt else width
    height_edge = height - 1 if has_skirt else height
    west, east, south_row, north_row, dx, dy = _locate_cell(
        from_west, from_south, width, height, width_edge, height_edge
    )

    offset = structure.height_offset
    scale = structure.height_scale

    def raw(index: int) -> float:
        return (encoding.decode_height(vertices, index) / exaggeration - offset) / scale

    southwest = raw(south_row * width + west)
    southeast = raw(south_row * width + east)
    northwest = raw(north_row * width + west)
    northeast = raw(north_row * width + east)
    return triangle_interpolate_height(
        dx, dy, southwest, southeast, northwest, northeast
    )
