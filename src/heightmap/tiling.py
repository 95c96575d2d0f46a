from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator

WGS84_A = 6378137.0

QUAD_DIGITS = "0123"


@dataclass(frozen=True)
class Rectangle:
    """A geographic rectangle in radians."""

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self) -> None:
        if not (self.west < self.east):
            raise ValueError(f"Expected west < east, got {self.west} >= {self.east}")
        if not (self.south < self.north):
            raise ValueError(
                f"Expected south < north, got {self.south} >= {self.north}"
            )

    @property
    def width(self) -> float:
        return self.east - self.west

    @property
    def height(self) -> float:
        return self.north - self.south

    def center(self) -> tuple[float, float]:
        return (self.west + self.east) / 2.0, (self.south + self.north) / 2.0


FULL_RECTANGLE = Rectangle(west=-math.pi, south=-math.pi, east=math.pi, north=math.pi)


class QuadTreeTilingScheme:
    """Geographic quad-tree: one root tile, ``2**level`` tiles per axis.

    Tile ``y`` grows southward (row 0 is the northernmost row).
    """

    def __init__(self, rectangle: Rectangle = FULL_RECTANGLE) -> None:
        self._rectangle = rectangle

    @property
    def rectangle(self) -> Rectangle:
        return self._rectangle

    @property
    def number_of_level_zero_tiles_x(self) -> int:
        return 1

    def number_of_x_tiles_at_level(self, level: int) -> int:
        if level < 0:
            raise ValueError(f"Invalid level: {level}")
        return 1 << level

    def number_of_y_tiles_at_level(self, level: int) -> int:
        if level < 0:
            raise ValueError(f"Invalid level: {level}")
        return 1 << level

    def tile_xy_to_rectangle(self, x: int, y: int, level: int) -> Rectangle:
        nx = self.number_of_x_tiles_at_level(level)
        ny = self.number_of_y_tiles_at_level(level)
        if not (0 <= x < nx):
            raise ValueError(f"x out of range at level={level}: {x}")
        if not (0 <= y < ny):
            raise ValueError(f"y out of range at level={level}: {y}")

        rect = self._rectangle
        tile_width = rect.width / nx
        tile_height = rect.height / ny

        west = rect.west + x * tile_width
        east = west + tile_width
        north = rect.north - y * tile_height
        south = north - tile_height
        return Rectangle(west=west, south=south, east=east, north=north)


def estimated_level_zero_geometric_error(
    tile_width: int, level_zero_tiles_x: int
) -> float:
    """Geometric error of a level-zero heightmap tile sampled ``tile_width`` wide."""

    return WGS84_A * 2.0 * math.pi * 0.25 / (tile_width * level_zero_tiles_x)


def child_bit(parent_x: int, parent_y: int, child_x: int, child_y: int) -> int:
    """Bit of ``child`` in its parent's child mask: SW=0, SE=1, NW=2, NE=3."""

    bit = 2  # northwest
    if child_x != parent_x * 2:
        bit += 1  # east
    if child_y != parent_y * 2:
        bit -= 2  # south
    return bit


def tile_xy_to_quad_path(x: int, y: int, level: int) -> str:
    if level < 0:
        raise ValueError(f"Invalid level: {level}")
    n = 1 << level
    if not (0 <= x < n) or not (0 <= y < n):
        raise ValueError(f"Tile ({x}, {y}) out of range at level={level}")

    digits: list[str] = []
    for shift in range(level - 1, -1, -1):
        child_x = x >> shift
        child_y = y >> shift
        digits.append(str(child_bit(child_x >> 1, child_y >> 1, child_x, child_y)))
    return "".join(digits)


def quad_path_to_tile_xy(path: str) -> tuple[int, int, int]:
    x = 0
    y = 0
    for digit in path:
        if digit not in QUAD_DIGITS:
            raise ValueError(f"Invalid quad path: {path!r}")
        bit = int(digit)
        x = x * 2 + (bit & 1)
        y = y * 2 + (0 if bit & 2 else 1)
    return x, y, len(path)


def parent_path(path: str) -> str:
    if path == "":
        raise ValueError("The root tile has no parent")
    return path[:-1]


def child_paths(path: str) -> Iterator[str]:
    for digit in QUAD_DIGITS:
        yield path + digit


def is_ancestor(ancestor: str, path: str) -> bool:
    return len(ancestor) < len(path) and path.startswith(ancestor)
