from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Protocol


class TerrainState(str, Enum):
    UNKNOWN = "unknown"
    NONE = "none"
    SELF = "self"
    PARENT = "parent"


@dataclass
class TileInformation:
    """Directory entry for one quad-tree node.

    ``terrain_state`` is the only field mutated after the entry is created.
    """

    has_terrain: bool = False
    child_bitmask: int = 0
    terrain_version: int = -1
    terrain_state: TerrainState = TerrainState.UNKNOWN

    def has_child(self, bit: int) -> bool:
        return (self.child_bitmask & (1 << bit)) != 0


class TileDirectory(Protocol):
    def get(self, path: str) -> Optional[TileInformation]: ...

    def ancestor_has_terrain(self, path: str) -> bool: ...


class InMemoryTileDirectory:
    def __init__(self) -> None:
        self._tiles: dict[str, TileInformation] = {}

    def add(self, path: str, info: TileInformation) -> TileInformation:
        if any(digit not in "0123" for digit in path):
            raise ValueError(f"Invalid quad path: {path!r}")
        self._tiles[path] = info
        return info

    def get(self, path: str) -> Optional[TileInformation]:
        return self._tiles.get(path)

    def ancestor_has_terrain(self, path: str) -> bool:
        for end in range(len(path)):
            info = self._tiles.get(path[:end])
            if info is not None and info.has_terrain:
                return True
        return False

    def __contains__(self, path: object) -> bool:
        return path in self._tiles

    def __iter__(self) -> Iterator[str]:
        return iter(self._tiles)

    def __len__(self) -> int:
        return len(self._tiles)
