"""Where the elevation payload for a quad-tree node comes from.

A node either carries its own payload (SELF), receives it inside its parent's
packet (PARENT), is known to have none (NONE), or has not been probed yet
(UNKNOWN). Packets only carry one level of children, so the direct parent is
the only ancestor that can serve a PARENT node.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from heightmap.tiling import child_paths, parent_path

from .directory import TerrainState, TileDirectory, TileInformation
from .errors import TileNotAvailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TerrainOrigin:
    path: str
    state: TerrainState
    fetch_path: Optional[str] = None
    version: int = -1


class TileOriginResolver:
    def __init__(self, directory: TileDirectory) -> None:
        self._directory = directory

    @property
    def directory(self) -> TileDirectory:
        return self._directory

    def info(self, path: str) -> TileInformation:
        info = self._directory.get(path)
        if info is None:
            raise TileNotAvailableError("Terrain tile doesn't exist", path=path)
        return info

    def lineage_has_terrain(self, path: str) -> bool:
        info = self._directory.get(path)
        if info is not None and info.has_terrain:
            return True
        return self._directory.ancestor_has_terrain(path)

    def _parent_with_terrain(self, path: str) -> Optional[tuple[str, TileInformation]]:
        if path == "":
            return None
        parent = parent_path(path)
        info = self._directory.get(parent)
        if info is None or not info.has_terrain:
            return None
        return parent, info

    def _transition(self, path: str, info: TileInformation, state: TerrainState) -> None:
        if info.terrain_state is state:
            return
        if info.terrain_state is not TerrainState.UNKNOWN:
            logger.debug(
                "terrain_state_kept",
                extra={
                    "quad_path": path,
                    "terrain_state": info.terrain_state.value,
                    "requested_state": state.value,
                },
            )
            return
        info.terrain_state = state

    def resolve(self, path: str) -> TerrainOrigin:
        info = self.info(path)
        state = info.terrain_state

        if state is TerrainState.UNKNOWN:
            if info.has_terrain:
                self._transition(path, info, TerrainState.SELF)
            elif self._parent_with_terrain(path) is not None:
                self._transition(path, info, TerrainState.PARENT)
            else:
                self._transition(path, info, TerrainState.NONE)
            state = info.terrain_state

        if state is TerrainState.SELF:
            return TerrainOrigin(
                path=path, state=state, fetch_path=path, version=info.terrain_version
            )
        if state is TerrainState.PARENT:
            parent = self._parent_with_terrain(path)
            if parent is None:
                return TerrainOrigin(path=path, state=state)
            parent_key, parent_info = parent
            return TerrainOrigin(
                path=path,
                state=state,
                fetch_path=parent_key,
                version=parent_info.terrain_version,
            )
        return TerrainOrigin(path=path, state=state)

    def child_mask(self, path: str) -> int:
        """Child availability bits (SW=0, SE=1, NW=2, NE=3) for ``path``.

        A node delivered inside its parent's packet cannot trust its own
        bitmask, so the mask is rebuilt from each child's terrain flag.
        """

        info = self.info(path)
        if info.terrain_state is not TerrainState.PARENT:
            return info.child_bitmask

        mask = 0
        for bit, child in enumerate(child_paths(path)):
            child_info = self._directory.get(child)
            if child_info is not None and child_info.has_terrain:
                mask |= 1 << bit
        return mask

    def mark_fetched(self, path: str, children: Iterable[str]) -> None:
        self._transition(path, self.info(path), TerrainState.SELF)
        for child in children:
            child_info = self._directory.get(child)
            if child_info is not None:
                self._transition(child, child_info, TerrainState.PARENT)

    def mark_unavailable(self, path: str) -> None:
        info = self._directory.get(path)
        if info is not None:
            info.terrain_state = TerrainState.NONE

    def is_tile_data_available(self, path: str) -> bool:
        info = self._directory.get(path)
        if info is None:
            return False
        if not self.lineage_has_terrain(path):
            # Served as a flat tile.
            return True
        if info.terrain_state is TerrainState.NONE:
            return False
        if info.terrain_state is TerrainState.UNKNOWN and not info.has_terrain:
            return self._parent_with_terrain(path) is not None
        return True
