from __future__ import annotations

from typing import Optional


class TerrainError(RuntimeError):
    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class TileNotAvailableError(TerrainError):
    pass


class TerrainBusyError(TerrainError):
    """The request was throttled; retry later."""


class TerrainFetchError(TerrainError):
    pass


class TerrainDecodeError(TerrainFetchError):
    pass
