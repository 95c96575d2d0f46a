"""Terrain tile retrieval: origin resolution, caching and request dedup."""

from .cache import TerrainCache
from .config import TerrainServiceConfig
from .config import get_terrain_service_config
from .config import load_terrain_service_config
from .coordinator import RequestCoordinator
from .directory import InMemoryTileDirectory
from .directory import TerrainState
from .directory import TileInformation
from .errors import TerrainBusyError
from .errors import TerrainDecodeError
from .errors import TerrainError
from .errors import TerrainFetchError
from .errors import TileNotAvailableError
from .events import TileProviderError
from .events import TileProviderErrorEvent
from .fetcher import HttpTerrainFetcher
from .origin import TerrainOrigin
from .origin import TileOriginResolver
from .service import TerrainService

__all__ = [
    "HttpTerrainFetcher",
    "InMemoryTileDirectory",
    "RequestCoordinator",
    "TerrainBusyError",
    "TerrainCache",
    "TerrainDecodeError",
    "TerrainError",
    "TerrainFetchError",
    "TerrainOrigin",
    "TerrainService",
    "TerrainServiceConfig",
    "TerrainState",
    "TileInformation",
    "TileNotAvailableError",
    "TileOriginResolver",
    "TileProviderError",
    "TileProviderErrorEvent",
    "get_terrain_service_config",
    "load_terrain_service_config",
]
