from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Optional

from heightmap.terrain_data import HeightmapTerrainData
from heightmap.tessellator import HeightmapTessellator
from heightmap.tiling import QuadTreeTilingScheme, tile_xy_to_quad_path

from .cache import TerrainCache
from .config import TerrainServiceConfig
from .coordinator import RequestCoordinator
from .directory import TileDirectory
from .errors import TerrainFetchError
from .events import TileProviderError, TileProviderErrorEvent
from .fetcher import HttpTerrainFetcher, PacketDecoder, TerrainFetcher
from .origin import TileOriginResolver

logger = logging.getLogger(__name__)


class TerrainService:
    """Terrain tiles for a quad-tree directory.

    Owns the decoded tile cache, the in-flight request table and the decode
    workers; ``close`` releases the workers.
    """

    def __init__(
        self,
        *,
        directory: TileDirectory,
        fetcher: TerrainFetcher,
        decoder: PacketDecoder,
        config: Optional[TerrainServiceConfig] = None,
        tiling_scheme: Optional[QuadTreeTilingScheme] = None,
        tessellator: Optional[HeightmapTessellator] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or TerrainServiceConfig()
        cfg = self._config

        self._tiling_scheme = tiling_scheme or QuadTreeTilingScheme()
        self._tessellator = tessellator or HeightmapTessellator(
            max_active_tasks=cfg.max_tessellation_tasks
        )
        self._decode_executor = ThreadPoolExecutor(
            max_workers=cfg.decode_workers, thread_name_prefix="terrain-decode"
        )
        self._resolver = TileOriginResolver(directory)
        self._cache = TerrainCache(
            ttl_seconds=cfg.cache_ttl_seconds,
            tidy_interval_seconds=cfg.tidy_interval_seconds,
            clock=clock,
        )
        self._coordinator = RequestCoordinator(
            resolver=self._resolver,
            cache=self._cache,
            fetcher=fetcher,
            decoder=decoder,
            config=cfg,
            decode_executor=self._decode_executor,
        )
        self._error_event = TileProviderErrorEvent()

    @classmethod
    def from_config(
        cls,
        *,
        directory: TileDirectory,
        decoder: PacketDecoder,
        config: TerrainServiceConfig,
        **kwargs: Any,
    ) -> "TerrainService":
        if not config.base_url:
            raise ValueError("base_url must be configured to fetch terrain over HTTP")
        fetcher = HttpTerrainFetcher(
            base_url=config.base_url,
            url_template=config.url_template,
            max_concurrent_requests=config.max_concurrent_requests,
            timeout_s=config.request_timeout_seconds,
        )
        return cls(
            directory=directory, fetcher=fetcher, decoder=decoder, config=config, **kwargs
        )

    @property
    def config(self) -> TerrainServiceConfig:
        return self._config

    @property
    def tiling_scheme(self) -> QuadTreeTilingScheme:
        return self._tiling_scheme

    @property
    def tessellator(self) -> HeightmapTessellator:
        return self._tessellator

    @property
    def error_event(self) -> TileProviderErrorEvent:
        return self._error_event

    @property
    def resolver(self) -> TileOriginResolver:
        return self._resolver

    @property
    def cache(self) -> TerrainCache:
        return self._cache

    @property
    def coordinator(self) -> RequestCoordinator:
        return self._coordinator

    async def request_tile_geometry(
        self, x: int, y: int, level: int
    ) -> HeightmapTerrainData:
        """Terrain for tile ``(x, y, level)``.

        Raises ``TileNotAvailableError`` for tiles without terrain,
        ``TerrainBusyError`` when throttled and ``TerrainFetchError`` when the
        packet could not be loaded. Fetch failures are also reported to
        ``error_event``, whose listeners may ask for a retry.
        """

        path = tile_xy_to_quad_path(x, y, level)
        times_retried = 0
        while True:
            reports: list[TileProviderError] = []
            on_failure = partial(
                self._report_failure, x, y, level, times_retried, reports
            )
            try:
                return await self._coordinator.request_tile(
                    path, on_failure=on_failure
                )
            except TerrainFetchError:
                if not any(record.retry for record in reports):
                    raise
            times_retried += 1
            logger.info(
                "terrain_tile_retrying",
                extra={"quad_path": path, "times_retried": times_retried},
            )

    def _report_failure(
        self,
        x: int,
        y: int,
        level: int,
        times_retried: int,
        reports: list[TileProviderError],
        exc: TerrainFetchError,
    ) -> bool:
        record = self._error_event.report(
            str(exc),
            x=x,
            y=y,
            level=level,
            times_retried=times_retried,
            error=exc,
        )
        reports.append(record)
        return record.retry

    def get_tile_data_available(self, x: int, y: int, level: int) -> bool:
        return self._resolver.is_tile_data_available(tile_xy_to_quad_path(x, y, level))

    def get_level_maximum_geometric_error(self, level: int) -> float:
        if level < 0:
            raise ValueError(f"Invalid level: {level}")
        return self._config.level_zero_maximum_geometric_error / (1 << level)

    def close(self) -> None:
        self._decode_executor.shutdown(wait=True)

    async def __aenter__(self) -> "TerrainService":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
