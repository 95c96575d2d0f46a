from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

from heightmap.terrain_data import HeightmapTerrainData
from heightmap.tiling import QUAD_DIGITS

from .cache import TerrainCache
from .config import TerrainServiceConfig
from .directory import TerrainState
from .errors import (
    TerrainBusyError,
    TerrainDecodeError,
    TerrainError,
    TerrainFetchError,
    TileNotAvailableError,
)
from .fetcher import PacketDecoder, TerrainFetcher
from .origin import TileOriginResolver

logger = logging.getLogger(__name__)

# Sees each fetch or decode failure; True keeps the node for a retry.
FailureHandler = Callable[[TerrainFetchError], bool]


@dataclass
class InFlightRequest:
    path: str
    task: "asyncio.Task[None]"
    waiters: int = 0


class RequestCoordinator:
    """Fetches and decodes terrain packets, at most once at a time per node.

    Requests for a node whose payload is already being fetched, including
    children delivered inside the same packet, wait on the running fetch
    instead of starting another one.
    """

    def __init__(
        self,
        *,
        resolver: TileOriginResolver,
        cache: TerrainCache,
        fetcher: TerrainFetcher,
        decoder: PacketDecoder,
        config: Optional[TerrainServiceConfig] = None,
        decode_executor: Optional[Executor] = None,
    ) -> None:
        self._resolver = resolver
        self._cache = cache
        self._fetcher = fetcher
        self._decoder = decoder
        self._config = config or TerrainServiceConfig()
        self._decode_executor = decode_executor
        self._in_flight: dict[str, InFlightRequest] = {}

    @property
    def in_flight(self) -> dict[str, InFlightRequest]:
        return self._in_flight

    def _empty_tile(self) -> HeightmapTerrainData:
        size = self._config.empty_tile_size
        return HeightmapTerrainData(np.zeros(size * size, dtype=np.uint8), size, size)

    def _materialize(self, path: str, buffer: Any) -> HeightmapTerrainData:
        cfg = self._config
        try:
            if isinstance(buffer, (bytes, bytearray, memoryview)):
                array = np.frombuffer(buffer, dtype=np.dtype(cfg.element_dtype))
            else:
                array = np.asarray(buffer)
            return HeightmapTerrainData(
                array,
                cfg.tile_width,
                cfg.tile_height,
                child_tile_mask=self._resolver.child_mask(path),
                structure=cfg.structure,
            )
        except ValueError as exc:
            raise TerrainDecodeError(
                f"Decoded terrain for {path!r} is malformed: {exc}", path=path
            ) from exc

    def _demote(self, path: str) -> None:
        if self._config.failure_policy != "demote":
            return
        self._resolver.mark_unavailable(path)
        logger.info("terrain_tile_marked_unavailable", extra={"quad_path": path})

    async def request_tile(
        self,
        path: str,
        *,
        on_failure: Optional[FailureHandler] = None,
    ) -> HeightmapTerrainData:
        """Terrain for the node at ``path``.

        ``on_failure`` sees every fetch or decode failure before the node is
        demoted. Returning True keeps the node's state so the caller can
        request it again.
        """

        try:
            return await self._request_tile(path)
        except TerrainFetchError as exc:
            retry = bool(on_failure(exc)) if on_failure is not None else False
            if not retry:
                self._demote(path)
            raise

    async def _request_tile(self, path: str) -> HeightmapTerrainData:
        info = self._resolver.info(path)

        buffer = self._cache.get(path)
        if buffer is not None:
            return self._materialize(path, buffer)

        self._cache.tidy()

        if not self._resolver.lineage_has_terrain(path):
            # Nothing at or above this node has elevation data.
            return self._empty_tile()
        if info.terrain_state is TerrainState.NONE:
            raise TileNotAvailableError("Terrain tile doesn't exist", path=path)

        origin = self._resolver.resolve(path)
        if origin.fetch_path is None:
            raise TileNotAvailableError("Terrain tile doesn't exist", path=path)

        fetch_path = origin.fetch_path
        in_flight = self._in_flight.get(fetch_path)
        if in_flight is None:
            in_flight = self._start_fetch(fetch_path, origin.version)
        else:
            logger.debug(
                "terrain_fetch_joined",
                extra={
                    "quad_path": path,
                    "fetch_path": fetch_path,
                    "waiters": in_flight.waiters + 1,
                },
            )

        in_flight.waiters += 1
        try:
            await asyncio.shield(in_flight.task)
        except asyncio.CancelledError:
            if not in_flight.task.done() and in_flight.waiters == 1:
                # Last one waiting: nobody else needs the packet. Later
                # requests must not join the fetch being torn down.
                if self._in_flight.get(fetch_path) is in_flight:
                    del self._in_flight[fetch_path]
                in_flight.task.cancel()
            raise
        finally:
            in_flight.waiters -= 1

        buffer = self._cache.get(path)
        if buffer is None:
            raise TerrainFetchError("Failed to load terrain.", path=path)
        return self._materialize(path, buffer)

    def _start_fetch(self, path: str, version: int) -> InFlightRequest:
        task = asyncio.ensure_future(self._fetch_and_decode(path, version))
        in_flight = InFlightRequest(path=path, task=task)
        self._in_flight[path] = in_flight
        return in_flight

    async def _fetch_and_decode(self, path: str, version: int) -> None:
        task = asyncio.current_task()
        try:
            await self._load_packet(path, version)
        finally:
            current = self._in_flight.get(path)
            if current is not None and current.task is task:
                del self._in_flight[path]

    async def _load_packet(self, path: str, version: int) -> None:
        logger.info(
            "terrain_fetch_started",
            extra={"quad_path": path, "terrain_version": version},
        )
        try:
            payload = await self._fetcher.fetch(path, version)
        except TerrainError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise TerrainFetchError(
                f"Failed to load terrain: {exc}", path=path
            ) from exc

        if payload is None:
            raise TerrainBusyError("Terrain request throttled", path=path)

        loop = asyncio.get_running_loop()
        try:
            tiles = await loop.run_in_executor(
                self._decode_executor, self._decoder, payload
            )
        except Exception as exc:  # noqa: BLE001
            raise TerrainDecodeError(
                f"Failed to decode terrain packet for {path!r}: {exc}", path=path
            ) from exc
        if not tiles:
            raise TerrainDecodeError(
                f"Terrain packet for {path!r} contained no tiles", path=path
            )

        self._cache.add(path, tiles[0])
        children: list[str] = []
        for digit, child_buffer in zip(QUAD_DIGITS, tiles[1:]):
            child = path + digit
            if self._resolver.directory.get(child) is None:
                continue
            self._cache.add(child, child_buffer)
            children.append(child)
        self._resolver.mark_fetched(path, children)

        logger.info(
            "terrain_fetch_finished",
            extra={"quad_path": path, "children": len(children)},
        )
