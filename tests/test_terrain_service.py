from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import numpy as np
import pytest

from terrain_service.config import TerrainServiceConfig
from terrain_service.directory import InMemoryTileDirectory, TerrainState, TileInformation
from terrain_service.errors import TerrainFetchError
from terrain_service.events import TileProviderError, TileProviderErrorEvent
from terrain_service.fetcher import HttpTerrainFetcher
from terrain_service.service import TerrainService


class FailingFetcher:
    def __init__(self) -> None:
        self.calls = 0

    async def fetch(self, path: str, version: int) -> Optional[bytes]:
        self.calls += 1
        raise RuntimeError("unreachable host")


class FlakyFetcher:
    def __init__(self, failures: int) -> None:
        self.calls = 0
        self.failures = failures

    async def fetch(self, path: str, version: int) -> Optional[bytes]:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("connection reset")
        return b"packet"


def _decode(payload: bytes) -> list[Any]:
    return [np.zeros(4, dtype=np.uint16)]


def _directory() -> InMemoryTileDirectory:
    directory = InMemoryTileDirectory()
    directory.add("", TileInformation(has_terrain=False, child_bitmask=0b1111))
    directory.add("0", TileInformation(has_terrain=True, child_bitmask=0b0001))
    directory.add("00", TileInformation(has_terrain=False))
    directory.add("1", TileInformation(has_terrain=False))
    return directory


def _config(**overrides: Any) -> TerrainServiceConfig:
    return TerrainServiceConfig(tile_width=2, tile_height=2, decode_workers=1, **overrides)


def test_level_maximum_geometric_error_halves_per_level() -> None:
    with TerrainServiceContext() as service:
        assert service.get_level_maximum_geometric_error(0) == pytest.approx(40075.16)
        assert service.get_level_maximum_geometric_error(2) == pytest.approx(10018.79)
        with pytest.raises(ValueError, match="Invalid level"):
            service.get_level_maximum_geometric_error(-1)


def test_tile_data_availability() -> None:
    with TerrainServiceContext() as service:
        # Root has no terrain in its lineage, so it is served flat.
        assert service.get_tile_data_available(0, 0, 0) is True
        # "0" has its own terrain, "00" is carried in its packet.
        assert service.get_tile_data_available(0, 1, 1) is True
        assert service.get_tile_data_available(0, 3, 2) is True
        # Not in the directory.
        assert service.get_tile_data_available(1, 0, 1) is False


def test_failure_is_reported_once_without_retry() -> None:
    fetcher = FailingFetcher()
    with TerrainServiceContext(fetcher=fetcher) as service:
        errors: list[TileProviderError] = []
        service.error_event.add_listener(errors.append)
        with pytest.raises(TerrainFetchError, match="unreachable host"):
            asyncio.run(service.request_tile_geometry(0, 1, 1))

    assert fetcher.calls == 1
    assert len(errors) == 1
    assert errors[0].times_retried == 0
    assert "unreachable host" in errors[0].message


def test_listener_retries_until_it_gives_up(caplog: pytest.LogCaptureFixture) -> None:
    fetcher = FailingFetcher()
    with TerrainServiceContext(fetcher=fetcher, failure_policy="retry") as service:
        attempts: list[int] = []

        def on_error(error: TileProviderError) -> None:
            attempts.append(error.times_retried)
            error.retry = error.times_retried < 2

        service.error_event.add_listener(on_error)
        caplog.set_level(logging.INFO, logger="terrain_service.service")
        with pytest.raises(TerrainFetchError):
            asyncio.run(service.request_tile_geometry(0, 1, 1))

    assert attempts == [0, 1, 2]
    assert fetcher.calls == 3
    assert [r.getMessage() for r in caplog.records].count("terrain_tile_retrying") == 2


def test_listener_retry_refetches_under_default_policy() -> None:
    fetcher = FlakyFetcher(failures=1)
    with TerrainServiceContext(fetcher=fetcher) as service:
        attempts: list[int] = []

        def on_error(error: TileProviderError) -> None:
            attempts.append(error.times_retried)
            error.retry = error.times_retried < 1

        service.error_event.add_listener(on_error)
        data = asyncio.run(service.request_tile_geometry(0, 1, 1))
        state = service.resolver.info("0").terrain_state

    assert fetcher.calls == 2
    assert attempts == [0]
    assert data.buffer.tolist() == [0] * 4
    assert state is TerrainState.SELF


def test_declined_retry_demotes_tile() -> None:
    fetcher = FlakyFetcher(failures=1)
    with TerrainServiceContext(fetcher=fetcher) as service:
        service.error_event.add_listener(lambda error: None)
        with pytest.raises(TerrainFetchError, match="connection reset"):
            asyncio.run(service.request_tile_geometry(0, 1, 1))
        state = service.resolver.info("0").terrain_state

    assert fetcher.calls == 1
    assert state is TerrainState.NONE


def test_unheard_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    with TerrainServiceContext(fetcher=FailingFetcher()) as service:
        caplog.set_level(logging.WARNING, logger="terrain_service.events")
        with pytest.raises(TerrainFetchError):
            asyncio.run(service.request_tile_geometry(0, 1, 1))

    failed = [r for r in caplog.records if r.getMessage() == "terrain_tile_failed"]
    assert len(failed) == 1
    assert getattr(failed[0], "level") == 1


def test_error_event_listener_removal() -> None:
    event = TileProviderErrorEvent()
    seen: list[TileProviderError] = []
    remove = event.add_listener(seen.append)
    assert event.number_of_listeners == 1

    event.report("first", x=0, y=0, level=0)
    remove()
    event.report("second", x=0, y=0, level=0)

    assert [e.message for e in seen] == ["first"]
    assert event.number_of_listeners == 0
    assert event.remove_listener(seen.append) is False


def test_from_config_builds_http_fetcher() -> None:
    config = _config(base_url="https://example.test")
    service = TerrainService.from_config(
        directory=_directory(), decoder=_decode, config=config
    )
    try:
        fetcher = service.coordinator._fetcher  # noqa: SLF001
        assert isinstance(fetcher, HttpTerrainFetcher)
        assert fetcher.url_for("0", 2) == "https://example.test/flatfile?f1c-00-t.2"
    finally:
        service.close()

    with pytest.raises(ValueError, match="base_url"):
        TerrainService.from_config(directory=_directory(), decoder=_decode, config=_config())


def test_async_context_manager_closes_workers() -> None:
    service = TerrainService(
        directory=_directory(), fetcher=FailingFetcher(), decoder=_decode, config=_config()
    )

    async def scenario() -> None:
        async with service as entered:
            assert entered is service

    asyncio.run(scenario())
    with pytest.raises(RuntimeError):
        service.coordinator._decode_executor.submit(int)  # noqa: SLF001


class TerrainServiceContext:
    def __init__(self, *, fetcher: Any = None, **config: Any) -> None:
        self._service = TerrainService(
            directory=_directory(),
            fetcher=fetcher or FailingFetcher(),
            decoder=_decode,
            config=_config(**config),
        )

    def __enter__(self) -> TerrainService:
        return self._service

    def __exit__(self, *exc_info: object) -> None:
        self._service.close()
