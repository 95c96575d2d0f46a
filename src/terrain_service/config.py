from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Final, Literal, Mapping, Optional, Union

import numpy as np
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic import model_validator

from heightmap.structure import HeightmapStructure

SUPPORTED_SCHEMA_VERSIONS: Final[set[int]] = {1}

DEFAULT_TERRAIN_SERVICE_CONFIG_NAME: Final[str] = "terrain-service.yaml"
DEFAULT_TERRAIN_SERVICE_CONFIG_ENV: Final[str] = "TERRAIN_SERVICE_CONFIG"
DEFAULT_TERRAIN_CONFIG_DIR_ENV: Final[str] = "TERRAIN_CONFIG_DIR"

FailurePolicy = Literal["demote", "retry"]


class TerrainServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1

    # Decoded tile cache.
    cache_ttl_seconds: float = Field(default=10.0, gt=0)
    tidy_interval_seconds: float = Field(default=10.0, gt=0)

    # Layout of the decoded per-tile buffers.
    tile_width: int = Field(default=32, ge=2)
    tile_height: int = Field(default=32, ge=2)
    element_dtype: str = "<u2"
    structure: HeightmapStructure = Field(default_factory=HeightmapStructure)

    # Flat tile returned where no ancestor has terrain.
    empty_tile_size: int = Field(default=16, ge=2)

    # Concurrency.
    decode_workers: int = Field(default=2, ge=1, le=64)
    max_tessellation_tasks: int = Field(default=4, ge=1, le=64)
    max_concurrent_requests: int = Field(default=6, ge=1, le=256)

    # Transport.
    url_template: str = "{base_url}/flatfile?f1c-0{path}-t.{version}"
    base_url: str = ""
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    level_zero_maximum_geometric_error: float = Field(default=40075.16, gt=0)

    # "demote" marks a tile unavailable after a failed fetch so it is not
    # requested again; "retry" leaves its state untouched.
    failure_policy: FailurePolicy = "demote"

    @field_validator("element_dtype")
    @classmethod
    def _validate_dtype(cls, value: str) -> str:
        try:
            dtype = np.dtype(value)
        except TypeError as exc:
            raise ValueError(f"Unsupported element_dtype: {value!r}") from exc
        if dtype.kind not in {"u", "i", "f"}:
            raise ValueError(f"element_dtype must be numeric, got {value!r}")
        return value

    @model_validator(mode="after")
    def _validate_schema_version(self) -> "TerrainServiceConfig":
        if self.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
            raise ValueError(
                f"Unsupported terrain service schema_version={self.schema_version}; "
                f"supported versions: {sorted(SUPPORTED_SCHEMA_VERSIONS)}"
            )
        return self


def _absolute(path: Union[str, Path]) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = (Path.cwd() / candidate).resolve()
    return candidate


def _resolve_config_path(path: Optional[Union[str, Path]]) -> Path:
    if path is not None:
        return _absolute(path)

    explicit = os.environ.get(DEFAULT_TERRAIN_SERVICE_CONFIG_ENV)
    if explicit:
        return _absolute(explicit)

    config_dir = os.environ.get(DEFAULT_TERRAIN_CONFIG_DIR_ENV)
    if config_dir:
        return Path(config_dir).expanduser() / DEFAULT_TERRAIN_SERVICE_CONFIG_NAME
    return Path.cwd() / "config" / DEFAULT_TERRAIN_SERVICE_CONFIG_NAME


def _parse_yaml(text: str, *, source: Path) -> Mapping[str, Any]:
    try:
        data = yaml.safe_load(text)
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to load terrain service YAML: {source}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"terrain service config must be a mapping: {source}")
    return data


def load_terrain_service_config(
    path: Optional[Union[str, Path]] = None,
) -> TerrainServiceConfig:
    config_path = _resolve_config_path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"terrain service config file not found: {config_path}")

    raw_text = config_path.read_text(encoding="utf-8")
    data = dict(_parse_yaml(raw_text, source=config_path))

    try:
        return TerrainServiceConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(
            f"Invalid terrain service config ({config_path}): {exc}"
        ) from exc


@lru_cache(maxsize=8)
def _get_terrain_service_config_cached(
    config_path: str, mtime_ns: int, size: int
) -> TerrainServiceConfig:
    _ = (mtime_ns, size)
    return load_terrain_service_config(config_path)


def get_terrain_service_config(
    path: Optional[Union[str, Path]] = None,
) -> TerrainServiceConfig:
    resolved = _resolve_config_path(path)
    try:
        stat = resolved.stat()
    except FileNotFoundError as exc:
        raise FileNotFoundError(
            f"terrain service config file not found: {resolved}"
        ) from exc
    return _get_terrain_service_config_cached(
        str(resolved), stat.st_mtime_ns, stat.st_size
    )


get_terrain_service_config.cache_clear = _get_terrain_service_config_cached.cache_clear  # type: ignore[attr-defined]
