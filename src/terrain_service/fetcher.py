from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

import httpx

from .errors import TerrainFetchError

logger = logging.getLogger(__name__)

DEFAULT_URL_TEMPLATE = "{base_url}/flatfile?f1c-0{path}-t.{version}"


class TerrainFetcher(Protocol):
    async def fetch(self, path: str, version: int) -> Optional[bytes]:
        """Fetch the packet stored at ``path``; ``None`` means throttled."""
        ...


# Splits one packet into the node's own buffer followed by one buffer per
# child present in the packet, in child-digit order.
PacketDecoder = Callable[[bytes], Sequence[Any]]


class HttpTerrainFetcher:
    def __init__(
        self,
        *,
        base_url: str,
        url_template: str = DEFAULT_URL_TEMPLATE,
        max_concurrent_requests: int = 6,
        timeout_s: float = 30.0,
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if max_concurrent_requests <= 0:
            raise ValueError("max_concurrent_requests must be > 0")

        self._base_url = base_url.rstrip("/")
        self._url_template = url_template
        self._max_concurrent_requests = int(max_concurrent_requests)
        self._timeout_s = float(timeout_s)
        self._headers = dict(headers or {})
        self._client = client
        self._active = 0

    @property
    def active_requests(self) -> int:
        return self._active

    def url_for(self, path: str, version: int) -> str:
        version = version if version > 0 else 1
        return self._url_template.format(
            base_url=self._base_url, path=path, version=version
        )

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.get(
            url, headers=self._headers, timeout=httpx.Timeout(self._timeout_s)
        )

    async def fetch(self, path: str, version: int) -> Optional[bytes]:
        if self._active >= self._max_concurrent_requests:
            logger.debug(
                "terrain_request_throttled",
                extra={"quad_path": path, "active_requests": self._active},
            )
            return None

        url = self.url_for(path, version)
        self._active += 1
        try:
            if self._client is not None:
                resp = await self._get(self._client, url)
            else:
                async with httpx.AsyncClient(follow_redirects=True) as client:
                    resp = await self._get(client, url)
        except httpx.RequestError as exc:
            raise TerrainFetchError(
                f"Failed to fetch terrain packet {url}: {exc}", path=path
            ) from exc
        finally:
            self._active -= 1

        if not resp.is_success:
            raise TerrainFetchError(
                f"Failed to fetch terrain packet {url}: HTTP {resp.status_code}",
                path=path,
            )
        return resp.content
