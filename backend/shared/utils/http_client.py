"""
Async HTTP client for the upstream match API.
No retry or backoff: the next scheduled poll is the recovery path.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class UpstreamError(Exception):
    """Transport failure talking to the match API (non-2xx, timeout, connection)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MatchAPIClient:
    """
    Thin wrapper around httpx.AsyncClient for the two upstream endpoints:
    the list endpoint (`/matcher/data`) and the per-match detail endpoint.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        self._connect()

    def _connect(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        self._client = httpx.AsyncClient(
            base_url=self._settings.api_base_url,
            headers={"Accept": "application/json", "Cache-Control": "no-cache"},
            timeout=httpx.Timeout(self._settings.request_timeout_s, connect=2.0),
            follow_redirects=True,
            transport=self._transport,
        )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_matches(self, data_type: str, limit: int) -> Any:
        """GET the list endpoint for one logical query and return decoded JSON."""
        return await self._get_json(
            "/matcher/data",
            params={"dataType": data_type, "limit": limit},
        )

    async def fetch_match_detail(self, api_match_id: str) -> Any:
        """GET the detail payload (events, clock state, penalties) for one match."""
        return await self._get_json(
            f"/matcher/match/{api_match_id}",
            params={"includeEvents": 1},
        )

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        client = self._connect()

        start = time.perf_counter()
        try:
            resp = await client.get(path, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("upstream_http_error", path=path, status=status)
            raise UpstreamError(f"HTTP {status}", status_code=status) from exc
        except httpx.TimeoutException as exc:
            logger.warning("upstream_timeout", path=path)
            raise UpstreamError("Request timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("upstream_request_error", path=path, error=str(exc))
            raise UpstreamError(str(exc) or exc.__class__.__name__) from exc
        except ValueError as exc:
            logger.warning("upstream_invalid_json", path=path)
            raise UpstreamError("Invalid JSON from upstream") from exc

        logger.debug(
            "upstream_request_success",
            path=path,
            status=resp.status_code,
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return data
